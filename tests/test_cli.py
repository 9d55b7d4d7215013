import subprocess
import sys
from pathlib import Path

import pytest

from factory_flash import cli, devices, flash
from tests.helpers.fake_runner import FakeRunner

ROOT = Path(__file__).resolve().parents[1]
SCRIPT = ROOT / "scripts" / "factory_flash_run.py"


@pytest.fixture
def provisioned_host(monkeypatch, tmp_path):
    """Fake a USB-booted host whose eMMC already carries the marker."""

    monkeypatch.setattr(flash.os, "geteuid", lambda: 0)
    monkeypatch.setattr(devices, "is_block_device", lambda path: True)
    runner = FakeRunner(responses={("findmnt", "-n", "-o", "SOURCE", "/"): "/dev/sda2"})
    monkeypatch.setattr(flash, "CommandRunner", lambda: runner)
    mount_dir = tmp_path / "emmc"
    (mount_dir / "boot").mkdir(parents=True)
    (mount_dir / "boot" / "FACTORY_DONE").touch()
    return runner, mount_dir


def test_main_skips_provisioned_emmc_and_logs(provisioned_host, tmp_path, capsys):
    runner, mount_dir = provisioned_host
    log_file = tmp_path / "log" / "factory-flash.log"

    code = cli.main(["--mount-dir", str(mount_dir), "--log-file", str(log_file)])

    assert code == 0
    assert not runner.called("rpi-clone")
    out = capsys.readouterr().out
    assert "Nothing to do; eMMC already provisioned." in out
    logged = log_file.read_text(encoding="utf-8")
    assert "=== Factory Flash Script Started ===" in logged
    assert "Skipping clone; eMMC already flashed." in logged


def test_flags_override_env_file(tmp_path):
    env_file = tmp_path / "factory-flash"
    env_file.write_text(
        "FACTORY_FLASH_TARGET=/dev/mmcblk1\nFACTORY_FLASH_SHUTDOWN=1\n", encoding="utf-8"
    )
    args = cli.build_parser().parse_args(
        ["--env-file", str(env_file), "--target", "/dev/mmcblk2", "--no-shutdown"]
    )
    config = cli.resolve_config(args)
    assert config.target_device == "/dev/mmcblk2"
    assert config.shutdown is False


def test_env_file_flag_is_used(tmp_path):
    env_file = tmp_path / "factory-flash"
    env_file.write_text("FACTORY_FLASH_MARKER=PROVISIONED\n", encoding="utf-8")
    config = cli.resolve_config(cli.build_parser().parse_args(["--env-file", str(env_file)]))
    assert config.marker_name == "PROVISIONED"


def test_invalid_configuration_exits_nonzero(monkeypatch, capsys):
    monkeypatch.setenv("FACTORY_FLASH_SHUTDOWN_DELAY", "later")
    assert cli.main([]) == 1
    assert "ERROR: FACTORY_FLASH_SHUTDOWN_DELAY must be an integer" in capsys.readouterr().err


def test_precondition_failure_exits_one(monkeypatch, tmp_path, capsys):
    monkeypatch.setattr(flash.os, "geteuid", lambda: 0)
    runner = FakeRunner(responses={("findmnt", "-n", "-o", "SOURCE", "/"): "/dev/mmcblk0p2"})
    monkeypatch.setattr(flash, "CommandRunner", lambda: runner)

    code = cli.main(["--log-file", str(tmp_path / "factory-flash.log")])

    assert code == 1
    err = capsys.readouterr().err
    assert "ERROR: Root device (/dev/mmcblk0p2) is not a USB disk. Exiting." in err


def test_unwritable_log_exits_one(tmp_path, capsys):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")

    assert cli.main(["--log-file", str(blocker / "factory-flash.log")]) == 1
    assert "unable to write" in capsys.readouterr().err


def test_script_help_runs():
    result = subprocess.run(
        [sys.executable, str(SCRIPT), "--help"],
        capture_output=True,
        text=True,
        check=False,
    )
    assert result.returncode == 0
    assert "--no-shutdown" in result.stdout


def test_target_flag_is_validated(capsys):
    assert cli.main(["--target", "mmcblk0"]) == 1
    assert "ERROR: --target must be a /dev path" in capsys.readouterr().err


@pytest.mark.parametrize("returncode,expected", [(3, 3), (0, 1), (-9, 137), (-15, 143)])
def test_exit_status_mapping(returncode, expected):
    assert cli.exit_status(returncode) == expected
