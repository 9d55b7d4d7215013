import pytest

from factory_flash.mounts import mounted
from factory_flash.runner import CommandError
from tests.helpers.fake_runner import FakeRunner


def test_mount_is_released_on_error(tmp_path):
    runner = FakeRunner()
    mountpoint = tmp_path / "emmc"
    with pytest.raises(RuntimeError):
        with mounted(runner, "/dev/mmcblk0p2", mountpoint):
            raise RuntimeError("boom")
    assert runner.calls == [
        ["mount", "/dev/mmcblk0p2", str(mountpoint)],
        ["umount", str(mountpoint)],
    ]
    assert mountpoint.is_dir()


def test_optional_mount_failure_is_tolerated(tmp_path):
    runner = FakeRunner(failures={"mount": 32})
    with mounted(runner, "/dev/mmcblk0p2", tmp_path / "emmc", required=False) as is_mounted:
        assert is_mounted is False
    assert runner.programs() == ["mount"]


def test_required_mount_failure_raises(tmp_path):
    runner = FakeRunner(failures={"mount": 32})
    with pytest.raises(CommandError):
        with mounted(runner, "/dev/mmcblk0p1", tmp_path / "boot"):
            pass
    assert runner.programs() == ["mount"]


def test_unmount_failure_is_ignored(tmp_path):
    runner = FakeRunner(failures={"umount": 1})
    with mounted(runner, "/dev/mmcblk0p2", tmp_path / "emmc") as is_mounted:
        assert is_mounted is True
    assert runner.programs() == ["mount", "umount"]
