"""Entry point for the factory-flash command."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Sequence

from .config import ConfigError, FlashConfig, load_config, validate_target
from .flash import FlashState, PreconditionError, run_flash
from .logfile import tee_output
from .rewrite import RewriteError
from .runner import CommandError, CommandRunner, log


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="factory-flash",
        description=(
            "Clone the running USB system to the internal eMMC, expand it, point "
            "cmdline.txt and fstab at the new PARTUUIDs, mark the eMMC as flashed "
            "and power off. Runs that find the marker exit without changes."
        ),
    )
    parser.add_argument(
        "--env-file",
        help="KEY=VALUE settings file (default: $FACTORY_FLASH_ENV or /etc/default/factory-flash).",
    )
    parser.add_argument("--target", help="Internal block device to flash (default: /dev/mmcblk0).")
    parser.add_argument(
        "--mount-dir",
        type=Path,
        help="Scratch directory used to mount the eMMC partitions (default: /mnt/emmc).",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        help="Log file that receives a copy of all output (default: /var/log/factory-flash.log).",
    )
    parser.add_argument(
        "--no-shutdown",
        action="store_true",
        help="Leave the system running after the marker has been written.",
    )
    return parser


def resolve_config(args: argparse.Namespace) -> FlashConfig:
    env = dict(os.environ)
    if args.env_file:
        env["FACTORY_FLASH_ENV"] = args.env_file
    config = load_config(env)
    if args.target:
        config.target_device = validate_target(args.target, source="--target")
    if args.mount_dir:
        config.mount_dir = args.mount_dir
    if args.log_file:
        config.log_path = args.log_file
    if args.no_shutdown:
        config.shutdown = False
    return config


def exit_status(returncode: int) -> int:
    """Map a command's return code to a process exit status.

    Commands killed by signal N report -N; like a shell, exit with 128 + N.
    """

    if returncode < 0:
        return 128 - returncode
    return returncode or 1


def _fail(message: str) -> None:
    print(f"ERROR: {message}", file=sys.stderr, flush=True)


def execute(config: FlashConfig, runner: CommandRunner | None = None) -> int:
    """Run the flash procedure and translate failures into exit statuses."""

    try:
        outcome = run_flash(config, runner)
    except PreconditionError as exc:
        _fail(f"{exc} Exiting.")
        return 1
    except (RewriteError, OSError) as exc:
        _fail(str(exc))
        return 1
    except CommandError as exc:
        _fail(str(exc))
        return exit_status(exc.returncode)
    if outcome.state == FlashState.ALREADY_DONE:
        log("Nothing to do; eMMC already provisioned.")
    else:
        log(f"Run finished in state {outcome.state}.")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        config = resolve_config(args)
    except ConfigError as exc:
        _fail(str(exc))
        return 1
    try:
        with tee_output(config.log_path):
            return execute(config)
    except OSError as exc:
        _fail(f"unable to write {config.log_path}: {exc}")
        return 1
