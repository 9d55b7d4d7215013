"""Clone the running USB system onto the internal eMMC exactly once.

The run is a straight line::

    CHECK_PRECONDITIONS -> ALREADY_DONE
                        -> CLONE -> REWRITE_IDENTIFIERS -> MARK_DONE -> SHUTDOWN

Precondition failures raise :class:`PreconditionError` before anything is
mounted. Any delegated command that fails raises
:class:`~factory_flash.runner.CommandError` and aborts the run; only the probe
mounts and the unmounts are allowed to fail. The ``FACTORY_DONE`` marker on the
eMMC boot partition is the only state carried between runs.
"""

from __future__ import annotations

import contextlib
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from . import devices
from .config import FlashConfig
from .devices import BOOT_PARTITION, ROOT_PARTITION, PartitionIds, compose_partition
from .mounts import mounted
from .rewrite import CmdlineBranch, RewriteError, RewriteResult, rewrite_cmdline, rewrite_fstab
from .runner import CommandRunner, log, warn


class PreconditionError(RuntimeError):
    """Raised when the system is not in a state where flashing is allowed."""


class FlashState:
    """Named states of a flash run."""

    CHECK_PRECONDITIONS = "check_preconditions"
    ALREADY_DONE = "already_done"
    CLONE = "clone"
    REWRITE_IDENTIFIERS = "rewrite_identifiers"
    MARK_DONE = "mark_done"
    SHUTDOWN = "shutdown"


@dataclass
class FlashOutcome:
    state: str
    root_source: Optional[str] = None
    ids: Optional[PartitionIds] = None
    cmdline_rules: List[str] = field(default_factory=list)
    fstab_rules: List[str] = field(default_factory=list)


def ensure_root() -> None:
    if os.geteuid() != 0:
        raise PreconditionError("factory-flash must run as root to mount and clone block devices.")


def check_preconditions(config: FlashConfig, runner: CommandRunner) -> str:
    source = devices.root_source(runner)
    if not devices.is_removable_source(source, config.removable_prefixes):
        raise PreconditionError(f"Root device ({source}) is not a USB disk.")
    log(f"Root device is {source}, continuing.")
    if not devices.is_block_device(config.target_device):
        raise PreconditionError(f"eMMC device {config.target_device} not found.")
    return source


def already_flashed(config: FlashConfig, runner: CommandRunner) -> bool:
    log("Checking if eMMC is already flashed with marker...")
    root_partition = compose_partition(config.target_device, ROOT_PARTITION)
    boot_partition = compose_partition(config.target_device, BOOT_PARTITION)
    # write_marker puts the marker on the boot partition mounted at <mount>/boot.
    with contextlib.ExitStack() as stack:
        stack.enter_context(mounted(runner, root_partition, config.mount_dir, required=False))
        stack.enter_context(mounted(runner, boot_partition, config.boot_mount, required=False))
        present = config.marker_path.is_file()
    if present:
        log(f"{config.marker_name} marker found at {config.marker_path}")
        log("Skipping clone; eMMC already flashed.")
    return present


def clone_to_target(config: FlashConfig, runner: CommandRunner) -> None:
    log(f"Cloning via {config.clone_command}...")
    runner.stream(
        [config.clone_command, *config.clone_flags, devices.device_name(config.target_device)]
    )


def _rewrite_file(path: Path, rewrite: Callable[[str], RewriteResult]) -> RewriteResult:
    if not path.is_file():
        raise RewriteError(f"{path} not found on the cloned device.")
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise RewriteError(f"{path} is not valid UTF-8 text: {exc}") from exc
    result = rewrite(text)
    if result.changed:
        path.write_text(result.text, encoding="utf-8")
    return result


def update_cmdline(config: FlashConfig, ids: PartitionIds) -> RewriteResult:
    template_root = compose_partition(config.template_disk, ROOT_PARTITION)
    internal_root = compose_partition(config.target_device, ROOT_PARTITION)
    result = _rewrite_file(
        config.cmdline_path,
        lambda text: rewrite_cmdline(
            text,
            ids.root,
            template_root=template_root,
            internal_root=internal_root,
            strict=config.strict_cmdline,
        ),
    )
    branch = result.rules[0]
    if branch == CmdlineBranch.PARTUUID:
        log(f"Updating existing PARTUUID in cmdline.txt to root=PARTUUID={ids.root}")
    elif branch == CmdlineBranch.TEMPLATE:
        log(f"Replacing {template_root} with root=PARTUUID={ids.root} in cmdline.txt")
    elif branch == CmdlineBranch.INTERNAL:
        log(f"Replacing {internal_root} with root=PARTUUID={ids.root} in cmdline.txt")
    else:
        warn(
            "No recognizable root= parameter in cmdline.txt; "
            f"forcing root=PARTUUID={ids.root}. Review {config.cmdline_path}."
        )
    return result


def update_fstab(config: FlashConfig, ids: PartitionIds) -> RewriteResult:
    result = _rewrite_file(
        config.fstab_path,
        lambda text: rewrite_fstab(
            text,
            ids,
            template_boot=compose_partition(config.template_disk, BOOT_PARTITION),
            template_root=compose_partition(config.template_disk, ROOT_PARTITION),
            internal_boot=compose_partition(config.target_device, BOOT_PARTITION),
            internal_root=compose_partition(config.target_device, ROOT_PARTITION),
        ),
    )
    if not result.rules:
        log("fstab has no PARTUUID or known device entries; left unchanged.")
    for rule in result.rules:
        log(f"Replaced {rule} entries in fstab.")
    return result


def rewrite_identifiers(
    config: FlashConfig, runner: CommandRunner
) -> tuple[PartitionIds, RewriteResult, RewriteResult]:
    """Point cmdline.txt and fstab on the mounted clone at its new PARTUUIDs."""

    ids = devices.read_partition_ids(runner, config.target_device)
    log("=== Detected eMMC PARTUUIDs ===")
    log(f"BOOT PARTUUID = {ids.boot}")
    log(f"ROOT PARTUUID = {ids.root}")
    cmdline = update_cmdline(config, ids)
    fstab = update_fstab(config, ids)
    return ids, cmdline, fstab


def write_marker(config: FlashConfig) -> Path:
    log(f"Creating {config.marker_name} marker at {config.marker_path}")
    config.marker_path.touch()
    return config.marker_path


def power_off(config: FlashConfig, runner: CommandRunner) -> bool:
    if not config.shutdown:
        log("Shutdown disabled; leaving the system running.")
        return False
    log(f"Shutting down system in {config.shutdown_delay} seconds...")
    time.sleep(config.shutdown_delay)
    runner.run(["shutdown", "-h", "now"])
    return True


def run_flash(config: FlashConfig, runner: CommandRunner | None = None) -> FlashOutcome:
    runner = runner or CommandRunner()
    log("=== Factory Flash Script Started ===")
    state = FlashState.CHECK_PRECONDITIONS
    try:
        ensure_root()
        source = check_preconditions(config, runner)

        if already_flashed(config, runner):
            return FlashOutcome(FlashState.ALREADY_DONE, root_source=source)
        log(f"No {config.marker_name} marker detected; proceeding with clone...")

        state = FlashState.CLONE
        clone_to_target(config, runner)

        state = FlashState.REWRITE_IDENTIFIERS
        log("Mounting eMMC partitions...")
        root_partition = compose_partition(config.target_device, ROOT_PARTITION)
        boot_partition = compose_partition(config.target_device, BOOT_PARTITION)
        with contextlib.ExitStack() as stack:
            stack.enter_context(mounted(runner, root_partition, config.mount_dir))
            stack.enter_context(mounted(runner, boot_partition, config.boot_mount))
            ids, cmdline, fstab = rewrite_identifiers(config, runner)
            state = FlashState.MARK_DONE
            write_marker(config)
            runner.run(["sync"])
            log("Unmounting eMMC...")
        log(f"=== eMMC flash complete. {config.marker_name} marker created. ===")

        outcome = FlashOutcome(
            FlashState.MARK_DONE,
            root_source=source,
            ids=ids,
            cmdline_rules=list(cmdline.rules),
            fstab_rules=list(fstab.rules),
        )
        state = FlashState.SHUTDOWN
        if power_off(config, runner):
            outcome.state = FlashState.SHUTDOWN
        return outcome
    except Exception:
        if state in (FlashState.REWRITE_IDENTIFIERS, FlashState.MARK_DONE):
            warn(
                f"Run aborted during {state} after the clone; the eMMC holds a partial "
                "provisioning state. Inspect it before re-running."
            )
        else:
            warn(f"Run aborted during {state}.")
        raise
