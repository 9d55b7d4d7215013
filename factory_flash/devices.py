"""Block device queries used by the flash procedure."""

from __future__ import annotations

import os
import re
import stat
from collections.abc import Iterable
from dataclasses import dataclass

from .runner import CommandError, CommandRunner

BOOT_PARTITION = "1"
ROOT_PARTITION = "2"


@dataclass(frozen=True, slots=True)
class PartitionIds:
    """PARTUUIDs of the freshly cloned boot and root partitions."""

    boot: str
    root: str


def compose_partition(disk: str, number: str) -> str:
    if disk.endswith(tuple("0123456789")):
        return f"{disk}p{number}"
    return f"{disk}{number}"


def device_name(device: str) -> str:
    """Return the kernel name for a ``/dev`` path (``/dev/mmcblk0`` -> ``mmcblk0``)."""

    return re.sub(r"^/dev/", "", device)


def root_source(runner: CommandRunner) -> str:
    """Return the device backing ``/``, resolving ``PARTUUID=`` sources."""

    source = runner.capture(["findmnt", "-n", "-o", "SOURCE", "/"])
    if source.startswith("PARTUUID="):
        partuuid = source.split("=", 1)[1]
        device = runner.capture(["blkid", "-t", f"PARTUUID={partuuid}", "-o", "device"])
        if device:
            return device.splitlines()[0].strip()
    return source


def is_removable_source(source: str, prefixes: Iterable[str]) -> bool:
    return any(source.startswith(prefix) for prefix in prefixes)


def is_block_device(path: str) -> bool:
    try:
        mode = os.stat(path).st_mode
    except OSError:
        return False
    return stat.S_ISBLK(mode)


def read_partuuid(runner: CommandRunner, device: str) -> str:
    command = ["blkid", "-s", "PARTUUID", "-o", "value", device]
    value = runner.capture(command)
    if not value:
        raise CommandError(command, 1, stderr=f"no PARTUUID reported for {device}")
    return value


def read_partition_ids(runner: CommandRunner, disk: str) -> PartitionIds:
    return PartitionIds(
        boot=read_partuuid(runner, compose_partition(disk, BOOT_PARTITION)),
        root=read_partuuid(runner, compose_partition(disk, ROOT_PARTITION)),
    )
