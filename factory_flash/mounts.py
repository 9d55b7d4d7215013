"""Scoped mounts for the target device partitions."""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from pathlib import Path

from .runner import CommandRunner


@contextlib.contextmanager
def mounted(
    runner: CommandRunner,
    device: str,
    mountpoint: Path,
    *,
    required: bool = True,
) -> Iterator[bool]:
    """Mount ``device`` at ``mountpoint`` for the duration of the block.

    With ``required=False`` a failing mount is tolerated and the block
    receives ``False``. The partition is unmounted on every exit path; that
    unmount is allowed to fail.
    """

    mountpoint.mkdir(parents=True, exist_ok=True)
    if required:
        runner.run(["mount", device, str(mountpoint)])
        is_mounted = True
    else:
        is_mounted = runner.try_run(["mount", device, str(mountpoint)]) == 0
    try:
        yield is_mounted
    finally:
        if is_mounted:
            runner.try_run(["umount", str(mountpoint)])
