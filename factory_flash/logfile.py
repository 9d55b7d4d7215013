"""Duplicate console output into the persistent flash log."""

from __future__ import annotations

import contextlib
import sys
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import IO


class TeeStream:
    """Write-through wrapper sending everything to a console stream and a log file."""

    def __init__(self, stream: IO[str], log_handle: IO[str]):
        self.stream = stream
        self.log_handle = log_handle

    def write(self, message: str) -> int:
        self.stream.write(message)
        self.log_handle.write(message)
        return len(message)

    def flush(self) -> None:
        self.stream.flush()
        self.log_handle.flush()

    def isatty(self) -> bool:
        return self.stream.isatty()

    @property
    def encoding(self) -> str:
        return getattr(self.stream, "encoding", "utf-8")


@contextlib.contextmanager
def tee_output(log_path: Path) -> Iterator[Path]:
    """Append stdout and stderr to ``log_path`` until the block exits."""

    log_path.parent.mkdir(parents=True, exist_ok=True)
    original_stdout, original_stderr = sys.stdout, sys.stderr
    with log_path.open("a", encoding="utf-8") as handle:
        stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        handle.write(f"\n--- factory-flash run {stamp} ---\n")
        sys.stdout = TeeStream(original_stdout, handle)
        sys.stderr = TeeStream(original_stderr, handle)
        try:
            yield log_path
        finally:
            sys.stdout.flush()
            sys.stderr.flush()
            sys.stdout, sys.stderr = original_stdout, original_stderr
