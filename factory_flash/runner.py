"""Utility helpers for running subprocesses consistently."""

from __future__ import annotations

import shlex
import subprocess
import sys
from collections.abc import Sequence
from dataclasses import dataclass

LOG_PREFIX = "[factory-flash]"


@dataclass(slots=True)
class CommandError(RuntimeError):
    """Raised when a subprocess exits with a non-zero status."""

    command: Sequence[str]
    returncode: int
    stderr: str | None = None

    def __str__(self) -> str:
        message = f"{format_command(self.command)} exited with status {self.returncode}"
        if self.stderr:
            stderr = self.stderr.strip()
            if stderr:
                message = f"{message}\n{stderr}"
        return message


def format_command(command: Sequence[str]) -> str:
    """Render a subprocess command for display or logging."""

    return " ".join(shlex.quote(part) for part in command)


def log(message: str) -> None:
    print(f"{LOG_PREFIX} {message}", flush=True)


def warn(message: str) -> None:
    print(f"{LOG_PREFIX} warning: {message}", file=sys.stderr, flush=True)


class CommandRunner:
    """Execute external commands, echoing each one before it runs.

    ``run`` and ``capture`` raise :class:`CommandError` on failure. ``try_run``
    is for commands whose failure the caller tolerates (probing mounts and
    unmounting); it only reports the exit status. ``stream`` forwards output
    line by line so long running tools show progress in the log.
    """

    def run(self, command: Sequence[str]) -> None:
        print(f"$ {format_command(command)}", flush=True)
        result = subprocess.run(
            list(command),
            check=False,
            text=True,
            capture_output=True,
        )
        _echo(result.stdout, sys.stdout)
        _echo(result.stderr, sys.stderr)
        if result.returncode != 0:
            raise CommandError(command, result.returncode, stderr=result.stderr)

    def try_run(self, command: Sequence[str]) -> int:
        print(f"$ {format_command(command)}", flush=True)
        result = subprocess.run(
            list(command),
            check=False,
            text=True,
            capture_output=True,
        )
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            detail = f": {stderr}" if stderr else ""
            log(f"ignoring failure of {command[0]} (exit {result.returncode}){detail}")
        return result.returncode

    def capture(self, command: Sequence[str]) -> str:
        result = subprocess.run(
            list(command),
            check=False,
            text=True,
            capture_output=True,
        )
        if result.returncode != 0:
            raise CommandError(command, result.returncode, stderr=result.stderr)
        return (result.stdout or "").strip()

    def stream(self, command: Sequence[str]) -> None:
        print(f"$ {format_command(command)}", flush=True)
        process = subprocess.Popen(
            list(command),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
        assert process.stdout is not None
        with process.stdout:
            for line in process.stdout:
                sys.stdout.write(line)
                sys.stdout.flush()
        returncode = process.wait()
        if returncode != 0:
            raise CommandError(command, returncode)


def _echo(text: str | None, stream) -> None:
    if not text:
        return
    stream.write(text if text.endswith("\n") else text + "\n")
    stream.flush()
