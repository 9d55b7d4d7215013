"""Settings for the factory flash run.

Values come from three layers, highest precedence first:

1. command line flags (applied by :mod:`factory_flash.cli`),
2. the process environment,
3. a shell-style ``KEY=VALUE`` file, ``/etc/default/factory-flash`` unless
   ``FACTORY_FLASH_ENV`` points elsewhere.

Anything left unset falls back to the defaults below, which match the stock
Raspberry Pi layout: USB boot disk ``/dev/sda`` cloned to ``/dev/mmcblk0``.
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

DEFAULT_ENV_PATH = Path("/etc/default/factory-flash")
DEFAULT_TARGET = "/dev/mmcblk0"
DEFAULT_MOUNT_DIR = Path("/mnt/emmc")
DEFAULT_MARKER = "FACTORY_DONE"
DEFAULT_LOG_PATH = Path("/var/log/factory-flash.log")
DEFAULT_REMOVABLE_PREFIXES = ("/dev/sd",)
DEFAULT_TEMPLATE_DISK = "/dev/sda"
DEFAULT_CLONE_COMMAND = "rpi-clone"
# force, verbose, no prompt, expand the root filesystem to fill the target
DEFAULT_CLONE_FLAGS = ("-f", "-v", "-U", "-x")
DEFAULT_SHUTDOWN_DELAY = 5


class ConfigError(RuntimeError):
    """Raised when a configuration value cannot be used."""


@dataclass(slots=True)
class FlashConfig:
    target_device: str = DEFAULT_TARGET
    mount_dir: Path = DEFAULT_MOUNT_DIR
    marker_name: str = DEFAULT_MARKER
    log_path: Path = DEFAULT_LOG_PATH
    removable_prefixes: tuple[str, ...] = DEFAULT_REMOVABLE_PREFIXES
    template_disk: str = DEFAULT_TEMPLATE_DISK
    clone_command: str = DEFAULT_CLONE_COMMAND
    clone_flags: tuple[str, ...] = DEFAULT_CLONE_FLAGS
    shutdown: bool = True
    shutdown_delay: int = DEFAULT_SHUTDOWN_DELAY
    strict_cmdline: bool = False

    @property
    def boot_mount(self) -> Path:
        return self.mount_dir / "boot"

    @property
    def marker_path(self) -> Path:
        return self.boot_mount / self.marker_name

    @property
    def cmdline_path(self) -> Path:
        return self.boot_mount / "cmdline.txt"

    @property
    def fstab_path(self) -> Path:
        return self.mount_dir / "etc" / "fstab"


def _env_flag(value: Optional[str], *, default: bool = False) -> bool:
    if value is None:
        return default
    value = value.strip().lower()
    return value in {"1", "true", "yes", "on"}


def _parse_env_file(path: Path) -> Dict[str, str]:
    data: Dict[str, str] = {}
    if not path.exists():
        return data
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"unable to read {path}: {exc}") from exc
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if (value.startswith('"') and value.endswith('"')) or (
            value.startswith("'") and value.endswith("'")
        ):
            value = value[1:-1]
        data[key] = value
    return data


def _read_int(key: str, raw: Optional[str], default: int) -> int:
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer (received {raw!r}).") from exc
    if value < 0:
        raise ConfigError(f"{key} must be non-negative (received {value}).")
    return value


def _split_prefixes(raw: Optional[str]) -> tuple[str, ...]:
    if not raw:
        return DEFAULT_REMOVABLE_PREFIXES
    prefixes = tuple(part.strip() for part in raw.split(",") if part.strip())
    if not prefixes:
        raise ConfigError("FACTORY_FLASH_REMOVABLE_PREFIXES must list at least one prefix.")
    return prefixes


def _split_flags(raw: Optional[str]) -> tuple[str, ...]:
    if raw is None:
        return DEFAULT_CLONE_FLAGS
    try:
        return tuple(shlex.split(raw))
    except ValueError as exc:
        raise ConfigError(f"FACTORY_FLASH_CLONE_FLAGS contains invalid shell syntax: {exc}") from exc


def validate_target(target: str, *, source: str = "FACTORY_FLASH_TARGET") -> str:
    if not target.startswith("/dev/"):
        raise ConfigError(f"{source} must be a /dev path (received {target!r}).")
    return target


def load_config(env: Mapping[str, str] | None = None) -> FlashConfig:
    environ = env if env is not None else os.environ
    env_path = Path(environ.get("FACTORY_FLASH_ENV", str(DEFAULT_ENV_PATH)))
    file_data = _parse_env_file(env_path)

    def fetch(key: str, default: Optional[str] = None) -> Optional[str]:
        if key in environ:
            return environ[key]
        return file_data.get(key, default)

    target = validate_target((fetch("FACTORY_FLASH_TARGET") or DEFAULT_TARGET).strip())
    template_disk = (fetch("FACTORY_FLASH_TEMPLATE_DISK") or DEFAULT_TEMPLATE_DISK).strip()
    marker = (fetch("FACTORY_FLASH_MARKER") or DEFAULT_MARKER).strip()
    if "/" in marker:
        raise ConfigError("FACTORY_FLASH_MARKER must be a plain file name.")
    clone_command = (fetch("FACTORY_FLASH_CLONE_COMMAND") or DEFAULT_CLONE_COMMAND).strip()

    return FlashConfig(
        target_device=target,
        mount_dir=Path(fetch("FACTORY_FLASH_MOUNT_DIR") or DEFAULT_MOUNT_DIR),
        marker_name=marker,
        log_path=Path(fetch("FACTORY_FLASH_LOG") or DEFAULT_LOG_PATH),
        removable_prefixes=_split_prefixes(fetch("FACTORY_FLASH_REMOVABLE_PREFIXES")),
        template_disk=template_disk,
        clone_command=clone_command,
        clone_flags=_split_flags(fetch("FACTORY_FLASH_CLONE_FLAGS")),
        shutdown=_env_flag(fetch("FACTORY_FLASH_SHUTDOWN"), default=True),
        shutdown_delay=_read_int(
            "FACTORY_FLASH_SHUTDOWN_DELAY",
            fetch("FACTORY_FLASH_SHUTDOWN_DELAY"),
            DEFAULT_SHUTDOWN_DELAY,
        ),
        strict_cmdline=_env_flag(fetch("FACTORY_FLASH_STRICT_CMDLINE"), default=False),
    )
