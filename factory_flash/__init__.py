"""One-time USB to eMMC factory flashing for Raspberry Pi boards."""

from .config import ConfigError, FlashConfig, load_config
from .devices import PartitionIds
from .flash import FlashOutcome, FlashState, PreconditionError, run_flash
from .rewrite import CmdlineBranch, RewriteError, RewriteResult, rewrite_cmdline, rewrite_fstab
from .runner import CommandError, CommandRunner

__all__ = [
    "CmdlineBranch",
    "CommandError",
    "CommandRunner",
    "ConfigError",
    "FlashConfig",
    "FlashOutcome",
    "FlashState",
    "PartitionIds",
    "PreconditionError",
    "RewriteError",
    "RewriteResult",
    "load_config",
    "rewrite_cmdline",
    "rewrite_fstab",
    "run_flash",
]
