"""Rewrite root and mount references in cmdline.txt and fstab.

Both rewriters are pure functions over file contents. They return a
:class:`RewriteResult` recording which rules matched so callers can log the
outcome and tests can assert on the precedence directly.

``cmdline.txt`` is a single line of kernel parameters. Exactly one of the
following branches fires, in order:

``partuuid``
    ``root=PARTUUID=<old>`` is updated to the fresh root PARTUUID.
``template``
    ``root=<template root partition>`` (``/dev/sda2`` by default) is replaced.
``internal``
    ``root=<internal root partition>`` (``/dev/mmcblk0p2`` by default) is replaced.
``fallback``
    Any other ``root=`` value is overwritten, or a ``root=`` parameter is
    appended when none exists. This can clobber a valid but differently
    written root reference (``root=UUID=...``, ``root=LABEL=...``), so it is
    reported as a warning and refused outright in strict mode.

``fstab`` rules are independent of each other. When any entry already uses a
PARTUUID, entries ending in ``-01``/``-02`` are pointed at the fresh boot and
root PARTUUIDs. Then each literal device path (template and internal, boot
and root) found in the device column is replaced. Comments and blank lines are
never touched, and rewriting already-correct content changes nothing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .devices import PartitionIds


class RewriteError(RuntimeError):
    """Raised when a configuration file cannot be rewritten safely."""


class CmdlineBranch:
    """Which cmdline.txt rule produced the new root reference."""

    PARTUUID = "partuuid"
    TEMPLATE = "template"
    INTERNAL = "internal"
    FALLBACK = "fallback"


@dataclass
class RewriteResult:
    original: str
    text: str
    rules: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.text != self.original


_WHITESPACE = re.compile(r"(\s+)")
_FSTAB_ENTRY = re.compile(r"^(\s*)(\S+)(.*)$", re.DOTALL)


def _split_words(text: str) -> List[str]:
    # Odd indexes hold the whitespace runs so joining restores the layout.
    return _WHITESPACE.split(text)


def _root_indexes(parts: List[str], predicate) -> List[int]:
    return [
        index
        for index, part in enumerate(parts)
        if part.startswith("root=") and predicate(part[len("root=") :])
    ]


def _append_parameter(text: str, parameter: str) -> str:
    body = text.rstrip()
    trailing = text[len(body) :]
    if not body:
        return parameter + trailing
    return f"{body} {parameter}{trailing}"


def rewrite_cmdline(
    text: str,
    root_partuuid: str,
    *,
    template_root: str,
    internal_root: str,
    strict: bool = False,
) -> RewriteResult:
    parts = _split_words(text)
    fresh = f"root=PARTUUID={root_partuuid}"

    branches = (
        (CmdlineBranch.PARTUUID, lambda value: value.startswith("PARTUUID=")),
        (CmdlineBranch.TEMPLATE, lambda value: value == template_root),
        (CmdlineBranch.INTERNAL, lambda value: value == internal_root),
    )
    for branch, predicate in branches:
        indexes = _root_indexes(parts, predicate)
        if indexes:
            for index in indexes:
                parts[index] = fresh
            return RewriteResult(text, "".join(parts), [branch])

    if strict:
        raise RewriteError(
            "cmdline.txt has no recognizable root= parameter "
            f"(expected PARTUUID, {template_root} or {internal_root}); refusing to guess."
        )
    indexes = _root_indexes(parts, lambda _value: True)
    if not indexes:
        return RewriteResult(text, _append_parameter(text, fresh), [CmdlineBranch.FALLBACK])
    for index in indexes:
        parts[index] = fresh
    return RewriteResult(text, "".join(parts), [CmdlineBranch.FALLBACK])


def _split_entry(line: str) -> Optional[Tuple[str, str, str]]:
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    match = _FSTAB_ENTRY.match(line)
    if not match:
        return None
    return match.group(1), match.group(2), match.group(3)


def _partuuid_ending(suffix: str):
    pattern = re.compile(r"PARTUUID=\S*" + re.escape(suffix))
    return lambda spec: pattern.fullmatch(spec) is not None


def fstab_literal_rules(
    ids: PartitionIds,
    *,
    template_boot: str,
    template_root: str,
    internal_boot: str,
    internal_root: str,
) -> List[Tuple[str, str]]:
    """Return ``(device path, replacement)`` pairs in the order they apply."""

    return [
        (template_boot, f"PARTUUID={ids.boot}"),
        (template_root, f"PARTUUID={ids.root}"),
        (internal_boot, f"PARTUUID={ids.boot}"),
        (internal_root, f"PARTUUID={ids.root}"),
    ]


def rewrite_fstab(
    text: str,
    ids: PartitionIds,
    *,
    template_boot: str,
    template_root: str,
    internal_boot: str,
    internal_root: str,
) -> RewriteResult:
    lines = text.splitlines(keepends=True)
    entries = [_split_entry(line) for line in lines]
    rules: List[str] = []

    def replace(predicate, replacement: str) -> bool:
        hit = False
        for index, entry in enumerate(entries):
            if entry is None:
                continue
            indent, spec, rest = entry
            if predicate(spec):
                entries[index] = (indent, replacement, rest)
                hit = True
        return hit

    if any(entry is not None and entry[1].startswith("PARTUUID=") for entry in entries):
        if replace(_partuuid_ending("-01"), f"PARTUUID={ids.boot}"):
            rules.append("PARTUUID=*-01")
        if replace(_partuuid_ending("-02"), f"PARTUUID={ids.root}"):
            rules.append("PARTUUID=*-02")

    literals = fstab_literal_rules(
        ids,
        template_boot=template_boot,
        template_root=template_root,
        internal_boot=internal_boot,
        internal_root=internal_root,
    )
    for device, replacement in literals:
        if replace(lambda spec, device=device: spec == device, replacement):
            rules.append(device)

    rendered = []
    for line, entry in zip(lines, entries):
        rendered.append(line if entry is None else "".join(entry))
    return RewriteResult(text, "".join(rendered), rules)
