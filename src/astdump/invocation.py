# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Captured compiler invocations and their batch-config document."""

import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_SEQUENCE_KEYS = ("include", "input", "flag", "zc")
_MAPPING_KEYS = ("define", "file", "warn")


class InvocationConfigError(ValueError):
    """Represent a malformed batch-config document."""


@dataclass(frozen=True)
class Invocation:
    """Represent one captured compiler command.

    Attributes:
        cmd: Compiler executable name; kept for bookkeeping only.
        include: Ordered include directories.
        input: Ordered source file paths.
        flag: Ordered compiler flags.
        zc: Ordered conformance flags.
        define: Macro name to optional value.
        file: Single-letter option category to path.
        warn: Warning code to suppression flag.

    Fields cannot be reassigned, but the three mappings are plain dicts. Use
    ``copy`` before changing them; every transform in this module does. The
    record is not hashable.
    """

    __hash__ = None  # type: ignore[assignment]

    cmd: str = ""
    include: tuple[str, ...] = ()
    input: tuple[str, ...] = ()
    flag: tuple[str, ...] = ()
    zc: tuple[str, ...] = ()
    define: dict[str, str | None] = field(default_factory=dict)
    file: dict[str, str] = field(default_factory=dict)
    warn: dict[str, str] = field(default_factory=dict)


def normalize(invocation: Invocation, base_dir: str) -> Invocation:
    """Join ``input`` and ``include`` entries onto a base directory.

    Args:
        invocation: Invocation as captured.
        base_dir: Working directory the compiler ran in.

    Returns:
        A new invocation; ``invocation`` is left untouched.
    """
    normalized = copy(invocation)
    return replace(
        normalized,
        input=tuple(os.path.join(base_dir, entry) for entry in invocation.input),
        include=tuple(os.path.join(base_dir, entry) for entry in invocation.include),
    )


def copy(invocation: Invocation) -> Invocation:
    """Return a duplicate that shares no mapping with ``invocation``."""
    return replace(
        invocation,
        define=dict(invocation.define),
        file=dict(invocation.file),
        warn=dict(invocation.warn),
    )


def split(
    invocations: list[Invocation], target_files: list[str]
) -> list[Invocation]:
    """Move selected input files into their own single-file invocations.

    Extraction follows the order of ``invocations`` and then the order of
    ``target_files``. Names missing from every invocation are ignored.

    Args:
        invocations: Source invocations; not modified.
        target_files: Input entries to extract, matched textually.

    Returns:
        The shrunk source invocations followed by the extracted ones.
    """
    remaining: list[Invocation] = []
    extracted: list[Invocation] = []
    for invocation in invocations:
        inputs = list(invocation.input)
        for target in target_files:
            if target not in inputs:
                continue
            extracted.append(replace(copy(invocation), input=(target,)))
            inputs = [entry for entry in inputs if entry != target]
            logger.debug(f"Split input into its own invocation (input={target})")
        remaining.append(replace(copy(invocation), input=tuple(inputs)))
    return remaining + extracted


def parse_invocations(payload: Any) -> list[Invocation]:
    """Build invocations from a decoded batch-config document.

    Args:
        payload: Decoded JSON value; must be a list of objects.

    Returns:
        Invocations in document order.

    Raises:
        InvocationConfigError: If the document shape or value types are invalid.
    """
    if not isinstance(payload, list):
        raise InvocationConfigError("Batch config must be a list of invocations.")
    invocations: list[Invocation] = []
    for index, entry in enumerate(payload):
        if not isinstance(entry, dict):
            raise InvocationConfigError(f"Invocation #{index} is not an object.")
        if "input" not in entry:
            raise InvocationConfigError(f"Invocation #{index} has no 'input' list.")
        cmd = entry.get("cmd") or ""
        if not isinstance(cmd, str):
            raise InvocationConfigError(f"Invocation #{index}: 'cmd' must be a string.")
        sequences = {
            key: _read_sequence(entry.get(key), key=key, index=index)
            for key in _SEQUENCE_KEYS
        }
        mappings = {
            key: _read_mapping(entry.get(key), key=key, index=index)
            for key in _MAPPING_KEYS
        }
        invocations.append(Invocation(cmd=cmd, **sequences, **mappings))
    return invocations


def load_invocations(path: Path) -> list[Invocation]:
    """Load a batch-config document from disk.

    Raises:
        InvocationConfigError: If the file is not valid JSON or is malformed.
        OSError: If the file cannot be read.
    """
    text = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvocationConfigError(f"Batch config is not valid JSON: {exc}") from exc
    invocations = parse_invocations(payload)
    logger.info(
        f"Loaded batch config (path={path} invocations={len(invocations)} "
        f"inputs={sum(len(inv.input) for inv in invocations)})"
    )
    return invocations


def invocation_to_dict(invocation: Invocation) -> dict[str, Any]:
    """Render an invocation in batch-config document form."""
    return {
        "cmd": invocation.cmd,
        "zc": list(invocation.zc),
        "warn": dict(invocation.warn),
        "flag": list(invocation.flag),
        "file": dict(invocation.file),
        "input": list(invocation.input),
        "include": list(invocation.include),
        "define": dict(invocation.define),
    }


def write_invocations(invocations: list[Invocation], path: Path) -> None:
    """Write invocations as a batch-config document.

    Raises:
        OSError: If directory creation or file writing fails.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps([invocation_to_dict(inv) for inv in invocations], indent=2),
        encoding="utf-8",
    )


def _read_sequence(value: Any, key: str, index: int) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise InvocationConfigError(
            f"Invocation #{index}: '{key}' must be a list of strings."
        )
    return tuple(value)


def _read_mapping(value: Any, key: str, index: int) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvocationConfigError(f"Invocation #{index}: '{key}' must be an object.")
    for name, item in value.items():
        if item is not None and not isinstance(item, str):
            raise InvocationConfigError(
                f"Invocation #{index}: '{key}.{name}' must be a string or null."
            )
    return dict(value)
