# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Reference-preserving JSON encoding of projection snapshots.

Encoding runs in two passes. The first pass walks every projected field and
counts how often each object is reached. The second pass emits objects
reached once inline; objects reached more than once get an ``"$id"`` on first
emission and are written as ``{"$ref": id}`` afterwards. Because the id is
assigned before an object's fields are emitted, cycles end in a reference.

Both passes and the JSON writer use explicit work stacks, so the depth of a
function body does not depend on the interpreter's recursion limit.
"""

import dataclasses
import json
import logging
from typing import Any, TextIO

from astdump.projection import ProjectionRules
from astdump.snapshot import ProjectionSnapshot

logger = logging.getLogger(__name__)

ID_KEY = "$id"
REF_KEY = "$ref"

_SCALARS = (bool, int, float, str)


class SerializationError(RuntimeError):
    """Represent a value the serializer cannot encode."""


class SnapshotSerializer:
    """Serialize snapshots according to a projection rule set."""

    def __init__(self, rules: ProjectionRules | None = None) -> None:
        self._rules = rules or ProjectionRules()

    def encode(self, snapshot: ProjectionSnapshot) -> dict[str, Any]:
        """Encode a snapshot into JSON-compatible values.

        Args:
            snapshot: Snapshot to encode.

        Returns:
            Plain dicts, lists and scalars.

        Raises:
            ProjectionConfigError: If a whitelist names a missing field.
            SerializationError: If a value has no JSON representation.
        """
        counts: dict[int, int] = {}
        self._count_references(snapshot, counts)
        shared = {key for key, count in counts.items() if count > 1}
        return _Emitter(rules=self._rules, shared=shared).emit(snapshot)

    def dump(self, snapshot: ProjectionSnapshot, stream: TextIO) -> None:
        """Write the encoded snapshot to a text stream."""
        write_json(self.encode(snapshot), stream)

    def _count_references(self, root: Any, counts: dict[int, int]) -> None:
        stack = [root]
        while stack:
            value = stack.pop()
            if isinstance(value, (list, tuple)):
                stack.extend(value)
                continue
            if isinstance(value, dict):
                stack.extend(value.values())
                continue
            if not _is_projectable(value):
                continue
            key = id(value)
            seen = counts.get(key, 0)
            counts[key] = seen + 1
            if seen:
                continue
            for name in self._rules.fields_for(type(value)):
                stack.append(getattr(value, name))


class _Emitter:
    """Emit one encoding; ids are numbered in emission order.

    Each work item is a value plus the slot (container and key) its encoding
    goes into. Containers are created with their keys in final order and the
    children are pushed in reverse, so objects are visited depth first in
    field order and ids match a recursive walk.
    """

    def __init__(self, rules: ProjectionRules, shared: set[int]) -> None:
        self._rules = rules
        self._shared = shared
        self._ids: dict[int, str] = {}

    def emit(self, value: Any) -> Any:
        root: list[Any] = [None]
        stack: list[tuple[Any, Any, Any]] = [(value, root, 0)]
        while stack:
            item, container, slot = stack.pop()
            container[slot] = self._encode_one(item, stack)
        return root[0]

    def _encode_one(self, value: Any, stack: list[tuple[Any, Any, Any]]) -> Any:
        if value is None or isinstance(value, _SCALARS):
            return value
        if isinstance(value, (list, tuple)):
            items: list[Any] = [None] * len(value)
            for index in range(len(value) - 1, -1, -1):
                stack.append((value[index], items, index))
            return items
        if isinstance(value, dict):
            mapping: dict[str, Any] = {str(key): None for key in value}
            for key, item in reversed(list(value.items())):
                stack.append((item, mapping, str(key)))
            return mapping
        if _is_projectable(value):
            return self._encode_object(value, stack)
        logger.warning(f"Cannot encode value (type={type(value).__name__})")
        raise SerializationError(f"Cannot encode value of type {type(value).__name__}.")

    def _encode_object(
        self, value: Any, stack: list[tuple[Any, Any, Any]]
    ) -> dict[str, Any]:
        key = id(value)
        ref = self._ids.get(key)
        if ref is not None:
            return {REF_KEY: ref}
        encoded: dict[str, Any] = {}
        if key in self._shared:
            ref = str(len(self._ids) + 1)
            self._ids[key] = ref
            encoded[ID_KEY] = ref
        names = self._rules.fields_for(type(value))
        for name in names:
            encoded[name] = None
        for name in reversed(names):
            stack.append((getattr(value, name), encoded, name))
        return encoded


class _Raw(str):
    """Text copied to the output unchanged."""


def write_json(value: Any, stream: TextIO) -> None:
    """Write encoded values as JSON without recursing per nesting level.

    The output matches ``json.dump(value, stream, ensure_ascii=False)``.
    """
    stack: list[Any] = [value]
    while stack:
        item = stack.pop()
        if isinstance(item, _Raw):
            stream.write(item)
        elif isinstance(item, dict):
            stream.write("{")
            stack.append(_Raw("}"))
            entries = list(item.items())
            for index in range(len(entries) - 1, -1, -1):
                key, child = entries[index]
                stack.append(child)
                separator = ", " if index else ""
                stack.append(_Raw(f"{separator}{json.dumps(key, ensure_ascii=False)}: "))
        elif isinstance(item, list):
            stream.write("[")
            stack.append(_Raw("]"))
            for index in range(len(item) - 1, -1, -1):
                stack.append(item[index])
                if index:
                    stack.append(_Raw(", "))
        else:
            stream.write(json.dumps(item, ensure_ascii=False))


def _is_projectable(value: Any) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)
