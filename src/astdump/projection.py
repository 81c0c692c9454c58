# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Field projection rules applied when serializing a snapshot."""

import dataclasses
import json
import logging
from pathlib import Path
from typing import Any

import Levenshtein

from astdump.declarations import DECLARATION_TYPES

logger = logging.getLogger(__name__)

SUGGESTION_THRESHOLD = 0.6

DEFAULT_BLACKLIST: frozenset[str] = frozenset(
    {"parent", "span", "comment", "visibility"}
)

DEFAULT_WHITELISTS: dict[str, tuple[str, ...]] = {
    "enum": ("name", "size_of", "type_kind", "items", "span"),
    "enum_item": ("name", "value"),
    "class": ("name", "size_of", "fields", "class_kind", "span"),
    "field": ("name", "type", "bit_field_width", "storage_qualifier", "init_value"),
    "primitive_type": ("kind", "size_of", "type_kind"),
    "typedef": ("name", "size_of", "type_kind", "element_type"),
    "pointer_type": ("size_of", "type_kind", "element_type"),
    "array_type": ("size", "size_of", "type_kind", "element_type"),
    "function_type": ("type_kind", "return_type", "parameters"),
    "parameter": ("name", "type"),
    "function": (
        "name",
        "flags",
        "linkage_kind",
        "parameters",
        "return_type",
        "storage_qualifier",
    ),
}


class ProjectionConfigError(ValueError):
    """Represent a projection rule that cannot be applied."""


class ProjectionRules:
    """Decide which fields of each declaration kind are serialized.

    A whitelist for a kind replaces the blacklist for that kind. Kinds
    without a whitelist emit every field that is not blacklisted.
    """

    def __init__(
        self,
        blacklist: frozenset[str] | set[str] = DEFAULT_BLACKLIST,
        whitelists: dict[str, tuple[str, ...]] | None = None,
        kinds: dict[str, type] | None = None,
    ) -> None:
        """Initialize and validate a rule set.

        Args:
            blacklist: Field names dropped from every kind without a whitelist.
            whitelists: Declaration kind to ordered field names.
            kinds: Known declaration kinds used for validation; defaults to
                the declaration graph's kinds.

        Raises:
            ProjectionConfigError: If a whitelist names an unknown kind or a
                field that the kind does not have.
        """
        self._blacklist = frozenset(blacklist)
        self._whitelists = {
            kind: tuple(names)
            for kind, names in (
                DEFAULT_WHITELISTS if whitelists is None else whitelists
            ).items()
        }
        self._field_cache: dict[type, tuple[str, ...]] = {}
        known = DECLARATION_TYPES if kinds is None else kinds
        for kind in self._whitelists:
            if kind not in known:
                raise ProjectionConfigError(
                    f"Whitelist for unknown declaration kind '{kind}'"
                    f"{_suggest(kind, list(known))}."
                )
            self.fields_for(known[kind])

    @property
    def blacklist(self) -> frozenset[str]:
        return self._blacklist

    @property
    def whitelists(self) -> dict[str, tuple[str, ...]]:
        return dict(self._whitelists)

    def fields_for(self, cls: type) -> tuple[str, ...]:
        """Resolve the emitted field names of a dataclass, in declaration order.

        Args:
            cls: Dataclass carrying a ``decl_kind`` class attribute.

        Returns:
            Field names to emit.

        Raises:
            ProjectionConfigError: If the class is not a dataclass or its
                whitelist names a missing field.
        """
        cached = self._field_cache.get(cls)
        if cached is not None:
            return cached
        if not dataclasses.is_dataclass(cls):
            raise ProjectionConfigError(f"{cls.__name__} is not a projectable type.")
        available = [f.name for f in dataclasses.fields(cls)]
        kind = getattr(cls, "decl_kind", cls.__name__)
        whitelist = self._whitelists.get(kind)
        if whitelist is None:
            selected = tuple(n for n in available if n not in self._blacklist)
        else:
            missing = [name for name in whitelist if name not in available]
            if missing:
                name = missing[0]
                raise ProjectionConfigError(
                    f"Whitelist for '{kind}' names missing field '{name}'"
                    f"{_suggest(name, available)}."
                )
            selected = tuple(n for n in available if n in whitelist)
        self._field_cache[cls] = selected
        return selected


def load_rules(path: Path) -> ProjectionRules:
    """Load a rule set from a JSON document.

    The document has the form ``{"blacklist": [...], "whitelists": {kind: [...]}}``;
    omitted keys fall back to the defaults.

    Raises:
        ProjectionConfigError: If the document is malformed or names unknown
            kinds or fields.
        OSError: If the file cannot be read.
    """
    try:
        payload: Any = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ProjectionConfigError(f"Rules file is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ProjectionConfigError("Rules file must contain an object.")
    blacklist = payload.get("blacklist", sorted(DEFAULT_BLACKLIST))
    whitelists = payload.get("whitelists", DEFAULT_WHITELISTS)
    if not isinstance(blacklist, list) or not all(isinstance(n, str) for n in blacklist):
        raise ProjectionConfigError("'blacklist' must be a list of field names.")
    if not isinstance(whitelists, dict):
        raise ProjectionConfigError("'whitelists' must map kinds to field lists.")
    for kind, names in whitelists.items():
        if not isinstance(names, (list, tuple)) or not all(
            isinstance(n, str) for n in names
        ):
            raise ProjectionConfigError(
                f"Whitelist for '{kind}' must be a list of field names."
            )
    rules = ProjectionRules(
        blacklist=frozenset(blacklist),
        whitelists={kind: tuple(names) for kind, names in whitelists.items()},
    )
    logger.info(
        f"Loaded projection rules (path={path} whitelists={len(whitelists)} "
        f"blacklist={len(blacklist)})"
    )
    return rules


def _suggest(name: str, candidates: list[str]) -> str:
    best = max(candidates, key=lambda c: Levenshtein.ratio(name, c), default=None)
    if best is None or Levenshtein.ratio(name, best) < SUGGESTION_THRESHOLD:
        return ""
    return f" (did you mean '{best}'?)"
