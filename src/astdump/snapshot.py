# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Projection snapshot of a parsed translation unit."""

import logging
from dataclasses import dataclass, field
from typing import ClassVar

from astdump.declarations import (
    Attribute,
    Class,
    Compilation,
    Enum,
    Field,
    Function,
    Macro,
    Namespace,
    Parameter,
    Statement,
    Typedef,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectionSnapshot:
    """Hold the serializable view of one compilation.

    Attributes:
        attributes: Top-level attributes.
        classes: Top-level structs and unions.
        enums: Top-level enums.
        fields: Global variables.
        functions: Functions in declaration order.
        typedefs: Top-level typedefs.
        macros: Macro definitions.
        namespaces: Top-level namespaces.
        function_map: Function name to its body nodes, parameters excluded.
            When names repeat, the last function wins.
    """

    decl_kind: ClassVar[str] = "snapshot"

    attributes: tuple[Attribute, ...] = ()
    classes: tuple[Class, ...] = ()
    enums: tuple[Enum, ...] = ()
    fields: tuple[Field, ...] = ()
    functions: tuple[Function, ...] = ()
    typedefs: tuple[Typedef, ...] = ()
    macros: tuple[Macro, ...] = ()
    namespaces: tuple[Namespace, ...] = ()
    function_map: dict[str, tuple[Statement, ...]] = field(default_factory=dict)

    @classmethod
    def from_compilation(cls, compilation: Compilation) -> "ProjectionSnapshot":
        """Copy the top-level collections and index function bodies.

        Args:
            compilation: Completed parse result.

        Returns:
            Snapshot referencing, not copying, the declaration nodes.
        """
        functions = tuple(compilation.functions)
        return cls(
            attributes=tuple(compilation.attributes),
            classes=tuple(compilation.classes),
            enums=tuple(compilation.enums),
            fields=tuple(compilation.fields),
            functions=functions,
            typedefs=tuple(compilation.typedefs),
            macros=tuple(compilation.macros),
            namespaces=tuple(compilation.namespaces),
            function_map=build_function_map(functions),
        )


def build_function_map(
    functions: tuple[Function, ...] | list[Function],
) -> dict[str, tuple[Statement, ...]]:
    """Map function names to their non-parameter children.

    Functions without a name or without such children are left out. A later
    function with the same name replaces the earlier entry and a warning is
    logged.
    """
    function_map: dict[str, tuple[Statement, ...]] = {}
    for function in functions:
        children = tuple(
            child
            for child in function.children()
            if not isinstance(child, Parameter)
        )
        if not function.name or not children:
            continue
        if function.name in function_map:
            logger.warning(
                f"Duplicate function name replaces earlier body (name={function.name})"
            )
        function_map[function.name] = children
    return function_map


def describe_compilation(
    compilation: Compilation,
    print_warnings: bool = False,
    print_info: bool = False,
) -> list[str]:
    """Render diagnostics and, optionally, a declaration listing.

    Args:
        compilation: Parse result to describe.
        print_warnings: Include warnings and info diagnostics, not only errors.
        print_info: Append the readable form of enums, functions, classes
            and typedefs.

    Returns:
        Report lines in output order.
    """
    lines = [
        str(diagnostic)
        for diagnostic in compilation.diagnostics
        if print_warnings or diagnostic.severity == "error"
    ]
    if print_info:
        lines.extend(str(enum) for enum in compilation.enums)
        lines.extend(str(function) for function in compilation.functions)
        lines.extend(str(klass) for klass in compilation.classes)
        lines.extend(str(typedef) for typedef in compilation.typedefs)
    return lines
