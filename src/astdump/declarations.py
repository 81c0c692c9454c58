# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Declaration graph produced by a parser for one translation unit.

Nodes are plain mutable dataclasses compared by identity. A type is shared
between every node that refers to it, and record, enum and typedef types are
the declaration objects themselves, so the graph contains cycles (through
``parent`` and through self-referencing structs).
"""

from dataclasses import dataclass, field
from typing import ClassVar, Literal, Union

TypeKind = Literal[
    "primitive",
    "pointer",
    "array",
    "function",
    "typedef",
    "enum",
    "struct",
    "union",
    "unexposed",
]
Severity = Literal["error", "warning", "info"]


class _Node:
    """Give graph nodes a shallow repr; the default one would follow cycles."""

    decl_kind: ClassVar[str] = "node"

    def __repr__(self) -> str:
        name = getattr(self, "name", None)
        if name is None:
            return f"{type(self).__name__}()"
        return f"{type(self).__name__}(name={name!r})"


@dataclass(frozen=True)
class SourceLocation:
    """Represent one position in a source file."""

    decl_kind: ClassVar[str] = "location"

    file: str | None
    line: int
    column: int


@dataclass(frozen=True)
class SourceSpan:
    """Represent the extent of a node in source."""

    decl_kind: ClassVar[str] = "span"

    start: SourceLocation
    end: SourceLocation


@dataclass(eq=False, repr=False)
class PrimitiveType(_Node):
    """Represent a builtin scalar type such as ``int`` or ``const char``."""

    decl_kind: ClassVar[str] = "primitive_type"

    kind: str
    name: str
    size_of: int = 0
    type_kind: TypeKind = "primitive"

    def spelling(self) -> str:
        return self.name


@dataclass(eq=False, repr=False)
class PointerType(_Node):
    decl_kind: ClassVar[str] = "pointer_type"

    element_type: "CType | None" = None
    size_of: int = 8
    type_kind: TypeKind = "pointer"

    def spelling(self) -> str:
        return f"{spell(self.element_type)} *"


@dataclass(eq=False, repr=False)
class ArrayType(_Node):
    """Represent a fixed or incomplete array; ``size`` is -1 when incomplete."""

    decl_kind: ClassVar[str] = "array_type"

    element_type: "CType | None" = None
    size: int = -1
    size_of: int = 0
    type_kind: TypeKind = "array"

    def spelling(self) -> str:
        size = "" if self.size < 0 else str(self.size)
        return f"{spell(self.element_type)}[{size}]"


@dataclass(eq=False, repr=False)
class FunctionType(_Node):
    decl_kind: ClassVar[str] = "function_type"

    return_type: "CType | None" = None
    parameters: list["Parameter"] = field(default_factory=list)
    is_variadic: bool = False
    size_of: int = 0
    type_kind: TypeKind = "function"

    def spelling(self) -> str:
        params = ", ".join(spell(p.type) for p in self.parameters)
        return f"{spell(self.return_type)} (*)({params})"


@dataclass(eq=False, repr=False)
class UnexposedType(_Node):
    """Represent a type the parser could not classify further."""

    decl_kind: ClassVar[str] = "unexposed_type"

    name: str
    size_of: int = 0
    type_kind: TypeKind = "unexposed"

    def spelling(self) -> str:
        return self.name


@dataclass(eq=False, repr=False)
class Attribute(_Node):
    decl_kind: ClassVar[str] = "attribute"

    name: str
    arguments: str | None = None
    span: SourceSpan | None = None
    parent: object | None = None

    def __str__(self) -> str:
        if self.arguments:
            return f"__attribute__(({self.name}({self.arguments})))"
        return f"__attribute__(({self.name}))"


@dataclass(eq=False, repr=False)
class EnumItem(_Node):
    decl_kind: ClassVar[str] = "enum_item"

    name: str
    value: int = 0
    comment: str | None = None
    span: SourceSpan | None = None
    parent: object | None = None

    def __str__(self) -> str:
        return f"{self.name} = {self.value}"


@dataclass(eq=False, repr=False)
class Enum(_Node):
    decl_kind: ClassVar[str] = "enum"

    name: str
    items: list[EnumItem] = field(default_factory=list)
    integer_type: "CType | None" = None
    size_of: int = 0
    type_kind: TypeKind = "enum"
    is_anonymous: bool = False
    visibility: str = "default"
    comment: str | None = None
    span: SourceSpan | None = None
    parent: object | None = None

    def spelling(self) -> str:
        return f"enum {self.name}"

    def __str__(self) -> str:
        items = ", ".join(str(item) for item in self.items)
        return f"enum {self.name} {{{items}}}"


@dataclass(eq=False, repr=False)
class Field(_Node):
    """Represent a struct/union member or a global variable."""

    decl_kind: ClassVar[str] = "field"

    name: str
    type: "CType | None" = None
    bit_field_width: int = 0
    storage_qualifier: str = "none"
    init_value: str | None = None
    attributes: list[Attribute] = field(default_factory=list)
    visibility: str = "default"
    comment: str | None = None
    span: SourceSpan | None = None
    parent: object | None = None

    def __str__(self) -> str:
        text = f"{spell(self.type)} {self.name}"
        if self.storage_qualifier != "none":
            text = f"{self.storage_qualifier} {text}"
        if self.bit_field_width:
            text = f"{text} : {self.bit_field_width}"
        if self.init_value is not None:
            text = f"{text} = {self.init_value}"
        return text


@dataclass(eq=False, repr=False)
class Class(_Node):
    """Represent a struct or union; ``size_of`` is 0 for forward declarations."""

    decl_kind: ClassVar[str] = "class"

    name: str
    class_kind: Literal["struct", "union"] = "struct"
    fields: list[Field] = field(default_factory=list)
    classes: list["Class"] = field(default_factory=list)
    enums: list[Enum] = field(default_factory=list)
    attributes: list[Attribute] = field(default_factory=list)
    size_of: int = 0
    type_kind: TypeKind = "struct"
    is_definition: bool = False
    visibility: str = "default"
    comment: str | None = None
    span: SourceSpan | None = None
    parent: object | None = None

    def spelling(self) -> str:
        return f"{self.class_kind} {self.name}"

    def __str__(self) -> str:
        if not self.is_definition:
            return f"{self.spelling()};"
        members = " ".join(f"{f};" for f in self.fields)
        return f"{self.spelling()} {{ {members} }}"


@dataclass(eq=False, repr=False)
class Typedef(_Node):
    decl_kind: ClassVar[str] = "typedef"

    name: str
    element_type: "CType | None" = None
    size_of: int = 0
    type_kind: TypeKind = "typedef"
    visibility: str = "default"
    comment: str | None = None
    span: SourceSpan | None = None
    parent: object | None = None

    def spelling(self) -> str:
        return self.name

    def __str__(self) -> str:
        return f"typedef {spell(self.element_type)} {self.name}"


@dataclass(eq=False, repr=False)
class Parameter(_Node):
    decl_kind: ClassVar[str] = "parameter"

    name: str
    type: "CType | None" = None
    init_value: str | None = None
    span: SourceSpan | None = None
    parent: object | None = None

    def __str__(self) -> str:
        if not self.name:
            return spell(self.type)
        return f"{spell(self.type)} {self.name}"


@dataclass(eq=False, repr=False)
class Statement(_Node):
    """Represent one statement or expression inside a function body.

    Attributes:
        kind: Parser node kind, for example ``decl_stmt`` or ``call_expr``.
        spelling: Name the parser attaches to the node; empty when none.
        type: Type of the expression, when the node has one.
        children: Nested statements and expressions in source order.
    """

    decl_kind: ClassVar[str] = "statement"

    kind: str
    spelling: str = ""
    type: "CType | None" = None
    children: list["Statement"] = field(default_factory=list)
    span: SourceSpan | None = None
    parent: object | None = None


@dataclass(eq=False, repr=False)
class Function(_Node):
    """Represent a function declaration or definition.

    Attributes:
        flags: Sorted markers such as ``definition``, ``inline`` or ``variadic``.
        linkage_kind: ``external``, ``internal`` or ``no_linkage``.
        storage_qualifier: ``none``, ``static`` or ``extern``.
        statements: Top-level statements of the body; empty for prototypes.
    """

    decl_kind: ClassVar[str] = "function"

    name: str
    return_type: "CType | None" = None
    parameters: list[Parameter] = field(default_factory=list)
    flags: tuple[str, ...] = ()
    linkage_kind: str = "external"
    storage_qualifier: str = "none"
    statements: list[Statement] = field(default_factory=list)
    attributes: list[Attribute] = field(default_factory=list)
    visibility: str = "default"
    comment: str | None = None
    span: SourceSpan | None = None
    parent: object | None = None

    def children(self) -> list["Parameter | Statement"]:
        """Return parameters followed by body statements."""
        return [*self.parameters, *self.statements]

    def __str__(self) -> str:
        params = [str(p) for p in self.parameters]
        if "variadic" in self.flags:
            params.append("...")
        text = f"{spell(self.return_type)} {self.name}({', '.join(params)})"
        if self.storage_qualifier != "none":
            text = f"{self.storage_qualifier} {text}"
        if "inline" in self.flags:
            text = f"inline {text}"
        return text


@dataclass(eq=False, repr=False)
class Macro(_Node):
    """Represent a macro definition; ``parameters`` is None for object-like macros."""

    decl_kind: ClassVar[str] = "macro"

    name: str
    parameters: list[str] | None = None
    value: str = ""
    span: SourceSpan | None = None
    parent: object | None = None

    def __str__(self) -> str:
        head = self.name
        if self.parameters is not None:
            head = f"{self.name}({', '.join(self.parameters)})"
        return f"#define {head} {self.value}".rstrip()


@dataclass(eq=False, repr=False)
class Namespace(_Node):
    decl_kind: ClassVar[str] = "namespace"

    name: str
    classes: list[Class] = field(default_factory=list)
    enums: list[Enum] = field(default_factory=list)
    fields: list[Field] = field(default_factory=list)
    functions: list[Function] = field(default_factory=list)
    typedefs: list[Typedef] = field(default_factory=list)
    namespaces: list["Namespace"] = field(default_factory=list)
    visibility: str = "default"
    comment: str | None = None
    span: SourceSpan | None = None
    parent: object | None = None


@dataclass(frozen=True)
class Diagnostic:
    decl_kind: ClassVar[str] = "diagnostic"

    severity: Severity
    message: str
    location: SourceLocation | None = None

    def __str__(self) -> str:
        if self.location is None:
            return f"{self.severity}: {self.message}"
        loc = self.location
        return f"{loc.file}({loc.line}, {loc.column}): {self.severity}: {self.message}"


@dataclass(eq=False, repr=False)
class Compilation(_Node):
    """Represent the parse result of one translation unit."""

    decl_kind: ClassVar[str] = "compilation"

    input_file: str
    attributes: list[Attribute] = field(default_factory=list)
    classes: list[Class] = field(default_factory=list)
    enums: list[Enum] = field(default_factory=list)
    fields: list[Field] = field(default_factory=list)
    functions: list[Function] = field(default_factory=list)
    typedefs: list[Typedef] = field(default_factory=list)
    macros: list[Macro] = field(default_factory=list)
    namespaces: list[Namespace] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(d.severity == "error" for d in self.diagnostics)


CType = Union[
    PrimitiveType,
    PointerType,
    ArrayType,
    FunctionType,
    UnexposedType,
    Typedef,
    Enum,
    Class,
]

DECLARATION_TYPES: dict[str, type] = {
    cls.decl_kind: cls
    for cls in (
        SourceLocation,
        SourceSpan,
        PrimitiveType,
        PointerType,
        ArrayType,
        FunctionType,
        UnexposedType,
        Attribute,
        EnumItem,
        Enum,
        Field,
        Class,
        Typedef,
        Parameter,
        Statement,
        Function,
        Macro,
        Namespace,
        Diagnostic,
    )
}


def spell(ctype: "CType | None") -> str:
    """Return the C spelling of a type; ``void`` when unresolved."""
    if ctype is None:
        return "void"
    return ctype.spelling()
