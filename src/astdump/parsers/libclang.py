# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""libclang parser producing declaration graphs."""

import logging
import threading

from clang import cindex
from clang.cindex import CursorKind, TranslationUnit, TypeKind

from astdump.declarations import (
    ArrayType,
    Attribute,
    Class,
    Compilation,
    CType,
    Diagnostic,
    Enum,
    EnumItem,
    Field,
    Function,
    FunctionType,
    Macro,
    Namespace,
    Parameter,
    PointerType,
    PrimitiveType,
    SourceLocation,
    SourceSpan,
    Statement,
    Typedef,
    UnexposedType,
)
from astdump.options import ParserOptions
from astdump.parser import ParserError

logger = logging.getLogger(__name__)

_INDEX_LOCK = threading.Lock()

_INLINE_KEYWORDS = frozenset({"inline", "__inline", "__inline__", "__forceinline"})

_PRIMITIVE_NAMES: dict[str, str] = {
    "VOID": "void",
    "BOOL": "bool",
    "CHAR_U": "char",
    "CHAR_S": "char",
    "UCHAR": "unsigned char",
    "SCHAR": "signed char",
    "CHAR16": "char16_t",
    "CHAR32": "char32_t",
    "WCHAR": "wchar_t",
    "USHORT": "unsigned short",
    "SHORT": "short",
    "UINT": "unsigned int",
    "INT": "int",
    "ULONG": "unsigned long",
    "LONG": "long",
    "ULONGLONG": "unsigned long long",
    "LONGLONG": "long long",
    "UINT128": "unsigned __int128",
    "INT128": "__int128",
    "FLOAT": "float",
    "DOUBLE": "double",
    "LONGDOUBLE": "long double",
}

_ARRAY_KINDS = frozenset(
    {"CONSTANTARRAY", "INCOMPLETEARRAY", "VARIABLEARRAY", "DEPENDENTSIZEDARRAY"}
)


class ClangParser:
    """Parse C translation units with libclang."""

    def __init__(self, library_file: str | None = None) -> None:
        """Initialize the parser.

        Args:
            library_file: Optional path of the libclang shared library; the
                library bundled with the ``libclang`` wheel is used otherwise.
        """
        if library_file and not cindex.Config.loaded:
            cindex.Config.set_library_file(library_file)

    def parse(self, path: str, options: ParserOptions) -> Compilation:
        """Parse one file into a declaration graph.

        Raises:
            ParserError: If libclang cannot load or parse the file.
        """
        flags = TranslationUnit.PARSE_DETAILED_PROCESSING_RECORD
        if not options.parse_function_bodies:
            flags |= TranslationUnit.PARSE_SKIP_FUNCTION_BODIES
        try:
            with _INDEX_LOCK:
                index = cindex.Index.create()
            unit = index.parse(path, args=options.to_clang_args(), options=flags)
        except (cindex.TranslationUnitLoadError, cindex.LibclangError) as exc:
            logger.warning(f"libclang failed to load file (path={path} error={exc})")
            raise ParserError(f"libclang could not parse {path}: {exc}") from exc
        try:
            return _GraphBuilder(options=options).build(path=path, unit=unit)
        except (ValueError, RecursionError, cindex.LibclangError) as exc:
            logger.warning(
                f"Declaration graph conversion failed (path={path} "
                f"error_type={type(exc).__name__} error={exc})"
            )
            raise ParserError(f"libclang could not convert {path}: {exc}") from exc


class _GraphBuilder:
    """Convert one libclang translation unit; types are cached per unit."""

    def __init__(self, options: ParserOptions) -> None:
        self._options = options
        self._types: dict[tuple[str, str], CType] = {}
        self._declarations: dict[str, Class | Enum | Typedef] = {}

    def build(self, path: str, unit: TranslationUnit) -> Compilation:
        compilation = Compilation(
            input_file=path,
            diagnostics=[_diagnostic(d) for d in unit.diagnostics],
        )
        for cursor in unit.cursor.get_children():
            if not self._keep(cursor):
                continue
            if cursor.kind == CursorKind.MACRO_DEFINITION:
                compilation.macros.append(_macro(cursor, parent=compilation))
            elif cursor.kind.is_attribute():
                compilation.attributes.append(_attribute(cursor, parent=compilation))
            else:
                self._visit(cursor, container=compilation)
        return compilation

    def _keep(self, cursor: cindex.Cursor) -> bool:
        location = cursor.location
        if location.file is None:
            return False
        if self._options.parse_system_includes:
            return True
        return not getattr(location, "is_in_system_header", False)

    def _visit(self, cursor: cindex.Cursor, container: Compilation | Namespace) -> None:
        kind = cursor.kind
        if kind == CursorKind.FUNCTION_DECL:
            container.functions.append(self._function(cursor, parent=container))
        elif kind in (CursorKind.STRUCT_DECL, CursorKind.UNION_DECL):
            _append_once(container.classes, self._class(cursor, parent=container))
        elif kind == CursorKind.ENUM_DECL:
            _append_once(container.enums, self._enum(cursor, parent=container))
        elif kind == CursorKind.TYPEDEF_DECL:
            _append_once(container.typedefs, self._typedef(cursor, parent=container))
        elif kind == CursorKind.VAR_DECL:
            container.fields.append(self._field(cursor, parent=container))
        elif kind == CursorKind.NAMESPACE:
            namespace = Namespace(
                name=cursor.spelling, span=_span(cursor), parent=container
            )
            for child in cursor.get_children():
                self._visit(child, container=namespace)
            container.namespaces.append(namespace)

    def _class(self, cursor: cindex.Cursor, parent: object | None) -> Class:
        key = _declaration_key(cursor)
        klass = self._declarations.get(key)
        if not isinstance(klass, Class):
            is_union = cursor.kind == CursorKind.UNION_DECL
            klass = Class(
                name="" if cursor.is_anonymous() else cursor.spelling,
                class_kind="union" if is_union else "struct",
                type_kind="union" if is_union else "struct",
                span=_span(cursor),
                comment=self._comment(cursor),
                parent=parent,
            )
            self._declarations[key] = klass
        elif klass.parent is None:
            klass.parent = parent
        if not cursor.is_definition() or klass.is_definition:
            return klass
        klass.is_definition = True
        klass.size_of = max(cursor.type.get_size(), 0)
        klass.span = _span(cursor)
        for child in cursor.get_children():
            if child.kind == CursorKind.FIELD_DECL:
                klass.fields.append(self._field(child, parent=klass))
            elif child.kind in (CursorKind.STRUCT_DECL, CursorKind.UNION_DECL):
                _append_once(klass.classes, self._class(child, parent=klass))
            elif child.kind == CursorKind.ENUM_DECL:
                _append_once(klass.enums, self._enum(child, parent=klass))
            elif child.kind.is_attribute():
                klass.attributes.append(_attribute(child, parent=klass))
        return klass

    def _enum(self, cursor: cindex.Cursor, parent: object | None) -> Enum:
        key = _declaration_key(cursor)
        enum = self._declarations.get(key)
        if isinstance(enum, Enum):
            if enum.parent is None:
                enum.parent = parent
            return enum
        enum = Enum(
            name="" if cursor.is_anonymous() else cursor.spelling,
            size_of=max(cursor.type.get_size(), 0),
            is_anonymous=cursor.is_anonymous(),
            span=_span(cursor),
            comment=self._comment(cursor),
            parent=parent,
        )
        self._declarations[key] = enum
        enum.integer_type = self._type(cursor.enum_type)
        for child in cursor.get_children():
            if child.kind == CursorKind.ENUM_CONSTANT_DECL:
                enum.items.append(
                    EnumItem(
                        name=child.spelling,
                        value=child.enum_value,
                        comment=self._comment(child),
                        span=_span(child),
                        parent=enum,
                    )
                )
        return enum

    def _typedef(self, cursor: cindex.Cursor, parent: object | None) -> Typedef:
        key = _declaration_key(cursor)
        typedef = self._declarations.get(key)
        if isinstance(typedef, Typedef):
            if typedef.parent is None:
                typedef.parent = parent
            return typedef
        typedef = Typedef(
            name=cursor.spelling,
            size_of=max(cursor.type.get_size(), 0),
            span=_span(cursor),
            comment=self._comment(cursor),
            parent=parent,
        )
        self._declarations[key] = typedef
        typedef.element_type = self._type(cursor.underlying_typedef_type)
        return typedef

    def _field(self, cursor: cindex.Cursor, parent: object) -> Field:
        field = Field(
            name=cursor.spelling,
            type=self._type(cursor.type),
            bit_field_width=cursor.get_bitfield_width() if cursor.is_bitfield() else 0,
            storage_qualifier=_storage(cursor),
            init_value=_init_value(cursor),
            comment=self._comment(cursor),
            span=_span(cursor),
            parent=parent,
        )
        field.attributes = [
            _attribute(child, parent=field)
            for child in cursor.get_children()
            if child.kind.is_attribute()
        ]
        return field

    def _function(self, cursor: cindex.Cursor, parent: object) -> Function:
        function = Function(
            name=cursor.spelling,
            return_type=self._type(cursor.result_type),
            flags=_function_flags(cursor),
            linkage_kind=cursor.linkage.name.lower(),
            storage_qualifier=_storage(cursor),
            comment=self._comment(cursor),
            span=_span(cursor),
            parent=parent,
        )
        function.parameters = [
            Parameter(
                name=argument.spelling,
                type=self._type(argument.type),
                span=_span(argument),
                parent=function,
            )
            for argument in cursor.get_arguments()
        ]
        for child in cursor.get_children():
            if child.kind == CursorKind.COMPOUND_STMT:
                function.statements = [
                    self._statement(statement, parent=function)
                    for statement in child.get_children()
                ]
            elif child.kind.is_attribute():
                function.attributes.append(_attribute(child, parent=function))
        return function

    def _statement(self, cursor: cindex.Cursor, parent: object) -> Statement:
        """Convert a body node and everything below it, without recursion."""
        root = self._statement_node(cursor, parent=parent)
        pending = [(cursor, root)]
        while pending:
            current, statement = pending.pop()
            for child in current.get_children():
                node = self._statement_node(child, parent=statement)
                statement.children.append(node)
                pending.append((child, node))
        return root

    def _statement_node(self, cursor: cindex.Cursor, parent: object) -> Statement:
        statement = Statement(
            kind=cursor.kind.name.lower(),
            spelling=cursor.spelling,
            span=_span(cursor),
            parent=parent,
        )
        if cursor.kind.is_expression():
            statement.type = self._type(cursor.type)
        return statement

    def _type(self, ctype: cindex.Type | None) -> CType | None:
        if ctype is None or ctype.kind == TypeKind.INVALID:
            return None
        kind = ctype.kind.name
        if kind == "ELABORATED":
            return self._type(ctype.get_named_type())
        if kind == "RECORD":
            return self._class(ctype.get_declaration(), parent=None)
        if kind == "ENUM":
            return self._enum(ctype.get_declaration(), parent=None)
        if kind == "TYPEDEF":
            return self._typedef(ctype.get_declaration(), parent=None)

        key = (kind, ctype.spelling)
        cached = self._types.get(key)
        if cached is not None:
            return cached
        size_of = max(ctype.get_size(), 0)
        converted: CType
        if kind in _PRIMITIVE_NAMES:
            converted = PrimitiveType(
                kind=_PRIMITIVE_NAMES[kind], name=ctype.spelling, size_of=size_of
            )
            self._types[key] = converted
        elif kind == "POINTER":
            converted = PointerType(size_of=size_of)
            self._types[key] = converted
            converted.element_type = self._type(ctype.get_pointee())
        elif kind in _ARRAY_KINDS:
            size = ctype.element_count if kind == "CONSTANTARRAY" else -1
            converted = ArrayType(size=size, size_of=size_of)
            self._types[key] = converted
            converted.element_type = self._type(ctype.element_type)
        elif kind in ("FUNCTIONPROTO", "FUNCTIONNOPROTO"):
            converted = FunctionType()
            self._types[key] = converted
            converted.return_type = self._type(ctype.get_result())
            if kind == "FUNCTIONPROTO":
                converted.is_variadic = ctype.is_function_variadic()
                converted.parameters = [
                    Parameter(name="", type=self._type(argument), parent=converted)
                    for argument in ctype.argument_types()
                ]
        else:
            converted = UnexposedType(name=ctype.spelling, size_of=size_of)
            self._types[key] = converted
        return converted

    def _comment(self, cursor: cindex.Cursor) -> str | None:
        if not self._options.parse_comments:
            return None
        return cursor.raw_comment


def _append_once(items: list, item: object) -> None:
    if not any(existing is item for existing in items):
        items.append(item)


def _declaration_key(cursor: cindex.Cursor) -> str:
    usr = cursor.get_usr()
    if usr:
        return usr
    location = cursor.location
    file_name = location.file.name if location.file else ""
    return f"{cursor.kind.name}@{file_name}:{location.line}:{location.column}"


def _location(location: cindex.SourceLocation) -> SourceLocation:
    return SourceLocation(
        file=location.file.name if location.file else None,
        line=location.line,
        column=location.column,
    )


def _span(cursor: cindex.Cursor) -> SourceSpan:
    extent = cursor.extent
    return SourceSpan(start=_location(extent.start), end=_location(extent.end))


def _diagnostic(diagnostic: cindex.Diagnostic) -> Diagnostic:
    if diagnostic.severity >= cindex.Diagnostic.Error:
        severity = "error"
    elif diagnostic.severity == cindex.Diagnostic.Warning:
        severity = "warning"
    else:
        severity = "info"
    location = diagnostic.location
    return Diagnostic(
        severity=severity,
        message=diagnostic.spelling,
        location=_location(location) if location.file else None,
    )


def _storage(cursor: cindex.Cursor) -> str:
    name = cursor.storage_class.name.lower()
    return "none" if name == "invalid" else name


def _function_flags(cursor: cindex.Cursor) -> tuple[str, ...]:
    flags: set[str] = set()
    if cursor.is_definition():
        flags.add("definition")
    if cursor.type.kind == TypeKind.FUNCTIONPROTO and cursor.type.is_function_variadic():
        flags.add("variadic")
    for token in cursor.get_tokens():
        if token.spelling == cursor.spelling:
            break
        if token.spelling in _INLINE_KEYWORDS:
            flags.add("inline")
    return tuple(sorted(flags))


def _init_value(cursor: cindex.Cursor) -> str | None:
    if cursor.kind != CursorKind.VAR_DECL:
        return None
    expressions = [c for c in cursor.get_children() if c.kind.is_expression()]
    if not expressions:
        return None
    return " ".join(token.spelling for token in expressions[-1].get_tokens())


def _macro(cursor: cindex.Cursor, parent: object) -> Macro:
    tokens = list(cursor.get_tokens())
    body = tokens[1:]
    parameters: list[str] | None = None
    if body and body[0].spelling == "(" and _is_adjacent(tokens[0], body[0]):
        parameters = []
        for index, token in enumerate(body[1:], start=1):
            if token.spelling == ")":
                body = body[index + 1 :]
                break
            if token.spelling != ",":
                parameters.append(token.spelling)
    return Macro(
        name=cursor.spelling,
        parameters=parameters,
        value=" ".join(token.spelling for token in body),
        span=_span(cursor),
        parent=parent,
    )


def _is_adjacent(name: cindex.Token, paren: cindex.Token) -> bool:
    start = name.location
    return (
        paren.location.line == start.line
        and paren.location.column == start.column + len(name.spelling)
    )


def _attribute(cursor: cindex.Cursor, parent: object) -> Attribute:
    name = cursor.kind.name.lower()
    if name.endswith("_attr"):
        name = name[: -len("_attr")]
    return Attribute(
        name=cursor.spelling or name,
        arguments=_attribute_arguments(cursor),
        span=_span(cursor),
        parent=parent,
    )


def _attribute_arguments(cursor: cindex.Cursor) -> str | None:
    """Join the tokens between an attribute's outer parentheses."""
    tokens = [token.spelling for token in cursor.get_tokens()]
    if "(" not in tokens or tokens[-1] != ")":
        return None
    start = tokens.index("(")
    return " ".join(tokens[start + 1 : -1]) or None
