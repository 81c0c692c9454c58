import sys
from pathlib import Path

import pytest


def _add_src_to_path() -> None:
    root = Path(__file__).resolve().parents[1]
    src_path = root / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


_add_src_to_path()

from astdump.declarations import (  # noqa: E402
    Class,
    Compilation,
    Diagnostic,
    Enum,
    EnumItem,
    Field,
    Function,
    Macro,
    Parameter,
    PointerType,
    PrimitiveType,
    SourceLocation,
    SourceSpan,
    Statement,
    Typedef,
)


def _span(line: int) -> SourceSpan:
    return SourceSpan(
        start=SourceLocation(file="sample.c", line=line, column=1),
        end=SourceLocation(file="sample.c", line=line, column=40),
    )


@pytest.fixture
def sample_compilation() -> Compilation:
    """Build the graph of a small C file.

    The graph mirrors::

        #define MAX(a, b) ((a) > (b) ? (a) : (b))
        struct node { int value; struct node *next; };
        enum color { RED, GREEN };
        typedef int counter_t;
        static counter_t g_count = 0;
        int f(int a) { return a; }
        char g(int);
    """
    compilation = Compilation(input_file="sample.c")
    int_type = PrimitiveType(kind="int", name="int", size_of=4)
    char_type = PrimitiveType(kind="char", name="char", size_of=1)

    node = Class(
        name="node", is_definition=True, size_of=16, span=_span(2), parent=compilation
    )
    node_ptr = PointerType(element_type=node, size_of=8)
    node.fields = [
        Field(name="value", type=int_type, span=_span(2), parent=node),
        Field(name="next", type=node_ptr, span=_span(2), parent=node),
    ]

    color = Enum(
        name="color", integer_type=int_type, size_of=4, span=_span(3), parent=compilation
    )
    color.items = [
        EnumItem(name="RED", value=0, parent=color),
        EnumItem(name="GREEN", value=1, parent=color),
    ]

    counter_t = Typedef(
        name="counter_t", element_type=int_type, size_of=4, parent=compilation
    )
    g_count = Field(
        name="g_count",
        type=counter_t,
        storage_qualifier="static",
        init_value="0",
        comment="global counter",
        parent=compilation,
    )

    f = Function(
        name="f",
        return_type=int_type,
        flags=("definition",),
        span=_span(6),
        parent=compilation,
    )
    f.parameters = [Parameter(name="a", type=int_type, parent=f)]
    ret = Statement(kind="return_stmt", parent=f)
    ret.children = [
        Statement(kind="decl_ref_expr", spelling="a", type=int_type, parent=ret)
    ]
    f.statements = [ret]

    g = Function(name="g", return_type=char_type, parent=compilation)
    g.parameters = [Parameter(name="", type=int_type, parent=g)]

    compilation.classes = [node]
    compilation.enums = [color]
    compilation.typedefs = [counter_t]
    compilation.fields = [g_count]
    compilation.functions = [f, g]
    compilation.macros = [
        Macro(
            name="MAX",
            parameters=["a", "b"],
            value="( ( a ) > ( b ) ? ( a ) : ( b ) )",
            parent=compilation,
        )
    ]
    compilation.diagnostics = [
        Diagnostic(
            severity="warning",
            message="unused variable 'x'",
            location=SourceLocation(file="sample.c", line=6, column=5),
        )
    ]
    return compilation
