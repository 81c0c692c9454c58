# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
import json
import os
import threading
from dataclasses import dataclass
from pathlib import Path, PureWindowsPath
from typing import ClassVar

import pytest

from astdump.batch import BatchDriver, BatchSettings, artifact_path
from astdump.declarations import (
    Compilation,
    Diagnostic,
    Function,
    PrimitiveType,
    Statement,
)
from astdump.invocation import Invocation
from astdump.options import ParserOptions
from astdump.parser import ParserError
from astdump.projection import ProjectionConfigError


class _FakeParser:
    """Return a one-function graph per file; behavior is keyed by base name."""

    def __init__(
        self,
        broken: set[str] | None = None,
        unreadable: set[str] | None = None,
        slow: set[str] | None = None,
        undecodable: set[str] | None = None,
    ) -> None:
        self.calls: list[tuple[str, ParserOptions]] = []
        self.release = threading.Event()
        self._broken = broken or set()
        self._unreadable = unreadable or set()
        self._slow = slow or set()
        self._undecodable = undecodable or set()
        self._lock = threading.Lock()

    def parse(self, path: str, options: ParserOptions) -> Compilation:
        with self._lock:
            self.calls.append((path, options))
        name = PureWindowsPath(path).name
        if name in self._slow:
            self.release.wait(5)
        if name in self._unreadable:
            raise ParserError(f"cannot read {path}")
        if name in self._undecodable:
            raise UnicodeDecodeError("utf-8", b"caf\xe9", 3, 4, "invalid continuation byte")
        if name in self._broken:
            return Compilation(
                input_file=path,
                diagnostics=[Diagnostic(severity="error", message="expected ';'")],
            )
        int_type = PrimitiveType(kind="int", name="int", size_of=4)
        function = Function(name=name.split(".")[0], return_type=int_type)
        function.statements = [Statement(kind="return_stmt", parent=function)]
        return Compilation(input_file=path, functions=[function])


def _settings(tmp_path: Path, **overrides: object) -> BatchSettings:
    values: dict[str, object] = {
        "src_dir": str(tmp_path / "src"),
        "obj_dir": tmp_path / "obj",
    }
    values.update(overrides)
    return BatchSettings(**values)  # type: ignore[arg-type]


def test_batch_001_dumps_every_file_with_full_state_path(tmp_path: Path) -> None:
    parser = _FakeParser()
    driver = BatchDriver(parser=parser, settings=_settings(tmp_path))

    result = driver.run([Invocation(input=("a.c", "sub\\b.c"))])

    assert [o.status for o in result.outcomes] == ["dumped", "dumped"]
    for outcome in result.outcomes:
        assert outcome.states == ("pending", "parsing", "parsed", "dumping", "done")
        assert outcome.parse_ms is not None
        assert outcome.dump_ms is not None
    assert result.outcomes[1].artifact_path == tmp_path / "obj" / "b.obj"
    payload = json.loads((tmp_path / "obj" / "a.obj").read_text(encoding="utf-8"))
    assert payload["functions"][0]["name"] == "a"
    assert list(payload["function_map"]) == ["a"]
    assert not list((tmp_path / "obj").glob("*.lock"))
    assert not list((tmp_path / "obj").glob("*.tmp"))


def test_batch_002_second_run_skips_every_file(tmp_path: Path) -> None:
    invocations = [Invocation(input=("a.c", "b.c")), Invocation(input=("c.c",))]
    BatchDriver(parser=_FakeParser(), settings=_settings(tmp_path)).run(invocations)
    parser = _FakeParser()

    result = BatchDriver(parser=parser, settings=_settings(tmp_path)).run(invocations)

    assert [o.states for o in result.outcomes] == [("pending", "skipped")] * 3
    assert parser.calls == []
    assert result.has_failures is False


def test_batch_003_parse_errors_skip_dump_and_continue(tmp_path: Path) -> None:
    parser = _FakeParser(broken={"a.c"})

    result = BatchDriver(parser=parser, settings=_settings(tmp_path)).run(
        [Invocation(input=("a.c", "b.c"))]
    )

    failed, dumped = result.outcomes
    assert failed.states == ("pending", "parsing", "parse_failed", "done")
    assert failed.dump_ms is None
    assert failed.report == ("error: expected ';'",)
    assert not (tmp_path / "obj" / "a.obj").exists()
    assert dumped.status == "dumped"
    assert result.has_failures is True


def test_batch_004_parser_load_failure_is_file_scoped(tmp_path: Path) -> None:
    parser = _FakeParser(unreadable={"a.c"})

    result = BatchDriver(parser=parser, settings=_settings(tmp_path)).run(
        [Invocation(input=("a.c", "b.c"))]
    )

    assert result.outcomes[0].states == ("pending", "parsing", "failed")
    assert "cannot read" in (result.outcomes[0].error or "")
    assert result.outcomes[1].status == "dumped"


def test_batch_005_slow_parse_times_out_without_artifact(tmp_path: Path) -> None:
    parser = _FakeParser(slow={"slow.c"})
    settings = _settings(tmp_path, parse_timeout=0.05)

    try:
        result = BatchDriver(parser=parser, settings=settings).run(
            [Invocation(input=("slow.c", "fast.c"))]
        )
    finally:
        parser.release.set()

    assert result.outcomes[0].states == ("pending", "parsing", "timed_out")
    assert result.outcomes[1].status == "dumped"
    assert not (tmp_path / "obj" / "slow.obj").exists()


def test_batch_006_worker_pool_keeps_configured_order(tmp_path: Path) -> None:
    names = tuple(f"unit{index}.c" for index in range(12))
    parser = _FakeParser()

    result = BatchDriver(
        parser=parser, settings=_settings(tmp_path, max_workers=4)
    ).run([Invocation(input=names[:5]), Invocation(input=names[5:])])

    assert [PureWindowsPath(o.input_path).name for o in result.outcomes] == list(names)
    assert result.count("dumped") == 12
    assert len(parser.calls) == 12


def test_batch_007_passes_normalized_options_to_parser(tmp_path: Path) -> None:
    parser = _FakeParser()
    invocation = Invocation(
        input=("a.c",), include=("main",), define={"WIN32": None, "DEBUG": "0"}
    )

    BatchDriver(parser=parser, settings=_settings(tmp_path)).run([invocation])

    path, options = parser.calls[0]
    assert path == os.path.join(str(tmp_path / "src"), "a.c")
    assert options.include_folders == (os.path.join(str(tmp_path / "src"), "main"),)
    assert options.defines == ("WIN32", "DEBUG=0", "CPP_AST_FIXED")


def test_batch_008_preprocessed_mode_uses_ipp_inputs_and_suffixed_dir(
    tmp_path: Path,
) -> None:
    parser = _FakeParser()

    result = BatchDriver(
        parser=parser, settings=_settings(tmp_path, preprocessed=True)
    ).run([Invocation(input=("a.c",))])

    assert parser.calls[0][0].endswith("a.c.ipp")
    assert result.outcomes[0].artifact_path == tmp_path / "obj_i" / "a.c.obj"
    assert (tmp_path / "obj_i" / "a.c.obj").exists()


def test_batch_009_exclude_patterns_drop_matching_inputs(tmp_path: Path) -> None:
    parser = _FakeParser()

    result = BatchDriver(
        parser=parser, settings=_settings(tmp_path, exclude_patterns=("ext/**",))
    ).run([Invocation(input=("main\\a.c", "ext\\date\\b.c"))])

    assert [PureWindowsPath(o.input_path).name for o in result.outcomes] == ["a.c"]


def test_batch_010_claimed_artifact_is_skipped(tmp_path: Path) -> None:
    (tmp_path / "obj").mkdir()
    (tmp_path / "obj" / "a.obj.lock").write_text("", encoding="utf-8")
    parser = _FakeParser()

    result = BatchDriver(parser=parser, settings=_settings(tmp_path)).run(
        [Invocation(input=("a.c",))]
    )

    assert result.outcomes[0].states == ("pending", "skipped")
    assert parser.calls == []


def test_batch_011_same_artifact_name_is_dumped_once(tmp_path: Path) -> None:
    parser = _FakeParser()

    result = BatchDriver(
        parser=parser, settings=_settings(tmp_path, max_workers=2)
    ).run([Invocation(input=("x\\util.c",)), Invocation(input=("y\\util.c",))])

    assert sorted(o.status for o in result.outcomes) == ["dumped", "skipped"]


@dataclass(eq=False)
class _LegacyEnum:
    decl_kind: ClassVar[str] = "enum"

    name: str


class _LegacyParser(_FakeParser):
    def parse(self, path: str, options: ParserOptions) -> Compilation:
        compilation = super().parse(path, options)
        compilation.enums = [_LegacyEnum(name="old")]  # type: ignore[list-item]
        return compilation


def test_batch_012_projection_config_error_aborts_batch(tmp_path: Path) -> None:
    driver = BatchDriver(parser=_LegacyParser(), settings=_settings(tmp_path))

    with pytest.raises(ProjectionConfigError):
        driver.run([Invocation(input=("a.c", "b.c"))])

    assert not (tmp_path / "obj" / "a.obj").exists()
    assert not (tmp_path / "obj" / "a.obj.lock").exists()


@pytest.mark.parametrize(
    ("overrides", "message"),
    [({"max_workers": 0}, "max_workers"), ({"parse_timeout": 0.0}, "parse_timeout")],
)
def test_batch_013_rejects_invalid_settings(
    tmp_path: Path, overrides: dict[str, object], message: str
) -> None:
    with pytest.raises(ValueError, match=message):
        BatchDriver(parser=_FakeParser(), settings=_settings(tmp_path, **overrides))


@pytest.mark.parametrize(
    ("input_file", "expected"),
    [
        ("sapi\\cli\\php_cli.c", "php_cli.obj"),
        ("Zend/zend_API.c", "zend_API.obj"),
        ("main\\streams\\memory.c.ipp", "memory.c.obj"),
        ("Makefile", "Makefile.obj"),
    ],
)
def test_batch_014_artifact_path_replaces_extension_under_output_root(
    input_file: str, expected: str
) -> None:
    assert artifact_path(input_file, Path("out")) == Path("out") / expected


def test_batch_015_unexpected_parser_exception_is_file_scoped(tmp_path: Path) -> None:
    parser = _FakeParser(undecodable={"latin.c"})

    result = BatchDriver(parser=parser, settings=_settings(tmp_path)).run(
        [Invocation(input=("latin.c", "ok.c"))]
    )

    assert [o.status for o in result.outcomes] == ["failed", "dumped"]
    assert result.outcomes[0].states == ("pending", "parsing", "failed")
    assert (result.outcomes[0].error or "").startswith("UnicodeDecodeError")
    assert not (tmp_path / "obj" / "latin.obj").exists()
    assert not (tmp_path / "obj" / "latin.obj.lock").exists()


class _GarbledParser(_FakeParser):
    def parse(self, path: str, options: ParserOptions) -> Compilation:
        compilation = super().parse(path, options)
        if PureWindowsPath(path).name == "garbled.c":
            compilation.functions = [object()]  # type: ignore[list-item]
        return compilation


def test_batch_016_unexpected_dump_exception_is_file_scoped(tmp_path: Path) -> None:
    result = BatchDriver(parser=_GarbledParser(), settings=_settings(tmp_path)).run(
        [Invocation(input=("garbled.c", "ok.c"))]
    )

    garbled, ok = result.outcomes
    assert garbled.states == ("pending", "parsing", "parsed", "dumping", "failed")
    assert (garbled.error or "").startswith("AttributeError")
    assert not (tmp_path / "obj" / "garbled.obj").exists()
    assert not list((tmp_path / "obj").glob("*.tmp"))
    assert ok.status == "dumped"


class _DeepBodyParser:
    def __init__(self, depth: int) -> None:
        self._depth = depth

    def parse(self, path: str, options: ParserOptions) -> Compilation:
        int_type = PrimitiveType(kind="int", name="int", size_of=4)
        function = Function(name="f", return_type=int_type)
        root = Statement(kind="return_stmt", parent=function)
        current = root
        for _ in range(self._depth):
            child = Statement(kind="binary_operator", type=int_type, parent=current)
            current.children = [child]
            current = child
        current.children = [Statement(kind="decl_ref_expr", spelling="a")]
        function.statements = [root]
        return Compilation(input_file=path, functions=[function])


def test_batch_017_deeply_nested_body_is_dumped(tmp_path: Path) -> None:
    depth = 2500

    result = BatchDriver(
        parser=_DeepBodyParser(depth), settings=_settings(tmp_path)
    ).run([Invocation(input=("deep.c",))])

    assert result.outcomes[0].status == "dumped"
    text = (tmp_path / "obj" / "deep.obj").read_text(encoding="utf-8")
    assert text.count('"binary_operator"') == depth
    assert text.count('"decl_ref_expr"') == 1
