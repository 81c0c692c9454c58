# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Batch parse-and-dump orchestration over captured invocations."""

import concurrent.futures
import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path, PureWindowsPath
from typing import Callable, Literal, TypeVar

import pathspec

from astdump.declarations import Compilation
from astdump.invocation import Invocation, normalize
from astdump.options import ParserOptions, ParserProfile, build_parser_options
from astdump.parser import Parser, ParserError
from astdump.projection import ProjectionConfigError, ProjectionRules
from astdump.serializer import SerializationError, SnapshotSerializer
from astdump.snapshot import ProjectionSnapshot, describe_compilation

logger = logging.getLogger(__name__)

FileState = Literal[
    "pending",
    "parsing",
    "parse_failed",
    "parsed",
    "dumping",
    "done",
    "skipped",
    "timed_out",
    "failed",
]
FileStatus = Literal["dumped", "skipped", "parse_failed", "timed_out", "failed"]

PREPROCESSED_SUFFIX = ".ipp"
PREPROCESSED_DIR_SUFFIX = "_i"

_T = TypeVar("_T")


class ParseTimeoutError(RuntimeError):
    """Represent a parse that did not finish within the configured timeout."""


@dataclass(frozen=True)
class BatchSettings:
    """Describe one batch run.

    Attributes:
        src_dir: Directory the captured compiler ran in; relative inputs and
            includes are joined onto it.
        obj_dir: Output root for artifacts.
        artifact_extension: Extension that replaces the input's extension.
        preprocessed: Parse ``<input>.ipp`` files and write under ``<obj_dir>_i``.
        max_workers: Number of files processed concurrently.
        parse_timeout: Seconds after which a parse is abandoned; None waits forever.
        print_warnings: Report warning diagnostics in addition to errors.
        print_info: Report the readable form of top-level declarations.
        exclude_patterns: Gitignore-style patterns matched against input entries.
    """

    src_dir: str
    obj_dir: Path
    artifact_extension: str = "obj"
    preprocessed: bool = False
    max_workers: int = 1
    parse_timeout: float | None = None
    print_warnings: bool = False
    print_info: bool = False
    exclude_patterns: tuple[str, ...] = ()

    @property
    def output_dir(self) -> Path:
        if self.preprocessed:
            return self.obj_dir.with_name(self.obj_dir.name + PREPROCESSED_DIR_SUFFIX)
        return self.obj_dir


@dataclass(frozen=True)
class FileOutcome:
    """Represent what happened to one input file.

    Attributes:
        input_path: Parsed source path.
        artifact_path: Expected artifact path.
        states: Visited states, starting with ``pending``.
        parse_ms: Parse duration in milliseconds, when a parse completed.
        dump_ms: Dump duration in milliseconds, when an artifact was written.
        report: Diagnostic and declaration lines produced for the file.
        error: Failure detail for ``timed_out`` and ``failed`` files.
    """

    input_path: str
    artifact_path: Path
    states: tuple[FileState, ...]
    parse_ms: int | None = None
    dump_ms: int | None = None
    report: tuple[str, ...] = ()
    error: str | None = None

    @property
    def status(self) -> FileStatus:
        if "skipped" in self.states:
            return "skipped"
        if "parse_failed" in self.states:
            return "parse_failed"
        if "timed_out" in self.states:
            return "timed_out"
        if "failed" in self.states:
            return "failed"
        return "dumped"


@dataclass(frozen=True)
class BatchResult:
    """Represent the outcomes of one batch run in configured order."""

    outcomes: list[FileOutcome]

    def count(self, status: FileStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def has_failures(self) -> bool:
        return any(
            outcome.status in ("parse_failed", "timed_out", "failed")
            for outcome in self.outcomes
        )


@dataclass(frozen=True)
class _FileTask:
    source_path: str
    artifact_path: Path
    options: ParserOptions


class InputFilter:
    """Match invocation input entries against gitignore-style patterns."""

    def __init__(self, patterns: tuple[str, ...] | list[str]) -> None:
        self._spec = pathspec.GitIgnoreSpec.from_lines(list(patterns))
        self._enabled = bool(patterns)

    def matches(self, entry: str) -> bool:
        """Check whether an input entry is excluded.

        Args:
            entry: Input entry as captured, with either path separator.

        Returns:
            True when the entry should not be processed.
        """
        if not self._enabled:
            return False
        normalized = entry.replace("\\", "/").strip("/")
        return bool(normalized) and self._spec.match_file(normalized)


def artifact_path(input_file: str, output_dir: Path, extension: str = "obj") -> Path:
    """Derive the artifact path of an input file.

    The artifact keeps the input's base name, with its last extension
    replaced (or, without one, appended), directly under ``output_dir``.
    """
    name = PureWindowsPath(input_file).name
    stem, dot, _ = name.rpartition(".")
    if not dot or not stem:
        return output_dir / f"{name}.{extension}"
    return output_dir / f"{stem}.{extension}"


class BatchDriver:
    """Parse and dump every input file of a list of invocations."""

    def __init__(
        self,
        parser: Parser,
        settings: BatchSettings,
        profile: ParserProfile | None = None,
        rules: ProjectionRules | None = None,
    ) -> None:
        """Initialize the driver.

        Args:
            parser: Parser used for every file.
            settings: Batch settings.
            profile: Fixed parser settings; defaults to ``ParserProfile()``.
            rules: Projection rules; defaults to the standard rule set.

        Raises:
            ValueError: If ``max_workers`` or ``parse_timeout`` is not greater
                than zero.
        """
        if settings.max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        if settings.parse_timeout is not None and settings.parse_timeout <= 0:
            raise ValueError("parse_timeout must be > 0")
        self._parser = parser
        self._settings = settings
        self._profile = profile or ParserProfile()
        self._serializer = SnapshotSerializer(rules)
        self._input_filter = InputFilter(settings.exclude_patterns)

    def run(self, invocations: list[Invocation]) -> BatchResult:
        """Process all files in configured order.

        Args:
            invocations: Invocations as loaded; normalized against ``src_dir``.

        Returns:
            One outcome per processed input file, in configured order.

        Raises:
            ProjectionConfigError: If the projection rules cannot be applied;
                pending files are cancelled.
            OSError: If the output directory cannot be created.
        """
        output_dir = self._settings.output_dir
        output_dir.mkdir(parents=True, exist_ok=True)
        tasks = self._build_tasks(invocations=invocations, output_dir=output_dir)
        logger.info(
            f"Batch started (files={len(tasks)} workers={self._settings.max_workers} "
            f"output_dir={output_dir})"
        )
        outcomes: list[FileOutcome] = []
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self._settings.max_workers
        ) as executor:
            futures = [executor.submit(self._process, task) for task in tasks]
            try:
                for future in futures:
                    outcomes.append(future.result())
            except ProjectionConfigError:
                for future in futures:
                    future.cancel()
                raise
        result = BatchResult(outcomes=outcomes)
        logger.info(
            f"Batch finished (dumped={result.count('dumped')} "
            f"skipped={result.count('skipped')} "
            f"parse_failed={result.count('parse_failed')} "
            f"timed_out={result.count('timed_out')} failed={result.count('failed')})"
        )
        return result

    def _build_tasks(
        self, invocations: list[Invocation], output_dir: Path
    ) -> list[_FileTask]:
        tasks: list[_FileTask] = []
        for invocation in invocations:
            normalized = normalize(invocation, self._settings.src_dir)
            options = build_parser_options(normalized, self._profile)
            for entry, source_path in zip(invocation.input, normalized.input):
                if self._input_filter.matches(entry):
                    logger.info(f"Input excluded by pattern (input={entry})")
                    continue
                if self._settings.preprocessed:
                    source_path += PREPROCESSED_SUFFIX
                tasks.append(
                    _FileTask(
                        source_path=source_path,
                        artifact_path=artifact_path(
                            source_path, output_dir, self._settings.artifact_extension
                        ),
                        options=options,
                    )
                )
        return tasks

    def _process(self, task: _FileTask) -> FileOutcome:
        states: list[FileState] = ["pending"]
        if task.artifact_path.exists():
            logger.debug(f"Parse skipped (file={task.source_path})")
            states.append("skipped")
            return _outcome(task, states)
        claim = _ArtifactClaim(task.artifact_path)
        if not claim.acquire():
            logger.info(
                f"Parse skipped; artifact claimed elsewhere (file={task.source_path} "
                f"artifact={task.artifact_path})"
            )
            states.append("skipped")
            return _outcome(task, states)
        try:
            return self._parse_and_dump(task=task, states=states)
        finally:
            claim.release()

    def _parse_and_dump(self, task: _FileTask, states: list[FileState]) -> FileOutcome:
        states.append("parsing")
        logger.info(f"Parse started (file={task.source_path})")
        started = time.monotonic()
        try:
            compilation = _call_with_timeout(
                lambda: self._parser.parse(task.source_path, task.options),
                timeout=self._settings.parse_timeout,
            )
        except ParseTimeoutError as exc:
            logger.warning(f"Parse timed out (file={task.source_path} error={exc})")
            states.append("timed_out")
            return _outcome(task, states, error=str(exc))
        except (ParserError, OSError) as exc:
            logger.warning(f"Parse failed to run (file={task.source_path} error={exc})")
            states.append("failed")
            return _outcome(task, states, error=str(exc))
        except Exception as exc:  # noqa: BLE001 - recorded as a file failure
            logger.exception(
                f"Parse raised unexpectedly (file={task.source_path} "
                f"error_type={type(exc).__name__})"
            )
            states.append("failed")
            return _outcome(task, states, error=f"{type(exc).__name__}: {exc}")
        parse_ms = _elapsed_ms(started)
        logger.info(f"Parse finished (file={task.source_path} elapsed_ms={parse_ms})")

        report = describe_compilation(
            compilation,
            print_warnings=self._settings.print_warnings,
            print_info=self._settings.print_info,
        )
        for line in report:
            logger.info(line)
        if compilation.has_errors:
            logger.warning(
                f"Parse reported errors; artifact not written (file={task.source_path})"
            )
            states.extend(["parse_failed", "done"])
            return _outcome(task, states, parse_ms=parse_ms, report=report)

        states.extend(["parsed", "dumping"])
        logger.info(
            f"Dump started (file={task.source_path} artifact={task.artifact_path})"
        )
        started = time.monotonic()
        try:
            self._write_artifact(compilation, task.artifact_path)
        except ProjectionConfigError:
            raise
        except (SerializationError, OSError) as exc:
            logger.warning(
                f"Dump failed (artifact={task.artifact_path} error={exc})"
            )
            states.append("failed")
            return _outcome(task, states, parse_ms=parse_ms, report=report, error=str(exc))
        except Exception as exc:  # noqa: BLE001 - recorded as a file failure
            logger.exception(
                f"Dump raised unexpectedly (artifact={task.artifact_path} "
                f"error_type={type(exc).__name__})"
            )
            states.append("failed")
            return _outcome(
                task,
                states,
                parse_ms=parse_ms,
                report=report,
                error=f"{type(exc).__name__}: {exc}",
            )
        dump_ms = _elapsed_ms(started)
        logger.info(f"Dump finished (artifact={task.artifact_path} elapsed_ms={dump_ms})")
        states.append("done")
        return _outcome(task, states, parse_ms=parse_ms, dump_ms=dump_ms, report=report)

    def _write_artifact(self, compilation: Compilation, path: Path) -> None:
        snapshot = ProjectionSnapshot.from_compilation(compilation)
        temp_path = path.with_name(path.name + ".tmp")
        try:
            with temp_path.open("w", encoding="utf-8") as stream:
                self._serializer.dump(snapshot, stream)
            os.replace(temp_path, path)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise


class _ArtifactClaim:
    """Exclusive claim on an artifact path held through a lock file."""

    def __init__(self, artifact: Path) -> None:
        self._artifact = artifact
        self._lock_path = artifact.with_name(artifact.name + ".lock")
        self._held = False

    def acquire(self) -> bool:
        """Create the lock file; False when it exists or the artifact appeared."""
        try:
            fd = os.open(self._lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        os.close(fd)
        self._held = True
        if self._artifact.exists():
            self.release()
            return False
        return True

    def release(self) -> None:
        if self._held:
            self._lock_path.unlink(missing_ok=True)
            self._held = False


def _call_with_timeout(func: Callable[[], _T], timeout: float | None) -> _T:
    """Run ``func`` on a daemon thread and stop waiting after ``timeout``.

    An abandoned call keeps running in the background; its result is dropped.
    """
    if timeout is None:
        return func()
    result: dict[str, object] = {}

    def target() -> None:
        try:
            result["value"] = func()
        except Exception as exc:  # noqa: BLE001 - re-raised on the waiting thread
            result["error"] = exc

    thread = threading.Thread(target=target, name="astdump-parse", daemon=True)
    thread.start()
    thread.join(timeout)
    if thread.is_alive():
        raise ParseTimeoutError(f"parse exceeded {timeout:g}s")
    if "error" in result:
        raise result["error"]  # type: ignore[misc]
    return result["value"]  # type: ignore[return-value]


def _elapsed_ms(started: float) -> int:
    return int(round((time.monotonic() - started) * 1000))


def _outcome(
    task: _FileTask,
    states: list[FileState],
    parse_ms: int | None = None,
    dump_ms: int | None = None,
    report: list[str] | None = None,
    error: str | None = None,
) -> FileOutcome:
    return FileOutcome(
        input_path=task.source_path,
        artifact_path=task.artifact_path,
        states=tuple(states),
        parse_ms=parse_ms,
        dump_ms=dump_ms,
        report=tuple(report or ()),
        error=error,
    )
