# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""CLI harness for batch AST dumps."""

import argparse
import logging
import sys
from pathlib import Path
from typing import TextIO

from rich.console import Console
from rich.logging import RichHandler
from rich.style import Style
from rich.table import Table
from rich.text import Text

from astdump.batch import BatchDriver, BatchResult, BatchSettings
from astdump.invocation import (
    InvocationConfigError,
    load_invocations,
    split,
    write_invocations,
)
from astdump.parser import Parser
from astdump.parsers import ClangParser
from astdump.projection import ProjectionConfigError, ProjectionRules, load_rules

logger = logging.getLogger(__name__)

STATUS_STYLES: dict[str, str] = {
    "dumped": "green",
    "skipped": "cyan",
    "parse_failed": "red",
    "timed_out": "yellow",
    "failed": "red",
}


def configure_logging(level: int = logging.INFO) -> None:
    """Configure application logging with Rich handler.

    Args:
        level: Logging severity threshold.
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser instance.
    """
    parser = argparse.ArgumentParser(prog="astdump")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run")
    run_parser.add_argument(
        "--config", required=True, help="Batch-config JSON with captured invocations."
    )
    run_parser.add_argument(
        "--src-dir", required=True, help="Directory the compiler ran in."
    )
    run_parser.add_argument("--obj-dir", required=True, help="Artifact output root.")
    run_parser.add_argument(
        "--split",
        action="append",
        default=[],
        metavar="FILE",
        help="Input entry to move into its own invocation; repeatable.",
    )
    run_parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="PATTERN",
        help="Gitignore-style pattern of input entries to skip; repeatable.",
    )
    run_parser.add_argument(
        "--workers", type=int, default=1, help="Files processed concurrently."
    )
    run_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds after which a single parse is abandoned.",
    )
    run_parser.add_argument(
        "--warnings", action="store_true", help="Report warning diagnostics too."
    )
    run_parser.add_argument(
        "--info", action="store_true", help="Report top-level declarations."
    )
    run_parser.add_argument(
        "--preprocessed",
        action="store_true",
        help="Parse <input>.ipp files and write artifacts under <obj-dir>_i.",
    )
    run_parser.add_argument(
        "--rules", required=False, help="Optional projection rules JSON file."
    )
    run_parser.add_argument(
        "--libclang", required=False, help="Optional libclang shared library path."
    )

    split_parser = subparsers.add_parser("split")
    split_parser.add_argument(
        "--config", required=True, help="Batch-config JSON with captured invocations."
    )
    split_parser.add_argument(
        "--file",
        action="append",
        required=True,
        metavar="FILE",
        help="Input entry to move into its own invocation; repeatable.",
    )
    split_parser.add_argument(
        "--output", required=True, help="Path of the rewritten batch-config JSON."
    )
    return parser


def run(
    argv: list[str],
    stdout: TextIO,
    stderr: TextIO,
    parser_factory: type[Parser] | None = None,
) -> int:
    """Run CLI command.

    Args:
        argv: CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.
        parser_factory: Parser class to instantiate; libclang by default.

    Returns:
        Exit code.
    """
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit:
        logger.warning(f"Argument parsing failed (argv={argv})")
        return 2
    if args.command == "run":
        return _run_batch(
            args=args, stdout=stdout, stderr=stderr, parser_factory=parser_factory
        )
    if args.command == "split":
        return _run_split(args=args, stdout=stdout, stderr=stderr)

    logger.warning(f"Unsupported command (command={args.command})")
    stderr.write(f"Unsupported command: {args.command}\n")
    return 2


def _run_batch(
    args: argparse.Namespace,
    stdout: TextIO,
    stderr: TextIO,
    parser_factory: type[Parser] | None,
) -> int:
    """Run the batch command.

    Returns:
        0 when every file was dumped or skipped, 1 when some file failed,
        2 on invalid arguments or configuration.
    """
    config_path = Path(args.config)
    if not config_path.exists():
        logger.warning(f"Config file does not exist (path={config_path})")
        stderr.write(f"Config file does not exist: {config_path}\n")
        return 2
    if args.workers <= 0:
        logger.warning(f"Invalid worker count (workers={args.workers})")
        stderr.write("workers must be > 0\n")
        return 2
    if args.timeout is not None and args.timeout <= 0:
        logger.warning(f"Invalid timeout (timeout={args.timeout})")
        stderr.write("timeout must be > 0\n")
        return 2

    try:
        invocations = load_invocations(config_path)
        rules = load_rules(Path(args.rules)) if args.rules else ProjectionRules()
    except (InvocationConfigError, ProjectionConfigError, OSError) as exc:
        logger.warning(f"Invalid configuration (error={exc})")
        stderr.write(f"Invalid configuration: {exc}\n")
        return 2
    if args.split:
        invocations = split(invocations, args.split)

    settings = BatchSettings(
        src_dir=args.src_dir,
        obj_dir=Path(args.obj_dir),
        preprocessed=args.preprocessed,
        max_workers=args.workers,
        parse_timeout=args.timeout,
        print_warnings=args.warnings,
        print_info=args.info,
        exclude_patterns=tuple(args.exclude),
    )
    if parser_factory is None:
        clang_parser: Parser = ClangParser(library_file=args.libclang)
    else:
        clang_parser = parser_factory()
    try:
        result = BatchDriver(parser=clang_parser, settings=settings, rules=rules).run(
            invocations
        )
    except ProjectionConfigError as exc:
        logger.warning(f"Projection rules cannot be applied (error={exc})")
        stderr.write(f"Invalid configuration: {exc}\n")
        return 2
    except OSError as exc:
        logger.warning(f"Output directory unusable (obj_dir={args.obj_dir} error={exc})")
        stderr.write(f"Output directory unusable: {args.obj_dir}\n")
        return 2

    _write_summary(result=result, stdout=stdout)
    return 1 if result.has_failures else 0


def _run_split(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    """Run the split command.

    Returns:
        Exit code.
    """
    config_path = Path(args.config)
    try:
        invocations = load_invocations(config_path)
    except (InvocationConfigError, OSError) as exc:
        logger.warning(f"Invalid configuration (path={config_path} error={exc})")
        stderr.write(f"Invalid configuration: {exc}\n")
        return 2
    result = split(invocations, args.file)
    output_path = Path(args.output)
    try:
        write_invocations(result, output_path)
    except OSError as exc:
        logger.warning(
            f"Failed to write split config (output_path={output_path} error={exc})"
        )
        stderr.write(f"Failed to write split config: {output_path}\n")
        return 2
    logger.info(
        f"Split config written (output_path={output_path} "
        f"invocations_before={len(invocations)} invocations_after={len(result)})"
    )
    stdout.write(f"{output_path}\n")
    return 0


def _write_summary(result: BatchResult, stdout: TextIO) -> None:
    """Write per-file outcomes and timings as a table.

    Args:
        result: Batch result to render.
        stdout: Standard output stream.
    """
    console = Console(file=stdout, force_terminal=False, color_system="truecolor")
    console.rule("astdump", style=Style(color="cyan"), characters="-")
    table = Table(show_header=True, expand=True)
    table.add_column("input", ratio=4, overflow="fold")
    table.add_column("status", ratio=1, overflow="fold")
    table.add_column("parse_ms", ratio=1, justify="right")
    table.add_column("dump_ms", ratio=1, justify="right")
    table.add_column("artifact", ratio=4, overflow="fold")
    for outcome in result.outcomes:
        table.add_row(
            Text(outcome.input_path),
            Text(outcome.status, style=STATUS_STYLES[outcome.status]),
            "" if outcome.parse_ms is None else str(outcome.parse_ms),
            "" if outcome.dump_ms is None else str(outcome.dump_ms),
            Text(str(outcome.artifact_path)),
        )
    console.print(table)
    console.print(
        f"dumped={result.count('dumped')} skipped={result.count('skipped')} "
        f"parse_failed={result.count('parse_failed')} "
        f"timed_out={result.count('timed_out')} failed={result.count('failed')}",
        markup=False,
        highlight=False,
    )


def main() -> None:
    """Run the CLI application and exit."""
    configure_logging()
    exit_code = run(sys.argv[1:], stdout=sys.stdout, stderr=sys.stderr)
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
