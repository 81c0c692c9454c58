# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Parser abstractions."""

from typing import Protocol

from astdump.declarations import Compilation
from astdump.options import ParserOptions


class ParserError(RuntimeError):
    """Represent a parser that could not produce any result for a file."""


class Parser(Protocol):
    """Define how one translation unit becomes a declaration graph."""

    def parse(self, path: str, options: ParserOptions) -> Compilation:
        """Parse one source file.

        Args:
            path: Source file path.
            options: Parser configuration for the file's invocation.

        Returns:
            Declaration graph with diagnostics; compilation errors are reported
            through diagnostics, not exceptions.

        Raises:
            ParserError: If the file cannot be loaded at all.
        """
