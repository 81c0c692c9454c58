# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Parser implementations for astdump."""

from astdump.parsers.libclang import ClangParser

__all__ = ["ClangParser"]
