# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Map invocations onto parser configuration."""

from dataclasses import dataclass

from astdump.invocation import Invocation


@dataclass(frozen=True)
class ParserProfile:
    """Describe the fixed part of every parser configuration.

    Attributes:
        dialect: C language standard passed to the parser.
        target_triple: Target architecture triple.
        extension_flags: Compatibility flags appended to every command line.
        sentinel_define: Define injected after the invocation's own defines.
        parse_function_bodies: Whether function bodies are parsed.
        parse_system_includes: Whether declarations from system headers are kept.
        parse_comments: Whether documentation comments are attached.
    """

    dialect: str = "c99"
    target_triple: str = "x86_64-pc-windows-msvc"
    extension_flags: tuple[str, ...] = (
        "-fno-complete-member-pointers",
        "-fms-extensions",
        "-fms-compatibility",
        "-fms-compatibility-version=19",
    )
    sentinel_define: str = "CPP_AST_FIXED"
    parse_function_bodies: bool = True
    parse_system_includes: bool = False
    parse_comments: bool = False


@dataclass(frozen=True)
class ParserOptions:
    """Represent the complete configuration for one parse."""

    defines: tuple[str, ...]
    include_folders: tuple[str, ...]
    dialect: str
    target_triple: str
    additional_arguments: tuple[str, ...]
    parse_function_bodies: bool
    parse_system_includes: bool
    parse_comments: bool

    def to_clang_args(self) -> list[str]:
        """Render the options as a libclang command line."""
        args = ["-x", "c", f"-std={self.dialect}", f"--target={self.target_triple}"]
        args.extend(self.additional_arguments)
        args.extend(f"-D{define}" for define in self.defines)
        args.extend(f"-I{folder}" for folder in self.include_folders)
        if self.parse_comments:
            args.append("-fparse-all-comments")
        return args


def build_parser_options(
    invocation: Invocation, profile: ParserProfile
) -> ParserOptions:
    """Shape one normalized invocation into parser options.

    Args:
        invocation: Normalized invocation.
        profile: Fixed dialect, target and extension settings.

    Returns:
        Parser options; flags and conformance switches of the invocation are
        not forwarded.
    """
    defines = [
        name if value is None else f"{name}={value}"
        for name, value in invocation.define.items()
    ]
    defines.append(profile.sentinel_define)
    return ParserOptions(
        defines=tuple(defines),
        include_folders=tuple(invocation.include),
        dialect=profile.dialect,
        target_triple=profile.target_triple,
        additional_arguments=profile.extension_flags,
        parse_function_bodies=profile.parse_function_bodies,
        parse_system_includes=profile.parse_system_includes,
        parse_comments=profile.parse_comments,
    )
