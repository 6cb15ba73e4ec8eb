"""
Render a case body into a compilable Rust source file.

The program is deliberately not required to type-check: arity and type
mismatches between the parameter list and the argument list are what
exercises the compiler's diagnostic paths.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence


@dataclass
class TestCase:
    """One generated program, staged on disk for both compiler variants."""

    __test__ = False  # keep pytest from collecting this as a test class

    identifier: int
    parameters: tuple[int, ...]
    arguments: tuple[int, ...]
    source: str
    path: Path


def type_name(tag: int) -> str:
    return f"S{tag}"


def render_source(
    case_id: int, parameters: Sequence[int], arguments: Sequence[int], type_count: int = 8
) -> str:
    """
    Build the source text for one case.

    Args:
        case_id: Unique identifier, embedded in both function names.
        parameters: Type tags of the called function's formal parameters.
        arguments: Type tags of the values passed at the call site.
        type_count: Number of marker structs to declare.

    Returns:
        The complete source text, identical for identical inputs.
    """
    declarations = "\n".join(f"struct {type_name(n)};" for n in range(1, type_count + 1))
    expected = ", ".join(f"_: {type_name(tag)}" for tag in parameters)
    provided = ", ".join(type_name(tag) for tag in arguments)
    return (
        f"{declarations}\n"
        "\n"
        f"fn foo{case_id}({expected}) {{}}\n"
        "\n"
        f"fn test{case_id}() {{ foo{case_id}({provided}); }}\n"
    )


def case_file_name(case_id: int) -> str:
    return f"fuzz{case_id}.rs"


def build_test_case(
    case_id: int,
    parameters: Sequence[int],
    arguments: Sequence[int],
    scratch_dir: Path,
    type_count: int = 8,
) -> TestCase:
    """Render a case and decide where it will be staged. Nothing is written here."""
    return TestCase(
        identifier=case_id,
        parameters=tuple(parameters),
        arguments=tuple(arguments),
        source=render_source(case_id, parameters, arguments, type_count),
        path=Path(scratch_dir) / case_file_name(case_id),
    )
