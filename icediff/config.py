"""
Configuration for an icediff run.

The generator's probability constants, the compiler invocation contract and
the worker pool settings all live here so that tests can build a fully
deterministic configuration without touching the command line.
"""

from __future__ import annotations

import tempfile
from dataclasses import dataclass, field
from fractions import Fraction
from pathlib import Path

# Exit code rustc uses when it panics (an internal compiler error).
ICE_EXIT_CODE = 101

# Exit codes of a normal run: 0 for success, 1 for ordinary diagnostics.
NON_CRASH_EXIT_CODES = frozenset({0, 1})

DEFAULT_WORKERS = 10


@dataclass
class GenerationConfig:
    """Knobs for the biased random case generator."""

    type_count: int = 8
    argument_subset_probability: Fraction = Fraction(3, 4)
    parameter_subset_probability: Fraction = Fraction(1, 2)
    shuffle_probability: Fraction = Fraction(1, 4)
    # Removal count is drawn from range(0, max_removals).
    max_removals: int = 8
    multiset_min_length: int = 1
    multiset_max_length: int = 8

    def __post_init__(self) -> None:
        if self.type_count < 1:
            raise ValueError(f"type_count must be positive, got {self.type_count}")
        for name in (
            "argument_subset_probability",
            "parameter_subset_probability",
            "shuffle_probability",
        ):
            value = Fraction(getattr(self, name))
            if not 0 <= value <= 1:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
            setattr(self, name, value)
        # A removal count of type_count (possible when max_removals is
        # type_count + 1) empties the list.
        if not 0 <= self.max_removals <= self.type_count + 1:
            raise ValueError(
                f"max_removals must be within [0, {self.type_count + 1}], got {self.max_removals}"
            )
        if not 0 <= self.multiset_min_length <= self.multiset_max_length:
            raise ValueError(
                "multiset length range is empty: "
                f"[{self.multiset_min_length}, {self.multiset_max_length}]"
            )

    @property
    def canonical_tags(self) -> list[int]:
        """The full, ordered alphabet of type tags: [1, 2, ..., type_count]."""
        return list(range(1, self.type_count + 1))


@dataclass(frozen=True)
class Variant:
    """One of the two compiler builds under comparison."""

    name: str
    selector: str


@dataclass
class ExecutionConfig:
    """How a staged source file is handed to the compiler."""

    compiler: str = "rustc"
    baseline: Variant = field(default_factory=lambda: Variant("baseline", "+nightly"))
    candidate: Variant = field(default_factory=lambda: Variant("candidate", "+stage1"))
    fixed_args: tuple[str, ...] = ("--crate-type=lib",)
    crash_exit_code: int = ICE_EXIT_CODE
    non_crash_exit_codes: frozenset[int] = NON_CRASH_EXIT_CODES
    scratch_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    parallel_variants: bool = False

    def __post_init__(self) -> None:
        self.scratch_dir = Path(self.scratch_dir)
        self.non_crash_exit_codes = frozenset(self.non_crash_exit_codes)
        if self.crash_exit_code in self.non_crash_exit_codes:
            raise ValueError(
                f"exit code {self.crash_exit_code} cannot mean both crash and non-crash"
            )
        if self.baseline.name == self.candidate.name:
            raise ValueError("baseline and candidate variants need distinct names")

    @property
    def variants(self) -> tuple[Variant, Variant]:
        return (self.baseline, self.candidate)


@dataclass
class FuzzConfig:
    """Top-level settings for one fuzzing run."""

    workers: int = DEFAULT_WORKERS
    # When set, every worker's random source is derived from this seed.
    seed: int | None = None
    # Stop the run when only the candidate crashes (stage1-only ICEs).
    halt_on_candidate_crash: bool = False
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    log_file: Path | None = None
    health_log: Path | None = None

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")
