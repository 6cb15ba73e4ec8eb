"""
Child process execution for the icediff fuzzer.

This module provides the ExecutionManager class which handles:
- Running one compiler variant on a staged source file
- Mapping the child's exit status onto a three-valued Outcome
- Running both variants on the same file (sequentially or concurrently)

Only the exit status is looked at; compiler output is discarded.
"""

import logging
import subprocess
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from icediff.config import ExecutionConfig, Variant

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    CRASHED = "CRASHED"
    NOT_CRASHED = "NOT_CRASHED"
    # Exit code outside the compiler's documented contract.
    UNEXPECTED = "UNEXPECTED"


@dataclass(frozen=True)
class VariantResult:
    """Exit status of one variant and what it means."""

    variant: Variant
    returncode: int | None
    outcome: Outcome


@dataclass(frozen=True)
class DualResult:
    baseline: VariantResult
    candidate: VariantResult


def outcome_for_returncode(returncode: int | None, config: ExecutionConfig) -> Outcome:
    """
    Classify a compiler exit status.

    A negative return code means the child was killed by a signal, which is
    treated the same as a clean non-crash exit.
    """
    if returncode is None or returncode < 0:
        return Outcome.NOT_CRASHED
    if returncode == config.crash_exit_code:
        return Outcome.CRASHED
    if returncode in config.non_crash_exit_codes:
        return Outcome.NOT_CRASHED
    return Outcome.UNEXPECTED


def _run_in_background(fn: Callable, *args) -> Future:
    """Run fn on a daemon thread so a halted run never waits for it on exit."""
    future: Future = Future()

    def target() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn(*args))
        except BaseException as e:
            future.set_exception(e)

    threading.Thread(target=target, name="variant", daemon=True).start()
    return future


# Signature of anything that can stand in for a real compiler run.
VariantRunner = Callable[[Variant, Path], VariantResult]


class ExecutionManager:
    """
    Runs the two compiler variants on staged source files.

    Each invocation is a fresh child process with a fixed argument list,
    its working directory pinned to the scratch directory and all standard
    streams sent to /dev/null. There is no timeout: a hung compiler stalls
    the calling worker.
    """

    def __init__(self, config: ExecutionConfig):
        """
        Initialize the ExecutionManager.

        Args:
            config: Compiler program, variants, exit code contract and scratch dir
        """
        self.config = config

    def build_command(self, variant: Variant, source_path: Path) -> list[str]:
        return [self.config.compiler, variant.selector, *self.config.fixed_args, str(source_path)]

    def run_variant(self, variant: Variant, source_path: Path) -> VariantResult:
        """
        Compile one file with one variant.

        Raises:
            OSError: If the compiler could not be launched.
        """
        result = subprocess.run(
            self.build_command(variant, source_path),
            cwd=self.config.scratch_dir,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        outcome = outcome_for_returncode(result.returncode, self.config)
        logger.debug(
            "%s on %s exited with %s (%s)",
            variant.name,
            source_path.name,
            result.returncode,
            outcome.value,
        )
        return VariantResult(variant=variant, returncode=result.returncode, outcome=outcome)

    def execute(self, source_path: Path, runner: VariantRunner | None = None) -> DualResult:
        """
        Compile one file with both variants.

        Args:
            source_path: The staged source file
            runner: Replacement for run_variant, mostly for tests

        Returns:
            The pair of variant results. Their order of execution is not significant.
        """
        run = runner or self.run_variant
        baseline, candidate = self.config.variants

        if self.config.parallel_variants:
            candidate_future = _run_in_background(run, candidate, source_path)
            baseline_result = run(baseline, source_path)
            return DualResult(baseline_result, candidate_future.result())

        return DualResult(run(baseline, source_path), run(candidate, source_path))

    def describe_toolchain(self, variant: Variant) -> str:
        """Return the variant's `--version` line, or "unknown" if it can't be queried."""
        try:
            result = subprocess.run(
                [self.config.compiler, variant.selector, "--version"],
                capture_output=True,
                text=True,
                timeout=30,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.warning("Could not query %s toolchain version: %s", variant.name, e)
            return "unknown"

        if result.returncode != 0:
            logger.warning(
                "%s toolchain version query exited with %d: %s",
                variant.name,
                result.returncode,
                result.stderr.strip(),
            )
            return "unknown"
        return result.stdout.strip() or "unknown"
