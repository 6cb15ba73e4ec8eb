"""
This module contains generic, reusable helper functions and classes for the icediff fuzzer.

It includes the shared case counter, run statistics, and the tee logger used
for the run log.
"""

import threading
from pathlib import Path
from typing import Any, TextIO

from icediff.analysis import Verdict


class CaseCounter:
    """
    Process-wide source of case identifiers.

    `next()` is an atomic fetch-and-increment: identifiers are unique across
    all workers, though not contiguous within any one worker.
    """

    def __init__(self, start: int = 0) -> None:
        self._value = start
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            value = self._value
            self._value += 1
            return value

    @property
    def value(self) -> int:
        """The identifier the next call to `next()` will return."""
        with self._lock:
            return self._value


class RunStats:
    """Thread-safe counters for the end-of-run summary."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.cases_executed = 0
        self.verdicts: dict[Verdict, int] = {verdict: 0 for verdict in Verdict}
        self.infrastructure_errors = 0

    def record_verdict(self, verdict: Verdict) -> None:
        with self._lock:
            self.cases_executed += 1
            self.verdicts[verdict] += 1

    def record_infrastructure_error(self) -> None:
        with self._lock:
            self.infrastructure_errors += 1

    def as_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "cases_executed": self.cases_executed,
                "uninteresting": self.verdicts[Verdict.UNINTERESTING],
                "baseline_only_crashes": self.verdicts[Verdict.BASELINE_ONLY_CRASH],
                "candidate_only_crashes": self.verdicts[Verdict.CANDIDATE_ONLY_CRASH],
                "both_crashed": self.verdicts[Verdict.BOTH_CRASHED],
                "unexpected_exits": self.verdicts[Verdict.UNEXPECTED_EXIT],
                "infrastructure_errors": self.infrastructure_errors,
            }


class TeeLogger:
    """
    A file-like object that writes to both a file and another stream
    (like the original stdout), and flushes immediately.

    Several worker threads write through the same instance, so writes are
    serialized with a lock.
    """

    def __init__(self, file_path: str | Path, original_stream: TextIO) -> None:
        """Initialize the logger with a file path and an existing stream.

        Args:
            file_path: Path to the log file.
            original_stream: The original stream (e.g., sys.stdout) to tee to.
        """
        self.original_stream = original_stream
        self.log_file = open(file_path, "w", encoding="utf-8")
        self._lock = threading.Lock()

    def write(self, message: str) -> int:
        """Write a message to both the original stream and the log file."""
        with self._lock:
            self.original_stream.write(message)
            if not self.log_file.closed:
                self.log_file.write(message)
                self.log_file.flush()
            self.original_stream.flush()
        return len(message)

    def flush(self) -> None:
        """Flush both underlying streams."""
        with self._lock:
            self.original_stream.flush()
            if not self.log_file.closed:
                self.log_file.flush()

    def close(self) -> None:
        """Flush and close the log file. The original stream stays open."""
        with self._lock:
            self.original_stream.flush()
            self.log_file.close()

    @property
    def encoding(self) -> str:
        """Return the encoding of the original stream."""
        return getattr(self.original_stream, "encoding", None) or "utf-8"

    def isatty(self) -> bool:
        """Return whether the original stream is a TTY."""
        return hasattr(self.original_stream, "isatty") and self.original_stream.isatty()

    def fileno(self) -> int:
        """Return the file descriptor of the original stream.

        Raises OSError if the original stream doesn't have a file descriptor.
        """
        if hasattr(self.original_stream, "fileno"):
            return self.original_stream.fileno()
        raise OSError("TeeLogger does not have a file descriptor")
