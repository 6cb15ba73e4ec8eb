"""
Staged test-case files and console reporting for the icediff fuzzer.

This module provides:
- ArtifactManager: writes each case to the scratch directory and deletes it
  again when the case turns out to be uninteresting
- ProgressReporter: the shared "." progress stream and finding reports
"""

from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import TextIO

from icediff.render import TestCase


class ArtifactManager:
    """
    Owns the on-disk lifecycle of staged cases.

    A staged file exists from `stage()` until `discard()`. Files of
    interesting cases are never deleted: they are the only record of a
    finding.
    """

    def __init__(self, scratch_dir: Path):
        self.scratch_dir = Path(scratch_dir)
        self.scratch_dir.mkdir(parents=True, exist_ok=True)

    def stage(self, case: TestCase) -> Path:
        """Write the case source to its path. OSError propagates."""
        case.path.write_text(case.source, encoding="utf-8")
        return case.path

    def discard(self, case: TestCase) -> None:
        """Delete the staged file of an uninteresting case. OSError propagates."""
        case.path.unlink()


class ProgressReporter:
    """
    Thread-safe writer for progress dots and finding reports.

    Output from different workers may interleave between writes, but each
    dot or report line is written whole. After `close()` nothing more is
    written, so no progress appears once the run has been halted.
    """

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream
        self._lock = threading.Lock()
        self._closed = False

    @property
    def stream(self) -> TextIO:
        # Resolved lazily so a TeeLogger installed over sys.stdout is picked up.
        return self._stream if self._stream is not None else sys.stdout

    @property
    def closed(self) -> bool:
        return self._closed

    def progress(self) -> bool:
        """Emit one progress dot. Returns False if the reporter is closed."""
        with self._lock:
            if self._closed:
                return False
            self.stream.write(".")
            self.stream.flush()
            return True

    def report(self, line: str) -> bool:
        """Print a finding on its own line. Returns False if the reporter is closed."""
        with self._lock:
            if self._closed:
                return False
            self.stream.write(f"\n{line}\n")
            self.stream.flush()
            return True

    def report_and_close(self, line: str) -> None:
        """Print the report that halts the run, then stop all further output."""
        with self._lock:
            if not self._closed:
                self.stream.write(f"\n{line}\n")
                self.stream.flush()
            self._closed = True

    def close(self) -> None:
        with self._lock:
            self._closed = True
