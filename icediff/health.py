"""
Health and findings log for the icediff fuzzer.

Records findings and adverse events to a JSONL log file so a long unattended
run leaves a machine-readable trail next to the console transcript. The
HealthMonitor never raises on I/O errors and adds negligible overhead to the
worker loop.
"""

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


class HealthMonitor:
    """Track and record findings and adverse events.

    Writes events to a JSONL log file (when a path is given) and keeps
    in-memory counters. Safe to share between worker threads.
    """

    def __init__(self, log_path: Path | None = None) -> None:
        """Initialize the HealthMonitor.

        Args:
            log_path: Path to the JSONL log file, or None to only count events.
        """
        self.log_path = log_path
        self.counters: dict[str, int] = {}
        self._lock = threading.Lock()

    def _write_event(self, category: str, event: str, **kwargs: Any) -> None:
        """Append a single event to the JSONL log.

        Args:
            category: Event category (finding, execution).
            event: Event type name.
            **kwargs: Additional event-specific fields.
        """
        record: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "cat": category,
            "event": event,
        }
        record.update(kwargs)

        with self._lock:
            if self.log_path is not None:
                try:
                    with open(self.log_path, "a", encoding="utf-8") as f:
                        f.write(json.dumps(record, default=str) + "\n")
                except OSError:
                    pass  # Never crash the fuzzer for a health event

            counter_key = f"{category}.{event}"
            self.counters[counter_key] = self.counters.get(counter_key, 0) + 1

    # =========================================================================
    # Findings
    # =========================================================================

    def record_one_sided_crash(self, variant: str, case_id: int, path: Path) -> None:
        """Record a case where exactly one variant crashed."""
        self._write_event("finding", "one_sided_crash", variant=variant, case_id=case_id, path=path)

    def record_both_crashed(self, case_id: int, path: Path) -> None:
        """Record a case where both variants crashed."""
        self._write_event("finding", "both_crashed", case_id=case_id, path=path)

    # =========================================================================
    # Execution Events
    # =========================================================================

    def record_unexpected_exit(
        self, variant: str, returncode: int | None, case_id: int, path: Path
    ) -> None:
        """Record an exit code outside the compiler's contract."""
        self._write_event(
            "execution",
            "unexpected_exit",
            variant=variant,
            returncode=returncode,
            case_id=case_id,
            path=path,
        )

    def record_infrastructure_error(self, worker_id: int, error: str) -> None:
        """Record an I/O or process launch failure that stopped a worker."""
        self._write_event("execution", "infrastructure_error", worker_id=worker_id, error=error)

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> dict[str, int]:
        """Return a copy of the in-memory event counters.

        Returns:
            Dict mapping "category.event" keys to occurrence counts.
        """
        with self._lock:
            return dict(self.counters)
