"""Tests for the shared counter, run statistics and the tee logger."""

import io
import tempfile
import threading
import unittest
from pathlib import Path

from icediff.analysis import Verdict
from icediff.utils import CaseCounter, RunStats, TeeLogger


class TestCaseCounter(unittest.TestCase):
    def test_fetch_and_increment(self):
        counter = CaseCounter()
        self.assertEqual([counter.next() for _ in range(3)], [0, 1, 2])
        self.assertEqual(counter.value, 3)

    def test_custom_start(self):
        counter = CaseCounter(start=10)
        self.assertEqual(counter.next(), 10)

    def test_unique_across_threads(self):
        counter = CaseCounter()
        seen: list[int] = []
        lock = threading.Lock()

        def take():
            local = [counter.next() for _ in range(1000)]
            with lock:
                seen.extend(local)

        threads = [threading.Thread(target=take) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(seen), 10_000)
        self.assertEqual(len(set(seen)), 10_000)
        self.assertEqual(counter.value, 10_000)


class TestRunStats(unittest.TestCase):
    def test_records_verdicts(self):
        stats = RunStats()
        stats.record_verdict(Verdict.UNINTERESTING)
        stats.record_verdict(Verdict.UNINTERESTING)
        stats.record_verdict(Verdict.CANDIDATE_ONLY_CRASH)
        stats.record_verdict(Verdict.BOTH_CRASHED)
        stats.record_infrastructure_error()

        self.assertEqual(
            stats.as_dict(),
            {
                "cases_executed": 4,
                "uninteresting": 2,
                "baseline_only_crashes": 0,
                "candidate_only_crashes": 1,
                "both_crashed": 1,
                "unexpected_exits": 0,
                "infrastructure_errors": 1,
            },
        )


class TestTeeLogger(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.log_path = Path(self.temp_dir.name) / "run.log"
        self.stream = io.StringIO()
        self.tee = TeeLogger(self.log_path, self.stream)

    def tearDown(self):
        if not self.tee.log_file.closed:
            self.tee.close()
        self.temp_dir.cleanup()

    def test_writes_to_both(self):
        self.tee.write("hello\n")
        self.tee.write("...")
        self.assertEqual(self.stream.getvalue(), "hello\n...")
        self.assertEqual(self.log_path.read_text(encoding="utf-8"), "hello\n...")

    def test_print_goes_through(self):
        print("[+] started", file=self.tee)
        self.tee.close()
        self.assertEqual(self.log_path.read_text(encoding="utf-8"), "[+] started\n")

    def test_write_returns_length(self):
        self.assertEqual(self.tee.write("abc"), 3)

    def test_write_after_close_only_reaches_stream(self):
        self.tee.close()
        self.tee.write("late")
        self.assertEqual(self.stream.getvalue(), "late")

    def test_encoding_and_isatty(self):
        self.assertEqual(self.tee.encoding, "utf-8")
        self.assertFalse(self.tee.isatty())

    def test_fileno_without_descriptor_raises(self):
        with self.assertRaises(OSError):
            self.tee.fileno()


if __name__ == "__main__":
    unittest.main()
