#!/usr/bin/env python3
"""
Tests for the command-line entry point in icediff/orchestrator.py.
"""

import io
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from icediff.config import DEFAULT_WORKERS
from icediff.orchestrator import (
    CONTINUE,
    FlowControl,
    _build_parser,
    _format_run_header,
    _format_run_summary,
    config_from_args,
    main,
)

METADATA = {
    "environment": {
        "hostname": "fuzzbox",
        "os": "Linux",
        "pid": 4242,
        "python_version": "3.12.0",
        "working_dir": "/work",
    },
    "hardware": {"cpu_count_logical": 8},
    "toolchains": {
        "baseline": {"selector": "+nightly", "version": "rustc 1.80.0-nightly"},
        "candidate": {"selector": "+stage1", "version": "unknown"},
    },
    "configuration": {"workers": 10},
}


def mock_orchestrator(run_result=None, run_side_effect=None):
    orchestrator = MagicMock()
    orchestrator.run.return_value = run_result
    orchestrator.run.side_effect = run_side_effect
    orchestrator.stats.as_dict.return_value = {"cases_executed": 12}
    orchestrator.health_monitor.get_summary.return_value = {}
    return orchestrator


class TestConfigFromArgs(unittest.TestCase):
    def test_defaults(self):
        config = config_from_args(_build_parser().parse_args([]))
        self.assertEqual(config.workers, DEFAULT_WORKERS)
        self.assertIsNone(config.seed)
        self.assertFalse(config.halt_on_candidate_crash)
        self.assertEqual(config.execution.compiler, "rustc")
        self.assertEqual(config.execution.baseline.selector, "+nightly")
        self.assertEqual(config.execution.candidate.selector, "+stage1")
        self.assertFalse(config.execution.parallel_variants)

    def test_overrides(self):
        args = _build_parser().parse_args(
            [
                "--workers", "3",
                "--seed", "99",
                "--compiler", "/opt/rustc",
                "--baseline", "+beta",
                "--candidate", "+dev",
                "--scratch-dir", "/scratch",
                "--parallel-variants",
                "--halt-on-candidate-crash",
                "--health-log", "health.jsonl",
            ]
        )
        config = config_from_args(args)
        self.assertEqual(config.workers, 3)
        self.assertEqual(config.seed, 99)
        self.assertEqual(config.execution.compiler, "/opt/rustc")
        self.assertEqual(config.execution.baseline.selector, "+beta")
        self.assertEqual(config.execution.candidate.selector, "+dev")
        self.assertEqual(config.execution.scratch_dir, Path("/scratch"))
        self.assertTrue(config.execution.parallel_variants)
        self.assertTrue(config.halt_on_candidate_crash)
        self.assertEqual(config.health_log, Path("health.jsonl"))


class TestFormatting(unittest.TestCase):
    def test_run_header_lists_toolchains(self):
        header = _format_run_header(METADATA, None)
        self.assertIn("ICEDIFF FUZZER RUN", header)
        self.assertIn("fuzzbox", header)
        self.assertIn("+nightly (rustc 1.80.0-nightly)", header)
        self.assertIn("+stage1 (unknown)", header)
        self.assertIn("(console only)", header)

    def test_run_summary_rate(self):
        summary = _format_run_summary("Completed", 4.0, {"cases_executed": 10}, {})
        self.assertIn("FUZZING RUN SUMMARY", summary)
        self.assertIn("Cases per Second:  2.50", summary)

    def test_run_summary_zero_duration(self):
        summary = _format_run_summary("Completed", 0.0, {}, {})
        self.assertIn("Cases per Second:  0.00", summary)


@patch("icediff.orchestrator.collect_run_metadata", return_value=METADATA)
@patch("icediff.orchestrator.Orchestrator")
class TestMain(unittest.TestCase):
    def test_halt_exits_with_failure(self, mock_cls, _mock_metadata):
        mock_cls.return_value = mock_orchestrator(
            FlowControl(should_halt=True, reason="BOTH ICE (case 3): /tmp/fuzz3.rs")
        )
        with patch("sys.stderr", new_callable=io.StringIO) as mock_stderr:
            status = main(["--workers", "2"])

        self.assertEqual(status, 1)
        output = mock_stderr.getvalue()
        self.assertIn("Starting 2 workers", output)
        self.assertIn("Halted: BOTH ICE (case 3)", output)
        self.assertIn("FUZZING RUN SUMMARY", output)
        self.assertEqual(mock_cls.call_args.args[0].workers, 2)

    def test_run_without_halt_exits_cleanly(self, mock_cls, _mock_metadata):
        mock_cls.return_value = mock_orchestrator(CONTINUE)
        with patch("sys.stderr", new_callable=io.StringIO):
            self.assertEqual(main([]), 0)

    def test_keyboard_interrupt_stops_workers(self, mock_cls, _mock_metadata):
        orchestrator = mock_orchestrator(run_side_effect=KeyboardInterrupt)
        mock_cls.return_value = orchestrator
        with patch("sys.stderr", new_callable=io.StringIO) as mock_stderr:
            status = main([])

        self.assertEqual(status, 0)
        orchestrator.stop.assert_called_once()
        self.assertIn("stopped by user", mock_stderr.getvalue())

    def test_unexpected_error_exits_with_failure(self, mock_cls, _mock_metadata):
        mock_cls.return_value = mock_orchestrator(run_side_effect=RuntimeError("boom"))
        with patch("sys.stderr", new_callable=io.StringIO) as mock_stderr:
            status = main([])

        self.assertEqual(status, 1)
        self.assertIn("unexpected error occurred in the orchestrator: boom", mock_stderr.getvalue())

    def test_invalid_worker_count_is_a_usage_error(self, mock_cls, _mock_metadata):
        with patch("sys.stderr", new_callable=io.StringIO) as mock_stderr:
            with self.assertRaises(SystemExit) as cm:
                main(["--workers", "0"])

        self.assertEqual(cm.exception.code, 2)
        self.assertIn("workers", mock_stderr.getvalue())
        mock_cls.assert_not_called()

    def test_log_file_captures_transcript(self, mock_cls, _mock_metadata):
        mock_cls.return_value = mock_orchestrator(CONTINUE)
        with tempfile.TemporaryDirectory() as temp_dir:
            log_path = Path(temp_dir) / "run.log"
            with patch("sys.stdout", new_callable=io.StringIO) as mock_stdout:
                with patch("sys.stderr", new_callable=io.StringIO) as mock_stderr:
                    status = main(["--log-file", str(log_path)])
                    self.assertIs(sys.stderr, mock_stderr)
                self.assertIn("ICEDIFF FUZZER RUN", mock_stdout.getvalue())

            log_text = log_path.read_text(encoding="utf-8")

        self.assertEqual(status, 0)
        self.assertIn("ICEDIFF FUZZER RUN", log_text)
        self.assertIn("FUZZING RUN SUMMARY", log_text)
        self.assertIn("Full log saved to", mock_stderr.getvalue())


if __name__ == "__main__":
    unittest.main()
