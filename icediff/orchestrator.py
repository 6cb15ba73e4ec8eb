"""
This module contains the worker pool that drives an icediff run.

Each Worker runs the generate -> render -> stage -> execute -> classify
pipeline in a loop, one case per iteration, and reports a FlowControl value
for every iteration. The Orchestrator starts a fixed number of workers once,
watches for the first halt and performs the single, coordinated shutdown.
"""

import argparse
import json
import logging
import queue
import sys
import threading
import traceback
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from textwrap import dedent

from icediff.analysis import Action, DivergencePolicy, Verdict, classify, report_line
from icediff.artifacts import ArtifactManager, ProgressReporter
from icediff.config import DEFAULT_WORKERS, ExecutionConfig, FuzzConfig, Variant
from icediff.execution import DualResult, ExecutionManager, Outcome, VariantRunner
from icediff.generator import CaseGenerator
from icediff.health import HealthMonitor
from icediff.metadata import collect_run_metadata
from icediff.render import TestCase, build_test_case
from icediff.utils import CaseCounter, RunStats, TeeLogger

# How often the driver wakes up to notice an operator interrupt.
RESULT_POLL_INTERVAL = 0.5


@dataclass(frozen=True)
class FlowControl:
    """What a worker wants to happen after one iteration."""

    should_halt: bool = False
    reason: str = ""
    verdict: Verdict | None = None
    case: TestCase | None = None
    error: BaseException | None = None


CONTINUE = FlowControl()


class Worker:
    """
    One independent fuzzing loop.

    A worker owns its random source and its staged files. The only state it
    shares with other workers is the case counter, the output streams and
    the halt event.
    """

    def __init__(
        self,
        worker_id: int,
        config: FuzzConfig,
        counter: CaseCounter,
        generator: CaseGenerator,
        execution_manager: ExecutionManager,
        artifact_manager: ArtifactManager,
        reporter: ProgressReporter,
        stats: RunStats,
        health_monitor: HealthMonitor,
        halt_event: threading.Event,
        runner: VariantRunner | None = None,
    ):
        self.worker_id = worker_id
        self.config = config
        self.counter = counter
        self.generator = generator
        self.execution_manager = execution_manager
        self.artifact_manager = artifact_manager
        self.reporter = reporter
        self.stats = stats
        self.health_monitor = health_monitor
        self.halt_event = halt_event
        self.runner = runner
        self.policy = DivergencePolicy(halt_on_candidate_crash=config.halt_on_candidate_crash)

    def next_case(self) -> TestCase:
        body = self.generator.generate()
        return build_test_case(
            self.counter.next(),
            body.parameters,
            body.arguments,
            self.config.execution.scratch_dir,
            self.config.generation.type_count,
        )

    def run_once(self) -> FlowControl:
        """
        Generate, compile and classify a single case.

        Raises:
            OSError: If staging, deleting or launching a compiler fails.
        """
        case = self.next_case()
        self.artifact_manager.stage(case)
        result = self.execution_manager.execute(case.path, self.runner)
        verdict = classify(result.baseline.outcome, result.candidate.outcome)
        self.stats.record_verdict(verdict)
        return self._act_on_verdict(case, result, verdict)

    def _act_on_verdict(self, case: TestCase, result: DualResult, verdict: Verdict) -> FlowControl:
        action = self.policy.action_for(verdict)
        if action is Action.DISCARD:
            self.artifact_manager.discard(case)
            self.reporter.progress()
            return CONTINUE

        self._record_finding(case, result, verdict)
        line = report_line(
            verdict,
            case.identifier,
            case.path,
            baseline_name=result.baseline.variant.name,
            candidate_name=result.candidate.variant.name,
            detail=_unexpected_detail(result) if verdict is Verdict.UNEXPECTED_EXIT else "",
        )
        if action is Action.REPORT:
            self.reporter.report(line)
            return CONTINUE

        # Print the report and stop all progress output in one step, so no
        # dot from another worker can follow the halting report.
        self.reporter.report_and_close(line)
        self.halt_event.set()
        return FlowControl(should_halt=True, reason=line, verdict=verdict, case=case)

    def _record_finding(self, case: TestCase, result: DualResult, verdict: Verdict) -> None:
        if verdict is Verdict.BASELINE_ONLY_CRASH:
            self.health_monitor.record_one_sided_crash(
                result.baseline.variant.name, case.identifier, case.path
            )
        elif verdict is Verdict.CANDIDATE_ONLY_CRASH:
            self.health_monitor.record_one_sided_crash(
                result.candidate.variant.name, case.identifier, case.path
            )
        elif verdict is Verdict.BOTH_CRASHED:
            self.health_monitor.record_both_crashed(case.identifier, case.path)
        elif verdict is Verdict.UNEXPECTED_EXIT:
            for variant_result in (result.baseline, result.candidate):
                if variant_result.outcome is Outcome.UNEXPECTED:
                    self.health_monitor.record_unexpected_exit(
                        variant_result.variant.name,
                        variant_result.returncode,
                        case.identifier,
                        case.path,
                    )

    def run(self) -> FlowControl:
        """
        Loop until this worker halts or another worker has halted the run.

        Any exception raised by an iteration ends the loop with a halt: there
        is no retry policy for I/O or process launch failures.
        """
        while not self.halt_event.is_set():
            try:
                flow = self.run_once()
            except Exception as e:
                return self._infrastructure_failure(e)
            if flow.should_halt:
                return flow
        return CONTINUE

    def _infrastructure_failure(self, error: Exception) -> FlowControl:
        self.stats.record_infrastructure_error()
        self.health_monitor.record_infrastructure_error(self.worker_id, repr(error))
        self.reporter.report_and_close(
            f"[!!!] Worker {self.worker_id} stopped by an infrastructure error: {error!r}"
        )
        traceback.print_exception(type(error), error, error.__traceback__, file=sys.stderr)
        self.halt_event.set()
        return FlowControl(should_halt=True, reason=repr(error), error=error)


def _unexpected_detail(result: DualResult) -> str:
    codes = [
        f"{r.variant.name} exited {r.returncode}"
        for r in (result.baseline, result.candidate)
        if r.outcome is Outcome.UNEXPECTED
    ]
    return ", ".join(codes)


class Orchestrator:
    """
    Run a fixed pool of workers until one of them halts.

    Workers run on daemon threads and push their final FlowControl into a
    fan-in queue. The first halt sets the shared halt event and closes the
    progress stream. Workers still blocked on a compiler are not waited for.
    """

    def __init__(
        self,
        config: FuzzConfig,
        execution_manager: ExecutionManager | None = None,
        reporter: ProgressReporter | None = None,
        health_monitor: HealthMonitor | None = None,
        runner: VariantRunner | None = None,
    ):
        self.config = config
        self.execution_manager = execution_manager or ExecutionManager(config.execution)
        self.artifact_manager = ArtifactManager(config.execution.scratch_dir)
        self.reporter = reporter or ProgressReporter()
        self.health_monitor = health_monitor or HealthMonitor(config.health_log)
        self.counter = CaseCounter()
        self.stats = RunStats()
        self.halt_event = threading.Event()
        self._results: queue.Queue[tuple[int, FlowControl]] = queue.Queue()

        self.workers = [
            Worker(
                worker_id=worker_id,
                config=config,
                counter=self.counter,
                generator=CaseGenerator.for_worker(worker_id, config.seed, config.generation),
                execution_manager=self.execution_manager,
                artifact_manager=self.artifact_manager,
                reporter=self.reporter,
                stats=self.stats,
                health_monitor=self.health_monitor,
                halt_event=self.halt_event,
                runner=runner,
            )
            for worker_id in range(config.workers)
        ]
        self._threads: list[threading.Thread] = []

    def _worker_main(self, worker: Worker) -> None:
        self._results.put((worker.worker_id, worker.run()))

    def start(self) -> None:
        for worker in self.workers:
            thread = threading.Thread(
                target=self._worker_main,
                args=(worker,),
                name=f"icediff-worker-{worker.worker_id}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

    def stop(self) -> None:
        """Stop all workers after their current iteration and silence progress output."""
        self.halt_event.set()
        self.reporter.close()

    def run(self) -> FlowControl:
        """
        Start the pool and block until a worker halts.

        Returns:
            The FlowControl of the first worker that halted, or CONTINUE if
            every worker ended without halting (only after an external stop).
        """
        self.start()
        finished = 0
        try:
            while finished < len(self.workers):
                try:
                    _, flow = self._results.get(timeout=RESULT_POLL_INTERVAL)
                except queue.Empty:
                    continue
                finished += 1
                if flow.should_halt:
                    return flow
            return CONTINUE
        finally:
            self.stop()


def _format_run_header(metadata: dict, log_path: Path | None) -> str:
    env = metadata["environment"]
    toolchains = "\n".join(
        f"- {name.capitalize() + ':':<19}{info['selector']} ({info['version']})"
        for name, info in metadata["toolchains"].items()
    )
    return dedent(f"""
================================================================================
ICEDIFF FUZZER RUN
================================================================================
- Hostname:          {env["hostname"]}
- Platform:          {env["os"]}
- Process ID:        {env["pid"]}
- Python Version:    {env["python_version"]}
- Working Dir:       {env["working_dir"]}
- Log File:          {log_path or "(console only)"}
- Command:           {" ".join(sys.argv)}
{toolchains}
--------------------------------------------------------------------------------
Configuration:
{json.dumps(metadata["configuration"], indent=4)}
Hardware:
{json.dumps(metadata["hardware"], indent=4)}
================================================================================
""")


def _format_run_summary(
    termination_reason: str, duration_secs: float, stats: dict, health: dict[str, int]
) -> str:
    executed = stats.get("cases_executed", 0)
    cases_per_sec = executed / duration_secs if duration_secs > 0 else 0
    return dedent(f"""
================================================================================
FUZZING RUN SUMMARY
================================================================================
- Termination:       {termination_reason}
- Total Duration:    {duration_secs:.1f}s
- Cases per Second:  {cases_per_sec:.2f}

--- Run Stats ---
{json.dumps(stats, indent=4)}

--- Events ---
{json.dumps(health, indent=4, sort_keys=True)}
================================================================================
""")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="icediff",
        description=(
            "icediff: a differential fuzzer that hunts internal compiler errors "
            "appearing in only one of two compiler builds."
        ),
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=DEFAULT_WORKERS,
        help=f"Number of concurrent workers. (Default: {DEFAULT_WORKERS})",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Master seed; each worker's random source is derived from it.",
    )
    parser.add_argument(
        "--compiler",
        type=str,
        default="rustc",
        help="Compiler program to invoke. (Default: rustc)",
    )
    parser.add_argument(
        "--baseline",
        type=str,
        default="+nightly",
        help="Toolchain selector of the baseline build. (Default: +nightly)",
    )
    parser.add_argument(
        "--candidate",
        type=str,
        default="+stage1",
        help="Toolchain selector of the candidate build. (Default: +stage1)",
    )
    parser.add_argument(
        "--scratch-dir",
        type=Path,
        default=None,
        help="Directory for staged source files. (Default: the system temp dir)",
    )
    parser.add_argument(
        "--parallel-variants",
        action="store_true",
        help="Run the baseline and candidate compilers concurrently for each case.",
    )
    parser.add_argument(
        "--halt-on-candidate-crash",
        action="store_true",
        help="Stop the run when only the candidate crashes, instead of reporting and continuing.",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write the full console transcript to this file.",
    )
    parser.add_argument(
        "--health-log",
        type=Path,
        default=None,
        help="Append findings and adverse events as JSON lines to this file.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show per-invocation debug logging.",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> FuzzConfig:
    execution = ExecutionConfig(
        compiler=args.compiler,
        baseline=Variant("baseline", args.baseline),
        candidate=Variant("candidate", args.candidate),
        parallel_variants=args.parallel_variants,
    )
    if args.scratch_dir is not None:
        execution.scratch_dir = args.scratch_dir
    return FuzzConfig(
        workers=args.workers,
        seed=args.seed,
        halt_on_candidate_crash=args.halt_on_candidate_crash,
        execution=execution,
        log_file=args.log_file,
        health_log=args.health_log,
    )


def main(argv: list[str] | None = None) -> int:
    """Parse command-line arguments and run the fuzzer. Returns the exit status."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        config = config_from_args(args)
    except ValueError as e:
        parser.error(str(e))

    logging.basicConfig(
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        level=logging.DEBUG if args.verbose else logging.WARNING,
    )

    original_stdout = sys.stdout
    original_stderr = sys.stderr
    tee_logger = None
    if config.log_file is not None:
        print(f"[+] Starting icediff. Full log will be at: {config.log_file}", file=sys.stderr)
        tee_logger = TeeLogger(config.log_file, original_stdout)
        sys.stdout = tee_logger
        sys.stderr = tee_logger

    run_start_time = datetime.now()
    exit_status = 0
    termination_reason = "Completed"
    orchestrator = None
    try:
        orchestrator = Orchestrator(config)
        metadata = collect_run_metadata(config, orchestrator.execution_manager)
        print(_format_run_header(metadata, config.log_file), file=sys.stderr)
        print(f"[+] Starting {config.workers} workers. Press Ctrl+C to stop.", file=sys.stderr)

        flow = orchestrator.run()
        if flow.should_halt:
            exit_status = 1
            termination_reason = f"Halted: {flow.reason}"
    except KeyboardInterrupt:
        if orchestrator is not None:
            orchestrator.stop()
        print("\n[!] Fuzzing stopped by user.", file=sys.stderr)
        termination_reason = "KeyboardInterrupt"
    except Exception as e:
        exit_status = 1
        termination_reason = f"Error: {e}"
        print(f"\n[!!!] An unexpected error occurred in the orchestrator: {e}", file=original_stderr)
        traceback.print_exc(file=original_stderr)
    finally:
        if orchestrator is not None:
            duration = (datetime.now() - run_start_time).total_seconds()
            print(
                _format_run_summary(
                    termination_reason,
                    duration,
                    orchestrator.stats.as_dict(),
                    orchestrator.health_monitor.get_summary(),
                ),
                file=sys.stderr,
            )
        if tee_logger is not None:
            tee_logger.close()
            sys.stdout = original_stdout
            sys.stderr = original_stderr
            print(
                f"[+] Fuzzing session finished. Full log saved to: {config.log_file}",
                file=sys.stderr,
            )

    return exit_status


if __name__ == "__main__":
    sys.exit(main())
