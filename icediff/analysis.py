"""
Divergence classification.

Compares the outcomes of the baseline and candidate variants for one case
and decides what the fuzzer should do about it.
"""

from dataclasses import dataclass
from enum import Enum

from icediff.execution import Outcome


class Verdict(str, Enum):
    UNINTERESTING = "UNINTERESTING"
    BASELINE_ONLY_CRASH = "BASELINE_ONLY_CRASH"
    CANDIDATE_ONLY_CRASH = "CANDIDATE_ONLY_CRASH"
    BOTH_CRASHED = "BOTH_CRASHED"
    UNEXPECTED_EXIT = "UNEXPECTED_EXIT"  # The exit code contract was violated.

    @property
    def is_one_sided(self) -> bool:
        return self in (Verdict.BASELINE_ONLY_CRASH, Verdict.CANDIDATE_ONLY_CRASH)


class Action(str, Enum):
    DISCARD = "DISCARD"  # delete the staged file, emit progress, continue
    REPORT = "REPORT"  # print a report, keep the file, continue
    HALT = "HALT"  # print a report, keep the file, stop the whole run


# Full table over (baseline, candidate). Any UNEXPECTED outcome wins.
_VERDICTS: dict[tuple[Outcome, Outcome], Verdict] = {
    (Outcome.NOT_CRASHED, Outcome.NOT_CRASHED): Verdict.UNINTERESTING,
    (Outcome.CRASHED, Outcome.NOT_CRASHED): Verdict.BASELINE_ONLY_CRASH,
    (Outcome.NOT_CRASHED, Outcome.CRASHED): Verdict.CANDIDATE_ONLY_CRASH,
    (Outcome.CRASHED, Outcome.CRASHED): Verdict.BOTH_CRASHED,
}


def classify(baseline: Outcome, candidate: Outcome) -> Verdict:
    """Map a pair of outcomes onto exactly one verdict."""
    if Outcome.UNEXPECTED in (baseline, candidate):
        return Verdict.UNEXPECTED_EXIT
    return _VERDICTS[(baseline, candidate)]


@dataclass(frozen=True)
class DivergencePolicy:
    """
    Decides the action for each verdict.

    One-sided crashes are independent findings and the run continues past
    them. Symmetric crashes and unexpected exit codes need a human, so the
    run stops. `halt_on_candidate_crash` also stops on candidate-only
    crashes.
    """

    halt_on_candidate_crash: bool = False

    def action_for(self, verdict: Verdict) -> Action:
        if verdict is Verdict.UNINTERESTING:
            return Action.DISCARD
        if verdict is Verdict.BASELINE_ONLY_CRASH:
            return Action.REPORT
        if verdict is Verdict.CANDIDATE_ONLY_CRASH:
            return Action.HALT if self.halt_on_candidate_crash else Action.REPORT
        return Action.HALT


_REPORT_LABELS = {
    Verdict.BASELINE_ONLY_CRASH: "ICE in {baseline} only",
    Verdict.CANDIDATE_ONLY_CRASH: "ICE in {candidate} only",
    Verdict.BOTH_CRASHED: "BOTH ICE",
    Verdict.UNEXPECTED_EXIT: "UNEXPECTED EXIT CODE",
}


def report_line(
    verdict: Verdict,
    case_id: int,
    path: object,
    baseline_name: str = "baseline",
    candidate_name: str = "candidate",
    detail: str = "",
) -> str:
    """Build the one-line report printed for an interesting case."""
    if verdict is Verdict.UNINTERESTING:
        raise ValueError("uninteresting cases are not reported")
    label = _REPORT_LABELS[verdict].format(baseline=baseline_name, candidate=candidate_name)
    line = f"{label} (case {case_id}): {path}"
    if detail:
        line += f" [{detail}]"
    return line
