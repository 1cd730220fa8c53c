# Copyright (c) Syntropy Systems
"""Per-run trial aggregation and early termination."""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_MAX_EXAMPLE_FAILURES = 5

# Sentinel for "no number of successes is enough"
UNREACHABLE = 2**63 - 1


class BudgetScope(str, Enum):
    """Organizational scope a budget is attached to."""

    RUN = "run"
    GROUP = "group"
    PROCESS = "process"


class TerminationReason(Enum):
    """Why a run stopped taking samples."""

    COMPLETED = ("completed", None, "All planned samples executed")
    IMPOSSIBILITY = (
        "impossibility",
        None,
        "Required pass rate can no longer be reached",
    )
    ABORTED = ("aborted", None, "Run aborted by a sample error")
    RUN_TIME_BUDGET_EXHAUSTED = (
        "run_time_budget_exhausted",
        BudgetScope.RUN,
        "Run time budget exhausted",
    )
    RUN_UNIT_BUDGET_EXHAUSTED = (
        "run_unit_budget_exhausted",
        BudgetScope.RUN,
        "Run cost unit budget exhausted",
    )
    GROUP_TIME_BUDGET_EXHAUSTED = (
        "group_time_budget_exhausted",
        BudgetScope.GROUP,
        "Group time budget exhausted",
    )
    GROUP_UNIT_BUDGET_EXHAUSTED = (
        "group_unit_budget_exhausted",
        BudgetScope.GROUP,
        "Group cost unit budget exhausted",
    )
    PROCESS_TIME_BUDGET_EXHAUSTED = (
        "process_time_budget_exhausted",
        BudgetScope.PROCESS,
        "Process time budget exhausted",
    )
    PROCESS_UNIT_BUDGET_EXHAUSTED = (
        "process_unit_budget_exhausted",
        BudgetScope.PROCESS,
        "Process cost unit budget exhausted",
    )

    def __init__(self, key: str, scope: BudgetScope | None, description: str) -> None:
        self.key = key
        self.scope = scope
        self.description = description

    @property
    def is_budget_exhaustion(self) -> bool:
        return self.scope is not None

    @property
    def is_time(self) -> bool:
        return self.key.endswith("_time_budget_exhausted")

    @property
    def is_units(self) -> bool:
        return self.key.endswith("_unit_budget_exhausted")

    @property
    def is_early_termination(self) -> bool:
        """Anything other than running every planned sample."""
        return self is not TerminationReason.COMPLETED

    @classmethod
    def for_budget(cls, scope: BudgetScope, time_based: bool) -> TerminationReason:
        """Reason for exhausting the given scope's time or unit budget."""
        dimension = "time" if time_based else "unit"
        return cls[f"{scope.name}_{dimension.upper()}_BUDGET_EXHAUSTED"]


@dataclass(frozen=True)
class Trial:
    """One sample's outcome."""

    passed: bool
    failure_detail: str | None = None


class TrialAggregator:
    """Running counts for one run. Single writer, no locking.

    Only the first ``max_example_failures`` failure details are kept, but
    ``failures`` always reports the true total.
    """

    planned_count: int
    max_example_failures: int
    successes: int
    failures: int
    example_failures: list[str]
    termination_reason: TerminationReason | None
    termination_details: str | None
    forced_failure: bool

    def __init__(
        self,
        planned_count: int,
        max_example_failures: int = DEFAULT_MAX_EXAMPLE_FAILURES,
    ) -> None:
        if planned_count <= 0:
            msg = f"planned_count must be positive, got {planned_count}"
            raise ValueError(msg)
        if max_example_failures < 0:
            msg = f"max_example_failures must be >= 0, got {max_example_failures}"
            raise ValueError(msg)
        self.planned_count = planned_count
        self.max_example_failures = max_example_failures
        self.successes = 0
        self.failures = 0
        self.example_failures = []
        self.termination_reason = None
        self.termination_details = None
        self.forced_failure = False
        self._start = time.monotonic()
        self._end: float | None = None

    @property
    def executed(self) -> int:
        return self.successes + self.failures

    @property
    def remaining(self) -> int:
        return self.planned_count - self.executed

    @property
    def observed_pass_rate(self) -> float:
        """Successes over executed samples, 0.0 before any sample ran."""
        if self.executed == 0:
            return 0.0
        return self.successes / self.executed

    @property
    def elapsed_ms(self) -> int:
        end = self._end if self._end is not None else time.monotonic()
        return int((end - self._start) * 1000)

    @property
    def is_terminated(self) -> bool:
        return self.termination_reason is not None

    @property
    def was_terminated_early(self) -> bool:
        return (
            self.termination_reason is not None
            and self.termination_reason.is_early_termination
        )

    @property
    def is_complete(self) -> bool:
        return self.executed >= self.planned_count

    def _check_recordable(self) -> None:
        if self.termination_reason is not None:
            msg = (
                "Cannot record a trial after the run terminated "
                f"({self.termination_reason.key})"
            )
            raise RuntimeError(msg)
        if self.executed >= self.planned_count:
            msg = f"All {self.planned_count} planned samples already recorded"
            raise RuntimeError(msg)

    def record(self, trial: Trial) -> None:
        """Record a trial outcome."""
        if trial.passed:
            self.record_success()
        else:
            self.record_failure(trial.failure_detail)

    def record_success(self) -> None:
        self._check_recordable()
        self.successes += 1

    def record_failure(self, detail: str | None = None) -> None:
        self._check_recordable()
        self.failures += 1
        if detail is not None and len(self.example_failures) < self.max_example_failures:
            self.example_failures.append(detail)

    def set_terminated(self, reason: TerminationReason, details: str | None = None) -> None:
        """Fix the terminal state. The first reason set wins."""
        if self.termination_reason is not None:
            return
        self.termination_reason = reason
        self.termination_details = details
        self._end = time.monotonic()

    def set_completed(self) -> None:
        self.set_terminated(TerminationReason.COMPLETED)

    def set_forced_failure(self, forced: bool = True) -> None:
        self.forced_failure = forced


def required_successes(planned_count: int, min_pass_rate: float) -> int:
    """``ceil(planned_count * min_pass_rate)``; unreachable for NaN."""
    if math.isnan(min_pass_rate):
        return UNREACHABLE
    return math.ceil(planned_count * min_pass_rate)


@dataclass(frozen=True)
class TerminationDecision:
    """A decision to stop a run before all samples execute."""

    reason: TerminationReason
    explanation: str


class EarlyTerminationEvaluator:
    """Stops a run once the required pass rate is out of reach.

    A run that can only pass is allowed to run to completion.
    """

    def __init__(self, planned_count: int, min_pass_rate: float) -> None:
        self.planned_count = planned_count
        self.min_pass_rate = min_pass_rate
        self.required = required_successes(planned_count, min_pass_rate)

    def evaluate(self, successes: int, executed: int) -> TerminationDecision | None:
        """Return an Impossibility decision if the run can no longer pass."""
        remaining = self.planned_count - executed
        max_possible = successes + remaining
        if max_possible >= self.required:
            return None
        explanation = (
            f"After {executed} samples with {successes} successes, maximum "
            f"possible successes ({successes} + {remaining} = {max_possible}) "
            f"is less than required ({self.required})"
        )
        logger.info("Terminating early: %s", explanation)
        return TerminationDecision(TerminationReason.IMPOSSIBILITY, explanation)

    def failures_until_impossibility(self, successes: int, executed: int) -> int:
        """How many more failures the run can absorb before it cannot pass."""
        max_possible = successes + self.planned_count - executed
        return max(0, max_possible - self.required)
