# Copyright (c) Syntropy Systems
"""Final pass/fail decision and the text that justifies it."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from trialgate.budget.orchestrator import forced_failure_message

if TYPE_CHECKING:
    from trialgate.trials import TrialAggregator

EXAMPLE_FAILURE_WIDTH = 80


@dataclass(frozen=True)
class StatisticalContext:
    """Numbers a failure message cites. Baseline fields are None in legacy mode."""

    observed_rate: float
    successes: int
    samples: int
    threshold: float
    confidence: float | None = None
    baseline_rate: float | None = None
    baseline_samples: int | None = None
    spec_id: str | None = None

    @classmethod
    def legacy(
        cls,
        observed_rate: float,
        successes: int,
        samples: int,
        threshold: float,
    ) -> StatisticalContext:
        """Context for a run without baseline data."""
        return cls(observed_rate, successes, samples, threshold)

    @property
    def is_spec_driven(self) -> bool:
        return (
            self.confidence is not None
            and not math.isnan(self.confidence)
            and self.baseline_rate is not None
            and self.baseline_samples is not None
        )

    @property
    def alpha(self) -> float | None:
        if self.confidence is None or math.isnan(self.confidence):
            return None
        return 1.0 - self.confidence


@dataclass(frozen=True)
class Verdict:
    """Outcome of a run."""

    passed: bool
    observed_rate: float
    threshold: float
    forced_failure: bool
    message: str
    report_entries: dict[str, str] = field(default_factory=dict)


def is_passing(aggregator: TrialAggregator, threshold: float) -> bool:
    """``not forced_failure and observed_pass_rate >= threshold``."""
    if aggregator.forced_failure:
        return False
    return aggregator.observed_pass_rate >= threshold


def _truncate(text: str, width: int = EXAMPLE_FAILURE_WIDTH) -> str:
    text = " ".join(text.split())
    if len(text) <= width:
        return text
    return text[: width - 3] + "..."


def failure_summary(context: StatisticalContext) -> str:
    """Headline of a failing verdict."""
    observed = (
        f"Observed pass rate={context.observed_rate:.1%} "
        f"({context.successes}/{context.samples}) < min pass rate={context.threshold:.1%}"
    )
    if not context.is_spec_driven:
        return f"Probabilistic test FAILED. {observed}."

    text = (
        f"Probabilistic test FAILED with {context.confidence:.1%} confidence "
        f"(alpha={context.alpha:.3f}). {observed}. "
        f"Baseline={context.baseline_rate:.1%} (N={context.baseline_samples})"
    )
    if context.spec_id:
        text += f", spec={context.spec_id}"
    return text


def execution_details(aggregator: TrialAggregator) -> str:
    """Counts, termination and example failures for a report."""
    lines = [
        f"  Samples executed: {aggregator.executed} of {aggregator.planned_count}",
        f"  Successes: {aggregator.successes}",
        f"  Failures: {aggregator.failures}",
    ]
    reason = aggregator.termination_reason
    if reason is not None and reason.is_early_termination:
        lines.append(f"  Terminated: {reason.description}")
        if aggregator.termination_details:
            lines.append(f"  Reason: {aggregator.termination_details}")
    lines.append(f"  Elapsed: {aggregator.elapsed_ms}ms")

    examples = aggregator.example_failures
    if examples:
        lines.append(
            f"  Example failures (showing {len(examples)} of {aggregator.failures}):"
        )
        lines.extend(f"    - {_truncate(e)}" for e in examples)
    return "\n".join(lines)


def success_message(aggregator: TrialAggregator, threshold: float) -> str:
    return (
        f"passed: {aggregator.observed_pass_rate:.1%} >= {threshold:.1%} "
        f"({aggregator.successes}/{aggregator.executed} samples succeeded)"
    )


def decide(
    aggregator: TrialAggregator,
    threshold: float,
    context: StatisticalContext | None = None,
) -> Verdict:
    """Judge a finished run."""
    passed = is_passing(aggregator, threshold)
    rate = aggregator.observed_pass_rate
    if context is None:
        context = StatisticalContext.legacy(
            rate, aggregator.successes, aggregator.executed, threshold
        )

    if passed:
        message = success_message(aggregator, threshold)
    elif aggregator.forced_failure and aggregator.termination_reason is not None:
        message = forced_failure_message(
            aggregator.termination_reason,
            aggregator.termination_details,
            aggregator,
            threshold,
        )
    else:
        message = f"{failure_summary(context)}\n{execution_details(aggregator)}"

    entries = {
        "verdict": "PASS" if passed else "FAIL",
        "samples_planned": str(aggregator.planned_count),
        "samples_executed": str(aggregator.executed),
        "successes": str(aggregator.successes),
        "failures": str(aggregator.failures),
        "observed_pass_rate": f"{rate:.4f}",
        "min_pass_rate": f"{threshold:.4f}",
        "elapsed_ms": str(aggregator.elapsed_ms),
    }
    if aggregator.termination_reason is not None:
        entries["termination_reason"] = aggregator.termination_reason.key
    if context.is_spec_driven:
        entries["confidence"] = f"{context.confidence:.4f}"
        entries["baseline_rate"] = f"{context.baseline_rate:.4f}"
        entries["baseline_samples"] = str(context.baseline_samples)
    if context.spec_id:
        entries["spec_id"] = context.spec_id

    return Verdict(
        passed=passed,
        observed_rate=rate,
        threshold=threshold,
        forced_failure=aggregator.forced_failure,
        message=message,
        report_entries=entries,
    )
