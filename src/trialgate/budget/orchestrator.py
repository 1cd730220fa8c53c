# Copyright (c) Syntropy Systems
"""Ordered budget checks across process, group and run scope."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from typing_extensions import TypeAlias

from trialgate.budget.monitor import RunBudgetMonitor, SharedBudgetMonitor, UnitMode
from trialgate.trials import BudgetScope, TerminationReason

if TYPE_CHECKING:
    from trialgate.budget.recorder import CostRecorder
    from trialgate.config import BudgetExhaustedBehavior
    from trialgate.trials import TrialAggregator

logger = logging.getLogger(__name__)

Monitor: TypeAlias = Union[RunBudgetMonitor, SharedBudgetMonitor]


@dataclass(frozen=True)
class BudgetExhaustion:
    """A budget ceiling that stops the run."""

    reason: TerminationReason
    behavior: BudgetExhaustedBehavior
    message: str


class BudgetOrchestrator:
    """Checks every budget scope in precedence order around each sample.

    Before a sample: process time, process units, group time, group units,
    run time, then the run's static charge pre-check. After a sample (dynamic
    mode only): process units, group units, run units. The first hit wins.
    """

    def __init__(
        self,
        run: RunBudgetMonitor,
        group: SharedBudgetMonitor | None = None,
        process: SharedBudgetMonitor | None = None,
        recorder: CostRecorder | None = None,
    ) -> None:
        self.run = run
        self.group = group
        self.process = process
        self.recorder = recorder

    def _monitor_for(self, scope: BudgetScope) -> Monitor | None:
        if scope is BudgetScope.PROCESS:
            return self.process
        if scope is BudgetScope.GROUP:
            return self.group
        return self.run

    def _exhausted(self, reason: TerminationReason) -> BudgetExhaustion:
        exhaustion = BudgetExhaustion(
            reason=reason,
            behavior=self.behavior_for(reason),
            message=self.exhaustion_message(reason),
        )
        logger.info("%s", exhaustion.message)
        return exhaustion

    def check_before_sample(self) -> BudgetExhaustion | None:
        """Return the highest-precedence exhaustion blocking the next sample."""
        for shared in (self.process, self.group):
            if shared is None:
                continue
            if shared.is_time_exhausted():
                return self._exhausted(TerminationReason.for_budget(shared.scope, True))
            if shared.is_units_exhausted():
                return self._exhausted(TerminationReason.for_budget(shared.scope, False))

        if self.run.is_time_exhausted():
            return self._exhausted(TerminationReason.RUN_TIME_BUDGET_EXHAUSTED)
        if self.run.would_exceed_static_budget():
            return self._exhausted(TerminationReason.RUN_UNIT_BUDGET_EXHAUSTED)
        return None

    def record_and_propagate(self) -> int:
        """Charge the finished sample's units and push them to shared scopes."""
        if self.run.unit_mode is UnitMode.DYNAMIC and self.recorder is not None:
            units = self.recorder.finalize_sample()
        elif self.run.unit_mode is UnitMode.STATIC:
            units = self.run.unit_charge
        else:
            units = 0

        if units > 0:
            self.run.add_units(units)
            if self.group is not None:
                _ = self.group.add_units(units)
            if self.process is not None:
                _ = self.process.add_units(units)
        return units

    def check_after_sample(self) -> BudgetExhaustion | None:
        """Catch unit overruns reported by a dynamic-mode sample."""
        if self.run.unit_mode is not UnitMode.DYNAMIC:
            return None
        for shared in (self.process, self.group):
            if shared is not None and shared.is_units_exhausted():
                return self._exhausted(TerminationReason.for_budget(shared.scope, False))
        if self.run.is_units_exhausted():
            return self._exhausted(TerminationReason.RUN_UNIT_BUDGET_EXHAUSTED)
        return None

    def behavior_for(self, reason: TerminationReason) -> BudgetExhaustedBehavior:
        """Exhausted behavior of the scope that triggered ``reason``."""
        monitor = self._monitor_for(reason.scope) if reason.scope else None
        if monitor is None:
            return self.run.on_exhausted
        return monitor.on_exhausted

    def exhaustion_message(self, reason: TerminationReason) -> str:
        """One-line explanation of which ceiling was hit."""
        if reason.scope is None:
            return reason.description
        monitor = self._monitor_for(reason.scope)
        if monitor is None:
            return reason.description
        label = reason.scope.value.capitalize()
        if reason.is_time:
            return (
                f"{label} time budget exhausted: {monitor.elapsed_ms}ms elapsed "
                f">= {monitor.time_budget_ms}ms budget"
            )
        if reason.scope is BudgetScope.RUN and self.run.unit_mode is UnitMode.STATIC:
            return (
                f"Run unit budget exhausted: {self.run.consumed_units} units + "
                f"{self.run.unit_charge} charge > {self.run.unit_budget} budget"
            )
        return (
            f"{label} unit budget exhausted: {monitor.consumed_units} units "
            f"> {monitor.unit_budget} budget"
        )


def forced_failure_message(
    reason: TerminationReason,
    details: str | None,
    aggregator: TrialAggregator,
    threshold: float,
) -> str:
    """Failure text for a run failed because a budget ran out."""
    lines = [
        f"Run failed: {reason.description.lower()}.",
    ]
    if details:
        lines.append(f"  {details}")
    lines.extend([
        f"  Samples executed: {aggregator.executed} of {aggregator.planned_count}",
        f"  Pass rate at termination: {aggregator.observed_pass_rate:.1%}",
        f"  Required pass rate: {threshold:.1%}",
        f"  Elapsed: {aggregator.elapsed_ms}ms",
    ])
    return "\n".join(lines)
