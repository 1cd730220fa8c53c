# Copyright (c) Syntropy Systems
"""Tests for budget monitors, the orchestrator and the process budget."""

from __future__ import annotations

import pytest

from trialgate.budget.monitor import RunBudgetMonitor, SharedBudgetMonitor, UnitMode
from trialgate.budget.orchestrator import BudgetOrchestrator
from trialgate.budget.process import ProcessBudget, monitor_from_environment
from trialgate.budget.recorder import CostRecorder
from trialgate.config import BudgetExhaustedBehavior
from trialgate.trials import BudgetScope, TerminationReason


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: int) -> None:
        self.now += ms / 1000.0


class TestUnitMode:
    """Tests for UnitMode resolution."""

    def test_resolve(self):
        assert UnitMode.resolve(0, False) is UnitMode.NONE
        assert UnitMode.resolve(5, False) is UnitMode.STATIC
        assert UnitMode.resolve(5, True) is UnitMode.DYNAMIC


class TestRunBudgetMonitor:
    """Tests for the per-run monitor."""

    def test_time_exhausted_at_budget(self):
        clock = FakeClock()
        monitor = RunBudgetMonitor(time_budget_ms=1000, clock=clock)

        clock.advance_ms(875)
        assert not monitor.is_time_exhausted()
        clock.advance_ms(125)
        assert monitor.is_time_exhausted()

    def test_zero_time_budget_is_unlimited(self):
        clock = FakeClock()
        monitor = RunBudgetMonitor(time_budget_ms=0, clock=clock)

        clock.advance_ms(10_000_000)
        assert not monitor.is_time_exhausted()

    def test_static_precheck(self):
        monitor = RunBudgetMonitor(unit_budget=12, unit_charge=5, unit_mode=UnitMode.STATIC)

        monitor.add_units(5)
        assert not monitor.would_exceed_static_budget()
        monitor.add_units(5)
        assert monitor.would_exceed_static_budget()
        assert monitor.remaining_units == 2

    def test_units_exhausted_only_past_budget(self):
        monitor = RunBudgetMonitor(unit_budget=10, unit_mode=UnitMode.DYNAMIC)

        monitor.add_units(10)
        assert not monitor.is_units_exhausted()
        monitor.add_units(1)
        assert monitor.is_units_exhausted()

    def test_negative_values_rejected(self):
        with pytest.raises(ValueError):
            _ = RunBudgetMonitor(unit_budget=-1)
        with pytest.raises(ValueError):
            RunBudgetMonitor().add_units(-3)


class TestSharedBudgetMonitor:
    """Tests for group and process monitors."""

    def test_run_scope_rejected(self):
        with pytest.raises(ValueError):
            _ = SharedBudgetMonitor(BudgetScope.RUN)

    def test_add_returns_total(self):
        monitor = SharedBudgetMonitor(BudgetScope.GROUP, unit_budget=10)

        assert monitor.add_units(4) == 4
        assert monitor.add_units(4) == 8
        assert monitor.remaining_units == 2
        assert monitor.has_budget

    def test_remaining_ms(self):
        clock = FakeClock()
        monitor = SharedBudgetMonitor(BudgetScope.PROCESS, time_budget_ms=1000, clock=clock)

        clock.advance_ms(250)
        assert monitor.remaining_ms == 750


class TestCostRecorder:
    """Tests for dynamic cost recording."""

    def test_finalize_resets_sample(self):
        recorder = CostRecorder()
        recorder.record(3)
        recorder.record(4)

        assert recorder.sample_units == 7
        assert recorder.finalize_sample() == 7
        assert recorder.sample_units == 0
        assert recorder.total_units == 7

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            CostRecorder().record(-1)


class TestBudgetOrchestrator:
    """Tests for check ordering and unit propagation."""

    def test_process_checked_before_group(self):
        clock = FakeClock()
        process = SharedBudgetMonitor(BudgetScope.PROCESS, time_budget_ms=250, clock=clock)
        group = SharedBudgetMonitor(BudgetScope.GROUP, time_budget_ms=250, clock=clock)
        orchestrator = BudgetOrchestrator(RunBudgetMonitor(), group=group, process=process)

        clock.advance_ms(500)
        exhaustion = orchestrator.check_before_sample()

        assert exhaustion is not None
        assert exhaustion.reason is TerminationReason.PROCESS_TIME_BUDGET_EXHAUSTED
        assert exhaustion.message.startswith("Process time budget exhausted: 500ms elapsed >= 250ms budget")

    def test_group_time_before_run_static(self):
        clock = FakeClock()
        group = SharedBudgetMonitor(BudgetScope.GROUP, time_budget_ms=250, clock=clock)
        run = RunBudgetMonitor(unit_budget=1, unit_charge=5, unit_mode=UnitMode.STATIC)
        orchestrator = BudgetOrchestrator(run, group=group)

        clock.advance_ms(250)
        exhaustion = orchestrator.check_before_sample()

        assert exhaustion is not None
        assert exhaustion.reason is TerminationReason.GROUP_TIME_BUDGET_EXHAUSTED

    def test_static_charge_propagates(self):
        run = RunBudgetMonitor(unit_budget=12, unit_charge=5, unit_mode=UnitMode.STATIC)
        group = SharedBudgetMonitor(BudgetScope.GROUP)
        process = SharedBudgetMonitor(BudgetScope.PROCESS)
        orchestrator = BudgetOrchestrator(run, group=group, process=process)

        assert orchestrator.check_before_sample() is None
        assert orchestrator.record_and_propagate() == 5
        assert orchestrator.check_before_sample() is None
        _ = orchestrator.record_and_propagate()

        exhaustion = orchestrator.check_before_sample()

        assert exhaustion is not None
        assert exhaustion.reason is TerminationReason.RUN_UNIT_BUDGET_EXHAUSTED
        assert exhaustion.message == "Run unit budget exhausted: 10 units + 5 charge > 12 budget"
        assert group.consumed_units == 10
        assert process.consumed_units == 10

    def test_static_mode_skips_post_check(self):
        run = RunBudgetMonitor(unit_budget=4, unit_charge=5, unit_mode=UnitMode.STATIC)
        orchestrator = BudgetOrchestrator(run)

        _ = orchestrator.record_and_propagate()

        assert orchestrator.check_after_sample() is None

    def test_dynamic_post_check(self):
        recorder = CostRecorder()
        run = RunBudgetMonitor(unit_budget=10, unit_mode=UnitMode.DYNAMIC)
        group = SharedBudgetMonitor(
            BudgetScope.GROUP,
            unit_budget=8,
            on_exhausted=BudgetExhaustedBehavior.EVALUATE_PARTIAL,
        )
        orchestrator = BudgetOrchestrator(run, group=group, recorder=recorder)

        recorder.record(9)
        assert orchestrator.record_and_propagate() == 9
        exhaustion = orchestrator.check_after_sample()

        assert exhaustion is not None
        assert exhaustion.reason is TerminationReason.GROUP_UNIT_BUDGET_EXHAUSTED
        assert exhaustion.behavior is BudgetExhaustedBehavior.EVALUATE_PARTIAL
        assert exhaustion.message == "Group unit budget exhausted: 9 units > 8 budget"

    def test_no_budgets_never_exhaust(self):
        orchestrator = BudgetOrchestrator(RunBudgetMonitor())

        assert orchestrator.check_before_sample() is None
        assert orchestrator.record_and_propagate() == 0
        assert orchestrator.check_after_sample() is None


class TestProcessBudget:
    """Tests for the process-scope budget holder."""

    def test_unconfigured_environment(self):
        assert monitor_from_environment({}) is None

    def test_from_environment(self):
        monitor = monitor_from_environment({
            "TRIALGATE_PROCESS_TIME_BUDGET_MS": "60000",
            "TRIALGATE_PROCESS_UNIT_BUDGET": "500",
            "TRIALGATE_PROCESS_ON_BUDGET_EXHAUSTED": "EVALUATE_PARTIAL",
        })

        assert monitor is not None
        assert monitor.scope is BudgetScope.PROCESS
        assert monitor.time_budget_ms == 60000
        assert monitor.unit_budget == 500
        assert monitor.on_exhausted is BudgetExhaustedBehavior.EVALUATE_PARTIAL

    def test_invalid_environment_value_ignored(self, caplog):
        monitor = monitor_from_environment({"TRIALGATE_PROCESS_UNIT_BUDGET": "lots"})

        assert monitor is None
        assert "Ignoring invalid" in caplog.text

    def test_created_once(self):
        calls: list[int] = []

        def factory() -> SharedBudgetMonitor:
            calls.append(1)
            return SharedBudgetMonitor(BudgetScope.PROCESS, unit_budget=5)

        budget = ProcessBudget()
        first = budget.get_or_create(factory)
        second = budget.get_or_create(factory)

        assert first is second
        assert len(calls) == 1
        assert budget.initialized

    def test_none_is_cached(self):
        budget = ProcessBudget()

        assert budget.get_or_create(lambda: None) is None
        assert budget.initialized

    def test_reset(self):
        budget = ProcessBudget(SharedBudgetMonitor(BudgetScope.PROCESS, unit_budget=1))
        budget.reset()

        assert not budget.initialized
        assert budget.get_or_create(lambda: None) is None
