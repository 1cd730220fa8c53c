# Copyright (c) Syntropy Systems
"""Run execution: layered contexts, the sample step and the host-runner API.

A host test runner drives one :class:`ProbabilisticRun` per test::

    process = ProcessContext(repository=YamlBaselineRepository(path))
    group = GroupContext(process, "checkout", budget=group_monitor)

    run = ProbabilisticRun(config, group)
    for slot in run.prepare():
        step = run.execute_sample(slot, sample)
        if step.stops_run:
            break
    verdict = run.finalize()

Samples execute strictly one after another. Budgets at group and process
scope may be shared with runs on other threads.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Union

from typing_extensions import TypeAlias

from trialgate.approach import ResolvedApproach, resolve_approach
from trialgate.baseline.models import CovariateDeclaration, CovariateProfile
from trialgate.baseline.resolution import (
    LazyBaselineResolution,
    check_factor_source,
    latest_baseline,
)
from trialgate.budget.monitor import RunBudgetMonitor, UnitMode
from trialgate.budget.orchestrator import BudgetExhaustion, BudgetOrchestrator
from trialgate.budget.process import ProcessBudget
from trialgate.budget.recorder import CostRecorder
from trialgate.config import BudgetExhaustedBehavior, ExceptionPolicy
from trialgate.pacing import Pacer
from trialgate.trials import (
    EarlyTerminationEvaluator,
    TerminationReason,
    Trial,
    TrialAggregator,
)
from trialgate.verdict import StatisticalContext, Verdict, decide

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from trialgate.baseline.models import BaselineRecord
    from trialgate.baseline.repository import BaselineRepository
    from trialgate.baseline.selector import SelectionResult
    from trialgate.budget.monitor import SharedBudgetMonitor
    from trialgate.config import RunConfig

logger = logging.getLogger(__name__)


# Layered execution context


@dataclass(frozen=True)
class ProcessContext:
    """Process-wide resources, created once by the entry point."""

    process_budget: ProcessBudget = field(default_factory=ProcessBudget)
    repository: BaselineRepository | None = None

    @property
    def process_monitor(self) -> SharedBudgetMonitor | None:
        return self.process_budget.get_or_create()


_default_process_state: dict[str, ProcessContext | None] = {"context": None}
_default_process_lock = threading.Lock()


def default_process_context() -> ProcessContext:
    """Process context shared by every run started without a group."""
    with _default_process_lock:
        context = _default_process_state["context"]
        if context is None:
            context = ProcessContext()
            _default_process_state["context"] = context
        return context


def reset_default_process_context() -> None:
    """Drop the shared process context so the next run starts a fresh one."""
    with _default_process_lock:
        _default_process_state["context"] = None


@dataclass(frozen=True)
class GroupContext:
    """Resources shared by the runs of one test group."""

    parent: ProcessContext
    name: str = "default"
    budget: SharedBudgetMonitor | None = None

    @property
    def process_monitor(self) -> SharedBudgetMonitor | None:
        return self.parent.process_monitor

    @property
    def repository(self) -> BaselineRepository | None:
        return self.parent.repository


@dataclass
class RunContext:
    """State of a single run, with direct access to its ancestors."""

    parent: GroupContext
    name: str
    config: RunConfig
    approach: ResolvedApproach
    aggregator: TrialAggregator
    early_termination: EarlyTerminationEvaluator
    orchestrator: BudgetOrchestrator
    pacer: Pacer
    recorder: CostRecorder | None = None
    baseline: BaselineRecord | None = None
    selection: SelectionResult | None = None

    @property
    def group_budget(self) -> SharedBudgetMonitor | None:
        return self.parent.budget

    @property
    def process_monitor(self) -> SharedBudgetMonitor | None:
        return self.parent.process_monitor

    @property
    def threshold(self) -> float:
        return self.approach.threshold


# Sample step results


@dataclass(frozen=True)
class Continue:
    """The sample passed; take the next one."""

    stops_run = False


@dataclass(frozen=True)
class ContinueWithRecordedFailure:
    """The sample failed and was recorded; take the next one."""

    detail: str
    stops_run = False


@dataclass(frozen=True)
class Terminate:
    """No further samples will run."""

    reason: TerminationReason
    detail: str | None = None
    stops_run = True


@dataclass(frozen=True)
class Abort:
    """A sample raised and the exception policy aborts the run."""

    error: Exception
    stops_run = True


StepResult: TypeAlias = Union[Continue, ContinueWithRecordedFailure, Terminate, Abort]


class RunState(str, Enum):
    NEW = "new"
    PREPARED = "prepared"
    RUNNING = "running"
    TERMINATED = "terminated"
    FINALIZED = "finalized"


def _describe_error(error: BaseException) -> str:
    text = str(error)
    return f"{type(error).__name__}: {text}" if text else type(error).__name__


class ProbabilisticRun:
    """One probabilistic test run driven by a host runner.

    Args:
        config: Validated run configuration.
        group: Group context. When omitted the run gets its own group under
            the shared default process context.
        name: Name used in logs.
        declaration: Covariates the use case exposes.
        profile: Current covariate values, or a callable producing them.
        factors: Identity factors that enter the footprint.
    """

    def __init__(
        self,
        config: RunConfig,
        group: GroupContext | None = None,
        *,
        name: str = "run",
        declaration: CovariateDeclaration | None = None,
        profile: CovariateProfile | Callable[[], CovariateProfile] | None = None,
        factors: Mapping[str, object] | None = None,
    ) -> None:
        self.config = config
        self.group = group if group is not None else GroupContext(default_process_context())
        self.name = name
        self.declaration = declaration or CovariateDeclaration()
        self.profile = profile if profile is not None else CovariateProfile()
        self.factors = factors
        self.state = RunState.NEW
        self.context: RunContext | None = None
        self.abort_error: Exception | None = None
        self._resolution: LazyBaselineResolution | None = None
        self._terminal: Terminate | Abort | None = None

    # Setup

    def _resolve_baseline(self) -> tuple[BaselineRecord | None, SelectionResult | None]:
        repository = self.group.repository
        use_case_id = self.config.use_case_id
        if repository is None or use_case_id is None:
            return None, None

        if self.config.has_min_pass_rate:
            # Explicit threshold: the baseline is context, not a selection input
            record = latest_baseline(repository, use_case_id, self.declaration, self.factors)
            return record, None

        if self._resolution is None:
            self._resolution = LazyBaselineResolution(
                use_case_id,
                self.declaration,
                repository,
                self.factors,
            )
        if not self._resolution.candidates and not repository.find_available_footprints(
            use_case_id
        ):
            logger.info("No baseline recorded for %s", use_case_id)
            return None, None
        selection = self._resolution.resolve(self.profile)
        return selection.selected, selection

    def prepare(self) -> list[int]:
        """Resolve baseline and threshold, then return the planned sample slots."""
        if self.state is not RunState.NEW:
            msg = f"Run {self.name} was already prepared"
            raise RuntimeError(msg)

        config = self.config
        baseline, selection = self._resolve_baseline()
        approach = resolve_approach(config, baseline)

        if baseline is not None:
            _ = check_factor_source(
                baseline,
                config.factor_source_hash,
                config.factor_source_name,
                approach.samples,
            )

        unit_mode = UnitMode.resolve(config.unit_charge, config.dynamic_units)
        recorder = CostRecorder() if unit_mode is UnitMode.DYNAMIC else None
        run_monitor = RunBudgetMonitor(
            time_budget_ms=config.time_budget_ms,
            unit_budget=config.unit_budget,
            unit_charge=config.unit_charge,
            unit_mode=unit_mode,
            on_exhausted=config.on_budget_exhausted,
        )
        orchestrator = BudgetOrchestrator(
            run_monitor,
            group=self.group.budget,
            process=self.group.process_monitor,
            recorder=recorder,
        )

        self.context = RunContext(
            parent=self.group,
            name=self.name,
            config=config,
            approach=approach,
            aggregator=TrialAggregator(approach.samples, config.max_example_failures),
            early_termination=EarlyTerminationEvaluator(approach.samples, approach.threshold),
            orchestrator=orchestrator,
            pacer=Pacer(config.pacing),
            recorder=recorder,
            baseline=baseline,
            selection=selection,
        )
        self.state = RunState.PREPARED
        logger.debug(
            "Prepared %s: %s, %d samples, threshold %.4f",
            self.name,
            approach.kind.label,
            approach.samples,
            approach.threshold,
        )
        return list(range(approach.samples))

    @property
    def recorder(self) -> CostRecorder | None:
        """Recorder for samples that report their own cost units."""
        return self.context.recorder if self.context is not None else None

    @property
    def selection(self) -> SelectionResult | None:
        """Baseline selection; resolving again returns the same result."""
        if self._resolution is None or not self._resolution.resolved:
            return None
        return self._resolution.resolve(self.profile)

    def _require_context(self) -> RunContext:
        if self.context is None:
            msg = f"Run {self.name} has not been prepared"
            raise RuntimeError(msg)
        return self.context

    # Sample step

    def _terminate(self, reason: TerminationReason, detail: str | None) -> Terminate:
        ctx = self._require_context()
        ctx.aggregator.set_terminated(reason, detail)
        self.state = RunState.TERMINATED
        result = Terminate(reason, detail)
        self._terminal = result
        return result

    def _terminate_for_budget(self, exhaustion: BudgetExhaustion) -> Terminate:
        ctx = self._require_context()
        if exhaustion.behavior is BudgetExhaustedBehavior.FAIL:
            ctx.aggregator.set_forced_failure(True)
        return self._terminate(exhaustion.reason, exhaustion.message)

    def _invoke(self, sample: Callable[[], object]) -> StepResult:
        ctx = self._require_context()
        aggregator = ctx.aggregator
        try:
            outcome = sample()
        except AssertionError as e:
            detail = _describe_error(e)
            aggregator.record_failure(detail)
            return ContinueWithRecordedFailure(detail)
        except Exception as e:  # noqa: BLE001
            detail = _describe_error(e)
            aggregator.record_failure(detail)
            if self.config.on_exception is ExceptionPolicy.ABORT_TEST:
                return Abort(e)
            logger.debug("Sample raised, counted as failure: %s", detail)
            return ContinueWithRecordedFailure(detail)

        if isinstance(outcome, Trial):
            aggregator.record(outcome)
            if outcome.passed:
                return Continue()
            return ContinueWithRecordedFailure(outcome.failure_detail or "sample failed")
        if outcome is False:
            aggregator.record_failure("sample returned False")
            return ContinueWithRecordedFailure("sample returned False")
        aggregator.record_success()
        return Continue()

    def execute_sample(self, slot: int, sample: Callable[[], object]) -> StepResult:
        """Run one sample unless the run has already stopped.

        Once a run terminates, every later call returns the same terminal
        result without invoking ``sample``.
        """
        if self._terminal is not None:
            return self._terminal
        if self.state not in (RunState.PREPARED, RunState.RUNNING):
            msg = f"Cannot execute slot {slot} of run {self.name} in state {self.state.value}"
            raise RuntimeError(msg)

        ctx = self._require_context()
        self.state = RunState.RUNNING

        exhaustion = ctx.orchestrator.check_before_sample()
        if exhaustion is None and ctx.pacer.wait() > 0:
            # Time budgets may have run out during the pacing delay
            exhaustion = ctx.orchestrator.check_before_sample()
        if exhaustion is not None:
            return self._terminate_for_budget(exhaustion)

        if ctx.recorder is not None:
            ctx.recorder.reset_for_next_sample()

        step = self._invoke(sample)
        if isinstance(step, Abort):
            # The aborted sample still consumed its units
            _ = ctx.orchestrator.record_and_propagate()
            ctx.aggregator.set_forced_failure(True)
            ctx.aggregator.set_terminated(
                TerminationReason.ABORTED,
                f"Run aborted due to exception: {_describe_error(step.error)}",
            )
            self.abort_error = step.error
            self.state = RunState.TERMINATED
            self._terminal = step
            return step

        _ = ctx.orchestrator.record_and_propagate()

        exhaustion = ctx.orchestrator.check_after_sample()
        if exhaustion is not None:
            return self._terminate_for_budget(exhaustion)

        aggregator = ctx.aggregator
        decision = ctx.early_termination.evaluate(aggregator.successes, aggregator.executed)
        if decision is not None:
            return self._terminate(decision.reason, decision.explanation)

        if aggregator.is_complete:
            return self._terminate(TerminationReason.COMPLETED, None)
        return step

    # Finalize

    def statistical_context(self) -> StatisticalContext:
        ctx = self._require_context()
        aggregator = ctx.aggregator
        approach = ctx.approach
        if ctx.baseline is None or not approach.spec_driven:
            return StatisticalContext.legacy(
                aggregator.observed_pass_rate,
                aggregator.successes,
                aggregator.executed,
                approach.threshold,
            )
        return StatisticalContext(
            observed_rate=aggregator.observed_pass_rate,
            successes=aggregator.successes,
            samples=aggregator.executed,
            threshold=approach.threshold,
            confidence=approach.confidence,
            baseline_rate=ctx.baseline.observed_rate,
            baseline_samples=ctx.baseline.samples,
            spec_id=ctx.baseline.source_id or ctx.baseline.use_case_id,
        )

    def finalize(self) -> Verdict:
        """Decide the verdict. May be called once."""
        if self.state is RunState.FINALIZED:
            msg = f"Run {self.name} was already finalized"
            raise RuntimeError(msg)
        ctx = self._require_context()
        aggregator = ctx.aggregator
        if not aggregator.is_terminated:
            if not aggregator.is_complete:
                msg = (
                    f"Run {self.name} finalized with {aggregator.remaining} of "
                    f"{aggregator.planned_count} samples neither executed nor skipped"
                )
                raise RuntimeError(msg)
            aggregator.set_completed()

        verdict = decide(aggregator, ctx.threshold, self.statistical_context())
        self.state = RunState.FINALIZED
        log = logger.info if verdict.passed else logger.warning
        log("%s %s", self.name, verdict.message.splitlines()[0])
        return verdict


def run_trials(
    sample: Callable[[], object],
    config: RunConfig,
    group: GroupContext | None = None,
    *,
    name: str = "run",
    declaration: CovariateDeclaration | None = None,
    profile: CovariateProfile | Callable[[], CovariateProfile] | None = None,
    factors: Mapping[str, object] | None = None,
) -> Verdict:
    """Prepare, execute and finalize a run in one call."""
    run = ProbabilisticRun(
        config,
        group,
        name=name,
        declaration=declaration,
        profile=profile,
        factors=factors,
    )
    for slot in run.prepare():
        step = run.execute_sample(slot, sample)
        if step.stops_run:
            break
    return run.finalize()
