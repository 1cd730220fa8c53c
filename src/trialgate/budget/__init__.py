# Copyright (c) Syntropy Systems
"""Budget accounting across run, group and process scope."""

from trialgate.budget.monitor import RunBudgetMonitor, SharedBudgetMonitor, UnitMode
from trialgate.budget.orchestrator import BudgetExhaustion, BudgetOrchestrator
from trialgate.budget.process import ProcessBudget, monitor_from_environment
from trialgate.budget.recorder import CostRecorder

__all__ = [
    "BudgetExhaustion",
    "BudgetOrchestrator",
    "CostRecorder",
    "ProcessBudget",
    "RunBudgetMonitor",
    "SharedBudgetMonitor",
    "UnitMode",
    "monitor_from_environment",
]
