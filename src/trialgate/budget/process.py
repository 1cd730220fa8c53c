# Copyright (c) Syntropy Systems
"""Process-scope budget, created once and passed explicitly to runs."""
from __future__ import annotations

import logging
import os
import threading
from typing import TYPE_CHECKING

from trialgate.budget.monitor import SharedBudgetMonitor
from trialgate.config import BudgetExhaustedBehavior
from trialgate.trials import BudgetScope

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

logger = logging.getLogger(__name__)

ENV_TIME_BUDGET_MS = "TRIALGATE_PROCESS_TIME_BUDGET_MS"
ENV_UNIT_BUDGET = "TRIALGATE_PROCESS_UNIT_BUDGET"
ENV_ON_EXHAUSTED = "TRIALGATE_PROCESS_ON_BUDGET_EXHAUSTED"


def _read_int(env: Mapping[str, str], name: str) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return 0
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, expected an integer", name, raw)
        return 0
    if value < 0:
        logger.warning("Ignoring negative %s=%r", name, raw)
        return 0
    return value


def monitor_from_environment(env: Mapping[str, str] | None = None) -> SharedBudgetMonitor | None:
    """Build the process monitor from environment variables.

    Returns None when no process budget is configured.
    """
    if env is None:
        env = os.environ
    time_budget_ms = _read_int(env, ENV_TIME_BUDGET_MS)
    unit_budget = _read_int(env, ENV_UNIT_BUDGET)
    if time_budget_ms == 0 and unit_budget == 0:
        return None

    behavior = BudgetExhaustedBehavior.FAIL
    raw = env.get(ENV_ON_EXHAUSTED)
    if raw:
        try:
            behavior = BudgetExhaustedBehavior(raw.strip().lower())
        except ValueError:
            logger.warning("Ignoring invalid %s=%r, using %s", ENV_ON_EXHAUSTED, raw, behavior.value)

    return SharedBudgetMonitor(
        BudgetScope.PROCESS,
        time_budget_ms=time_budget_ms,
        unit_budget=unit_budget,
        on_exhausted=behavior,
    )


class ProcessBudget:
    """Holder for the process-scope monitor with one-time lazy construction.

    The process entry point creates one holder and threads it through run
    setup. Concurrent first callers may each build a candidate, but only
    the first to publish wins and every caller gets that instance.
    """

    def __init__(self, monitor: SharedBudgetMonitor | None = None) -> None:
        self._lock = threading.Lock()
        self._initialized = monitor is not None
        self._monitor = monitor

    @property
    def initialized(self) -> bool:
        return self._initialized

    def get_or_create(
        self,
        factory: Callable[[], SharedBudgetMonitor | None] = monitor_from_environment,
    ) -> SharedBudgetMonitor | None:
        """Return the process monitor, building it on first access."""
        if self._initialized:
            return self._monitor

        candidate = factory()
        with self._lock:
            if not self._initialized:
                self._monitor = candidate
                self._initialized = True
                if candidate is not None:
                    logger.info(
                        "Process budget initialized: time=%dms units=%d",
                        candidate.time_budget_ms,
                        candidate.unit_budget,
                    )
            return self._monitor

    def reset(self) -> None:
        """Forget the current monitor so the next access rebuilds it."""
        with self._lock:
            self._monitor = None
            self._initialized = False
