# Copyright (c) Syntropy Systems
"""Time and cost-unit ceilings at run, group and process scope."""
from __future__ import annotations

import threading
import time
from enum import Enum
from typing import TYPE_CHECKING

from trialgate.config import BudgetExhaustedBehavior
from trialgate.trials import BudgetScope

if TYPE_CHECKING:
    from collections.abc import Callable


class UnitMode(str, Enum):
    """How cost units are charged for a run."""

    NONE = "none"
    STATIC = "static"
    DYNAMIC = "dynamic"

    @classmethod
    def resolve(cls, unit_charge: int, dynamic: bool) -> UnitMode:
        """Dynamic wins when requested, then a non-zero static charge."""
        if dynamic:
            return cls.DYNAMIC
        if unit_charge > 0:
            return cls.STATIC
        return cls.NONE


def _check_non_negative(name: str, value: int) -> None:
    if value < 0:
        msg = f"{name} must be >= 0, got {value}"
        raise ValueError(msg)


class RunBudgetMonitor:
    """Budget state owned by a single run. Not thread-safe."""

    scope = BudgetScope.RUN

    def __init__(
        self,
        time_budget_ms: int = 0,
        unit_budget: int = 0,
        unit_charge: int = 0,
        unit_mode: UnitMode = UnitMode.NONE,
        on_exhausted: BudgetExhaustedBehavior = BudgetExhaustedBehavior.FAIL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        _check_non_negative("time_budget_ms", time_budget_ms)
        _check_non_negative("unit_budget", unit_budget)
        _check_non_negative("unit_charge", unit_charge)
        self.time_budget_ms = time_budget_ms
        self.unit_budget = unit_budget
        self.unit_charge = unit_charge
        self.unit_mode = unit_mode
        self.on_exhausted = on_exhausted
        self.consumed_units = 0
        self._clock = clock
        self._start = clock()

    @property
    def elapsed_ms(self) -> int:
        return int((self._clock() - self._start) * 1000)

    def is_time_exhausted(self) -> bool:
        return self.time_budget_ms > 0 and self.elapsed_ms >= self.time_budget_ms

    def would_exceed_static_budget(self) -> bool:
        """Whether charging the next sample would go past the unit ceiling."""
        if self.unit_mode is not UnitMode.STATIC or self.unit_budget <= 0:
            return False
        return self.consumed_units + self.unit_charge > self.unit_budget

    def is_units_exhausted(self) -> bool:
        return self.unit_budget > 0 and self.consumed_units > self.unit_budget

    def add_units(self, units: int) -> None:
        _check_non_negative("units", units)
        self.consumed_units += units

    @property
    def remaining_units(self) -> int | None:
        if self.unit_budget <= 0:
            return None
        return max(0, self.unit_budget - self.consumed_units)


class SharedBudgetMonitor:
    """Budget shared by every run in a group or in the process.

    Unit accumulation is a locked read-modify-write so concurrent runs never
    lose an update. The time check only reads the monotonic clock.
    """

    def __init__(
        self,
        scope: BudgetScope,
        time_budget_ms: int = 0,
        unit_budget: int = 0,
        on_exhausted: BudgetExhaustedBehavior = BudgetExhaustedBehavior.FAIL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if scope is BudgetScope.RUN:
            msg = "Run-scope budgets are not shared; use RunBudgetMonitor"
            raise ValueError(msg)
        _check_non_negative("time_budget_ms", time_budget_ms)
        _check_non_negative("unit_budget", unit_budget)
        self.scope = scope
        self.time_budget_ms = time_budget_ms
        self.unit_budget = unit_budget
        self.on_exhausted = on_exhausted
        self._clock = clock
        self._start = clock()
        self._consumed = 0
        self._lock = threading.Lock()

    @property
    def consumed_units(self) -> int:
        with self._lock:
            return self._consumed

    def add_units(self, units: int) -> int:
        """Add ``units`` and return the new total."""
        _check_non_negative("units", units)
        with self._lock:
            self._consumed += units
            return self._consumed

    @property
    def elapsed_ms(self) -> int:
        return int((self._clock() - self._start) * 1000)

    def is_time_exhausted(self) -> bool:
        return self.time_budget_ms > 0 and self.elapsed_ms >= self.time_budget_ms

    def is_units_exhausted(self) -> bool:
        return self.unit_budget > 0 and self.consumed_units > self.unit_budget

    @property
    def remaining_units(self) -> int | None:
        if self.unit_budget <= 0:
            return None
        return max(0, self.unit_budget - self.consumed_units)

    @property
    def remaining_ms(self) -> int | None:
        if self.time_budget_ms <= 0:
            return None
        return max(0, self.time_budget_ms - self.elapsed_ms)

    @property
    def has_budget(self) -> bool:
        return self.time_budget_ms > 0 or self.unit_budget > 0
