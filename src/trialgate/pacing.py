# Copyright (c) Syntropy Systems
"""Delay between samples to respect external rate limits."""
from __future__ import annotations

import math
import time
from dataclasses import dataclass


@dataclass(frozen=True)
class Pacing:
    """Rate constraints for a run. Zero disables a constraint."""

    max_requests_per_second: float = 0.0
    max_requests_per_minute: float = 0.0
    max_requests_per_hour: float = 0.0
    min_ms_per_sample: int = 0

    def __post_init__(self) -> None:
        for name in (
            "max_requests_per_second",
            "max_requests_per_minute",
            "max_requests_per_hour",
            "min_ms_per_sample",
        ):
            if getattr(self, name) < 0:
                msg = f"{name} must be >= 0, got {getattr(self, name)}"
                raise ValueError(msg)

    @property
    def delay_ms(self) -> int:
        """Minimum delay between consecutive samples, in milliseconds."""
        delay = self.min_ms_per_sample
        if self.max_requests_per_second > 0:
            delay = max(delay, math.ceil(1000.0 / self.max_requests_per_second))
        if self.max_requests_per_minute > 0:
            delay = max(delay, math.ceil(60000.0 / self.max_requests_per_minute))
        if self.max_requests_per_hour > 0:
            delay = max(delay, math.ceil(3600000.0 / self.max_requests_per_hour))
        return delay

    @property
    def enabled(self) -> bool:
        """Whether any constraint is active."""
        return self.delay_ms > 0

    def estimated_duration_ms(self, samples: int) -> int:
        """Lower bound on wall-clock time spent waiting across a run."""
        return max(0, samples - 1) * self.delay_ms


class Pacer:
    """Sleeps between samples so they are spaced at least ``delay_ms`` apart."""

    def __init__(self, pacing: Pacing) -> None:
        self.delay_ms = pacing.delay_ms
        self._last_start: float | None = None

    def wait(self) -> float:
        """Block until the next sample may start. Returns seconds slept."""
        now = time.monotonic()
        slept = 0.0
        if self.delay_ms > 0 and self._last_start is not None:
            remaining = self._last_start + self.delay_ms / 1000.0 - now
            if remaining > 0:
                time.sleep(remaining)
                slept = remaining
        self._last_start = time.monotonic()
        return slept
