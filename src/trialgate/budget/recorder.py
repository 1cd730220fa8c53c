# Copyright (c) Syntropy Systems
"""Cost units reported by a sample while it runs."""
from __future__ import annotations


class CostRecorder:
    """Collects the cost units a sample reports about itself.

    A sample calls :meth:`record` any number of times. The engine finalizes
    the sample's total after it returns, then resets for the next one.
    """

    def __init__(self) -> None:
        self._sample_units = 0
        self.total_units = 0

    def record(self, units: int) -> None:
        if units < 0:
            msg = f"units must be >= 0, got {units}"
            raise ValueError(msg)
        self._sample_units += units

    @property
    def sample_units(self) -> int:
        """Units recorded by the current sample so far."""
        return self._sample_units

    def finalize_sample(self) -> int:
        """Close out the current sample and return its units."""
        units = self._sample_units
        self.total_units += units
        self._sample_units = 0
        return units

    def reset_for_next_sample(self) -> None:
        self._sample_units = 0
