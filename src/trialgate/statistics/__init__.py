# Copyright (c) Syntropy Systems
"""Statistical building blocks: Wilson intervals, thresholds, power analysis."""

from trialgate.statistics.estimator import ProportionEstimate, estimate, lower_bound
from trialgate.statistics.sample_size import SampleSizeRequirement, calculate_for_power
from trialgate.statistics.thresholds import (
    Approach,
    DerivedThreshold,
    derive_confidence_first,
    derive_sample_size_first,
    derive_threshold_first,
)

__all__ = [
    "Approach",
    "DerivedThreshold",
    "ProportionEstimate",
    "SampleSizeRequirement",
    "calculate_for_power",
    "derive_confidence_first",
    "derive_sample_size_first",
    "derive_threshold_first",
    "estimate",
    "lower_bound",
]
