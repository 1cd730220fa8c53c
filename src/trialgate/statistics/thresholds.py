# Copyright (c) Syntropy Systems
"""Derive pass/fail thresholds from baseline data.

A baseline that observed 951/1000 successes does not justify a threshold of
95.1% for a 100-sample test: ordinary sampling variance would fail a healthy
process about half the time. The helpers here turn baseline counts and a
chosen operational approach into a threshold whose false-positive rate is
known.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from trialgate.statistics.estimator import lower_bound
from trialgate.statistics.sample_size import calculate_for_power

logger = logging.getLogger(__name__)

# Implied confidence below this is reported as statistically unsound
SOUNDNESS_CONFIDENCE = 0.80

_SEARCH_TOLERANCE = 1e-4
_SEARCH_ITERATIONS = 100


class Approach(str, Enum):
    """Operational approach used to fix a run's threshold."""

    SAMPLE_SIZE_FIRST = "sample_size_first"
    CONFIDENCE_FIRST = "confidence_first"
    THRESHOLD_FIRST = "threshold_first"

    @property
    def label(self) -> str:
        """Human readable name."""
        return self.value.replace("_", "-").title()


@dataclass(frozen=True)
class DerivationContext:
    """Inputs that a threshold was derived from."""

    baseline_rate: float
    baseline_samples: int
    test_samples: int
    confidence: float


@dataclass(frozen=True)
class DerivedThreshold:
    """A pass-rate threshold with the context needed to audit it."""

    value: float
    approach: Approach
    context: DerivationContext
    sound: bool

    @property
    def gap_from_baseline(self) -> float:
        """How far the threshold sits below the baseline's observed rate."""
        return self.context.baseline_rate - self.value


def _validate_baseline(
    baseline_samples: int,
    baseline_successes: int,
    test_samples: int,
) -> None:
    if baseline_samples <= 0:
        msg = f"baseline_samples must be positive, got {baseline_samples}"
        raise ValueError(msg)
    if baseline_successes < 0 or baseline_successes > baseline_samples:
        msg = (
            f"baseline_successes must be in [0, {baseline_samples}], "
            f"got {baseline_successes}"
        )
        raise ValueError(msg)
    if test_samples <= 0:
        msg = f"test_samples must be positive, got {test_samples}"
        raise ValueError(msg)


def derive_sample_size_first(
    baseline_samples: int,
    baseline_successes: int,
    test_samples: int,
    confidence: float,
) -> DerivedThreshold:
    """Threshold for a fixed sample count and confidence.

    The threshold is the one-sided Wilson lower bound of the baseline rate,
    so a process that has not degraded fails with probability at most
    ``1 - confidence``.
    """
    _validate_baseline(baseline_samples, baseline_successes, test_samples)
    value = lower_bound(baseline_successes, baseline_samples, confidence)
    context = DerivationContext(
        baseline_rate=baseline_successes / baseline_samples,
        baseline_samples=baseline_samples,
        test_samples=test_samples,
        confidence=confidence,
    )
    return DerivedThreshold(
        value=value,
        approach=Approach.SAMPLE_SIZE_FIRST,
        context=context,
        sound=True,
    )


def derive_confidence_first(
    baseline_samples: int,
    baseline_successes: int,
    confidence: float,
    min_detectable_effect: float,
    power: float,
) -> DerivedThreshold:
    """Size the run by power analysis, then derive its threshold."""
    _validate_baseline(baseline_samples, baseline_successes, 1)
    requirement = calculate_for_power(
        baseline_successes / baseline_samples,
        min_detectable_effect,
        confidence,
        power,
    )
    derived = derive_sample_size_first(
        baseline_samples,
        baseline_successes,
        requirement.required_samples,
        confidence,
    )
    return DerivedThreshold(
        value=derived.value,
        approach=Approach.CONFIDENCE_FIRST,
        context=derived.context,
        sound=True,
    )


def derive_threshold_first(
    baseline_samples: int,
    baseline_successes: int,
    test_samples: int,
    threshold: float,
) -> DerivedThreshold:
    """Implied confidence of an explicit threshold against baseline data.

    A threshold at or above the baseline's observed rate implies a
    false-positive rate near 50% or worse and is flagged as unsound. This
    is a warning, the run still uses the explicit threshold.
    """
    if not 0.0 <= threshold <= 1.0:
        msg = f"threshold must be in [0, 1], got {threshold}"
        raise ValueError(msg)
    _validate_baseline(baseline_samples, baseline_successes, test_samples)

    baseline_rate = baseline_successes / baseline_samples
    implied = implied_confidence(baseline_successes, baseline_samples, threshold)
    sound = threshold < baseline_rate and implied >= SOUNDNESS_CONFIDENCE

    if not sound:
        logger.warning(
            "Threshold %.4f is statistically unsound against baseline rate "
            "%.4f (N=%d): implied confidence %.1f%%",
            threshold,
            baseline_rate,
            baseline_samples,
            implied * 100,
        )

    return DerivedThreshold(
        value=threshold,
        approach=Approach.THRESHOLD_FIRST,
        context=DerivationContext(
            baseline_rate=baseline_rate,
            baseline_samples=baseline_samples,
            test_samples=test_samples,
            confidence=implied,
        ),
        sound=sound,
    )


def implied_confidence(successes: int, trials: int, threshold: float) -> float:
    """Confidence at which the baseline's Wilson lower bound equals ``threshold``."""
    p_hat = successes / trials
    if threshold >= p_hat:
        low, high = 0.01, 0.5
    else:
        low, high = 0.5, 0.9999999

    for _ in range(_SEARCH_ITERATIONS):
        mid = (low + high) / 2.0
        bound = lower_bound(successes, trials, mid)
        if abs(bound - threshold) < _SEARCH_TOLERANCE:
            return mid
        # The lower bound falls as confidence rises
        if bound > threshold:
            low = mid
        else:
            high = mid

    return (low + high) / 2.0
