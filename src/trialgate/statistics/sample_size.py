# Copyright (c) Syntropy Systems
"""Power analysis for choosing how many samples a run needs."""
from __future__ import annotations

import math
from dataclasses import dataclass

from scipy.stats import norm


@dataclass(frozen=True)
class SampleSizeRequirement:
    """Result of a power analysis."""

    required_samples: int
    confidence: float
    power: float
    min_detectable_effect: float
    null_rate: float
    alternative_rate: float


def _check_open_unit(name: str, value: float) -> None:
    if not 0.0 < value < 1.0:
        msg = f"{name} must be in (0, 1), got {value}"
        raise ValueError(msg)


def calculate_for_power(
    baseline_rate: float,
    min_detectable_effect: float,
    confidence: float,
    power: float,
) -> SampleSizeRequirement:
    """Smallest sample count that detects a drop of ``min_detectable_effect``.

    Uses the one-proportion formula against the baseline rate:

        n = ceil(((z_alpha * sigma0 + z_beta * sigma1) / delta) ** 2)

    Args:
        baseline_rate: Observed success rate from the baseline (null rate).
        min_detectable_effect: Absolute degradation to detect.
        confidence: 1 - alpha, one-sided.
        power: 1 - beta.

    Returns:
        The required sample count and the inputs that produced it.
    """
    _check_open_unit("baseline_rate", baseline_rate)
    _check_open_unit("min_detectable_effect", min_detectable_effect)
    _check_open_unit("confidence", confidence)
    _check_open_unit("power", power)

    p0 = baseline_rate
    p1 = p0 - min_detectable_effect
    if p1 < 0.0:
        msg = (
            f"min_detectable_effect {min_detectable_effect} exceeds "
            f"baseline_rate {baseline_rate}"
        )
        raise ValueError(msg)

    z_alpha = float(norm.ppf(confidence))
    z_beta = float(norm.ppf(power))
    sigma0 = math.sqrt(p0 * (1.0 - p0))
    sigma1 = math.sqrt(p1 * (1.0 - p1))

    n = ((z_alpha * sigma0 + z_beta * sigma1) / min_detectable_effect) ** 2

    return SampleSizeRequirement(
        required_samples=max(1, math.ceil(n)),
        confidence=confidence,
        power=power,
        min_detectable_effect=min_detectable_effect,
        null_rate=p0,
        alternative_rate=p1,
    )


def achieved_power(
    samples: int,
    baseline_rate: float,
    min_detectable_effect: float,
    confidence: float,
) -> float:
    """Power a run of ``samples`` has to detect the given degradation."""
    if samples <= 0:
        msg = f"samples must be positive, got {samples}"
        raise ValueError(msg)
    p0 = baseline_rate
    p1 = p0 - min_detectable_effect
    z_alpha = float(norm.ppf(confidence))
    sigma0 = math.sqrt(p0 * (1.0 - p0))
    sigma1 = math.sqrt(p1 * (1.0 - p1))
    if sigma1 == 0.0:
        return 1.0
    z = (min_detectable_effect * math.sqrt(samples) - z_alpha * sigma0) / sigma1
    return float(norm.cdf(z))
