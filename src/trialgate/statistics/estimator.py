# Copyright (c) Syntropy Systems
"""Wilson score estimation for binomial success rates."""
from __future__ import annotations

import math
from dataclasses import dataclass

from scipy.stats import norm


@dataclass(frozen=True)
class ProportionEstimate:
    """Point estimate and two-sided confidence interval for a success rate."""

    point_estimate: float
    sample_size: int
    lower_bound: float
    upper_bound: float
    confidence: float

    @property
    def interval_width(self) -> float:
        """Width of the confidence interval."""
        return self.upper_bound - self.lower_bound

    @property
    def margin_of_error(self) -> float:
        """Half the interval width."""
        return self.interval_width / 2.0


def _validate(successes: int, trials: int, confidence: float) -> None:
    if trials <= 0:
        msg = f"trials must be positive, got {trials}"
        raise ValueError(msg)
    if successes < 0 or successes > trials:
        msg = f"successes must be in [0, {trials}], got {successes}"
        raise ValueError(msg)
    if not 0.0 < confidence < 1.0:
        msg = f"confidence must be in (0, 1), got {confidence}"
        raise ValueError(msg)


def z_one_sided(confidence: float) -> float:
    """Critical value for a one-sided test at the given confidence."""
    return float(norm.ppf(confidence))


def z_two_sided(confidence: float) -> float:
    """Critical value for a two-sided interval at the given confidence."""
    alpha = 1.0 - confidence
    return float(norm.ppf(1.0 - alpha / 2.0))


def _wilson(p_hat: float, n: int, z: float) -> tuple[float, float]:
    z2 = z * z
    denom = 1.0 + z2 / n
    center = (p_hat + z2 / (2.0 * n)) / denom
    margin = z * math.sqrt(p_hat * (1.0 - p_hat) / n + z2 / (4.0 * n * n)) / denom
    lower = min(1.0, max(0.0, center - margin))
    upper = min(1.0, max(0.0, center + margin))
    return lower, upper


def estimate(successes: int, trials: int, confidence: float) -> ProportionEstimate:
    """Two-sided Wilson score interval for ``successes`` out of ``trials``."""
    _validate(successes, trials, confidence)
    p_hat = successes / trials
    lower, upper = _wilson(p_hat, trials, z_two_sided(confidence))
    return ProportionEstimate(
        point_estimate=p_hat,
        sample_size=trials,
        lower_bound=lower,
        upper_bound=upper,
        confidence=confidence,
    )


def lower_bound(successes: int, trials: int, confidence: float) -> float:
    """One-sided Wilson lower bound on the true success rate.

    This is the rate we can claim the process meets or exceeds with the
    given confidence.
    """
    _validate(successes, trials, confidence)
    lower, _ = _wilson(successes / trials, trials, z_one_sided(confidence))
    return lower


def standard_error(p: float, n: int) -> float:
    """Standard error of a proportion ``p`` estimated from ``n`` trials."""
    if n <= 0:
        msg = f"n must be positive, got {n}"
        raise ValueError(msg)
    return math.sqrt(p * (1.0 - p) / n)


def z_test_statistic(observed: float, hypothesized: float, n: int) -> float:
    """One-proportion z statistic under the hypothesized rate.

    Returns 0 when the standard error under the null is zero.
    """
    se = standard_error(hypothesized, n)
    if se == 0.0:
        return 0.0
    return (observed - hypothesized) / se


def one_sided_p_value(z: float) -> float:
    """Upper-tail p-value for a z statistic."""
    return float(1.0 - norm.cdf(z))
