# Copyright (c) Syntropy Systems
"""Choose the operational approach for a run and fix its threshold.

Exactly one of three approaches may be configured:

* Sample-Size-First: ``threshold_confidence`` (with ``samples``)
* Confidence-First: ``confidence``, ``min_detectable_effect`` and ``power``
* Threshold-First: ``min_pass_rate`` (with ``samples``)

The first two derive their threshold from baseline data. Threshold-First
works with or without a baseline.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from trialgate.config import is_set
from trialgate.errors import ConfigurationError
from trialgate.statistics.thresholds import (
    Approach,
    DerivedThreshold,
    derive_confidence_first,
    derive_sample_size_first,
    derive_threshold_first,
)

if TYPE_CHECKING:
    from trialgate.baseline.models import BaselineRecord
    from trialgate.config import RunConfig

logger = logging.getLogger(__name__)

NAN = float("nan")

_CF_PARAMS = ("confidence", "min_detectable_effect", "power")


@dataclass(frozen=True)
class ResolvedApproach:
    """Outcome of approach selection for one run.

    Fields the active approach does not use are NaN, never zero.
    """

    kind: Approach
    samples: int
    threshold: float
    confidence: float = NAN
    min_detectable_effect: float = NAN
    power: float = NAN
    spec_driven: bool = False
    derived: DerivedThreshold | None = None

    @property
    def sound(self) -> bool:
        """False when the threshold was flagged statistically unsound."""
        return self.derived is None or self.derived.sound


def _present_cf_params(config: RunConfig) -> list[str]:
    return [name for name in _CF_PARAMS if is_set(getattr(config, name))]


def validate_configuration(config: RunConfig, baseline: BaselineRecord | None) -> None:
    """Check the baseline-dependent rules and report every violation at once."""
    errors: list[str] = []
    has_baseline = baseline is not None

    if has_baseline and config.has_min_pass_rate and not config.threshold_origin.is_normative:
        errors.append(
            "Conflicting threshold sources: a baseline exists for "
            f"'{baseline.use_case_id}' and an explicit min_pass_rate="
            f"{config.min_pass_rate} was also given with threshold_origin="
            f"{config.threshold_origin.value}.\n"
            "  Fix: remove min_pass_rate to derive the threshold from the "
            "baseline, or declare threshold_origin as sla, slo or policy if "
            "the threshold is a requirement rather than a measurement."
        )

    if not has_baseline and not config.has_min_pass_rate and not _any_strategy(config):
        errors.append(
            "Undefined threshold: no baseline is available and no "
            "min_pass_rate was configured.\n"
            "  Fix: set min_pass_rate, or record a baseline for this use case."
        )

    if not has_baseline and is_set(config.threshold_confidence):
        errors.append(
            "threshold_confidence requires a baseline to derive the threshold "
            "from, but none is available.\n"
            "  Fix: record a baseline, or use min_pass_rate instead."
        )

    present = _present_cf_params(config)
    if len(present) == len(_CF_PARAMS) and not has_baseline and not config.has_min_pass_rate:
        errors.append(
            "Confidence-First needs a baseline rate for its power analysis, "
            "but no baseline is available.\n"
            "  Fix: record a baseline, or use min_pass_rate instead."
        )
    if 0 < len(present) < len(_CF_PARAMS):
        missing = [name for name in _CF_PARAMS if name not in present]
        errors.append(
            "Incomplete Confidence-First configuration: "
            f"present {', '.join(present)}; missing {', '.join(missing)}.\n"
            "  Fix: set all of confidence, min_detectable_effect and power, "
            "or none of them."
        )

    if errors:
        msg = "\n\n".join(errors)
        raise ConfigurationError(msg)


def _any_strategy(config: RunConfig) -> bool:
    return (
        is_set(config.threshold_confidence)
        or config.has_min_pass_rate
        or bool(_present_cf_params(config))
    )


def detect_approach(config: RunConfig, has_baseline: bool) -> Approach:
    """Identify the single active approach or raise ConfigurationError."""
    any_confidence = is_set(config.confidence) or is_set(config.threshold_confidence)
    if any_confidence and config.has_min_pass_rate:
        msg = (
            "Over-specified configuration: min_pass_rate cannot be combined "
            "with confidence or threshold_confidence.\n"
            "  Fix: use min_pass_rate alone (Threshold-First), "
            "threshold_confidence alone (Sample-Size-First), or "
            "confidence + min_detectable_effect + power (Confidence-First)."
        )
        raise ConfigurationError(msg)

    present = _present_cf_params(config)
    if 0 < len(present) < len(_CF_PARAMS):
        missing = [name for name in _CF_PARAMS if name not in present]
        msg = (
            "Incomplete Confidence-First configuration: "
            f"present {', '.join(present)}; missing {', '.join(missing)}."
        )
        raise ConfigurationError(msg)

    active: list[Approach] = []
    if is_set(config.threshold_confidence):
        active.append(Approach.SAMPLE_SIZE_FIRST)
    if len(present) == len(_CF_PARAMS):
        active.append(Approach.CONFIDENCE_FIRST)
    if config.has_min_pass_rate:
        active.append(Approach.THRESHOLD_FIRST)

    if not active:
        msg = (
            "No operational approach configured.\n"
            "  Fix: set threshold_confidence (Sample-Size-First), "
            "confidence + min_detectable_effect + power (Confidence-First), "
            "or min_pass_rate (Threshold-First)."
        )
        raise ConfigurationError(msg)
    if len(active) > 1:
        names = " and ".join(a.label for a in active)
        msg = (
            f"Conflicting approaches configured: {names}. "
            "Exactly one may be active.\n"
            "  Fix: remove the parameters of all but one approach."
        )
        raise ConfigurationError(msg)

    approach = active[0]
    if approach is not Approach.THRESHOLD_FIRST and not has_baseline:
        msg = (
            f"{approach.label} requires baseline data, but no baseline is "
            "available.\n"
            "  Fix: record a baseline for this use case, or switch to "
            "min_pass_rate (Threshold-First)."
        )
        raise ConfigurationError(msg)
    return approach


def resolve_approach(config: RunConfig, baseline: BaselineRecord | None) -> ResolvedApproach:
    """Validate the configuration and derive the run's sample count and threshold."""
    approach = detect_approach(config, baseline is not None)
    validate_configuration(config, baseline)
    samples = config.effective_samples

    if approach is Approach.THRESHOLD_FIRST:
        if baseline is None:
            return ResolvedApproach(
                kind=approach,
                samples=samples,
                threshold=config.min_pass_rate,
            )
        derived = derive_threshold_first(
            baseline.samples,
            baseline.successes,
            samples,
            config.min_pass_rate,
        )
        return ResolvedApproach(
            kind=approach,
            samples=samples,
            threshold=derived.value,
            confidence=derived.context.confidence,
            spec_driven=True,
            derived=derived,
        )

    if baseline is None:
        msg = f"{approach.label} requires a baseline, but none was resolved"
        raise ConfigurationError(msg)

    if approach is Approach.SAMPLE_SIZE_FIRST:
        try:
            derived = derive_sample_size_first(
                baseline.samples,
                baseline.successes,
                samples,
                config.threshold_confidence,
            )
        except ValueError as e:
            msg = f"Sample-Size-First threshold derivation failed: {e}"
            raise ConfigurationError(msg) from e
        return ResolvedApproach(
            kind=approach,
            samples=samples,
            threshold=derived.value,
            confidence=config.threshold_confidence,
            spec_driven=True,
            derived=derived,
        )

    try:
        derived = derive_confidence_first(
            baseline.samples,
            baseline.successes,
            config.confidence,
            config.min_detectable_effect,
            config.power,
        )
    except ValueError as e:
        msg = f"Confidence-First power analysis failed: {e}"
        raise ConfigurationError(msg) from e

    logger.info(
        "Power analysis sized the run at %d samples (confidence=%.3f, power=%.3f, mde=%.3f)",
        derived.context.test_samples,
        config.confidence,
        config.power,
        config.min_detectable_effect,
    )
    return ResolvedApproach(
        kind=approach,
        samples=derived.context.test_samples,
        threshold=derived.value,
        confidence=config.confidence,
        min_detectable_effect=config.min_detectable_effect,
        power=config.power,
        spec_driven=True,
        derived=derived,
    )

