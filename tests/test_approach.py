# Copyright (c) Syntropy Systems
"""Tests for operational approach detection and threshold resolution."""

from __future__ import annotations

import math
from datetime import datetime, timezone

import pytest

from trialgate.approach import detect_approach, resolve_approach, validate_configuration
from trialgate.baseline.models import BaselineRecord
from trialgate.config import RunConfig, RunConfigBuilder
from trialgate.errors import ConfigurationError
from trialgate.statistics.estimator import lower_bound
from trialgate.statistics.sample_size import calculate_for_power
from trialgate.statistics.thresholds import Approach


def config(**values: object) -> RunConfig:
    return RunConfigBuilder().with_environment(None).with_values(**values).build()


@pytest.fixture
def baseline() -> BaselineRecord:
    return BaselineRecord(
        use_case_id="checkout",
        source_id="checkout-1.yaml",
        generated_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        samples=1000,
        successes=951,
    )


class TestDetectApproach:
    """Tests for detect_approach."""

    def test_threshold_first(self):
        assert detect_approach(config(min_pass_rate=0.9), False) is Approach.THRESHOLD_FIRST

    def test_sample_size_first(self):
        approach = detect_approach(config(threshold_confidence=0.95), True)

        assert approach is Approach.SAMPLE_SIZE_FIRST

    def test_confidence_first(self):
        approach = detect_approach(
            config(confidence=0.95, min_detectable_effect=0.05, power=0.8), True
        )

        assert approach is Approach.CONFIDENCE_FIRST

    def test_over_specified(self):
        with pytest.raises(ConfigurationError, match="Over-specified configuration"):
            _ = detect_approach(config(min_pass_rate=0.9, threshold_confidence=0.95), True)

    def test_incomplete_confidence_first(self):
        with pytest.raises(ConfigurationError) as exc_info:
            _ = detect_approach(config(confidence=0.95), True)

        assert "present confidence; missing min_detectable_effect, power" in str(exc_info.value)

    def test_nothing_configured(self):
        with pytest.raises(ConfigurationError, match="No operational approach configured"):
            _ = detect_approach(config(), True)

    def test_conflicting_approaches(self):
        with pytest.raises(ConfigurationError) as exc_info:
            _ = detect_approach(
                config(
                    threshold_confidence=0.95,
                    confidence=0.95,
                    min_detectable_effect=0.05,
                    power=0.8,
                ),
                True,
            )

        assert "Sample-Size-First and Confidence-First" in str(exc_info.value)

    def test_derived_approach_needs_baseline(self):
        with pytest.raises(ConfigurationError, match="Sample-Size-First requires baseline data"):
            _ = detect_approach(config(threshold_confidence=0.95), False)


class TestValidateConfiguration:
    """Tests for baseline-dependent validation."""

    def test_explicit_threshold_conflicts_with_baseline(self, baseline):
        with pytest.raises(ConfigurationError, match="Conflicting threshold sources"):
            validate_configuration(config(min_pass_rate=0.9), baseline)

    @pytest.mark.parametrize("origin", ["sla", "slo", "policy"])
    def test_normative_threshold_allowed(self, baseline, origin):
        validate_configuration(config(min_pass_rate=0.9, threshold_origin=origin), baseline)

    def test_undefined_threshold(self):
        with pytest.raises(ConfigurationError, match="Undefined threshold"):
            validate_configuration(config(), None)

    def test_reports_every_violation(self):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_configuration(config(threshold_confidence=0.95, confidence=0.9), None)

        message = str(exc_info.value)
        assert "threshold_confidence requires a baseline" in message
        assert "Incomplete Confidence-First configuration" in message
        assert "\n\n" in message


class TestResolveApproach:
    """Tests for resolve_approach."""

    def test_threshold_first_without_baseline(self):
        resolved = resolve_approach(config(samples=20, min_pass_rate=0.9), None)

        assert resolved.kind is Approach.THRESHOLD_FIRST
        assert resolved.samples == 20
        assert resolved.threshold == 0.9
        assert not resolved.spec_driven
        assert math.isnan(resolved.confidence)
        assert resolved.sound

    def test_threshold_first_with_normative_baseline(self, baseline):
        resolved = resolve_approach(
            config(min_pass_rate=0.96, threshold_origin="slo"), baseline
        )

        assert resolved.threshold == 0.96
        assert resolved.spec_driven
        assert not resolved.sound

    def test_sample_size_first(self, baseline):
        resolved = resolve_approach(
            config(samples=100, threshold_confidence=0.95), baseline
        )

        assert resolved.kind is Approach.SAMPLE_SIZE_FIRST
        assert resolved.samples == 100
        assert 0.93 < resolved.threshold < 0.945
        assert resolved.confidence == 0.95
        assert math.isnan(resolved.power)

    def test_sample_multiplier_applies(self, baseline):
        resolved = resolve_approach(
            config(samples=100, sample_multiplier=0.5, threshold_confidence=0.95), baseline
        )

        assert resolved.samples == 50

    def test_confidence_first(self, baseline):
        resolved = resolve_approach(
            config(confidence=0.95, min_detectable_effect=0.05, power=0.8), baseline
        )

        expected = calculate_for_power(0.951, 0.05, 0.95, 0.8).required_samples
        assert resolved.kind is Approach.CONFIDENCE_FIRST
        assert resolved.samples == expected
        assert resolved.threshold == pytest.approx(lower_bound(951, 1000, 0.95))
        assert resolved.power == 0.8
        assert resolved.min_detectable_effect == 0.05

    def test_confidence_first_impossible_effect(self, baseline):
        with pytest.raises(ConfigurationError, match="power analysis failed"):
            _ = resolve_approach(
                config(confidence=0.95, min_detectable_effect=0.99, power=0.8), baseline
            )

    def test_confidence_first_without_baseline(self):
        with pytest.raises(ConfigurationError, match="requires baseline data"):
            _ = resolve_approach(
                config(confidence=0.95, min_detectable_effect=0.05, power=0.8), None
            )

    def test_sample_size_first_is_deterministic(self, baseline):
        cfg = config(samples=100, threshold_confidence=0.9)

        first = resolve_approach(cfg, baseline)
        second = resolve_approach(cfg, baseline.model_copy())

        assert first.threshold == second.threshold
        assert first.samples == second.samples

    def test_sample_size_first_bad_confidence_is_configuration_error(self, baseline):
        # Constructed directly so the builder's range check does not run first
        cfg = RunConfig(samples=100, threshold_confidence=1.0)

        with pytest.raises(ConfigurationError, match="Sample-Size-First threshold derivation"):
            _ = resolve_approach(cfg, baseline)
