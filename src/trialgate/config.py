# Copyright (c) Syntropy Systems
"""Run configuration: a validated struct plus the builder that merges sources.

Sources are merged least specific first, so later layers win:

1. Defaults on :class:`RunConfig`
2. ``trialgate.yaml`` (nearest one walking up from the cwd, or an explicit path)
3. Values passed explicitly by the caller
4. ``TRIALGATE_*`` environment variables
"""
from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, cast

import yaml

from trialgate.errors import ConfigurationError
from trialgate.pacing import Pacing

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "trialgate.yaml"

ENV_SAMPLES = "TRIALGATE_SAMPLES"
ENV_MIN_PASS_RATE = "TRIALGATE_MIN_PASS_RATE"
ENV_SAMPLE_MULTIPLIER = "TRIALGATE_SAMPLE_MULTIPLIER"
ENV_TIME_BUDGET_MS = "TRIALGATE_TIME_BUDGET_MS"
ENV_UNIT_CHARGE = "TRIALGATE_UNIT_CHARGE"
ENV_UNIT_BUDGET = "TRIALGATE_UNIT_BUDGET"

NAN = float("nan")


class BudgetExhaustedBehavior(str, Enum):
    """What happens to the verdict when a budget runs out."""

    FAIL = "fail"
    EVALUATE_PARTIAL = "evaluate_partial"


class ExceptionPolicy(str, Enum):
    """How a sample that raises something other than AssertionError is treated."""

    FAIL_SAMPLE = "fail_sample"
    ABORT_TEST = "abort_test"


class ThresholdOrigin(str, Enum):
    """Where an explicit pass-rate threshold comes from."""

    SLA = "sla"
    SLO = "slo"
    POLICY = "policy"
    EMPIRICAL = "empirical"
    UNSPECIFIED = "unspecified"

    @property
    def description(self) -> str:
        """One-line explanation of the origin."""
        return _ORIGIN_DESCRIPTIONS[self]

    @property
    def is_normative(self) -> bool:
        """Normative thresholds are requirements, not measurements."""
        return self in (ThresholdOrigin.SLA, ThresholdOrigin.SLO, ThresholdOrigin.POLICY)


_ORIGIN_DESCRIPTIONS = {
    ThresholdOrigin.SLA: "Service Level Agreement, contractual with a customer",
    ThresholdOrigin.SLO: "Service Level Objective, an internal target",
    ThresholdOrigin.POLICY: "Organizational policy or compliance requirement",
    ThresholdOrigin.EMPIRICAL: "Derived from measured baseline data",
    ThresholdOrigin.UNSPECIFIED: "Origin not declared",
}


def is_set(value: float) -> bool:
    """Whether an optional float knob was configured (NaN means unset)."""
    return not math.isnan(value)


@dataclass(frozen=True)
class RunConfig:
    """Validated configuration for one probabilistic run.

    Optional float knobs use NaN for "not configured"; zero is a valid value.
    Build instances with :class:`RunConfigBuilder` so validation runs.
    """

    # Planned sample count before the multiplier
    samples: int = 100

    # Explicit minimum pass rate (Threshold-First)
    min_pass_rate: float = NAN

    # Scales the sample count, e.g. 0.1 for a quick local run
    sample_multiplier: float = 1.0

    # Wall-clock ceiling for the run in ms (0 = unlimited)
    time_budget_ms: int = 0

    # Static cost units charged after every sample
    unit_charge: int = 0

    # Cost unit ceiling for the run (0 = unlimited)
    unit_budget: int = 0

    # Samples report their own cost units through a recorder
    dynamic_units: bool = False

    on_budget_exhausted: BudgetExhaustedBehavior = BudgetExhaustedBehavior.FAIL
    on_exception: ExceptionPolicy = ExceptionPolicy.FAIL_SAMPLE

    # Failure details kept for the report
    max_example_failures: int = 5

    # Sample-Size-First
    threshold_confidence: float = NAN

    # Confidence-First
    confidence: float = NAN
    min_detectable_effect: float = NAN
    power: float = NAN

    threshold_origin: ThresholdOrigin = ThresholdOrigin.UNSPECIFIED
    contract_ref: str | None = None

    # Identifies the baseline family this run is judged against
    use_case_id: str | None = None

    # Identity of the input generator, compared against the baseline's
    factor_source_name: str | None = None
    factor_source_hash: str | None = None

    pacing: Pacing = field(default_factory=Pacing)

    @property
    def effective_samples(self) -> int:
        """Sample count after the multiplier, never below one."""
        return max(1, math.floor(self.samples * self.sample_multiplier + 0.5))

    @property
    def has_min_pass_rate(self) -> bool:
        """Whether an explicit threshold was configured."""
        return is_set(self.min_pass_rate)

    def validate(self, context_name: str = "run") -> None:
        """Raise ConfigurationError if any knob is out of range."""
        prefix = f"Invalid configuration for {context_name}"
        if self.samples <= 0:
            msg = f"{prefix}: samples must be >= 1, but resolved to {self.samples}"
            raise ConfigurationError(msg)
        if self.sample_multiplier <= 0 or not is_set(self.sample_multiplier):
            msg = (
                f"{prefix}: sample_multiplier must be > 0, "
                f"but was {self.sample_multiplier}"
            )
            raise ConfigurationError(msg)
        if self.has_min_pass_rate and not 0.0 <= self.min_pass_rate <= 1.0:
            msg = (
                f"{prefix}: min_pass_rate must be in range [0.0, 1.0], "
                f"but resolved to {self.min_pass_rate}"
            )
            raise ConfigurationError(msg)
        for name in _PROBABILITY_FIELDS:
            probability = cast("float", getattr(self, name))
            if is_set(probability) and not 0.0 < probability < 1.0:
                msg = (
                    f"{prefix}: {name} must be strictly between 0.0 and 1.0, "
                    f"but resolved to {probability}"
                )
                raise ConfigurationError(msg)
        for name in ("time_budget_ms", "unit_charge", "unit_budget", "max_example_failures"):
            value = cast("int", getattr(self, name))
            if value < 0:
                msg = f"{prefix}: {name} must be >= 0, but was {value}"
                raise ConfigurationError(msg)


_PROBABILITY_FIELDS = ("threshold_confidence", "confidence", "min_detectable_effect", "power")
_INT_FIELDS = {
    "samples",
    "time_budget_ms",
    "unit_charge",
    "unit_budget",
    "max_example_failures",
}
_FLOAT_FIELDS = {
    "min_pass_rate",
    "sample_multiplier",
    "threshold_confidence",
    "confidence",
    "min_detectable_effect",
    "power",
}
_STR_FIELDS = {"contract_ref", "use_case_id", "factor_source_name", "factor_source_hash"}
_ENUM_FIELDS: dict[str, type[Enum]] = {
    "on_budget_exhausted": BudgetExhaustedBehavior,
    "on_exception": ExceptionPolicy,
    "threshold_origin": ThresholdOrigin,
}

_ENV_OVERRIDES = {
    ENV_SAMPLES: "samples",
    ENV_MIN_PASS_RATE: "min_pass_rate",
    ENV_SAMPLE_MULTIPLIER: "sample_multiplier",
    ENV_TIME_BUDGET_MS: "time_budget_ms",
    ENV_UNIT_CHARGE: "unit_charge",
    ENV_UNIT_BUDGET: "unit_budget",
}


def find_config_file(start_path: Path | None = None) -> Path | None:
    """Find the nearest trialgate.yaml by walking up from start_path."""
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        if current == current.parent:
            return None
        current = current.parent


def _coerce(name: str, value: object) -> object:
    """Convert a raw value from YAML or the environment to the field's type."""
    if name in _INT_FIELDS:
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            msg = f"{name} must be an integer, got {value!r}"
            raise ConfigurationError(msg)
        try:
            return int(value)
        except ValueError as e:
            msg = f"{name} must be an integer, got {value!r}"
            raise ConfigurationError(msg) from e
    if name in _FLOAT_FIELDS:
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            msg = f"{name} must be a number, got {value!r}"
            raise ConfigurationError(msg)
        try:
            return float(value)
        except ValueError as e:
            msg = f"{name} must be a number, got {value!r}"
            raise ConfigurationError(msg) from e
    if name in _ENUM_FIELDS:
        enum_cls = _ENUM_FIELDS[name]
        try:
            return enum_cls(str(value).lower())
        except ValueError as e:
            choices = ", ".join(str(m.value) for m in enum_cls)
            msg = f"{name} must be one of {choices}, got {value!r}"
            raise ConfigurationError(msg) from e
    if name == "dynamic_units":
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    if name == "pacing":
        if isinstance(value, Pacing):
            return value
        if not isinstance(value, dict):
            msg = f"pacing must be a mapping, got {value!r}"
            raise ConfigurationError(msg)
        try:
            return Pacing(**cast("dict[str, float]", value))
        except (TypeError, ValueError) as e:
            msg = f"Invalid pacing configuration: {e}"
            raise ConfigurationError(msg) from e
    if name in _STR_FIELDS:
        return None if value is None else str(value)
    msg = f"Unknown configuration key: {name}"
    raise ConfigurationError(msg)


class RunConfigBuilder:
    """Merge configuration layers and produce a validated :class:`RunConfig`.

    Example:
        config = (
            RunConfigBuilder()
            .with_file(Path("trialgate.yaml"))
            .with_values(samples=200, threshold_confidence=0.95)
            .build()
        )
    """

    def __init__(self, context_name: str = "run") -> None:
        self.context_name = context_name
        self._values: dict[str, object] = {}
        self._env: Mapping[str, str] | None = os.environ

    def with_file(self, path: Path | None = None) -> RunConfigBuilder:
        """Layer values from a YAML file. Defaults to the nearest trialgate.yaml."""
        if path is None:
            path = find_config_file()
            if path is None:
                return self
        elif not path.exists():
            msg = f"Configuration file not found: {path}"
            raise ConfigurationError(msg)

        with path.open() as f:
            data = cast("dict[str, object]", yaml.safe_load(f) or {})
        if not isinstance(data, dict):
            msg = f"{path} must contain a mapping at the top level"
            raise ConfigurationError(msg)

        for key, value in data.items():
            self._values[key] = _coerce(key, value)
        return self

    def with_values(self, **values: object) -> RunConfigBuilder:
        """Layer explicit values. ``None`` leaves a knob untouched."""
        for key, value in values.items():
            if value is None:
                continue
            self._values[key] = _coerce(key, value)
        return self

    def with_environment(self, env: Mapping[str, str] | None) -> RunConfigBuilder:
        """Use ``env`` for environment overrides, or ``None`` to disable them."""
        self._env = env
        return self

    def _apply_environment(self, values: dict[str, object]) -> None:
        if self._env is None:
            return
        for env_name, key in _ENV_OVERRIDES.items():
            raw = self._env.get(env_name)
            if raw is None or not raw.strip():
                continue
            try:
                values[key] = _coerce(key, raw.strip())
            except ConfigurationError as e:
                msg = f"Invalid value for environment variable {env_name}: {raw}"
                raise ConfigurationError(msg) from e

    def build(self) -> RunConfig:
        """Merge all layers and validate."""
        values = dict(self._values)
        self._apply_environment(values)

        known = {f.name for f in fields(RunConfig)}
        unknown = sorted(set(values) - known)
        if unknown:
            msg = f"Unknown configuration keys: {', '.join(unknown)}"
            raise ConfigurationError(msg)

        config = replace(RunConfig(), **values)
        config.validate(self.context_name)
        return config
