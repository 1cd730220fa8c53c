# Copyright (c) Syntropy Systems
"""Baseline records, covariates and expiration."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing_extensions import Self

SCHEMA_VERSION = "trialgate-baseline-1"

# Remaining validity fractions that trigger expiration warnings
EXPIRING_SOON_FRACTION = 0.25
EXPIRING_IMMINENTLY_FRACTION = 0.10


class BaselineModel(BaseModel):
    """Base model with shared config for baseline schemas."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
    )


class CovariateCategory(str, Enum):
    """How a covariate participates in baseline selection."""

    TEMPORAL = "temporal"
    CONFIGURATION = "configuration"
    EXTERNAL_DEPENDENCY = "external_dependency"
    INFRASTRUCTURE = "infrastructure"
    DATA_STATE = "data_state"
    INFORMATIONAL = "informational"

    @property
    def is_hard_gate(self) -> bool:
        """Configuration covariates must match exactly."""
        return self is CovariateCategory.CONFIGURATION

    @property
    def is_scored(self) -> bool:
        """Informational covariates are recorded but never compared."""
        return self is not CovariateCategory.INFORMATIONAL


class StandardCovariate(Enum):
    """Covariates with a well-known meaning."""

    WEEKDAY_VS_WEEKEND = ("weekday_vs_weekend", CovariateCategory.TEMPORAL)
    TIME_OF_DAY = ("time_of_day", CovariateCategory.TEMPORAL)
    TIMEZONE = ("timezone", CovariateCategory.INFRASTRUCTURE)
    REGION = ("region", CovariateCategory.INFRASTRUCTURE)

    def __init__(self, key: str, category: CovariateCategory) -> None:
        self.key = key
        self.category = category


@dataclass(frozen=True)
class CovariateDeclaration:
    """The named dimensions a use case exposes, in declaration order."""

    categories: dict[str, CovariateCategory] = field(default_factory=dict)

    @classmethod
    def of(cls, *names: str | StandardCovariate, **categories: CovariateCategory) -> Self:
        """Declare covariates by name.

        Standard covariates bring their own category. Custom names default
        to INFRASTRUCTURE unless a category is passed by keyword; keyword-only
        names are appended after the positional ones.
        """
        declared: dict[str, CovariateCategory] = {}
        for name in names:
            if isinstance(name, StandardCovariate):
                declared[name.key] = name.category
            else:
                declared[name] = categories.get(name, CovariateCategory.INFRASTRUCTURE)
        for name, category in categories.items():
            declared.setdefault(name, category)
        return cls(declared)

    @property
    def names(self) -> list[str]:
        return list(self.categories)

    def category_of(self, name: str) -> CovariateCategory:
        return self.categories.get(name, CovariateCategory.INFRASTRUCTURE)

    def is_empty(self) -> bool:
        return not self.categories


@dataclass(frozen=True)
class CovariateProfile:
    """Concrete covariate values observed for one run."""

    values: dict[str, str] = field(default_factory=dict)

    def get(self, name: str) -> str | None:
        return self.values.get(name)

    def compute_hash(self) -> str:
        """Short stable hash of the profile's values in order."""
        digest = hashlib.sha256()
        for key, value in self.values.items():
            digest.update(f"{key}={value}\n".encode())
        return digest.hexdigest()[:8]


class FactorSource(BaselineModel):
    """Identity of the input generator a baseline was measured with."""

    name: str
    hash: str
    samples: int = 0


class ExpirationState(str, Enum):
    NO_EXPIRATION = "no_expiration"
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRING_IMMINENTLY = "expiring_imminently"
    EXPIRED = "expired"


@dataclass(frozen=True)
class ExpirationStatus:
    """Where a baseline stands in its validity window."""

    state: ExpirationState
    remaining: timedelta | None = None
    remaining_fraction: float | None = None

    @property
    def is_expired(self) -> bool:
        return self.state is ExpirationState.EXPIRED

    @property
    def requires_warning(self) -> bool:
        return self.state in (
            ExpirationState.EXPIRING_SOON,
            ExpirationState.EXPIRING_IMMINENTLY,
            ExpirationState.EXPIRED,
        )

    def describe(self) -> str:
        if self.state is ExpirationState.NO_EXPIRATION:
            return "no expiration"
        if self.remaining is None:
            return self.state.value
        if self.state is ExpirationState.EXPIRED:
            return f"expired {abs(self.remaining.days)} days ago"
        return f"{self.state.value.replace('_', ' ')}, {self.remaining.days} days remaining"


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ExpirationPolicy(BaselineModel):
    """Validity window of a baseline, counted from ``baseline_end_time``."""

    expires_in_days: int = Field(default=0, ge=0)
    baseline_end_time: datetime | None = None

    @field_validator("baseline_end_time")
    @classmethod
    def _utc_end_time(cls, value: datetime | None) -> datetime | None:
        return None if value is None else _ensure_utc(value)

    @property
    def has_expiration(self) -> bool:
        return self.expires_in_days > 0 and self.baseline_end_time is not None

    def expiration_time(self) -> datetime | None:
        if not self.has_expiration or self.baseline_end_time is None:
            return None
        return self.baseline_end_time + timedelta(days=self.expires_in_days)

    def evaluate_at(self, now: datetime) -> ExpirationStatus:
        expires_at = self.expiration_time()
        if expires_at is None:
            return ExpirationStatus(ExpirationState.NO_EXPIRATION)

        remaining = expires_at - _ensure_utc(now)
        if remaining <= timedelta(0):
            return ExpirationStatus(ExpirationState.EXPIRED, remaining, 0.0)

        fraction = remaining / timedelta(days=self.expires_in_days)
        if fraction <= EXPIRING_IMMINENTLY_FRACTION:
            state = ExpirationState.EXPIRING_IMMINENTLY
        elif fraction <= EXPIRING_SOON_FRACTION:
            state = ExpirationState.EXPIRING_SOON
        else:
            state = ExpirationState.VALID
        return ExpirationStatus(state, remaining, fraction)


class BaselineRecord(BaselineModel):
    """Empirical data recorded for a use case. Read-only once loaded."""

    schema_version: str = SCHEMA_VERSION
    use_case_id: str
    source_id: str = ""
    footprint: str = ""
    version: int = 1
    generated_at: datetime
    approved_by: str | None = None
    approved_at: datetime | None = None
    samples: int = Field(gt=0)
    successes: int = Field(ge=0)
    min_pass_rate: float | None = Field(default=None, ge=0.0, le=1.0)
    covariates: dict[str, str] = Field(default_factory=dict)
    factor_source: FactorSource | None = None
    expiration: ExpirationPolicy | None = None

    @field_validator("generated_at", "approved_at")
    @classmethod
    def _utc_timestamps(cls, value: datetime | None) -> datetime | None:
        return None if value is None else _ensure_utc(value)

    @field_validator("covariates", mode="before")
    @classmethod
    def _stringify_covariates(cls, value: object) -> object:
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        return value

    @model_validator(mode="after")
    def _check_counts(self) -> Self:
        if self.successes > self.samples:
            msg = f"successes ({self.successes}) exceeds samples ({self.samples})"
            raise ValueError(msg)
        if self.expiration is not None and self.expiration.baseline_end_time is None:
            self.expiration.baseline_end_time = self.generated_at
        return self

    @property
    def observed_rate(self) -> float:
        return self.successes / self.samples

    @property
    def covariate_profile(self) -> CovariateProfile:
        return CovariateProfile(dict(self.covariates))

    def expiration_status(self, now: datetime | None = None) -> ExpirationStatus:
        if self.expiration is None:
            return ExpirationStatus(ExpirationState.NO_EXPIRATION)
        return self.expiration.evaluate_at(now or datetime.now(timezone.utc))
