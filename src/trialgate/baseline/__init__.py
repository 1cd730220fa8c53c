# Copyright (c) Syntropy Systems
"""Baseline matching: footprints, covariates, selection and storage."""

from trialgate.baseline.footprint import compute_footprint
from trialgate.baseline.models import (
    BaselineRecord,
    CovariateCategory,
    CovariateDeclaration,
    CovariateProfile,
    ExpirationPolicy,
    FactorSource,
    StandardCovariate,
)
from trialgate.baseline.repository import BaselineRepository, YamlBaselineRepository
from trialgate.baseline.resolution import LazyBaselineResolution, check_factor_source
from trialgate.baseline.selector import ConformanceDetail, SelectionResult, select_baseline

__all__ = [
    "BaselineRecord",
    "BaselineRepository",
    "ConformanceDetail",
    "CovariateCategory",
    "CovariateDeclaration",
    "CovariateProfile",
    "ExpirationPolicy",
    "FactorSource",
    "LazyBaselineResolution",
    "SelectionResult",
    "StandardCovariate",
    "YamlBaselineRepository",
    "check_factor_source",
    "compute_footprint",
    "select_baseline",
]
