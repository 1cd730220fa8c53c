# Copyright (c) Syntropy Systems
"""Structural fingerprint of a use case's covariate schema."""
from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

from trialgate.baseline.models import CovariateDeclaration

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

FOOTPRINT_LENGTH = 8


def compute_footprint(
    use_case_id: str,
    covariates: CovariateDeclaration | Iterable[str],
    factors: Mapping[str, object] | None = None,
) -> str:
    """Deterministic footprint of a use case and its covariate names.

    Covariate values never enter the hash, so every baseline recorded under
    the same declaration shares a footprint. Identity factors are hashed in
    sorted order; covariate names keep declaration order.
    """
    if isinstance(covariates, CovariateDeclaration):
        names = covariates.names
    else:
        names = list(covariates)
    factors = factors or {}

    digest = hashlib.sha256()
    digest.update(f"usecase:{use_case_id}\n".encode())
    for key in sorted(factors):
        digest.update(f"factor:{key}={factors[key]}\n".encode())
    for name in names:
        digest.update(f"covariate:{name}\n".encode())
    return digest.hexdigest()[:FOOTPRINT_LENGTH]
