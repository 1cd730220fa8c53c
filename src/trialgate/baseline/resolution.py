# Copyright (c) Syntropy Systems
"""Resolve a run's baseline once, on demand, before its first sample."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from trialgate.baseline.footprint import compute_footprint
from trialgate.baseline.models import CovariateDeclaration, CovariateProfile
from trialgate.baseline.selector import SelectionResult, select_baseline
from trialgate.errors import NoCompatibleBaselineError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from datetime import datetime

    from trialgate.baseline.models import BaselineRecord
    from trialgate.baseline.repository import BaselineRepository

logger = logging.getLogger(__name__)


class FactorCheckStatus(str, Enum):
    MATCH = "match"
    MISMATCH = "mismatch"
    NOT_APPLICABLE = "not_applicable"


@dataclass(frozen=True)
class FactorCheck:
    """Result of comparing the run's input generator with the baseline's."""

    status: FactorCheckStatus
    message: str


def _short_hash(value: str) -> str:
    if len(value) <= 12:
        return value
    return f"{value[:8]}...{value[-4:]}"


def check_factor_source(
    record: BaselineRecord,
    source_hash: str | None,
    source_name: str | None = None,
    test_samples: int | None = None,
) -> FactorCheck:
    """Compare the run's factor source with the one the baseline recorded.

    A mismatch is logged as a warning. It never fails the run.
    """
    if source_hash is None:
        return FactorCheck(
            FactorCheckStatus.NOT_APPLICABLE,
            "Run does not declare a factor source; consistency check skipped.",
        )
    baseline = record.factor_source
    if baseline is None:
        return FactorCheck(
            FactorCheckStatus.NOT_APPLICABLE,
            "Baseline has no factor source metadata; consistency check skipped.",
        )

    if baseline.hash == source_hash:
        message = "Factor sources match."
        if test_samples is not None and 0 < baseline.samples != test_samples:
            message += (
                f" Note: baseline used {baseline.samples} samples; "
                f"run uses {test_samples}."
            )
        return FactorCheck(FactorCheckStatus.MATCH, message)

    message = (
        "Factor source mismatch detected.\n"
        f"  Baseline: hash={_short_hash(baseline.hash)}, source={baseline.name}, "
        f"samples={baseline.samples}\n"
        f"  Run:      hash={_short_hash(source_hash)}, source={source_name or '-'}\n"
        "Statistical conclusions may be less reliable."
    )
    logger.warning("%s", message)
    return FactorCheck(FactorCheckStatus.MISMATCH, message)


def warn_if_expiring(record: BaselineRecord, now: datetime | None = None) -> None:
    """Log a warning when a baseline is close to or past its expiration."""
    status = record.expiration_status(now)
    if status.requires_warning:
        logger.warning(
            "Baseline %s for %s is %s; consider recording a fresh baseline",
            record.source_id,
            record.use_case_id,
            status.describe(),
        )


def _log_selection(result: SelectionResult, use_case_id: str) -> None:
    if result.selected is None:
        return
    if not result.is_approximate:
        logger.info("Baseline for %s: %s", use_case_id, result.selected.source_id)
        return

    lines = [f"Baseline for {use_case_id}: {result.selected.source_id}"]
    if result.has_non_conformance:
        lines.append("The following covariates do not match the baseline:")
        lines.extend(
            f"  - {d.key}: baseline={d.baseline_value}, test={d.test_value}"
            for d in result.non_conforming
        )
        lines.append("Statistical comparison may be less reliable.")
    if result.ambiguous:
        lines.append(
            "Multiple equally suitable baselines existed; picked the most "
            "recent, then the lowest source id."
        )
    logger.warning("%s", "\n".join(lines))


class LazyBaselineResolution:
    """Baseline selection deferred until the run's profile is known.

    :meth:`resolve` computes the selection at most once. Later calls return
    the same :class:`SelectionResult` object.
    """

    def __init__(
        self,
        use_case_id: str,
        declaration: CovariateDeclaration,
        repository: BaselineRepository,
        factors: Mapping[str, object] | None = None,
    ) -> None:
        self.use_case_id = use_case_id
        self.declaration = declaration
        self.repository = repository
        self.footprint = compute_footprint(use_case_id, declaration, factors)
        self.candidates = repository.find_candidates(use_case_id, self.footprint)
        self._lock = threading.Lock()
        self._resolved = False
        self._result: SelectionResult | None = None

    @property
    def resolved(self) -> bool:
        return self._resolved

    def _no_compatible(self, detail: str | None = None) -> NoCompatibleBaselineError:
        return NoCompatibleBaselineError(
            self.use_case_id,
            self.footprint,
            self.repository.find_available_footprints(self.use_case_id),
            detail,
        )

    def resolve(
        self,
        profile: CovariateProfile | Callable[[], CovariateProfile],
    ) -> SelectionResult:
        """Select the baseline for ``profile`` or return the earlier selection."""
        with self._lock:
            if self._resolved and self._result is not None:
                return self._result

            if not self.candidates:
                raise self._no_compatible()

            current = profile if isinstance(profile, CovariateProfile) else profile()
            result = select_baseline(self.candidates, current, self.declaration)
            if result.selected is None:
                detail = None
                if result.rejected_configurations:
                    detail = (
                        "Configuration covariates must match exactly. Baselines exist for: "
                        + "; ".join(result.rejected_configurations)
                    )
                raise self._no_compatible(detail)

            _log_selection(result, self.use_case_id)
            warn_if_expiring(result.selected)
            self._result = result
            self._resolved = True
            return result


def latest_baseline(
    repository: BaselineRepository,
    use_case_id: str,
    declaration: CovariateDeclaration | None = None,
    factors: Mapping[str, object] | None = None,
) -> BaselineRecord | None:
    """Most recent baseline for the footprint, ignoring covariate values.

    Used when the run sets an explicit threshold and the baseline only
    provides context.
    """
    footprint = compute_footprint(use_case_id, declaration or CovariateDeclaration(), factors)
    candidates = repository.find_candidates(use_case_id, footprint)
    if not candidates:
        return None
    return max(candidates, key=lambda r: (r.generated_at, r.source_id))
