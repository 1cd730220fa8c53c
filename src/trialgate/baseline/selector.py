# Copyright (c) Syntropy Systems
"""Pick the baseline whose covariates best match the current run."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from trialgate.baseline.models import (
        BaselineRecord,
        CovariateDeclaration,
        CovariateProfile,
    )

MISSING = "<missing>"


@dataclass(frozen=True)
class ConformanceDetail:
    """Comparison of one covariate between a baseline and the run."""

    key: str
    baseline_value: str
    test_value: str
    conforms: bool


@dataclass(frozen=True)
class SelectionResult:
    """Outcome of baseline selection for one run."""

    selected: BaselineRecord | None
    conformance: list[ConformanceDetail] = field(default_factory=list)
    ambiguous: bool = False
    candidate_count: int = 0
    # Configuration signatures of candidates excluded by the hard gate
    rejected_configurations: list[str] = field(default_factory=list)

    @property
    def has_selection(self) -> bool:
        return self.selected is not None

    @property
    def non_conforming(self) -> list[ConformanceDetail]:
        return [d for d in self.conformance if not d.conforms]

    @property
    def has_non_conformance(self) -> bool:
        return bool(self.non_conforming)

    @property
    def is_approximate(self) -> bool:
        """Selected baseline is not an exact, unique match."""
        return self.has_non_conformance or self.ambiguous


@dataclass(frozen=True)
class _Scored:
    record: BaselineRecord
    details: list[ConformanceDetail]

    @property
    def match_count(self) -> int:
        return sum(1 for d in self.details if d.conforms)

    @property
    def rank(self) -> tuple[int, tuple[int, ...]]:
        """Lower is better: most matches, then leftmost matches."""
        vector = tuple(0 if d.conforms else 1 for d in self.details)
        return (-self.match_count, vector)

    @property
    def sort_key(self) -> tuple[int, tuple[int, ...], float, str]:
        # Newest first, then lexical source id for a stable pick among ties
        return (*self.rank, -self.record.generated_at.timestamp(), self.record.source_id)


def _configuration_signature(
    record: BaselineRecord,
    gate_keys: list[str],
) -> str:
    parts = [f"{key}={record.covariates.get(key, MISSING)}" for key in gate_keys]
    return ", ".join(parts) if parts else "<none>"


def select_baseline(
    candidates: list[BaselineRecord],
    profile: CovariateProfile,
    declaration: CovariateDeclaration,
) -> SelectionResult:
    """Rank candidates against the run's covariate profile.

    Configuration covariates are a hard gate. The remaining scored
    covariates rank candidates by number of matches, then by which
    covariates match in declaration order. Ties go to the most recent
    baseline, then to the lexically smallest source id; a tie on matches
    is still reported as ambiguous.
    """
    if not candidates:
        return SelectionResult(selected=None)

    gate_keys = [n for n in declaration.names if declaration.category_of(n).is_hard_gate]
    scored_keys = [
        n
        for n in declaration.names
        if declaration.category_of(n).is_scored
        and not declaration.category_of(n).is_hard_gate
    ]

    eligible: list[BaselineRecord] = []
    rejected: list[str] = []
    for record in candidates:
        if all(record.covariates.get(k) == profile.get(k) for k in gate_keys):
            eligible.append(record)
        else:
            rejected.append(_configuration_signature(record, gate_keys))

    if not eligible:
        return SelectionResult(
            selected=None,
            candidate_count=len(candidates),
            rejected_configurations=sorted(set(rejected)),
        )

    scored: list[_Scored] = []
    for record in eligible:
        details: list[ConformanceDetail] = []
        for key in scored_keys:
            baseline_value = record.covariates.get(key)
            test_value = profile.get(key)
            details.append(
                ConformanceDetail(
                    key=key,
                    baseline_value=MISSING if baseline_value is None else baseline_value,
                    test_value=MISSING if test_value is None else test_value,
                    conforms=baseline_value is not None and baseline_value == test_value,
                )
            )
        scored.append(_Scored(record, details))

    scored.sort(key=lambda s: s.sort_key)
    best = scored[0]
    ambiguous = len(scored) > 1 and scored[1].rank == best.rank

    return SelectionResult(
        selected=best.record,
        conformance=best.details,
        ambiguous=ambiguous,
        candidate_count=len(candidates),
    )
