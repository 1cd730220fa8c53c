# Copyright (c) Syntropy Systems
"""Tests for footprints, baseline storage, selection and resolution."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from trialgate.baseline.footprint import compute_footprint
from trialgate.baseline.models import (
    BaselineRecord,
    CovariateCategory,
    CovariateDeclaration,
    CovariateProfile,
    ExpirationPolicy,
    ExpirationState,
    FactorSource,
    StandardCovariate,
)
from trialgate.baseline.repository import (
    YamlBaselineRepository,
    dump_baseline,
    load_baseline,
    write_baseline,
)
from trialgate.baseline.resolution import (
    FactorCheckStatus,
    LazyBaselineResolution,
    check_factor_source,
    latest_baseline,
)
from trialgate.baseline.selector import MISSING, select_baseline
from trialgate.errors import (
    BaselineIntegrityError,
    BaselineNotFoundError,
    NoCompatibleBaselineError,
)

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def record(
    source_id: str,
    covariates: dict[str, str],
    generated_at: datetime = T0,
) -> BaselineRecord:
    return BaselineRecord(
        use_case_id="checkout",
        source_id=source_id,
        generated_at=generated_at,
        samples=100,
        successes=90,
        covariates=covariates,
    )


class TestFootprint:
    """Tests for compute_footprint."""

    def test_deterministic(self):
        first = compute_footprint("checkout", ["region", "model"])
        second = compute_footprint("checkout", CovariateDeclaration.of("region", "model"))

        assert first == second
        assert len(first) == 8
        _ = int(first, 16)

    def test_covariate_order_matters(self):
        assert compute_footprint("checkout", ["region", "model"]) != compute_footprint(
            "checkout", ["model", "region"]
        )

    def test_factor_order_does_not_matter(self):
        a = compute_footprint("checkout", [], {"model": "m1", "temperature": 0.2})
        b = compute_footprint("checkout", [], {"temperature": 0.2, "model": "m1"})

        assert a == b
        assert a != compute_footprint("checkout", [])

    def test_use_case_matters(self):
        assert compute_footprint("a", []) != compute_footprint("b", [])


class TestCovariates:
    """Tests for covariate declarations and profiles."""

    def test_standard_covariate_category(self):
        declaration = CovariateDeclaration.of(StandardCovariate.TIME_OF_DAY, "tier")

        assert declaration.names == ["time_of_day", "tier"]
        assert declaration.category_of("time_of_day") is CovariateCategory.TEMPORAL
        assert declaration.category_of("tier") is CovariateCategory.INFRASTRUCTURE

    def test_keyword_category(self):
        declaration = CovariateDeclaration.of(
            "region", "model", model=CovariateCategory.CONFIGURATION
        )

        assert declaration.names == ["region", "model"]
        assert declaration.category_of("model").is_hard_gate

    def test_profile_hash_depends_on_values(self):
        assert CovariateProfile({"region": "eu"}).compute_hash() != CovariateProfile(
            {"region": "us"}
        ).compute_hash()


class TestBaselineRecord:
    """Tests for the baseline model."""

    def test_successes_cannot_exceed_samples(self):
        with pytest.raises(ValueError, match="exceeds samples"):
            _ = BaselineRecord(use_case_id="x", generated_at=T0, samples=10, successes=11)

    def test_naive_timestamp_becomes_utc(self):
        naive = BaselineRecord(
            use_case_id="x", generated_at=datetime(2026, 1, 1), samples=10, successes=5
        )

        assert naive.generated_at.tzinfo is timezone.utc

    def test_covariate_values_stringified(self):
        data = {
            "use_case_id": "x",
            "generated_at": T0,
            "samples": 10,
            "successes": 5,
            "covariates": {"retries": 3},
        }

        assert BaselineRecord.model_validate(data).covariates == {"retries": "3"}


class TestExpiration:
    """Tests for expiration states."""

    @pytest.mark.parametrize(
        ("days", "state"),
        [
            (1, ExpirationState.VALID),
            (25, ExpirationState.EXPIRING_SOON),
            (28, ExpirationState.EXPIRING_IMMINENTLY),
            (31, ExpirationState.EXPIRED),
        ],
    )
    def test_states(self, days, state):
        policy = ExpirationPolicy(expires_in_days=30, baseline_end_time=T0)

        status = policy.evaluate_at(T0 + timedelta(days=days))

        assert status.state is state

    def test_no_expiration(self):
        status = ExpirationPolicy().evaluate_at(T0)

        assert status.state is ExpirationState.NO_EXPIRATION
        assert not status.requires_warning

    def test_end_time_defaults_to_generation(self):
        baseline = BaselineRecord(
            use_case_id="x",
            generated_at=T0,
            samples=10,
            successes=5,
            expiration=ExpirationPolicy(expires_in_days=10),
        )

        status = baseline.expiration_status(T0 + timedelta(days=11))

        assert status.is_expired
        assert "expired" in status.describe()


class TestRepository:
    """Tests for YAML storage and integrity checks."""

    def test_write_and_load(self, baselines_dir: Path):
        original = BaselineRecord(
            use_case_id="checkout/flow",
            footprint="abcd1234",
            generated_at=T0,
            samples=1000,
            successes=951,
            covariates={"region": "eu"},
            factor_source=FactorSource(name="prompts", hash="f00d", samples=1000),
        )

        path = write_baseline(original, baselines_dir)
        loaded = load_baseline(path)

        assert path.name.startswith("checkout_flow-abcd1234-")
        assert loaded.source_id == path.name
        assert loaded.successes == 951
        assert loaded.generated_at == T0
        assert loaded.factor_source == original.factor_source

    def test_tampered_file_rejected(self, baselines_dir: Path):
        path = write_baseline(record("", {}), baselines_dir)
        _ = path.write_text(path.read_text().replace("successes: 90", "successes: 99"))

        with pytest.raises(BaselineIntegrityError, match="fingerprint mismatch"):
            _ = load_baseline(path)

    def test_missing_fingerprint_rejected(self, baselines_dir: Path):
        path = baselines_dir / "checkout.yaml"
        text = dump_baseline(record("", {}))
        _ = path.write_text(text.split("content_fingerprint")[0])

        with pytest.raises(BaselineIntegrityError, match="missing content_fingerprint"):
            _ = load_baseline(path)

    def test_unsupported_schema_rejected(self, baselines_dir: Path):
        path = baselines_dir / "checkout.yaml"
        _ = path.write_text("schema_version: other-9\nuse_case_id: checkout\n")

        with pytest.raises(BaselineIntegrityError, match="unsupported schema version"):
            _ = load_baseline(path)

    def test_wrong_extension_rejected(self, baselines_dir: Path):
        path = baselines_dir / "checkout.json"
        _ = path.write_text("{}")

        with pytest.raises(BaselineIntegrityError, match="Unsupported baseline file format"):
            _ = load_baseline(path)

    def test_missing_file(self, baselines_dir: Path):
        with pytest.raises(BaselineNotFoundError):
            _ = load_baseline(baselines_dir / "nope.yaml")

    def test_corrupt_file_is_not_skipped(self, make_baseline, baselines_dir: Path):
        _ = make_baseline()
        _ = (baselines_dir / "checkout-broken.yaml").write_text("schema_version: [\n")

        with pytest.raises(BaselineIntegrityError):
            _ = YamlBaselineRepository(baselines_dir).find_candidates("checkout", None)

    def test_candidates_filtered_by_footprint(self, make_baseline, baselines_dir: Path):
        region = CovariateDeclaration.of("region")
        tier = CovariateDeclaration.of("tier")
        a = make_baseline(declaration=region, covariates={"region": "eu"})
        b = make_baseline(declaration=tier, covariates={"tier": "gold"})
        _ = make_baseline(use_case_id="search")
        repository = YamlBaselineRepository(baselines_dir)

        candidates = repository.find_candidates("checkout", a.footprint)

        assert [c.source_id for c in candidates] == [a.source_id]
        assert sorted(repository.find_available_footprints("checkout")) == sorted(
            [a.footprint, b.footprint]
        )

    def test_missing_directory_is_empty(self, temp_dir: Path):
        repository = YamlBaselineRepository(temp_dir / "absent")

        assert repository.find_candidates("checkout", None) == []


class TestSelection:
    """Tests for select_baseline."""

    def test_exact_match(self):
        declaration = CovariateDeclaration.of("region", "tier")
        candidates = [
            record("a.yaml", {"region": "eu", "tier": "gold"}),
            record("b.yaml", {"region": "us", "tier": "gold"}),
        ]

        result = select_baseline(
            candidates, CovariateProfile({"region": "eu", "tier": "gold"}), declaration
        )

        assert result.selected is not None
        assert result.selected.source_id == "a.yaml"
        assert not result.is_approximate
        assert result.candidate_count == 2

    def test_leftmost_match_preferred(self):
        declaration = CovariateDeclaration.of("region", "tier")
        candidates = [
            record("a.yaml", {"region": "us", "tier": "gold"}),
            record("b.yaml", {"region": "eu", "tier": "silver"}),
        ]

        result = select_baseline(
            candidates, CovariateProfile({"region": "eu", "tier": "gold"}), declaration
        )

        assert result.selected is not None
        assert result.selected.source_id == "b.yaml"
        assert not result.ambiguous
        assert [d.key for d in result.non_conforming] == ["tier"]

    def test_tie_prefers_recent_then_source_id(self):
        declaration = CovariateDeclaration.of("region")
        candidates = [
            record("c.yaml", {"region": "us"}, T0),
            record("b.yaml", {"region": "us"}, T0 + timedelta(days=1)),
            record("a.yaml", {"region": "us"}, T0 + timedelta(days=1)),
        ]

        result = select_baseline(candidates, CovariateProfile({"region": "eu"}), declaration)

        assert result.selected is not None
        assert result.selected.source_id == "a.yaml"
        assert result.ambiguous

    def test_configuration_is_hard_gate(self):
        declaration = CovariateDeclaration.of(
            "region", "model", model=CovariateCategory.CONFIGURATION
        )
        candidates = [
            record("a.yaml", {"region": "eu", "model": "m1"}),
            record("b.yaml", {"region": "eu", "model": "m2"}),
        ]

        result = select_baseline(
            candidates, CovariateProfile({"region": "eu", "model": "m3"}), declaration
        )

        assert result.selected is None
        assert result.rejected_configurations == ["model=m1", "model=m2"]

    def test_informational_not_scored(self):
        declaration = CovariateDeclaration.of(
            "region", "host", host=CovariateCategory.INFORMATIONAL
        )
        candidates = [record("a.yaml", {"region": "eu", "host": "h1"})]

        result = select_baseline(
            candidates, CovariateProfile({"region": "eu", "host": "h2"}), declaration
        )

        assert [d.key for d in result.conformance] == ["region"]
        assert not result.is_approximate

    def test_missing_value_never_conforms(self):
        declaration = CovariateDeclaration.of("region")
        candidates = [record("a.yaml", {})]

        result = select_baseline(candidates, CovariateProfile({}), declaration)

        assert result.conformance[0].baseline_value == MISSING
        assert not result.conformance[0].conforms

    def test_no_candidates(self):
        result = select_baseline([], CovariateProfile(), CovariateDeclaration())

        assert not result.has_selection


class TestLazyResolution:
    """Tests for LazyBaselineResolution."""

    def test_resolves_once(self, make_baseline, baselines_dir: Path):
        declaration = CovariateDeclaration.of("region")
        _ = make_baseline(declaration=declaration, covariates={"region": "eu"})
        resolution = LazyBaselineResolution(
            "checkout", declaration, YamlBaselineRepository(baselines_dir)
        )
        reads: list[int] = []

        def profile() -> CovariateProfile:
            reads.append(1)
            return CovariateProfile({"region": "eu"})

        assert not resolution.resolved
        first = resolution.resolve(profile)
        second = resolution.resolve(profile)

        assert first is second
        assert resolution.resolved
        assert len(reads) == 1

    def test_no_compatible_footprint(self, make_baseline, baselines_dir: Path):
        recorded = make_baseline(declaration=CovariateDeclaration.of("tier"))
        resolution = LazyBaselineResolution(
            "checkout", CovariateDeclaration.of("region"), YamlBaselineRepository(baselines_dir)
        )

        with pytest.raises(NoCompatibleBaselineError) as exc_info:
            _ = resolution.resolve(CovariateProfile({"region": "eu"}))

        assert exc_info.value.available_footprints == [recorded.footprint]
        assert "Available footprints" in str(exc_info.value)

    def test_configuration_mismatch_lists_existing(self, make_baseline, baselines_dir: Path):
        declaration = CovariateDeclaration.of("model", model=CovariateCategory.CONFIGURATION)
        _ = make_baseline(declaration=declaration, covariates={"model": "m1"})
        resolution = LazyBaselineResolution(
            "checkout", declaration, YamlBaselineRepository(baselines_dir)
        )

        with pytest.raises(NoCompatibleBaselineError, match="Baselines exist for: model=m1"):
            _ = resolution.resolve(CovariateProfile({"model": "m2"}))

    def test_non_conformance_warns(self, make_baseline, baselines_dir: Path, caplog):
        declaration = CovariateDeclaration.of("region")
        _ = make_baseline(declaration=declaration, covariates={"region": "eu"})
        resolution = LazyBaselineResolution(
            "checkout", declaration, YamlBaselineRepository(baselines_dir)
        )

        result = resolution.resolve(CovariateProfile({"region": "us"}))

        assert result.has_non_conformance
        assert "region: baseline=eu, test=us" in caplog.text

    def test_latest_baseline(self, make_baseline, baselines_dir: Path):
        declaration = CovariateDeclaration.of("region")
        _ = make_baseline(declaration=declaration, covariates={"region": "eu"}, age_days=5)
        newest = make_baseline(declaration=declaration, covariates={"region": "us"})

        found = latest_baseline(YamlBaselineRepository(baselines_dir), "checkout", declaration)

        assert found is not None
        assert found.source_id == newest.source_id


class TestFactorCheck:
    """Tests for factor source consistency."""

    def baseline(self) -> BaselineRecord:
        return BaselineRecord(
            use_case_id="x",
            generated_at=T0,
            samples=200,
            successes=190,
            factor_source=FactorSource(name="prompts-v1", hash="abc123", samples=200),
        )

    def test_match(self):
        check = check_factor_source(self.baseline(), "abc123", test_samples=50)

        assert check.status is FactorCheckStatus.MATCH
        assert "baseline used 200 samples" in check.message

    def test_mismatch_warns(self, caplog):
        check = check_factor_source(self.baseline(), "def456", "prompts-v2")

        assert check.status is FactorCheckStatus.MISMATCH
        assert "Factor source mismatch" in caplog.text

    def test_not_applicable(self):
        assert check_factor_source(self.baseline(), None).status is (
            FactorCheckStatus.NOT_APPLICABLE
        )
