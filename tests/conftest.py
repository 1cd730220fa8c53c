# Copyright (c) Syntropy Systems
"""Pytest fixtures for trialgate tests."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from trialgate.baseline.footprint import compute_footprint
from trialgate.baseline.models import BaselineRecord, CovariateDeclaration
from trialgate.baseline.repository import write_baseline
from trialgate.engine import reset_default_process_context

# Store original cwd at module load time
_original_cwd = Path.cwd()

GENERATED_AT = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

MakeBaseline = Callable[..., BaselineRecord]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep TRIALGATE_* variables from the developer's shell out of tests."""
    for name in list(os.environ):
        if name.startswith("TRIALGATE_"):
            monkeypatch.delenv(name)


@pytest.fixture(autouse=True)
def fresh_process_context() -> Generator[None, None, None]:
    """Give each test its own default process context."""
    reset_default_process_context()
    yield
    reset_default_process_context()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def in_temp_dir(temp_dir: Path) -> Generator[Path, None, None]:
    """Run the test with temp_dir as the working directory."""
    os.chdir(temp_dir)
    yield temp_dir
    # Always return to original cwd
    os.chdir(_original_cwd)


@pytest.fixture
def baselines_dir(temp_dir: Path) -> Path:
    path = temp_dir / "baselines"
    path.mkdir()
    return path


@pytest.fixture
def make_baseline(baselines_dir: Path) -> MakeBaseline:
    """Write a baseline to baselines_dir and return the loaded record's inputs.

    The footprint is computed from the declaration unless given explicitly.
    """

    def _make(
        use_case_id: str = "checkout",
        samples: int = 1000,
        successes: int = 951,
        declaration: CovariateDeclaration | None = None,
        covariates: dict[str, str] | None = None,
        age_days: int = 0,
        **extra: object,
    ) -> BaselineRecord:
        declaration = declaration or CovariateDeclaration()
        footprint = extra.pop("footprint", None) or compute_footprint(use_case_id, declaration)
        record = BaselineRecord(
            use_case_id=use_case_id,
            footprint=str(footprint),
            generated_at=GENERATED_AT - timedelta(days=age_days),
            samples=samples,
            successes=successes,
            covariates=covariates or {},
            **extra,  # pyright: ignore[reportArgumentType]
        )
        path = write_baseline(record, baselines_dir)
        return record.model_copy(update={"source_id": path.name})

    return _make
