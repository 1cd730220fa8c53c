# Copyright (c) Syntropy Systems
"""Baseline storage: YAML files with a content fingerprint."""
from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, cast

import yaml
from pydantic import ValidationError

from trialgate.baseline.models import SCHEMA_VERSION, BaselineRecord
from trialgate.errors import BaselineIntegrityError, BaselineNotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

FINGERPRINT_FIELD = "content_fingerprint"
SUPPORTED_SCHEMA_VERSIONS = frozenset({SCHEMA_VERSION})
DEFAULT_BASELINE_DIRS = (Path("baselines"), Path("tests") / "baselines")

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


class BaselineRepository(Protocol):
    """Source of baseline records for a use case."""

    def find_candidates(self, use_case_id: str, footprint: str | None) -> list[BaselineRecord]:
        """Records for ``use_case_id``, filtered to ``footprint`` when given."""
        ...

    def find_available_footprints(self, use_case_id: str) -> list[str]:
        """Every distinct footprint recorded for ``use_case_id``."""
        ...


def sanitize_use_case_id(use_case_id: str) -> str:
    """Make a use case id safe to use in a file name."""
    return _UNSAFE_CHARS.sub("_", use_case_id)


def compute_fingerprint(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _content_before_fingerprint(content: str) -> str | None:
    match = re.search(rf"^{FINGERPRINT_FIELD}:", content, flags=re.MULTILINE)
    if match is None:
        return None
    return content[: match.start()]


def dump_baseline(record: BaselineRecord) -> str:
    """Serialize a record to YAML text with its fingerprint appended."""
    data = record.model_dump(mode="json", exclude={"source_id"}, exclude_none=True)
    body = yaml.safe_dump(data, sort_keys=False)
    return f"{body}{FINGERPRINT_FIELD}: {compute_fingerprint(body)}\n"


def write_baseline(record: BaselineRecord, directory: Path) -> Path:
    """Write ``record`` under ``directory`` using the repository naming scheme."""
    directory.mkdir(parents=True, exist_ok=True)
    stem = sanitize_use_case_id(record.use_case_id)
    if record.footprint:
        stem = f"{stem}-{record.footprint}"
    profile_hash = record.covariate_profile.compute_hash() if record.covariates else None
    if profile_hash:
        stem = f"{stem}-{profile_hash}"
    path = directory / f"{stem}.yaml"
    _ = path.write_text(dump_baseline(record))
    return path


def verify_integrity(content: str, source: str) -> None:
    """Check schema version and content fingerprint, raising on any problem."""
    data = yaml.safe_load(content)
    if not isinstance(data, dict):
        msg = f"{source}: baseline file must contain a mapping"
        raise BaselineIntegrityError(msg)
    data = cast("dict[str, object]", data)

    schema_version = data.get("schema_version")
    if not schema_version:
        msg = f"{source}: missing schema_version field"
        raise BaselineIntegrityError(msg)
    if schema_version not in SUPPORTED_SCHEMA_VERSIONS:
        supported = ", ".join(sorted(SUPPORTED_SCHEMA_VERSIONS))
        msg = f"{source}: unsupported schema version {schema_version} (supported: {supported})"
        raise BaselineIntegrityError(msg)

    stored = data.get(FINGERPRINT_FIELD)
    hashed = _content_before_fingerprint(content)
    if not stored or hashed is None:
        msg = f"{source}: missing {FINGERPRINT_FIELD} field"
        raise BaselineIntegrityError(msg)

    computed = compute_fingerprint(hashed)
    if str(stored) != computed:
        msg = (
            f"{source}: content fingerprint mismatch. The baseline may have "
            f"been modified after it was recorded. Expected {computed}, "
            f"found {stored}"
        )
        raise BaselineIntegrityError(msg)


def load_baseline(path: Path) -> BaselineRecord:
    """Load and verify a single baseline file."""
    if path.suffix.lower() not in (".yaml", ".yml"):
        msg = f"Unsupported baseline file format: {path.name}. Only .yaml and .yml are supported."
        raise BaselineIntegrityError(msg)
    if not path.is_file():
        msg = f"Baseline file not found: {path}"
        raise BaselineNotFoundError(msg)

    content = path.read_text()
    try:
        verify_integrity(content, path.name)
    except yaml.YAMLError as e:
        msg = f"{path.name}: invalid YAML: {e}"
        raise BaselineIntegrityError(msg) from e

    data = cast("dict[str, object]", yaml.safe_load(content))
    try:
        record = BaselineRecord.model_validate(data)
    except ValidationError as e:
        msg = f"{path.name}: invalid baseline: {e}"
        raise BaselineIntegrityError(msg) from e
    return record.model_copy(update={"source_id": path.name})


def find_baseline_dir(start_path: Path | None = None) -> Path:
    """First existing default baseline directory, or the first default."""
    base = start_path or Path.cwd()
    for candidate in DEFAULT_BASELINE_DIRS:
        if (base / candidate).is_dir():
            return base / candidate
    return base / DEFAULT_BASELINE_DIRS[0]


class YamlBaselineRepository:
    """Baselines stored as ``<use_case>.yaml`` or ``<use_case>-*.yaml`` files.

    Every file is integrity-checked on load. A corrupt or tampered file
    raises :class:`BaselineIntegrityError`; it is never skipped.
    """

    def __init__(self, root: Path | None = None) -> None:
        self.root = root if root is not None else find_baseline_dir()

    def _files_for(self, use_case_id: str) -> Iterator[Path]:
        if not self.root.is_dir():
            return
        stem = sanitize_use_case_id(use_case_id)
        for path in sorted(self.root.iterdir()):
            if path.suffix.lower() not in (".yaml", ".yml") or not path.is_file():
                continue
            if path.name.startswith((f"{stem}.", f"{stem}-")):
                yield path

    def load_all(self, use_case_id: str) -> list[BaselineRecord]:
        records: list[BaselineRecord] = []
        for path in self._files_for(use_case_id):
            record = load_baseline(path)
            if record.use_case_id != use_case_id:
                logger.debug("Skipping %s: recorded for %s", path.name, record.use_case_id)
                continue
            records.append(record)
        return records

    def find_candidates(self, use_case_id: str, footprint: str | None) -> list[BaselineRecord]:
        records = self.load_all(use_case_id)
        if footprint is None:
            return records
        return [r for r in records if r.footprint == footprint]

    def find_available_footprints(self, use_case_id: str) -> list[str]:
        seen: list[str] = []
        for record in self.load_all(use_case_id):
            if record.footprint and record.footprint not in seen:
                seen.append(record.footprint)
        return seen
