# Copyright (c) Syntropy Systems
"""Exception types raised by trialgate."""
from __future__ import annotations


class TrialgateError(Exception):
    """Base class for trialgate errors."""


class ConfigurationError(TrialgateError):
    """A run is configured in a way that cannot be executed.

    Raised before any sample runs. The message explains what went wrong
    and how to fix it.
    """


class BaselineIntegrityError(TrialgateError):
    """A baseline file failed schema or fingerprint verification."""


class BaselineNotFoundError(TrialgateError):
    """No baseline exists for the requested use case."""


class NoCompatibleBaselineError(TrialgateError):
    """Baselines exist for a use case but none fit the run's covariates."""

    def __init__(
        self,
        use_case_id: str,
        footprint: str,
        available_footprints: list[str],
        detail: str | None = None,
    ) -> None:
        self.use_case_id = use_case_id
        self.footprint = footprint
        self.available_footprints = available_footprints
        self.detail = detail
        super().__init__(self._build_message())

    def _build_message(self) -> str:
        lines = [
            f"No baseline matches footprint '{self.footprint}' "
            f"for use case '{self.use_case_id}'.",
        ]
        if self.available_footprints:
            lines.append(
                "Available footprints: " + ", ".join(self.available_footprints)
            )
        else:
            lines.append("No baselines were found for this use case.")
        if self.detail:
            lines.append(self.detail)
        lines.append(
            "Record a new baseline with the current covariate declaration, "
            "or adjust the declaration to match an existing baseline."
        )
        return "\n".join(lines)
