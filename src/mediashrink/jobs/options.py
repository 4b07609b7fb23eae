"""Validation of job submission options."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from mediashrink.executor.presets import QUALITY_PRESETS
from mediashrink.jobs.exceptions import AdmissionError

MAX_PRIORITY = 1000


class SubmitOptionsModel(BaseModel):
    """Pydantic model for ``submit_job`` options.

    Omitted fields fall back to the JobsConfig defaults in the manager.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    qualities: list[str] | None = None
    priority: int | None = Field(default=None, ge=0, le=MAX_PRIORITY)
    max_attempts: int | None = Field(default=None, ge=1)
    settings: dict[str, Any] = Field(default_factory=dict)

    @field_validator("qualities")
    @classmethod
    def validate_qualities(cls, v: list[str] | None) -> list[str] | None:
        """Require known presets, drop duplicates, keep order."""
        if v is None:
            return None
        if not v:
            raise ValueError("qualities must not be empty")
        unknown = [q for q in v if q not in QUALITY_PRESETS]
        if unknown:
            raise ValueError(
                f"Unknown quality '{unknown[0]}'. "
                f"Must be one of: {', '.join(QUALITY_PRESETS)}"
            )
        return list(dict.fromkeys(v))


def parse_submit_options(options: dict[str, Any] | None) -> SubmitOptionsModel:
    """Validate raw submission options.

    Raises:
        AdmissionError: With pydantic's messages joined, if invalid.
    """
    try:
        return SubmitOptionsModel.model_validate(options or {})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'options'}: {err['msg']}"
            for err in e.errors()
        )
        raise AdmissionError(f"Invalid job options: {problems}") from e
