"""Record types for the engine-owned tables."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class JobStatus(Enum):
    """Status of a transcoding job.

    State transitions:
        queued -> analyzing -> transcoding -> completed
        analyzing/transcoding -> queued     (transient failure, attempts left)
        analyzing/transcoding -> failed     (cap reached or permanent failure)
        queued/analyzing/transcoding -> cancelled
        failed/cancelled -> queued          (manual retry, attempts left)
    """

    QUEUED = "queued"
    ANALYZING = "analyzing"
    TRANSCODING = "transcoding"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


ACTIVE_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.ANALYZING, JobStatus.TRANSCODING}
)
NON_TERMINAL_STATUSES: frozenset[JobStatus] = ACTIVE_STATUSES | {JobStatus.QUEUED}
TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


@dataclass
class Job:
    """Database record for transcoding_jobs table."""

    id: str  # UUID v4
    input_path: str
    qualities: list[str]  # Ordered quality labels, stored as JSON
    status: JobStatus
    priority: int  # Higher = dispatched first
    created_at: str  # ISO-8601 UTC

    attempts: int = 0
    max_attempts: int = 3
    settings: dict = field(default_factory=dict)  # Encoder knobs, stored as JSON
    progress: float = 0.0  # 0.0 - 100.0

    started_at: str | None = None
    completed_at: str | None = None

    output_path: str | None = None  # Last output written
    error_message: str | None = None  # Last failure, kept across requeues
    skip_reason: str | None = None  # Why a completed job produced nothing

    # Insertion order, FIFO tie-break for equal priority and timestamp
    sequence: int | None = None

    @property
    def can_retry(self) -> bool:
        return self.attempts < self.max_attempts

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "input_path": self.input_path,
            "qualities": list(self.qualities),
            "status": self.status.value,
            "priority": self.priority,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "settings": dict(self.settings),
            "progress": self.progress,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "output_path": self.output_path,
            "error_message": self.error_message,
            "skip_reason": self.skip_reason,
        }


@dataclass(frozen=True)
class TranscodeResultRecord:
    """Database record for transcoded_results table.

    Immutable once written. compression_ratio is a percentage:
    (original_size - transcoded_size) / original_size * 100.
    """

    id: int | None
    job_id: str
    quality: str
    original_path: str
    transcoded_path: str
    original_size: int
    transcoded_size: int
    compression_ratio: float
    space_saved: int
    checksum: str | None
    processing_time_ms: int
    created_at: str


@dataclass(frozen=True)
class AnalyticsRecord:
    """Database record for storage_analytics table."""

    id: int | None
    metric_name: str
    metric_value: str  # JSON
    created_at: str
    expires_at: str | None


def compute_compression_ratio(original_size: int, output_size: int) -> float:
    """Return the saved fraction of ``original_size`` as a percentage (2 dp)."""
    if original_size <= 0:
        return 0.0
    return round((original_size - output_size) / original_size * 100, 2)
