"""In-memory progress tracking for transcoding jobs.

The tracker listens to lifecycle events on the EventBus, converts raw
per-phase progress into one phase-weighted percentage per job and republishes
it as ProgressUpdated. While jobs are active a broadcaster thread publishes
OverallProgress at a fixed interval.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from mediashrink.config.models import ProgressConfig
from mediashrink.core.datetime_utils import utc_now
from mediashrink.core.formatting import format_duration
from mediashrink.db.store import JobStore
from mediashrink.events import (
    Event,
    EventBus,
    JobAdded,
    JobCancelled,
    JobCompleted,
    JobFailed,
    JobPhaseProgress,
    JobRetried,
    JobStarted,
    OverallProgress,
    ProgressUpdated,
)

logger = logging.getLogger(__name__)

# Share of the overall percentage owned by each phase
PHASE_BANDS: dict[str, tuple[float, float]] = {
    "analyzing": (0.0, 10.0),
    "transcoding": (10.0, 90.0),
    "finalizing": (90.0, 100.0),
}

ACTIVE_PROGRESS_STATUSES = frozenset({"queued", "analyzing", "transcoding"})
TERMINAL_PROGRESS_STATUSES = frozenset({"completed", "failed", "cancelled"})


def phase_weighted_progress(raw_progress: float, phase: str | None) -> float:
    """Map 0-100 progress within ``phase`` onto the overall 0-100 scale.

    Unknown or missing phases pass the clamped raw value through.
    """
    raw = max(0.0, min(100.0, raw_progress))
    band = PHASE_BANDS.get(phase or "")
    if band is None:
        return raw
    low, high = band
    return low + raw * (high - low) / 100.0


@dataclass
class ProgressRecord:
    """Progress of one job as seen by the tracker."""

    job_id: str
    status: str
    progress: float
    started_at: datetime
    last_update: datetime
    started_monotonic: float
    last_monotonic: float
    history: deque = field(default_factory=deque)
    phase: str | None = None
    message: str | None = None
    error: str | None = None

    @property
    def processing_time(self) -> float:
        return self.last_monotonic - self.started_monotonic

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.job_id,
            "status": self.status,
            "progress": round(self.progress, 1),
            "phase": self.phase,
            "message": self.message,
            "error": self.error,
            "start_time": self.started_at.isoformat(),
            "last_update": self.last_update.isoformat(),
            "processing_time": round(self.processing_time, 3),
        }


class ProgressTracker:
    """Phase-weighted, monotonic progress per job plus aggregate metrics.

    Args:
        config: History size, retention and broadcast interval.
        bus: Source of lifecycle events and sink for progress events.
        store: When given, job progress is persisted on every whole-percent
            change.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        config: ProgressConfig,
        bus: EventBus,
        store: JobStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        self._bus = bus
        self._store = store
        self._clock = clock

        self._lock = threading.Lock()
        self._jobs: dict[str, ProgressRecord] = {}
        self._metrics = self._empty_metrics()

        self._stop_event = threading.Event()
        self._broadcaster: threading.Thread | None = None

        self._unsubscribe = bus.subscribe(
            self._on_event,
            [
                JobAdded,
                JobStarted,
                JobPhaseProgress,
                JobCompleted,
                JobFailed,
                JobCancelled,
                JobRetried,
            ],
        )

    @staticmethod
    def _empty_metrics() -> dict[str, float]:
        return {
            "total_jobs": 0,
            "completed_jobs": 0,
            "failed_jobs": 0,
            "total_processing_time": 0.0,
            "average_processing_time": 0.0,
        }

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def _on_event(self, event: Event) -> None:
        if isinstance(event, (JobAdded, JobRetried)):
            self.update(event.job_id, "queued")
        elif isinstance(event, JobStarted):
            self.update(event.job_id, "analyzing", 0.0, phase="analyzing")
        elif isinstance(event, JobPhaseProgress):
            status = "analyzing" if event.phase == "analyzing" else "transcoding"
            self.update(
                event.job_id,
                status,
                event.raw_progress,
                phase=event.phase,
                message=event.message,
            )
        elif isinstance(event, JobCompleted):
            self.update(event.job_id, "completed", 100.0, message=event.skip_reason)
        elif isinstance(event, JobFailed):
            if event.will_retry:
                self.update(event.job_id, "queued", error=event.error)
            else:
                self.update(event.job_id, "failed", error=event.error)
        elif isinstance(event, JobCancelled):
            self.update(event.job_id, "cancelled")

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update(
        self,
        job_id: str,
        status: str,
        raw_progress: float = 0.0,
        phase: str | None = None,
        error: str | None = None,
        message: str | None = None,
    ) -> float | None:
        """Record a status/progress update for a job.

        Displayed progress never decreases while the job stays out of
        ``queued``; moving back to ``queued`` resets it to zero. Phase
        updates for a job that already reached a terminal status are
        ignored.

        Returns:
            The displayed progress, or None if the update was ignored.
        """
        now = self._clock()
        now_monotonic = time.monotonic()
        persist = False

        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                record = ProgressRecord(
                    job_id=job_id,
                    status="unknown",
                    progress=0.0,
                    started_at=now,
                    last_update=now,
                    started_monotonic=now_monotonic,
                    last_monotonic=now_monotonic,
                    history=deque(maxlen=self.config.max_history_size),
                )
                self._jobs[job_id] = record
                self._metrics["total_jobs"] += 1
            elif (
                phase is not None
                and record.status in TERMINAL_PROGRESS_STATUSES
                and status not in TERMINAL_PROGRESS_STATUSES
            ):
                return None

            previous_status = record.status
            previous_whole = int(record.progress)

            if status == "queued":
                progress = 0.0
            elif status == "completed":
                progress = 100.0
            else:
                weighted = phase_weighted_progress(raw_progress, phase)
                progress = max(record.progress, weighted)

            if status == "analyzing" and previous_status in ("queued", "unknown"):
                # A new attempt starts the processing clock again
                record.started_at = now
                record.started_monotonic = now_monotonic

            record.status = status
            record.progress = progress
            record.phase = phase
            record.last_update = now
            record.last_monotonic = now_monotonic
            if message is not None:
                record.message = message
            if error is not None:
                record.error = error
            record.history.append(
                {
                    "timestamp": now.isoformat(),
                    "status": status,
                    "progress": round(progress, 1),
                    "phase": phase,
                    "error": error,
                }
            )
            self._update_metrics(record, previous_status)
            persist = (
                status in ("analyzing", "transcoding")
                and int(progress) != previous_whole
            )

        if persist and self._store is not None:
            try:
                self._store.update_job_progress(job_id, round(progress, 1))
            except Exception as e:
                logger.warning("Could not persist progress for job %s: %s", job_id, e)

        self._bus.publish(
            ProgressUpdated(
                job_id=job_id,
                status=status,
                progress=round(progress, 1),
                phase=phase,
                message=message,
                error=error,
            )
        )
        return progress

    def _update_metrics(self, record: ProgressRecord, previous_status: str) -> None:
        # Caller holds the lock
        if record.status == previous_status:
            return
        metrics = self._metrics
        if record.status == "completed":
            metrics["completed_jobs"] += 1
        elif record.status == "failed":
            metrics["failed_jobs"] += 1
        else:
            return
        metrics["total_processing_time"] += record.processing_time
        finished = metrics["completed_jobs"] + metrics["failed_jobs"]
        metrics["average_processing_time"] = metrics["total_processing_time"] / finished

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_job_progress(self, job_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._jobs.get(job_id)
            return record.to_dict() if record else None

    def get_all_progress(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {job_id: r.to_dict() for job_id, r in self._jobs.items()}

    def _select(self, statuses: frozenset[str] | set[str]) -> list[dict[str, Any]]:
        with self._lock:
            records = [r for r in self._jobs.values() if r.status in statuses]
            records.sort(key=lambda r: r.last_update, reverse=True)
            return [r.to_dict() for r in records]

    def get_active_jobs(self) -> list[dict[str, Any]]:
        return self._select(ACTIVE_PROGRESS_STATUSES)

    def get_completed_jobs(self, limit: int = 10) -> list[dict[str, Any]]:
        """Most recently completed jobs first."""
        return self._select({"completed"})[:limit]

    def get_failed_jobs(self, limit: int = 10) -> list[dict[str, Any]]:
        """Most recently failed jobs first."""
        return self._select({"failed"})[:limit]

    def get_history(
        self, job_id: str | None = None, limit: int = 50
    ) -> list[dict[str, Any]]:
        """Recent transitions of one job, or of all jobs merged by time."""
        with self._lock:
            if job_id is not None:
                record = self._jobs.get(job_id)
                entries = list(record.history) if record else []
            else:
                entries = [
                    {"job_id": r.job_id, **entry}
                    for r in self._jobs.values()
                    for entry in r.history
                ]
                entries.sort(key=lambda e: e["timestamp"])
        return entries[-limit:] if limit > 0 else []

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            metrics = dict(self._metrics)
            active = sum(
                1 for r in self._jobs.values() if r.status in ACTIVE_PROGRESS_STATUSES
            )
        total = metrics["total_jobs"]
        success_rate = metrics["completed_jobs"] / total * 100 if total else 0.0
        return {
            **metrics,
            "success_rate": round(success_rate, 1),
            "average_processing_time_formatted": format_duration(
                metrics["average_processing_time"]
            ),
            "active_jobs": active,
        }

    def get_summary(self) -> dict[str, Any]:
        metrics = self.get_metrics()
        active = self.get_active_jobs()
        completed = self.get_completed_jobs(limit=1)
        failed = self.get_failed_jobs(limit=1)
        return {
            "total_jobs": metrics["total_jobs"],
            "active_jobs": len(active),
            "completed_jobs": metrics["completed_jobs"],
            "failed_jobs": metrics["failed_jobs"],
            "success_rate": metrics["success_rate"],
            "average_processing_time": metrics["average_processing_time_formatted"],
            "recent_activity": {
                "last_completed": completed[0] if completed else None,
                "last_failed": failed[0] if failed else None,
                "currently_processing": len(active),
            },
        }

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def cleanup_old_jobs(self, max_age: timedelta | None = None) -> int:
        """Forget terminal jobs not updated within ``max_age``.

        Args:
            max_age: Defaults to the configured retention window.

        Returns:
            Number of records removed.
        """
        if max_age is None:
            max_age = timedelta(hours=self.config.retention_hours)
        cutoff = self._clock() - max_age
        with self._lock:
            stale = [
                job_id
                for job_id, r in self._jobs.items()
                if r.status in TERMINAL_PROGRESS_STATUSES and r.last_update <= cutoff
            ]
            for job_id in stale:
                del self._jobs[job_id]
        if stale:
            logger.debug("Dropped progress for %d finished jobs", len(stale))
        return len(stale)

    def reset(self) -> None:
        """Drop all progress records and metrics."""
        with self._lock:
            self._jobs.clear()
            self._metrics = self._empty_metrics()

    # ------------------------------------------------------------------
    # Overall progress broadcasts
    # ------------------------------------------------------------------

    def broadcast_overall_progress(self) -> OverallProgress | None:
        """Publish OverallProgress if any job is active."""
        with self._lock:
            active = [
                (r.job_id, round(r.progress, 1))
                for r in self._jobs.values()
                if r.status in ACTIVE_PROGRESS_STATUSES
            ]
        if not active:
            return None
        event = OverallProgress(
            active_jobs=len(active),
            average_progress=round(sum(p for _, p in active) / len(active), 1),
            jobs=tuple(active),
        )
        self._bus.publish(event)
        return event

    def _broadcast_loop(self) -> None:
        interval = self.config.broadcast_interval_seconds
        last_prune = time.monotonic()
        while not self._stop_event.wait(interval):
            try:
                self.broadcast_overall_progress()
            except Exception:
                logger.exception("Overall progress broadcast failed")

            if time.monotonic() - last_prune < self.config.prune_interval_seconds:
                continue
            last_prune = time.monotonic()
            try:
                self.cleanup_old_jobs()
            except Exception:
                logger.exception("Progress record cleanup failed")

    def start(self) -> None:
        if self._broadcaster is not None and self._broadcaster.is_alive():
            return
        self._stop_event.clear()
        self._broadcaster = threading.Thread(
            target=self._broadcast_loop, name="mediashrink-progress", daemon=True
        )
        self._broadcaster.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._broadcaster is not None:
            self._broadcaster.join(timeout=5.0)
            self._broadcaster = None

    def close(self) -> None:
        """Stop broadcasting and unsubscribe from the bus."""
        self.stop()
        self._unsubscribe()
