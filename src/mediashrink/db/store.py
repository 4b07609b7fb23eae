"""Job/Result/Analytics storage behind a backend-agnostic interface.

The engine talks to a JobStore. Two backends implement it:

- SQLiteJobStore: durable, WAL-mode SQLite through DaemonConnectionPool.
- MemoryJobStore: process-local dicts, for tests and throwaway runs.

The backend is chosen once, at engine construction, by create_store().
"""

from __future__ import annotations

import itertools
import logging
import sqlite3
import threading
from collections.abc import Iterable
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Protocol, runtime_checkable

from mediashrink.core.datetime_utils import utc_now_iso
from mediashrink.db import queries
from mediashrink.db.connection import DaemonConnectionPool, execute_with_retry
from mediashrink.db.schema import initialize_database
from mediashrink.db.types import (
    ACTIVE_STATUSES,
    NON_TERMINAL_STATUSES,
    TERMINAL_STATUSES,
    AnalyticsRecord,
    Job,
    JobStatus,
    TranscodeResultRecord,
)
from mediashrink.jobs.exceptions import DuplicateJobError, QueueFullError

logger = logging.getLogger(__name__)


class StoreBackend(Enum):
    """Storage backend tag."""

    SQLITE = "sqlite"
    MEMORY = "memory"


@runtime_checkable
class JobStore(Protocol):
    """Persistence contract for jobs, results and analytics snapshots."""

    def initialize(self) -> None: ...

    def close(self) -> None: ...

    # Jobs
    def submit_job(self, job: Job, max_queued: int = 0) -> tuple[Job, bool]: ...

    def get_job(self, job_id: str) -> Job | None: ...

    def find_open_job(self, input_path: str) -> Job | None: ...

    def list_jobs(
        self, statuses: Iterable[JobStatus] | None = None, limit: int | None = None
    ) -> list[Job]: ...

    def count_jobs_by_status(self) -> dict[str, int]: ...

    def claim_next_job(self, max_active: int) -> Job | None: ...

    def transition_job(
        self,
        job_id: str,
        status: JobStatus,
        *,
        from_statuses: Iterable[JobStatus] | None = None,
        **fields,
    ) -> bool: ...

    def update_job_progress(self, job_id: str, progress: float) -> bool: ...

    def record_job_failure(
        self, job_id: str, error_message: str, retryable: bool
    ) -> Job | None: ...

    def delete_queued_jobs(self) -> int: ...

    def delete_terminal_jobs_before(self, cutoff: str) -> int: ...

    def requeue_active_jobs(self) -> int: ...

    # Results
    def add_result(self, result: TranscodeResultRecord) -> TranscodeResultRecord: ...

    def get_results_for_job(self, job_id: str) -> list[TranscodeResultRecord]: ...

    def find_result(
        self, original_path: str, quality: str
    ) -> TranscodeResultRecord | None: ...

    def list_results(self) -> list[TranscodeResultRecord]: ...

    def delete_result(self, result_id: int) -> bool: ...

    def get_compression_totals(self) -> dict[str, float]: ...

    def get_quality_breakdown(self) -> dict[str, dict[str, float]]: ...

    # Analytics
    def save_analytics(
        self, metric_name: str, value: str, expires_at: str
    ) -> AnalyticsRecord: ...

    def get_analytics(
        self, metric_name: str, now: str | None = None
    ) -> AnalyticsRecord | None: ...

    def expire_analytics(self, metric_name: str) -> int: ...

    def delete_analytics_before(self, cutoff: str) -> int: ...


def _failure_fields(job: Job, error_message: str, retryable: bool) -> tuple:
    """Compute the post-failure status and columns for a job.

    Attempts never exceed max_attempts; at the cap the job is terminal.
    """
    attempts = min(job.attempts + 1, job.max_attempts)
    if retryable and attempts < job.max_attempts:
        return JobStatus.QUEUED, {
            "attempts": attempts,
            "error_message": error_message,
            "progress": 0.0,
            "started_at": None,
        }
    return JobStatus.FAILED, {
        "attempts": attempts,
        "error_message": error_message,
        "completed_at": utc_now_iso(),
    }


class SQLiteJobStore:
    """JobStore backed by a SQLite database file."""

    def __init__(self, db_path: Path, timeout: float = 30.0) -> None:
        self.db_path = db_path
        self._pool = DaemonConnectionPool(db_path, timeout=timeout)

    def initialize(self) -> None:
        with self._pool.read_connection() as conn:
            initialize_database(conn)

    def close(self) -> None:
        self._pool.close()

    def _write(self, func):
        """Run ``func(conn)`` in a write transaction, retrying on lock errors."""

        def attempt():
            with self._pool.transaction() as conn:
                return func(conn)

        return execute_with_retry(attempt)

    def _read(self, func):
        with self._pool.read_connection() as conn:
            return func(conn)

    # -- jobs ---------------------------------------------------------------

    def submit_job(self, job: Job, max_queued: int = 0) -> tuple[Job, bool]:
        """Insert ``job`` unless an open job already exists for its path.

        The existence check and the insert run in one write transaction.

        Returns:
            (job, created): the existing open job and False, or the new job
            and True.

        Raises:
            QueueFullError: If ``max_queued`` > 0 and the queue is full.
        """

        def do_submit(conn: sqlite3.Connection) -> tuple[Job, bool]:
            existing = queries.get_open_job_for_path(conn, job.input_path)
            if existing is not None:
                return existing, False
            if max_queued > 0:
                queued = queries.count_jobs_by_status(conn)[JobStatus.QUEUED.value]
                if queued >= max_queued:
                    raise QueueFullError(max_queued)
            queries.insert_job(conn, job)
            return job, True

        return self._write(do_submit)

    def get_job(self, job_id: str) -> Job | None:
        return self._read(lambda conn: queries.get_job(conn, job_id))

    def find_open_job(self, input_path: str) -> Job | None:
        return self._read(lambda conn: queries.get_open_job_for_path(conn, input_path))

    def list_jobs(
        self, statuses: Iterable[JobStatus] | None = None, limit: int | None = None
    ) -> list[Job]:
        return self._read(lambda conn: queries.get_jobs(conn, statuses, limit))

    def count_jobs_by_status(self) -> dict[str, int]:
        return self._read(queries.count_jobs_by_status)

    def claim_next_job(self, max_active: int) -> Job | None:
        """Atomically move the next queued job to analyzing.

        Returns None when the queue is empty or ``max_active`` jobs are
        already active.
        """

        def do_claim(conn: sqlite3.Connection) -> Job | None:
            if queries.count_active_jobs(conn) >= max_active:
                return None
            job = queries.select_next_queued_job(conn)
            if job is None:
                return None
            now = utc_now_iso()
            queries.update_job_status(
                conn,
                job.id,
                JobStatus.ANALYZING,
                from_statuses=(JobStatus.QUEUED,),
                started_at=now,
                progress=0.0,
            )
            return replace(
                job, status=JobStatus.ANALYZING, started_at=now, progress=0.0
            )

        return self._write(do_claim)

    def transition_job(
        self,
        job_id: str,
        status: JobStatus,
        *,
        from_statuses: Iterable[JobStatus] | None = None,
        **fields,
    ) -> bool:
        """Compare-and-set status transition.

        Raises:
            DuplicateJobError: If reopening the job would give its path a
                second open job.
        """

        def do_transition(conn: sqlite3.Connection) -> bool:
            return queries.update_job_status(
                conn, job_id, status, from_statuses=from_statuses, **fields
            )

        try:
            return self._write(do_transition)
        except sqlite3.IntegrityError as e:
            job = self.get_job(job_id)
            if job is not None and "unique" in str(e).casefold():
                raise DuplicateJobError(job.input_path) from e
            raise

    def update_job_progress(self, job_id: str, progress: float) -> bool:
        return self._write(
            lambda conn: queries.update_job_progress(conn, job_id, progress)
        )

    def record_job_failure(
        self, job_id: str, error_message: str, retryable: bool
    ) -> Job | None:
        """Count a failed attempt and requeue or fail the job.

        Jobs that are no longer active (cancelled meanwhile) are returned
        unchanged.
        """

        def do_record(conn: sqlite3.Connection) -> Job | None:
            job = queries.get_job(conn, job_id)
            if job is None or job.status not in ACTIVE_STATUSES:
                return job
            status, fields = _failure_fields(job, error_message, retryable)
            queries.update_job_status(
                conn, job_id, status, from_statuses=ACTIVE_STATUSES, **fields
            )
            return queries.get_job(conn, job_id)

        return self._write(do_record)

    def delete_queued_jobs(self) -> int:
        return self._write(
            lambda conn: queries.delete_jobs_by_status(conn, JobStatus.QUEUED)
        )

    def delete_terminal_jobs_before(self, cutoff: str) -> int:
        return self._write(
            lambda conn: queries.delete_terminal_jobs_before(conn, cutoff)
        )

    def requeue_active_jobs(self) -> int:
        return self._write(queries.requeue_active_jobs)

    # -- results ------------------------------------------------------------

    def add_result(self, result: TranscodeResultRecord) -> TranscodeResultRecord:
        result_id = self._write(lambda conn: queries.insert_result(conn, result))
        return replace(result, id=result_id)

    def get_results_for_job(self, job_id: str) -> list[TranscodeResultRecord]:
        return self._read(lambda conn: queries.get_results_for_job(conn, job_id))

    def find_result(
        self, original_path: str, quality: str
    ) -> TranscodeResultRecord | None:
        return self._read(
            lambda conn: queries.find_result(conn, original_path, quality)
        )

    def list_results(self) -> list[TranscodeResultRecord]:
        return self._read(queries.get_all_results)

    def delete_result(self, result_id: int) -> bool:
        return self._write(lambda conn: queries.delete_result(conn, result_id))

    def get_compression_totals(self) -> dict[str, float]:
        return self._read(queries.get_compression_totals)

    def get_quality_breakdown(self) -> dict[str, dict[str, float]]:
        return self._read(queries.get_quality_breakdown)

    # -- analytics ----------------------------------------------------------

    def save_analytics(
        self, metric_name: str, value: str, expires_at: str
    ) -> AnalyticsRecord:
        record = AnalyticsRecord(
            id=None,
            metric_name=metric_name,
            metric_value=value,
            created_at=utc_now_iso(),
            expires_at=expires_at,
        )
        record_id = self._write(lambda conn: queries.insert_analytics(conn, record))
        return replace(record, id=record_id)

    def get_analytics(
        self, metric_name: str, now: str | None = None
    ) -> AnalyticsRecord | None:
        return self._read(
            lambda conn: queries.get_latest_analytics(conn, metric_name, now)
        )

    def expire_analytics(self, metric_name: str) -> int:
        now = utc_now_iso()
        return self._write(
            lambda conn: queries.expire_analytics(conn, metric_name, now)
        )

    def delete_analytics_before(self, cutoff: str) -> int:
        return self._write(
            lambda conn: queries.delete_analytics_before(conn, cutoff)
        )


class MemoryJobStore:
    """JobStore kept in process memory.

    Mirrors the SQLite semantics: one open job per path, dispatch order,
    cascade of results with their job. A single lock serializes access.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._jobs: dict[str, Job] = {}
        self._results: dict[int, TranscodeResultRecord] = {}
        self._analytics: list[AnalyticsRecord] = []
        self._job_sequence = itertools.count(1)
        self._result_ids = itertools.count(1)
        self._analytics_ids = itertools.count(1)

    def initialize(self) -> None:
        logger.debug("Using in-memory job store")

    def close(self) -> None:
        pass

    @staticmethod
    def _copy(job: Job) -> Job:
        return replace(job, qualities=list(job.qualities), settings=dict(job.settings))

    def _open_job_for(self, input_path: str) -> Job | None:
        candidates = [
            job
            for job in self._jobs.values()
            if job.input_path == input_path and job.status in NON_TERMINAL_STATUSES
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda j: j.sequence or 0)

    # -- jobs ---------------------------------------------------------------

    def submit_job(self, job: Job, max_queued: int = 0) -> tuple[Job, bool]:
        with self._lock:
            existing = self._open_job_for(job.input_path)
            if existing is not None:
                return self._copy(existing), False
            if max_queued > 0:
                queued = sum(
                    1 for j in self._jobs.values() if j.status is JobStatus.QUEUED
                )
                if queued >= max_queued:
                    raise QueueFullError(max_queued)
            if job.sequence is None:
                job.sequence = next(self._job_sequence)
            self._jobs[job.id] = self._copy(job)
            return job, True

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return self._copy(job) if job else None

    def find_open_job(self, input_path: str) -> Job | None:
        with self._lock:
            job = self._open_job_for(input_path)
            return self._copy(job) if job else None

    def list_jobs(
        self, statuses: Iterable[JobStatus] | None = None, limit: int | None = None
    ) -> list[Job]:
        with self._lock:
            wanted = set(statuses) if statuses is not None else None
            jobs = [
                self._copy(job)
                for job in self._jobs.values()
                if wanted is None or job.status in wanted
            ]
        jobs.sort(key=lambda j: (j.created_at, j.sequence or 0), reverse=True)
        return jobs[:limit] if limit is not None else jobs

    def count_jobs_by_status(self) -> dict[str, int]:
        with self._lock:
            counts = {status.value: 0 for status in JobStatus}
            for job in self._jobs.values():
                counts[job.status.value] += 1
            return counts

    def claim_next_job(self, max_active: int) -> Job | None:
        with self._lock:
            active = sum(1 for j in self._jobs.values() if j.status in ACTIVE_STATUSES)
            if active >= max_active:
                return None
            queued = [j for j in self._jobs.values() if j.status is JobStatus.QUEUED]
            if not queued:
                return None
            job = min(
                queued, key=lambda j: (-j.priority, j.created_at, j.sequence or 0)
            )
            job.status = JobStatus.ANALYZING
            job.started_at = utc_now_iso()
            job.progress = 0.0
            return self._copy(job)

    def transition_job(
        self,
        job_id: str,
        status: JobStatus,
        *,
        from_statuses: Iterable[JobStatus] | None = None,
        **fields,
    ) -> bool:
        unknown = set(fields) - queries.jobs.UPDATABLE_JOB_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update job columns: {sorted(unknown)}")
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            if from_statuses is not None and job.status not in set(from_statuses):
                return False
            if status in NON_TERMINAL_STATUSES and job.status in TERMINAL_STATUSES:
                other = self._open_job_for(job.input_path)
                if other is not None and other.id != job_id:
                    raise DuplicateJobError(job.input_path)
            job.status = status
            for name, value in fields.items():
                setattr(job, name, value)
            return True

    def update_job_progress(self, job_id: str, progress: float) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in ACTIVE_STATUSES:
                return False
            job.progress = progress
            return True

    def record_job_failure(
        self, job_id: str, error_message: str, retryable: bool
    ) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if job.status not in ACTIVE_STATUSES:
                return self._copy(job)
            status, fields = _failure_fields(job, error_message, retryable)
            job.status = status
            for name, value in fields.items():
                setattr(job, name, value)
            return self._copy(job)

    def delete_queued_jobs(self) -> int:
        with self._lock:
            doomed = [
                job_id
                for job_id, job in self._jobs.items()
                if job.status is JobStatus.QUEUED
            ]
            for job_id in doomed:
                self._delete_job(job_id)
            return len(doomed)

    def delete_terminal_jobs_before(self, cutoff: str) -> int:
        with self._lock:
            doomed = [
                job_id
                for job_id, job in self._jobs.items()
                if job.status in TERMINAL_STATUSES
                and (job.completed_at or job.created_at) < cutoff
            ]
            for job_id in doomed:
                self._delete_job(job_id)
            return len(doomed)

    def _delete_job(self, job_id: str) -> None:
        del self._jobs[job_id]
        for result_id in [
            rid for rid, r in self._results.items() if r.job_id == job_id
        ]:
            del self._results[result_id]

    def requeue_active_jobs(self) -> int:
        with self._lock:
            count = 0
            for job in self._jobs.values():
                if job.status in ACTIVE_STATUSES:
                    job.status = JobStatus.QUEUED
                    job.progress = 0.0
                    job.started_at = None
                    count += 1
            return count

    # -- results ------------------------------------------------------------

    def add_result(self, result: TranscodeResultRecord) -> TranscodeResultRecord:
        with self._lock:
            if result.job_id not in self._jobs:
                raise ValueError(f"Unknown job for result: {result.job_id}")
            stored = replace(result, id=next(self._result_ids))
            self._results[stored.id] = stored
            return stored

    def get_results_for_job(self, job_id: str) -> list[TranscodeResultRecord]:
        with self._lock:
            return [r for r in self._results.values() if r.job_id == job_id]

    def find_result(
        self, original_path: str, quality: str
    ) -> TranscodeResultRecord | None:
        with self._lock:
            matches = [
                r
                for r in self._results.values()
                if r.original_path == original_path and r.quality == quality
            ]
            return max(matches, key=lambda r: r.id) if matches else None

    def list_results(self) -> list[TranscodeResultRecord]:
        with self._lock:
            return list(self._results.values())

    def delete_result(self, result_id: int) -> bool:
        with self._lock:
            return self._results.pop(result_id, None) is not None

    def get_compression_totals(self) -> dict[str, float]:
        with self._lock:
            results = list(self._results.values())
        count = len(results)
        return {
            "total_files": count,
            "total_original": sum(r.original_size for r in results),
            "total_transcoded": sum(r.transcoded_size for r in results),
            "total_saved": sum(r.space_saved for r in results),
            "average_ratio": (
                sum(r.compression_ratio for r in results) / count if count else 0
            ),
            "average_time_ms": (
                sum(r.processing_time_ms for r in results) / count if count else 0
            ),
        }

    def get_quality_breakdown(self) -> dict[str, dict[str, float]]:
        with self._lock:
            results = list(self._results.values())
        breakdown: dict[str, dict[str, float]] = {}
        for quality in sorted({r.quality for r in results}):
            subset = [r for r in results if r.quality == quality]
            breakdown[quality] = {
                "count": len(subset),
                "space_saved": sum(r.space_saved for r in subset),
                "average_ratio": sum(r.compression_ratio for r in subset) / len(subset),
            }
        return breakdown

    # -- analytics ----------------------------------------------------------

    def save_analytics(
        self, metric_name: str, value: str, expires_at: str
    ) -> AnalyticsRecord:
        with self._lock:
            record = AnalyticsRecord(
                id=next(self._analytics_ids),
                metric_name=metric_name,
                metric_value=value,
                created_at=utc_now_iso(),
                expires_at=expires_at,
            )
            self._analytics.append(record)
            return record

    def get_analytics(
        self, metric_name: str, now: str | None = None
    ) -> AnalyticsRecord | None:
        with self._lock:
            for record in reversed(self._analytics):
                if record.metric_name != metric_name:
                    continue
                if now is not None and (
                    record.expires_at is None or record.expires_at <= now
                ):
                    continue
                return record
            return None

    def expire_analytics(self, metric_name: str) -> int:
        now = utc_now_iso()
        with self._lock:
            count = 0
            for index, record in enumerate(self._analytics):
                if record.metric_name == metric_name and (
                    record.expires_at is None or record.expires_at > now
                ):
                    self._analytics[index] = replace(record, expires_at=now)
                    count += 1
            return count

    def delete_analytics_before(self, cutoff: str) -> int:
        with self._lock:
            before = len(self._analytics)
            self._analytics = [r for r in self._analytics if r.created_at >= cutoff]
            return before - len(self._analytics)


def create_store(
    backend: StoreBackend | str, db_path: Path | None = None
) -> JobStore:
    """Create and initialize the store for a backend tag.

    Args:
        backend: "sqlite" or "memory".
        db_path: Database file for the sqlite backend.

    Returns:
        An initialized JobStore.

    Raises:
        ValueError: If the backend is unknown or sqlite has no db_path.
    """
    backend = StoreBackend(backend)
    if backend is StoreBackend.SQLITE:
        if db_path is None:
            raise ValueError("The sqlite store backend requires a database path")
        store: JobStore = SQLiteJobStore(db_path)
    else:
        store = MemoryJobStore()
    store.initialize()
    logger.info(
        "Job store ready",
        extra={"backend": backend.value, "db_path": str(db_path) if db_path else None},
    )
    return store
