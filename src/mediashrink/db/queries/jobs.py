"""Job CRUD operations for the transcoding_jobs table.

None of these functions commit. Callers own the transaction, normally via
DaemonConnectionPool.transaction().
"""

import json
import sqlite3
from collections.abc import Iterable

from mediashrink.db.types import (
    ACTIVE_STATUSES,
    NON_TERMINAL_STATUSES,
    TERMINAL_STATUSES,
    Job,
    JobStatus,
)

from .helpers import _row_to_job, _status_placeholders

# Columns a transition may set (prevent SQL injection through field names)
UPDATABLE_JOB_COLUMNS = frozenset(
    {
        "progress",
        "attempts",
        "started_at",
        "completed_at",
        "output_path",
        "error_message",
        "skip_reason",
    }
)


def next_job_sequence(conn: sqlite3.Connection) -> int:
    """Return the next insertion sequence number."""
    row = conn.execute(
        "SELECT COALESCE(MAX(sequence), 0) + 1 FROM transcoding_jobs"
    ).fetchone()
    return int(row[0])


def insert_job(conn: sqlite3.Connection, job: Job) -> str:
    """Insert a new job record.

    Assigns ``job.sequence`` if it is unset.

    Returns:
        The ID of the inserted job.

    Raises:
        sqlite3.IntegrityError: If a non-terminal job exists for the path.
    """
    if job.sequence is None:
        job.sequence = next_job_sequence(conn)
    conn.execute(
        """
        INSERT INTO transcoding_jobs (
            id, sequence, input_path, output_path, qualities, status, priority,
            created_at, started_at, completed_at, error_message, skip_reason,
            progress, attempts, max_attempts, settings
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            job.id,
            job.sequence,
            job.input_path,
            job.output_path,
            json.dumps(job.qualities),
            job.status.value,
            job.priority,
            job.created_at,
            job.started_at,
            job.completed_at,
            job.error_message,
            job.skip_reason,
            job.progress,
            job.attempts,
            job.max_attempts,
            json.dumps(job.settings),
        ),
    )
    return job.id


def get_job(conn: sqlite3.Connection, job_id: str) -> Job | None:
    """Get a job by ID, or None if it does not exist."""
    row = conn.execute(
        "SELECT * FROM transcoding_jobs WHERE id = ?", (job_id,)
    ).fetchone()
    return _row_to_job(row) if row else None


def get_open_job_for_path(conn: sqlite3.Connection, input_path: str) -> Job | None:
    """Get the non-terminal job for an input path, if one exists."""
    placeholders, values = _status_placeholders(NON_TERMINAL_STATUSES)
    row = conn.execute(
        f"""
        SELECT * FROM transcoding_jobs
        WHERE input_path = ? AND status IN ({placeholders})
        ORDER BY sequence ASC
        LIMIT 1
        """,  # nosec B608 - placeholders are generated, values are bound
        (input_path, *values),
    ).fetchone()
    return _row_to_job(row) if row else None


def get_jobs(
    conn: sqlite3.Connection,
    statuses: Iterable[JobStatus] | None = None,
    limit: int | None = None,
    newest_first: bool = True,
) -> list[Job]:
    """List jobs, optionally filtered by status."""
    query = "SELECT * FROM transcoding_jobs"
    params: list = []
    if statuses is not None:
        placeholders, values = _status_placeholders(statuses)
        query += f" WHERE status IN ({placeholders})"  # nosec B608
        params.extend(values)
    order = "DESC" if newest_first else "ASC"
    query += f" ORDER BY created_at {order}, sequence {order}"
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)
    return [_row_to_job(row) for row in conn.execute(query, params).fetchall()]


def count_jobs_by_status(conn: sqlite3.Connection) -> dict[str, int]:
    """Return a mapping of status value to job count (every status present)."""
    counts = {status.value: 0 for status in JobStatus}
    for row in conn.execute(
        "SELECT status, COUNT(*) AS n FROM transcoding_jobs GROUP BY status"
    ).fetchall():
        counts[row["status"]] = row["n"]
    return counts


def count_active_jobs(conn: sqlite3.Connection) -> int:
    """Count jobs currently in analyzing or transcoding."""
    placeholders, values = _status_placeholders(ACTIVE_STATUSES)
    query = f"SELECT COUNT(*) FROM transcoding_jobs WHERE status IN ({placeholders})"
    row = conn.execute(query, values).fetchone()  # nosec B608
    return int(row[0])


def select_next_queued_job(conn: sqlite3.Connection) -> Job | None:
    """Return the job the dispatcher should run next.

    Highest priority first; equal priorities run in creation order.
    """
    row = conn.execute(
        """
        SELECT * FROM transcoding_jobs
        WHERE status = 'queued'
        ORDER BY priority DESC, created_at ASC, sequence ASC
        LIMIT 1
        """
    ).fetchone()
    return _row_to_job(row) if row else None


def update_job_status(
    conn: sqlite3.Connection,
    job_id: str,
    status: JobStatus,
    *,
    from_statuses: Iterable[JobStatus] | None = None,
    **fields,
) -> bool:
    """Transition a job to ``status`` and set any extra columns.

    Args:
        conn: Database connection.
        job_id: Job to update.
        status: New status.
        from_statuses: If given, the update only applies while the job is in
            one of these statuses (compare-and-set).
        **fields: Column values from UPDATABLE_JOB_COLUMNS.

    Returns:
        True if a row was updated.

    Raises:
        ValueError: If a field is not updatable.
    """
    unknown = set(fields) - UPDATABLE_JOB_COLUMNS
    if unknown:
        raise ValueError(f"Cannot update job columns: {sorted(unknown)}")

    assignments = ["status = ?"] + [f"{name} = ?" for name in fields]
    params: list = [status.value, *fields.values()]
    # nosec B608 - column names come from UPDATABLE_JOB_COLUMNS
    query = f"UPDATE transcoding_jobs SET {', '.join(assignments)} WHERE id = ?"
    params.append(job_id)
    if from_statuses is not None:
        placeholders, values = _status_placeholders(from_statuses)
        query += f" AND status IN ({placeholders})"
        params.extend(values)

    cursor = conn.execute(query, params)
    return cursor.rowcount > 0


def update_job_progress(conn: sqlite3.Connection, job_id: str, progress: float) -> bool:
    """Update the persisted progress of an active job."""
    placeholders, values = _status_placeholders(ACTIVE_STATUSES)
    cursor = conn.execute(
        f"""
        UPDATE transcoding_jobs SET progress = ?
        WHERE id = ? AND status IN ({placeholders})
        """,  # nosec B608
        (progress, job_id, *values),
    )
    return cursor.rowcount > 0


def delete_jobs_by_status(conn: sqlite3.Connection, status: JobStatus) -> int:
    """Delete every job in ``status``. Returns the number of rows deleted."""
    cursor = conn.execute(
        "DELETE FROM transcoding_jobs WHERE status = ?", (status.value,)
    )
    return cursor.rowcount


def delete_terminal_jobs_before(conn: sqlite3.Connection, cutoff: str) -> int:
    """Delete terminal jobs that finished (or were created) before ``cutoff``.

    Results cascade through the foreign key.
    """
    placeholders, values = _status_placeholders(TERMINAL_STATUSES)
    cursor = conn.execute(
        f"""
        DELETE FROM transcoding_jobs
        WHERE status IN ({placeholders})
          AND COALESCE(completed_at, created_at) < ?
        """,  # nosec B608
        (*values, cutoff),
    )
    return cursor.rowcount


def requeue_active_jobs(conn: sqlite3.Connection) -> int:
    """Return analyzing/transcoding jobs to the queue.

    Attempt counts are preserved. Returns the number of jobs requeued.
    """
    placeholders, values = _status_placeholders(ACTIVE_STATUSES)
    cursor = conn.execute(
        f"""
        UPDATE transcoding_jobs
        SET status = 'queued', progress = 0, started_at = NULL
        WHERE status IN ({placeholders})
        """,  # nosec B608
        values,
    )
    return cursor.rowcount
