"""Row mapping helpers shared by the query modules."""

import json
import sqlite3

from mediashrink.db.types import (
    AnalyticsRecord,
    Job,
    JobStatus,
    TranscodeResultRecord,
)


def _status_placeholders(statuses) -> tuple[str, tuple[str, ...]]:
    """Return ``("?, ?", ("queued", "analyzing"))`` for an IN clause."""
    values = tuple(s.value if isinstance(s, JobStatus) else s for s in statuses)
    return ", ".join("?" for _ in values), values


def _row_to_job(row: sqlite3.Row) -> Job:
    """Convert a transcoding_jobs row to a Job."""
    return Job(
        id=row["id"],
        input_path=row["input_path"],
        qualities=json.loads(row["qualities"]),
        status=JobStatus(row["status"]),
        priority=row["priority"],
        created_at=row["created_at"],
        attempts=row["attempts"],
        max_attempts=row["max_attempts"],
        settings=json.loads(row["settings"]) if row["settings"] else {},
        progress=row["progress"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        output_path=row["output_path"],
        error_message=row["error_message"],
        skip_reason=row["skip_reason"],
        sequence=row["sequence"],
    )


def _row_to_result(row: sqlite3.Row) -> TranscodeResultRecord:
    """Convert a transcoded_results row to a TranscodeResultRecord."""
    return TranscodeResultRecord(
        id=row["id"],
        job_id=row["job_id"],
        quality=row["quality"],
        original_path=row["original_path"],
        transcoded_path=row["transcoded_path"],
        original_size=row["original_size"],
        transcoded_size=row["transcoded_size"],
        compression_ratio=row["compression_ratio"],
        space_saved=row["space_saved"],
        checksum=row["checksum"],
        processing_time_ms=row["processing_time"],
        created_at=row["created_at"],
    )


def _row_to_analytics(row: sqlite3.Row) -> AnalyticsRecord:
    """Convert a storage_analytics row to an AnalyticsRecord."""
    return AnalyticsRecord(
        id=row["id"],
        metric_name=row["metric_name"],
        metric_value=row["metric_value"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
    )
