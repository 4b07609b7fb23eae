"""Queries for the transcoded_results table.

Results are insert-only; the only other writes are deletions during
reconciliation. None of these functions commit.
"""

import sqlite3

from mediashrink.db.types import TranscodeResultRecord

from .helpers import _row_to_result


def insert_result(conn: sqlite3.Connection, result: TranscodeResultRecord) -> int:
    """Insert a result row and return its id."""
    cursor = conn.execute(
        """
        INSERT INTO transcoded_results (
            job_id, quality, original_path, transcoded_path,
            original_size, transcoded_size, compression_ratio, space_saved,
            checksum, processing_time, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            result.job_id,
            result.quality,
            result.original_path,
            result.transcoded_path,
            result.original_size,
            result.transcoded_size,
            result.compression_ratio,
            result.space_saved,
            result.checksum,
            result.processing_time_ms,
            result.created_at,
        ),
    )
    return int(cursor.lastrowid)


def get_results_for_job(
    conn: sqlite3.Connection, job_id: str
) -> list[TranscodeResultRecord]:
    """Return every result produced by a job, oldest first."""
    rows = conn.execute(
        "SELECT * FROM transcoded_results WHERE job_id = ? ORDER BY id",
        (job_id,),
    ).fetchall()
    return [_row_to_result(row) for row in rows]


def find_result(
    conn: sqlite3.Connection, original_path: str, quality: str
) -> TranscodeResultRecord | None:
    """Return the newest result for an original file at a quality."""
    row = conn.execute(
        """
        SELECT * FROM transcoded_results
        WHERE original_path = ? AND quality = ?
        ORDER BY id DESC
        LIMIT 1
        """,
        (original_path, quality),
    ).fetchone()
    return _row_to_result(row) if row else None


def get_all_results(conn: sqlite3.Connection) -> list[TranscodeResultRecord]:
    """Return every persisted result."""
    rows = conn.execute("SELECT * FROM transcoded_results ORDER BY id").fetchall()
    return [_row_to_result(row) for row in rows]


def delete_result(conn: sqlite3.Connection, result_id: int) -> bool:
    """Delete a result row. Returns True if it existed."""
    cursor = conn.execute("DELETE FROM transcoded_results WHERE id = ?", (result_id,))
    return cursor.rowcount > 0


def get_compression_totals(conn: sqlite3.Connection) -> dict[str, float]:
    """Aggregate compression figures over every result row."""
    row = conn.execute(
        """
        SELECT
            COUNT(*) AS total_files,
            COALESCE(SUM(original_size), 0) AS total_original,
            COALESCE(SUM(transcoded_size), 0) AS total_transcoded,
            COALESCE(SUM(space_saved), 0) AS total_saved,
            COALESCE(AVG(compression_ratio), 0) AS average_ratio,
            COALESCE(AVG(processing_time), 0) AS average_time_ms
        FROM transcoded_results
        """
    ).fetchone()
    return dict(row)


def get_quality_breakdown(conn: sqlite3.Connection) -> dict[str, dict[str, float]]:
    """Per-quality counts and savings."""
    rows = conn.execute(
        """
        SELECT quality,
               COUNT(*) AS count,
               COALESCE(SUM(space_saved), 0) AS space_saved,
               COALESCE(AVG(compression_ratio), 0) AS average_ratio
        FROM transcoded_results
        GROUP BY quality
        ORDER BY quality
        """
    ).fetchall()
    return {
        row["quality"]: {
            "count": row["count"],
            "space_saved": row["space_saved"],
            "average_ratio": row["average_ratio"],
        }
        for row in rows
    }
