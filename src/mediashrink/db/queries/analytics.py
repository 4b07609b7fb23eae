"""Queries for the storage_analytics table. None of these functions commit."""

import sqlite3

from mediashrink.db.types import AnalyticsRecord

from .helpers import _row_to_analytics


def insert_analytics(conn: sqlite3.Connection, record: AnalyticsRecord) -> int:
    """Insert an analytics snapshot row and return its id."""
    cursor = conn.execute(
        """
        INSERT INTO storage_analytics
            (metric_name, metric_value, created_at, expires_at)
        VALUES (?, ?, ?, ?)
        """,
        (record.metric_name, record.metric_value, record.created_at, record.expires_at),
    )
    return int(cursor.lastrowid)


def get_latest_analytics(
    conn: sqlite3.Connection, metric_name: str, now: str | None = None
) -> AnalyticsRecord | None:
    """Return the newest snapshot for a metric.

    Args:
        conn: Database connection.
        metric_name: Metric key (e.g. "storage_stats").
        now: If given, only snapshots with ``expires_at > now`` qualify.
    """
    query = "SELECT * FROM storage_analytics WHERE metric_name = ?"
    params: list = [metric_name]
    if now is not None:
        query += " AND expires_at IS NOT NULL AND expires_at > ?"
        params.append(now)
    query += " ORDER BY created_at DESC, id DESC LIMIT 1"
    row = conn.execute(query, params).fetchone()
    return _row_to_analytics(row) if row else None


def expire_analytics(conn: sqlite3.Connection, metric_name: str, now: str) -> int:
    """Mark every unexpired snapshot of a metric as expired at ``now``."""
    cursor = conn.execute(
        """
        UPDATE storage_analytics SET expires_at = ?
        WHERE metric_name = ? AND (expires_at IS NULL OR expires_at > ?)
        """,
        (now, metric_name, now),
    )
    return cursor.rowcount


def delete_analytics_before(conn: sqlite3.Connection, cutoff: str) -> int:
    """Delete snapshots created before ``cutoff``."""
    cursor = conn.execute(
        "DELETE FROM storage_analytics WHERE created_at < ?", (cutoff,)
    )
    return cursor.rowcount
