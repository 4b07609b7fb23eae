"""Tests for schema creation and version checks."""

import sqlite3
from pathlib import Path

import pytest

from mediashrink.db.connection import get_connection
from mediashrink.db.schema import (
    SCHEMA_VERSION,
    SchemaVersionError,
    get_schema_version,
    initialize_database,
)


class TestInitializeDatabase:
    """Tests for initialize_database."""

    def test_creates_tables_and_version(self, temp_dir: Path) -> None:
        """A fresh database gets every table and the current version."""
        with get_connection(temp_dir / "fresh.db") as conn:
            assert get_schema_version(conn) is None
            initialize_database(conn)
            assert get_schema_version(conn) == SCHEMA_VERSION
            tables = {
                row[0]
                for row in conn.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'table'"
                )
            }
        assert {"_meta", "transcoding_jobs", "transcoded_results"} <= tables
        assert "storage_analytics" in tables

    def test_is_idempotent(self, temp_dir: Path) -> None:
        """Initializing twice leaves the version unchanged."""
        with get_connection(temp_dir / "twice.db") as conn:
            initialize_database(conn)
            initialize_database(conn)
            assert get_schema_version(conn) == SCHEMA_VERSION

    def test_newer_version_is_rejected(self, temp_dir: Path) -> None:
        """A database from a newer release raises SchemaVersionError."""
        with get_connection(temp_dir / "newer.db") as conn:
            initialize_database(conn)
            conn.execute(
                "UPDATE _meta SET value = ? WHERE key = 'schema_version'",
                (str(SCHEMA_VERSION + 1),),
            )
            conn.commit()
            with pytest.raises(SchemaVersionError, match="newer than supported"):
                initialize_database(conn)

    def test_one_open_job_per_path(self, temp_dir: Path) -> None:
        """The partial unique index rejects a second open job for a path."""
        insert = (
            "INSERT INTO transcoding_jobs (id, sequence, input_path, qualities, "
            "status, created_at) VALUES (?, ?, '/a.mkv', '[]', ?, '2024-01-01')"
        )
        with get_connection(temp_dir / "unique.db") as conn:
            initialize_database(conn)
            conn.execute(insert, ("done", 1, "completed"))
            conn.execute(insert, ("open", 2, "queued"))
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(insert, ("second", 3, "analyzing"))
