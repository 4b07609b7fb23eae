"""Database schema definition for mediashrink.

Only the tables the engine owns: jobs, per-quality results and the storage
analytics snapshots.
"""

import sqlite3

SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS _meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS transcoding_jobs (
    id TEXT PRIMARY KEY,
    sequence INTEGER NOT NULL,
    input_path TEXT NOT NULL,
    output_path TEXT,
    qualities TEXT NOT NULL,        -- JSON array of quality labels
    status TEXT NOT NULL DEFAULT 'queued',
    priority INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,       -- ISO 8601 UTC timestamp
    started_at TEXT,
    completed_at TEXT,
    error_message TEXT,
    skip_reason TEXT,
    progress REAL NOT NULL DEFAULT 0,
    attempts INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL DEFAULT 3,
    settings TEXT NOT NULL DEFAULT '{}',  -- JSON object
    CHECK (status IN (
        'queued', 'analyzing', 'transcoding', 'completed', 'failed', 'cancelled'
    )),
    CHECK (attempts <= max_attempts)
);
CREATE INDEX IF NOT EXISTS idx_jobs_dispatch
    ON transcoding_jobs(status, priority DESC, created_at, sequence);
CREATE INDEX IF NOT EXISTS idx_jobs_input_path ON transcoding_jobs(input_path);
-- At most one non-terminal job per input path
CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_one_open_per_path
    ON transcoding_jobs(input_path)
    WHERE status IN ('queued', 'analyzing', 'transcoding');

CREATE TABLE IF NOT EXISTS transcoded_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL,
    quality TEXT NOT NULL,
    original_path TEXT NOT NULL,
    transcoded_path TEXT NOT NULL,
    original_size INTEGER NOT NULL,
    transcoded_size INTEGER NOT NULL,
    compression_ratio REAL NOT NULL,  -- percent saved
    space_saved INTEGER NOT NULL,
    checksum TEXT,                    -- sha256 hex of transcoded file
    processing_time INTEGER NOT NULL, -- milliseconds
    created_at TEXT NOT NULL,
    FOREIGN KEY (job_id) REFERENCES transcoding_jobs(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_results_job ON transcoded_results(job_id);
CREATE INDEX IF NOT EXISTS idx_results_original
    ON transcoded_results(original_path, quality);
CREATE INDEX IF NOT EXISTS idx_results_transcoded
    ON transcoded_results(transcoded_path);

CREATE TABLE IF NOT EXISTS storage_analytics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    metric_name TEXT NOT NULL,
    metric_value TEXT NOT NULL,       -- JSON
    created_at TEXT NOT NULL,
    expires_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_analytics_metric
    ON storage_analytics(metric_name, created_at);
"""


def create_schema(conn: sqlite3.Connection) -> None:
    """Create the database schema if it doesn't exist.

    Args:
        conn: An open database connection.
    """
    conn.executescript(SCHEMA_SQL)
    conn.execute(
        "INSERT OR IGNORE INTO _meta (key, value) VALUES ('schema_version', ?)",
        (str(SCHEMA_VERSION),),
    )
    # executescript() commits implicitly; the INSERT opens a new implicit
    # transaction that must be closed before BEGIN IMMEDIATE can be used.
    conn.commit()
