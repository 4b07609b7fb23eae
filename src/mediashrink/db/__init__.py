"""Persistence layer: SQLite schema, queries and the JobStore backends."""

from mediashrink.db.connection import (
    DaemonConnectionPool,
    DatabaseLockedError,
    execute_with_retry,
    get_connection,
)
from mediashrink.db.store import (
    JobStore,
    MemoryJobStore,
    SQLiteJobStore,
    StoreBackend,
    create_store,
)
from mediashrink.db.types import (
    ACTIVE_STATUSES,
    NON_TERMINAL_STATUSES,
    TERMINAL_STATUSES,
    AnalyticsRecord,
    Job,
    JobStatus,
    TranscodeResultRecord,
    compute_compression_ratio,
)

__all__ = [
    "ACTIVE_STATUSES",
    "NON_TERMINAL_STATUSES",
    "TERMINAL_STATUSES",
    "AnalyticsRecord",
    "DaemonConnectionPool",
    "DatabaseLockedError",
    "Job",
    "JobStatus",
    "JobStore",
    "MemoryJobStore",
    "SQLiteJobStore",
    "StoreBackend",
    "TranscodeResultRecord",
    "compute_compression_ratio",
    "create_store",
    "execute_with_retry",
    "get_connection",
]
