"""Query functions for the engine-owned tables."""

from .analytics import (
    delete_analytics_before,
    expire_analytics,
    get_latest_analytics,
    insert_analytics,
)
from .jobs import (
    count_active_jobs,
    count_jobs_by_status,
    delete_jobs_by_status,
    delete_terminal_jobs_before,
    get_job,
    get_jobs,
    get_open_job_for_path,
    insert_job,
    requeue_active_jobs,
    select_next_queued_job,
    update_job_progress,
    update_job_status,
)
from .results import (
    delete_result,
    find_result,
    get_all_results,
    get_compression_totals,
    get_quality_breakdown,
    get_results_for_job,
    insert_result,
)

__all__ = [
    "count_active_jobs",
    "count_jobs_by_status",
    "delete_analytics_before",
    "delete_jobs_by_status",
    "delete_result",
    "delete_terminal_jobs_before",
    "expire_analytics",
    "find_result",
    "get_all_results",
    "get_compression_totals",
    "get_job",
    "get_jobs",
    "get_latest_analytics",
    "get_open_job_for_path",
    "get_quality_breakdown",
    "get_results_for_job",
    "insert_analytics",
    "insert_job",
    "insert_result",
    "requeue_active_jobs",
    "select_next_queued_job",
    "update_job_progress",
    "update_job_status",
]
