"""Job context for structured logging.

Uses contextvars so each pool thread running a pipeline tags its log records
with the job (and quality) it is working on.
"""

from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Generator

_job_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "job_id", default=None
)
_quality: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "quality", default=None
)


def get_job_context() -> tuple[str | None, str | None]:
    """Get current job context.

    Returns:
        Tuple of (job_id, quality), either may be None.
    """
    return _job_id.get(), _quality.get()


@contextmanager
def job_context(
    job_id: str, quality: str | None = None
) -> Generator[None, None, None]:
    """Context manager that tags log records with a job id and quality.

    Restores the previous context on exit, so contexts nest.

    Example:
        with job_context(job.id):
            with job_context(job.id, "720p"):
                logger.info("Encoding")  # [job 1a2b3c4d:720p] Encoding
    """
    job_token = _job_id.set(job_id)
    quality_token = _quality.set(quality)
    try:
        yield
    finally:
        _quality.reset(quality_token)
        _job_id.reset(job_token)


class JobContextFilter(logging.Filter):
    """Logging filter that injects job context into log records.

    Adds ``job_id`` and ``quality`` attributes for the JSON formatter and a
    compact ``job_tag`` such as ``[job 1a2b3c4d:720p] `` for text output.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        job_id, quality = get_job_context()

        record.job_id = job_id
        record.quality = quality

        if job_id:
            short = job_id[:8]
            if quality:
                record.job_tag = f"[job {short}:{quality}] "
            else:
                record.job_tag = f"[job {short}] "
        else:
            record.job_tag = ""

        return True
