"""Structured logging module for mediashrink.

Provides configurable logging with JSON format support, file rotation and
per-job context tagging.
"""

from mediashrink.logging.config import configure_logging
from mediashrink.logging.context import JobContextFilter, get_job_context, job_context
from mediashrink.logging.handlers import JSONFormatter

__all__ = [
    "JSONFormatter",
    "JobContextFilter",
    "configure_logging",
    "get_job_context",
    "job_context",
]
