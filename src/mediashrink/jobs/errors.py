"""Decides whether a failed job attempt is worth retrying."""

from __future__ import annotations

import errno
import sqlite3
from enum import Enum

from mediashrink.db.connection import DatabaseLockedError, is_lock_error
from mediashrink.tools.detection import ToolNotFoundError


class ErrorClassification(Enum):
    """How a pipeline failure affects the job.

    Values:
        TRANSIENT: Another attempt may succeed; the job is requeued.
        PERMANENT: The input or output is at fault; the job fails.
        FATAL: The installation or configuration is broken; the job fails.
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    FATAL = "fatal"


_RETRY_ERRNOS = frozenset({errno.ENOSPC})

# Programming errors
_BUG_TYPES = (ValueError, TypeError, AttributeError)


def _classify_os_error(exc: OSError) -> ErrorClassification:
    if isinstance(exc, (FileNotFoundError, IsADirectoryError)):
        return ErrorClassification.PERMANENT
    message = str(exc).casefold()
    if (
        exc.errno in _RETRY_ERRNOS
        or isinstance(exc, PermissionError)
        or "no space" in message
        or "disk full" in message
    ):
        return ErrorClassification.TRANSIENT
    return ErrorClassification.PERMANENT


def classify_error(exception: BaseException) -> ErrorClassification:
    """Map an exception raised while processing a job to its retry class.

    Exceptions carrying a ``retryable`` attribute (transcode errors and
    JobPipelineError) are classified by it. Otherwise the type decides:
    lock contention and full disks are transient, a missing ffmpeg or
    ffprobe is fatal.

    Examples:
        >>> classify_error(FileNotFoundError("movie.mkv"))
        <ErrorClassification.PERMANENT: 'permanent'>

        >>> classify_error(sqlite3.OperationalError("database is locked"))
        <ErrorClassification.TRANSIENT: 'transient'>
    """
    if isinstance(exception, ToolNotFoundError):
        return ErrorClassification.FATAL

    retryable = getattr(exception, "retryable", None)
    if retryable is not None:
        if retryable:
            return ErrorClassification.TRANSIENT
        return ErrorClassification.PERMANENT

    if isinstance(exception, DatabaseLockedError):
        return ErrorClassification.TRANSIENT
    if isinstance(exception, sqlite3.OperationalError):
        if is_lock_error(exception):
            return ErrorClassification.TRANSIENT
        return ErrorClassification.PERMANENT
    if isinstance(exception, OSError):
        return _classify_os_error(exception)
    if isinstance(exception, _BUG_TYPES):
        return ErrorClassification.FATAL
    return ErrorClassification.PERMANENT


def is_retryable(exception: BaseException) -> bool:
    return classify_error(exception) is ErrorClassification.TRANSIENT
