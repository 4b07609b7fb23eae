"""Job management: admission, dispatch, progress and cleanup.

Submodules are imported directly (``mediashrink.jobs.manager`` and so on);
only the exception types are re-exported here because the store layer
depends on them.
"""

from mediashrink.jobs.exceptions import (
    AdmissionError,
    ConcurrentModificationError,
    DuplicateJobError,
    InvalidJobStateError,
    JobNotFoundError,
    JobPipelineError,
    JobTrackingError,
    QueueFullError,
    RetryLimitExceededError,
)

__all__ = [
    "AdmissionError",
    "ConcurrentModificationError",
    "DuplicateJobError",
    "InvalidJobStateError",
    "JobNotFoundError",
    "JobPipelineError",
    "JobTrackingError",
    "QueueFullError",
    "RetryLimitExceededError",
]
