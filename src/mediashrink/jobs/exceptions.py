"""Custom exceptions for job management.

This module provides specific exception types for job operations, enabling
callers (CLI, API layer) to tell admission problems, missing jobs and
disallowed transitions apart.
"""


class JobTrackingError(Exception):
    """Base exception for job errors.

    All job-related exceptions inherit from this class, allowing callers
    to catch all job errors with a single except clause if desired.
    """


class AdmissionError(JobTrackingError):
    """Raised when a submission is rejected. No job is created."""


class QueueFullError(AdmissionError):
    """Raised when the queue already holds the maximum number of jobs.

    Attributes:
        limit: The configured queue size limit.
    """

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Queue is full ({limit} jobs queued)")


class DuplicateJobError(AdmissionError):
    """Raised when a transition would create a second open job for a path.

    Attributes:
        input_path: The contested input path.
    """

    def __init__(self, input_path: str) -> None:
        self.input_path = input_path
        super().__init__(f"Another job is already open for {input_path}")


class JobNotFoundError(JobTrackingError):
    """Raised when a job doesn't exist.

    Attributes:
        job_id: The ID of the job that was not found.
        operation: The operation that was attempted (e.g., "cancel", "retry").
    """

    def __init__(self, job_id: str, operation: str) -> None:
        """Initialize the exception.

        Args:
            job_id: The ID of the job that was not found.
            operation: The operation that was attempted.
        """
        self.job_id = job_id
        self.operation = operation
        super().__init__(f"Cannot {operation} job {job_id}: not found")


class InvalidJobStateError(JobTrackingError):
    """Raised when an operation is not allowed in the job's current status.

    Attributes:
        job_id: The job the operation targeted.
        operation: The attempted operation.
        status: The job's status at the time.
    """

    def __init__(self, job_id: str, operation: str, status: str) -> None:
        self.job_id = job_id
        self.operation = operation
        self.status = status
        super().__init__(f"Cannot {operation} job {job_id}: job is {status}")


class RetryLimitExceededError(InvalidJobStateError):
    """Raised when retrying a job that already used all of its attempts.

    Attributes:
        attempts: Attempts used so far.
        max_attempts: The job's attempt cap.
    """

    def __init__(self, job_id: str, attempts: int, max_attempts: int) -> None:
        self.attempts = attempts
        self.max_attempts = max_attempts
        JobTrackingError.__init__(
            self,
            f"Cannot retry job {job_id}: maximum attempts reached "
            f"({attempts}/{max_attempts})",
        )
        self.job_id = job_id
        self.operation = "retry"
        self.status = "failed"


class ConcurrentModificationError(JobTrackingError):
    """Raised when a job changed state between read and write.

    Attributes:
        job_id: The ID of the job that was concurrently modified.
    """

    def __init__(self, job_id: str, message: str | None = None) -> None:
        self.job_id = job_id
        default_msg = f"Job {job_id} was modified concurrently"
        super().__init__(message or default_msg)


class JobPipelineError(JobTrackingError):
    """Raised by the job pipeline when a job cannot be completed.

    Attributes:
        retryable: Whether another attempt may succeed.
    """

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable
