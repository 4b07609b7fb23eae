"""Job manager: admission, dispatch and the job state machine.

The dispatcher is a single thread that sleeps on a condition variable. It
wakes when a job is enqueued or requeued, when a running job frees its slot,
and on a periodic safety timeout. Claimed jobs run on a thread pool sized to
the concurrency ceiling.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from mediashrink.config.models import JobsConfig
from mediashrink.core.datetime_utils import utc_now_iso
from mediashrink.core.file_utils import normalize_path
from mediashrink.db.store import JobStore
from mediashrink.db.types import (
    ACTIVE_STATUSES,
    NON_TERMINAL_STATUSES,
    Job,
    JobStatus,
)
from mediashrink.events import (
    EventBus,
    JobAdded,
    JobCancelled,
    JobCompleted,
    JobFailed,
    JobRetried,
    JobStarted,
)
from mediashrink.executor.cancellation import CancellationToken
from mediashrink.executor.exceptions import TranscodeCancelledError
from mediashrink.jobs.errors import ErrorClassification, classify_error
from mediashrink.jobs.exceptions import (
    AdmissionError,
    InvalidJobStateError,
    JobNotFoundError,
    RetryLimitExceededError,
)
from mediashrink.jobs.options import SubmitOptionsModel, parse_submit_options
from mediashrink.logging.context import job_context

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobOutcome:
    """What a successful pipeline run produced."""

    result_count: int = 0
    skip_reason: str | None = None
    output_path: str | None = None


JobRunner = Callable[[Job, CancellationToken], JobOutcome]


class JobManager:
    """Owns the job lifecycle.

    Args:
        store: Persistence for job rows.
        bus: Receives lifecycle events.
        config: Queue limits and defaults.
        runner: Runs the pipeline for a claimed job. Returning marks the job
            completed; raising records a failure (retryable per
            classify_error) unless the job was cancelled.
    """

    def __init__(
        self,
        store: JobStore,
        bus: EventBus,
        config: JobsConfig,
        runner: JobRunner,
    ) -> None:
        self._store = store
        self._bus = bus
        self.config = config
        self._runner = runner

        self._condition = threading.Condition()
        self._active: dict[str, CancellationToken] = {}
        self._stopping = False
        self._dispatcher: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None

    @property
    def is_running(self) -> bool:
        return self._dispatcher is not None and self._dispatcher.is_alive()

    @property
    def active_job_ids(self) -> list[str]:
        with self._condition:
            return list(self._active)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Recover interrupted jobs and start the dispatcher thread."""
        if self.is_running:
            return
        if self.config.recover_on_start:
            recovered = self.recover_interrupted_jobs()
            if recovered:
                logger.info("Requeued %d interrupted jobs", recovered)

        self._stopping = False
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_concurrent_jobs,
            thread_name_prefix="mediashrink-job",
        )
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop,
            args=(self._executor,),
            name="mediashrink-dispatcher",
            daemon=True,
        )
        self._dispatcher.start()
        logger.info(
            "Job dispatcher started (max %d concurrent jobs)",
            self.config.max_concurrent_jobs,
        )

    def stop(self, timeout: float | None = 30.0) -> None:
        """Stop dispatching, terminate running jobs and requeue them."""
        with self._condition:
            self._stopping = True
            tokens = list(self._active.values())
            self._condition.notify_all()

        if self._dispatcher is not None:
            self._dispatcher.join(timeout=timeout)
            self._dispatcher = None

        for token in tokens:
            token.cancel("shutdown")
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

        requeued = self._store.requeue_active_jobs()
        if requeued:
            logger.info("Requeued %d jobs interrupted by shutdown", requeued)
        logger.info("Job dispatcher stopped")

    def recover_interrupted_jobs(self) -> int:
        """Requeue jobs left active by a previous process."""
        with self._condition:
            if self._active:
                return 0
            return self._store.requeue_active_jobs()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _notify(self) -> None:
        with self._condition:
            self._condition.notify_all()

    def _claim_jobs(self) -> list[tuple[Job, CancellationToken]]:
        claimed = []
        while len(self._active) < self.config.max_concurrent_jobs:
            job = self._store.claim_next_job(self.config.max_concurrent_jobs)
            if job is None:
                break
            token = CancellationToken()
            self._active[job.id] = token
            claimed.append((job, token))
        return claimed

    def _dispatch_loop(self, executor: ThreadPoolExecutor) -> None:
        while True:
            with self._condition:
                if self._stopping:
                    return
                try:
                    claimed = self._claim_jobs()
                except Exception:
                    logger.exception("Failed to claim queued jobs")
                    claimed = []
                if not claimed:
                    self._condition.wait(timeout=self.config.dispatch_wakeup_seconds)
                    continue

            for job, token in claimed:
                logger.info(
                    "Starting job %s (attempt %d/%d): %s",
                    job.id,
                    job.attempts + 1,
                    job.max_attempts,
                    job.input_path,
                )
                self._bus.publish(
                    JobStarted(
                        job_id=job.id,
                        input_path=job.input_path,
                        attempt=job.attempts + 1,
                    )
                )
                executor.submit(self._run_job, job, token)

    def _run_job(self, job: Job, token: CancellationToken) -> None:
        try:
            with job_context(job.id):
                try:
                    outcome = self._runner(job, token)
                except TranscodeCancelledError:
                    logger.info("Job %s stopped: %s", job.id, token.reason)
                except Exception as e:
                    self._handle_failure(job, e)
                else:
                    self._complete(job, outcome)
        finally:
            with self._condition:
                self._active.pop(job.id, None)
                self._condition.notify_all()

    def _complete(self, job: Job, outcome: JobOutcome) -> None:
        updated = self._store.transition_job(
            job.id,
            JobStatus.COMPLETED,
            from_statuses=ACTIVE_STATUSES,
            progress=100.0,
            completed_at=utc_now_iso(),
            output_path=outcome.output_path,
            skip_reason=outcome.skip_reason,
            error_message=None,
        )
        if not updated:
            logger.info("Job %s finished after leaving the active state", job.id)
            return
        logger.info(
            "Job %s completed with %d results",
            job.id,
            outcome.result_count,
            extra={"skip_reason": outcome.skip_reason},
        )
        self._bus.publish(
            JobCompleted(
                job_id=job.id,
                result_count=outcome.result_count,
                skip_reason=outcome.skip_reason,
            )
        )

    def _handle_failure(self, job: Job, error: Exception) -> None:
        classification = classify_error(error)
        message = str(error) or type(error).__name__
        if classification is ErrorClassification.TRANSIENT:
            logger.warning("Job %s failed (transient): %s", job.id, message)
        else:
            logger.error(
                "Job %s failed (%s): %s",
                job.id,
                classification.value,
                message,
                exc_info=not hasattr(error, "retryable"),
            )
        self.record_failure(
            job.id, message, classification is ErrorClassification.TRANSIENT
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def submit(
        self,
        input_path: str,
        options: dict[str, Any] | SubmitOptionsModel | None = None,
    ) -> tuple[Job, bool]:
        """Admit a job for ``input_path``.

        Args:
            input_path: File to transcode.
            options: qualities, priority, max_attempts, settings.

        Returns:
            (job, created). When an open job for the same path exists it is
            returned with created=False and nothing is inserted.

        Raises:
            AdmissionError: Invalid options or path, or the queue is full.
        """
        if not input_path or not str(input_path).strip():
            raise AdmissionError("Input path must not be empty")
        if not isinstance(options, SubmitOptionsModel):
            options = parse_submit_options(options)

        config = self.config
        job = Job(
            id=str(uuid.uuid4()),
            input_path=normalize_path(input_path),
            qualities=options.qualities or list(config.default_qualities),
            status=JobStatus.QUEUED,
            priority=(
                options.priority
                if options.priority is not None
                else config.default_priority
            ),
            created_at=utc_now_iso(),
            max_attempts=options.max_attempts or config.max_attempts,
            settings=dict(options.settings),
        )
        job, created = self._store.submit_job(job, config.max_queue_size)
        if not created:
            logger.info(
                "Job %s already open for %s (%s)",
                job.id,
                job.input_path,
                job.status.value,
            )
            return job, False

        logger.info(
            "Queued job %s for %s",
            job.id,
            job.input_path,
            extra={"priority": job.priority, "qualities": job.qualities},
        )
        self._bus.publish(
            JobAdded(
                job_id=job.id,
                input_path=job.input_path,
                priority=job.priority,
                qualities=tuple(job.qualities),
            )
        )
        self._notify()
        return job, True

    def get_job(self, job_id: str) -> Job | None:
        return self._store.get_job(job_id)

    def list_jobs(
        self, status: JobStatus | str | None = None, limit: int | None = 50
    ) -> list[Job]:
        statuses = [JobStatus(status)] if status is not None else None
        return self._store.list_jobs(statuses, limit)

    def mark_transcoding(self, job_id: str) -> bool:
        """Move a job from analyzing to transcoding. False if it left analyzing."""
        return self._store.transition_job(
            job_id, JobStatus.TRANSCODING, from_statuses=(JobStatus.ANALYZING,)
        )

    def record_failure(self, job_id: str, error: str, retryable: bool) -> Job | None:
        """Count a failed attempt; requeue while attempts remain and retryable.

        A job cancelled meanwhile stays cancelled.
        """
        job = self._store.record_job_failure(job_id, error, retryable)
        if job is None or job.status not in (JobStatus.QUEUED, JobStatus.FAILED):
            return job

        will_retry = job.status is JobStatus.QUEUED
        self._bus.publish(
            JobFailed(
                job_id=job_id,
                error=error,
                attempts=job.attempts,
                max_attempts=job.max_attempts,
                will_retry=will_retry,
            )
        )
        if will_retry:
            logger.info(
                "Requeued job %s (attempt %d/%d)",
                job_id,
                job.attempts,
                job.max_attempts,
            )
            self._notify()
        return job

    def cancel(self, job_id: str) -> Job:
        """Cancel a queued or running job.

        Raises:
            JobNotFoundError: Unknown job.
            InvalidJobStateError: The job already completed, failed or was
                cancelled.
        """
        job = self._store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id, "cancel")
        if job.status.is_terminal:
            raise InvalidJobStateError(job_id, "cancel", job.status.value)

        if not self._store.transition_job(
            job_id,
            JobStatus.CANCELLED,
            from_statuses=NON_TERMINAL_STATUSES,
            completed_at=utc_now_iso(),
        ):
            current = self._store.get_job(job_id)
            status = current.status.value if current else "deleted"
            raise InvalidJobStateError(job_id, "cancel", status)

        with self._condition:
            token = self._active.get(job_id)
        if token is not None:
            token.cancel(f"job {job_id} cancelled")

        logger.info("Cancelled job %s", job_id)
        self._bus.publish(JobCancelled(job_id=job_id))
        self._notify()
        return self._store.get_job(job_id) or job

    def retry(self, job_id: str) -> Job:
        """Requeue a failed or cancelled job.

        Raises:
            JobNotFoundError: Unknown job.
            RetryLimitExceededError: The job used all of its attempts.
            InvalidJobStateError: The job is not failed or cancelled.
            DuplicateJobError: Another open job exists for the same path.
        """
        job = self._store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id, "retry")
        if job.status not in (JobStatus.FAILED, JobStatus.CANCELLED):
            raise InvalidJobStateError(job_id, "retry", job.status.value)
        if not job.can_retry:
            raise RetryLimitExceededError(job_id, job.attempts, job.max_attempts)

        if not self._store.transition_job(
            job_id,
            JobStatus.QUEUED,
            from_statuses=(JobStatus.FAILED, JobStatus.CANCELLED),
            progress=0.0,
            error_message=None,
            started_at=None,
            completed_at=None,
            skip_reason=None,
        ):
            current = self._store.get_job(job_id)
            status = current.status.value if current else "deleted"
            raise InvalidJobStateError(job_id, "retry", status)

        logger.info("Retrying job %s", job_id)
        self._bus.publish(JobRetried(job_id=job_id))
        self._notify()
        return self._store.get_job(job_id) or job

    def clear_queue(self) -> dict[str, int]:
        """Cancel every active job and delete every queued job."""
        cancelled = 0
        for job in self._store.list_jobs(ACTIVE_STATUSES):
            try:
                self.cancel(job.id)
                cancelled += 1
            except (JobNotFoundError, InvalidJobStateError) as e:
                logger.debug("Skipping job %s while clearing queue: %s", job.id, e)
        deleted = self._store.delete_queued_jobs()
        logger.info("Cleared queue: %d cancelled, %d deleted", cancelled, deleted)
        return {"cancelled": cancelled, "deleted": deleted}

    def get_queue_status(self) -> dict[str, Any]:
        counts = self._store.count_jobs_by_status()
        active = counts["analyzing"] + counts["transcoding"]
        return {
            "queued": counts["queued"],
            "active": active,
            "analyzing": counts["analyzing"],
            "transcoding": counts["transcoding"],
            "completed": counts["completed"],
            "failed": counts["failed"],
            "cancelled": counts["cancelled"],
            "total": sum(counts.values()),
            "is_processing": self.is_running and active > 0,
            "max_concurrent_jobs": self.config.max_concurrent_jobs,
        }

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until no job is queued or running.

        Returns:
            True if idle, False on timeout.
        """

        def idle() -> bool:
            if self._active:
                return False
            counts = self._store.count_jobs_by_status()
            return all(counts[status.value] == 0 for status in NON_TERMINAL_STATUSES)

        with self._condition:
            return self._condition.wait_for(idle, timeout=timeout)
