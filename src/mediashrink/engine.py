"""Transcoding engine: composition root and per-job pipeline.

TranscodingEngine wires the store, event bus, analyzer, transcoder, storage
manager, progress tracker, job manager and cleanup service together. Build
one per process and pass it to whatever needs it.

Example:
    config = get_config()
    with TranscodingEngine(config) as engine:
        job_id = engine.submit_job("/media/movie.mkv", {"qualities": ["720p"]})
        engine.wait_until_idle()
        print(engine.get_job_status(job_id))
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

from mediashrink.analyzer import FileAnalysis, FileAnalyzer
from mediashrink.config.loader import ConfigError, apply_overrides
from mediashrink.config.models import EngineConfig
from mediashrink.core.datetime_utils import utc_now
from mediashrink.core.file_utils import normalize_path
from mediashrink.db.store import JobStore, create_store
from mediashrink.db.types import Job, JobStatus, TranscodeResultRecord
from mediashrink.events import (
    ConfigUpdated,
    Event,
    EventBus,
    EventHandler,
    JobPhaseProgress,
)
from mediashrink.executor.cancellation import CancellationToken
from mediashrink.executor.exceptions import (
    TranscodeCancelledError,
    TranscodeError,
)
from mediashrink.executor.transcoder import Transcoder
from mediashrink.introspector import (
    FFprobeIntrospector,
    MediaIntrospectionError,
    MediaIntrospector,
    UnavailableIntrospector,
)
from mediashrink.jobs.cleanup import CleanupService
from mediashrink.jobs.errors import is_retryable
from mediashrink.jobs.exceptions import JobNotFoundError, JobPipelineError
from mediashrink.jobs.manager import JobManager, JobOutcome
from mediashrink.jobs.progress import ProgressTracker
from mediashrink.logging.context import job_context
from mediashrink.storage.manager import StorageManager
from mediashrink.tools.ffmpeg_progress import EncodeProgress

logger = logging.getLogger(__name__)


class TranscodingEngine:
    """Public facade of the transcoding subsystem.

    Args:
        config: Engine configuration.
        store: Job store. Created from ``config.store_backend`` when omitted,
            in which case the engine also closes it.
        introspector: Media probe. Defaults to ffprobe; when ffprobe is
            missing, analysis reports probe failures and output integrity
            checks are skipped.
        transcoder: Encoder. Defaults to a Transcoder built from config.
        bus: Event bus shared by all components.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        config: EngineConfig,
        store: JobStore | None = None,
        *,
        introspector: MediaIntrospector | None = None,
        transcoder: Transcoder | None = None,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        self.bus = bus or EventBus()
        self._owns_store = store is None
        self.store = store or create_store(config.store_backend, config.database_path)

        integrity_probe = introspector
        if introspector is None:
            try:
                introspector = FFprobeIntrospector(config.tools.ffprobe)
                integrity_probe = introspector
            except MediaIntrospectionError as e:
                logger.warning("Media probing unavailable: %s", e)
                introspector = UnavailableIntrospector(str(e))
        self.introspector = introspector

        self.transcoder = transcoder or Transcoder(
            config.transcoder,
            integrity_probe,
            ffmpeg_path=config.tools.ffmpeg,
            ffprobe_path=config.tools.ffprobe,
        )
        self.analyzer = FileAnalyzer(
            config.analyzer, introspector, self.store, self.bus
        )
        self.storage = StorageManager(config.storage, self.store, self.bus, clock)
        self.progress = ProgressTracker(config.progress, self.bus, self.store, clock)
        self.jobs = JobManager(self.store, self.bus, config.jobs, self._process_job)
        self.cleanup = CleanupService(
            config.cleanup,
            config.storage,
            self.store,
            introspector=integrity_probe,
            bus=self.bus,
            storage_manager=self.storage,
            active_outputs=self._active_output_paths,
            clock=clock,
        )

        self._outputs_lock = threading.Lock()
        self._active_outputs: dict[str, set[str]] = {}
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._started

    def start(self) -> None:
        """Start dispatching jobs and the background services."""
        if self._started:
            return
        self.storage.ensure_directories()
        if self.config.transcoder.enable_gpu:
            try:
                self.transcoder.test_accelerator_availability()
            except Exception as e:
                self.transcoder.disable_gpu(f"accelerator probe failed: {e}")
        self.jobs.start()
        self.progress.start()
        self.cleanup.start()
        self._started = True
        logger.info("Transcoding engine started")

    def stop(self) -> None:
        """Stop background services and terminate running encodes.

        Interrupted jobs return to the queue.
        """
        if not self._started:
            return
        self.cleanup.stop()
        self.jobs.stop()
        self.transcoder.shutdown()
        self.progress.stop()
        self._started = False
        logger.info("Transcoding engine stopped")

    def close(self) -> None:
        """Stop the engine and release the store if the engine created it."""
        self.stop()
        self.progress.close()
        if self._owns_store:
            self.store.close()

    def __enter__(self) -> TranscodingEngine:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def update_config(self, changes: dict[str, Any]) -> EngineConfig:
        """Apply TOML-shaped ``changes`` to a live engine.

        Jobs already running keep the settings they started with. Tool
        paths, logging and the store are fixed for the engine's lifetime,
        and the worker count is fixed while the engine is running.

        Args:
            changes: Nested section dicts, e.g.
                ``{"analyzer": {"min_file_size_mb": 50}}``.

        Returns:
            The new configuration.

        Raises:
            ConfigError: A value is invalid or a fixed setting would change.
        """
        new = apply_overrides(self.config, changes)
        fixed = [
            name
            for name in ("tools", "logging", "store_backend", "database_path")
            if getattr(new, name) != getattr(self.config, name)
        ]
        if fixed:
            raise ConfigError(f"Cannot change {', '.join(fixed)} on a live engine")
        if (
            self._started
            and new.jobs.max_concurrent_jobs != self.config.jobs.max_concurrent_jobs
        ):
            raise ConfigError("Cannot change max_concurrent_jobs while running")

        sections = tuple(
            name
            for name in (
                "jobs",
                "analyzer",
                "transcoder",
                "storage",
                "cleanup",
                "progress",
            )
            if getattr(new, name) != getattr(self.config, name)
        )
        if not sections:
            return self.config

        self.jobs.config = new.jobs
        self.analyzer.config = new.analyzer
        self.progress.config = new.progress
        if "transcoder" in sections:
            self.transcoder.update_config(new.transcoder)
        if "storage" in sections:
            self.storage.config = new.storage
            self.storage.invalidate_analytics()
        if "cleanup" in sections or "storage" in sections:
            self.cleanup.update_config(new.cleanup, new.storage)
            if self._started:
                self.cleanup.start()
        self.config = new

        logger.info("Configuration updated: %s", ", ".join(sections))
        self.bus.publish(ConfigUpdated(sections=sections))
        return new

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _publish_phase(
        self,
        job_id: str,
        phase: str,
        raw_progress: float,
        message: str | None = None,
        metrics: dict[str, Any] | None = None,
    ) -> None:
        self.bus.publish(
            JobPhaseProgress(
                job_id=job_id,
                phase=phase,
                raw_progress=raw_progress,
                message=message,
                metrics=metrics or {},
            )
        )

    def _track_output(self, job_id: str, path: Path) -> None:
        with self._outputs_lock:
            self._active_outputs.setdefault(job_id, set()).add(normalize_path(path))

    def _untrack_outputs(self, job_id: str) -> None:
        with self._outputs_lock:
            self._active_outputs.pop(job_id, None)

    def _active_output_paths(self) -> set[str]:
        with self._outputs_lock:
            return set().union(*self._active_outputs.values())

    def _select_qualities(self, job: Job, analysis: FileAnalysis) -> list[str]:
        # Requested qualities the analyzer did not evaluate (e.g. VP9 presets)
        # follow the file-level decision.
        decision = analysis.decision
        if decision is None or not decision.needs_transcoding:
            return []
        return [
            quality
            for quality in job.qualities
            if quality in decision.recommended_qualities
            or quality not in decision.qualities
        ]

    def _process_job(self, job: Job, token: CancellationToken) -> JobOutcome:
        """Analyze, encode every selected quality, record results."""
        input_path = Path(job.input_path)
        self._publish_phase(job.id, "analyzing", 0.0, "Analyzing file")
        analysis = self.analyzer.analyze(input_path)
        if token.cancelled:
            raise TranscodeCancelledError(job.id)
        if analysis.rejection is not None:
            raise JobPipelineError(analysis.rejection.message, retryable=False)
        self._publish_phase(job.id, "analyzing", 100.0, analysis.reason)

        qualities = self._select_qualities(job, analysis)
        if not qualities:
            reason = analysis.reason
            if analysis.needs_transcoding:
                reason = (
                    "No requested quality is recommended "
                    f"(requested: {', '.join(job.qualities)}; "
                    f"recommended: {', '.join(analysis.recommended_qualities)})"
                )
            logger.info("Nothing to transcode for %s: %s", input_path.name, reason)
            return JobOutcome(skip_reason=reason)

        if not self.jobs.mark_transcoding(job.id):
            raise TranscodeCancelledError(job.id)

        duration = analysis.media_info.duration if analysis.media_info else None
        results: list[TranscodeResultRecord] = []
        failures: list[TranscodeError] = []
        try:
            for index, quality in enumerate(qualities):
                if token.cancelled:
                    raise TranscodeCancelledError(job.id, quality)
                with job_context(job.id, quality):
                    record = self._transcode_quality(
                        job,
                        input_path,
                        quality,
                        token,
                        duration=duration,
                        position=(index, len(qualities)),
                        failures=failures,
                    )
                if record is not None:
                    results.append(record)
        finally:
            self._untrack_outputs(job.id)

        if not results:
            summary = "; ".join(f"{e.quality}: {e}" for e in failures)
            raise JobPipelineError(
                f"All qualities failed: {summary}",
                retryable=any(is_retryable(e) for e in failures),
            )

        self._publish_phase(job.id, "finalizing", 0.0, "Updating storage analytics")
        self.storage.invalidate_analytics()
        try:
            self.storage.update_analytics()
        except Exception as e:
            logger.warning("Could not refresh storage analytics: %s", e)
        self._publish_phase(job.id, "finalizing", 100.0, "Done")

        if failures:
            logger.warning(
                "Job %s produced %d of %d qualities",
                job.id,
                len(results),
                len(qualities),
            )
        return JobOutcome(
            result_count=len(results), output_path=results[-1].transcoded_path
        )

    def _transcode_quality(
        self,
        job: Job,
        input_path: Path,
        quality: str,
        token: CancellationToken,
        *,
        duration: float | None,
        position: tuple[int, int],
        failures: list[TranscodeError],
    ) -> TranscodeResultRecord | None:
        """Encode one quality. Failures other than cancellation are collected.

        Args:
            position: (index, count) of this quality, used to map encoder
                progress into its share of the transcoding phase.
        """
        index, count = position
        band = 100.0 / count

        def on_progress(percent: float, report: EncodeProgress) -> None:
            self._publish_phase(
                job.id,
                "transcoding",
                index * band + percent * band / 100.0,
                f"Encoding {quality} ({index + 1}/{count})",
                report.to_metrics(),
            )

        output_path = self.storage.generate_output_path(input_path, quality)
        self._track_output(job.id, output_path)
        try:
            try:
                output = self.transcoder.encode(
                    input_path,
                    output_path,
                    quality,
                    job_id=job.id,
                    cancel_token=token,
                    on_progress=on_progress,
                    duration=duration,
                )
            except TranscodeCancelledError:
                raise
            except TranscodeError as e:
                logger.warning(
                    "Skipping %s for %s: %s", quality, input_path.name, e
                )
                failures.append(e)
                return None
            return self.storage.record_result(
                job.id,
                quality,
                input_path,
                output.output_path,
                output.original_size,
                output.output_size,
                output.processing_time_ms,
            )
        finally:
            self.storage.release_output_path(output_path)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def submit_job(
        self, input_path: str | Path, options: dict[str, Any] | None = None
    ) -> str:
        """Queue a file for transcoding and return the job id.

        Submitting a path that already has an open job returns that job's id.

        Raises:
            AdmissionError: Invalid path or options, or the queue is full.
        """
        job, _created = self.jobs.submit(str(input_path), options)
        return job.id

    def cancel_job(self, job_id: str) -> dict[str, Any]:
        return self.jobs.cancel(job_id).to_dict()

    def retry_job(self, job_id: str) -> dict[str, Any]:
        return self.jobs.retry(job_id).to_dict()

    def get_job_status(self, job_id: str) -> dict[str, Any]:
        """Job row, live progress and results of one job.

        Raises:
            JobNotFoundError: Unknown job id.
        """
        job = self.jobs.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id, "get status of")
        status = job.to_dict()
        live = self.progress.get_job_progress(job_id)
        if live is not None and job.status.is_active:
            status["progress"] = live["progress"]
            status["phase"] = live["phase"]
            status["message"] = live["message"]
        status["results"] = [
            {
                "quality": r.quality,
                "output_path": r.transcoded_path,
                "compression_ratio": r.compression_ratio,
                "space_saved": r.space_saved,
                "processing_time_ms": r.processing_time_ms,
            }
            for r in self.store.get_results_for_job(job_id)
        ]
        return status

    def get_queue_status(self) -> dict[str, Any]:
        return self.jobs.get_queue_status()

    def list_jobs(
        self, status: JobStatus | str | None = None, limit: int | None = 50
    ) -> list[dict[str, Any]]:
        return [job.to_dict() for job in self.jobs.list_jobs(status, limit)]

    def clear_queue(self) -> dict[str, int]:
        return self.jobs.clear_queue()

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        return self.jobs.wait_until_idle(timeout)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze_file(self, path: str | Path) -> FileAnalysis:
        return self.analyzer.analyze(path)

    def analyze_batch(self, paths: Sequence[str | Path]) -> dict[str, Any]:
        """Analyze several files.

        Returns:
            ``{"analyses": [FileAnalysis, ...], "summary": {...}}``.
        """
        analyses = self.analyzer.analyze_batch(paths)
        return {"analyses": analyses, "summary": self.analyzer.summarize(analyses)}

    def analyze_storage_usage(self, media_dir: str | Path) -> dict[str, Any]:
        """Library-wide survey of ``media_dir`` (see FileAnalyzer).

        Raises:
            NotADirectoryError: ``media_dir`` is not a directory.
        """
        return self.analyzer.analyze_storage_usage(media_dir)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def get_storage_analytics(self, force_refresh: bool = False) -> dict[str, Any]:
        return self.storage.get_storage_analytics(force_refresh)

    def get_cached_storage_analytics(self) -> dict[str, Any]:
        return self.storage.get_cached_storage_analytics()

    def invalidate_analytics(self) -> None:
        self.storage.invalidate_analytics()

    def get_compression_stats(self) -> dict[str, Any]:
        return self.storage.get_compression_stats()

    def get_storage_info(self) -> dict[str, Any]:
        return self.storage.get_storage_info()

    def force_cleanup(self) -> dict[str, Any]:
        return self.cleanup.force_cleanup().to_dict()

    def get_cleanup_stats(self) -> dict[str, Any]:
        return self.cleanup.get_stats()

    # ------------------------------------------------------------------
    # System
    # ------------------------------------------------------------------

    def test_accelerator_availability(self) -> bool:
        return self.transcoder.test_accelerator_availability(refresh=True)

    def get_system_info(self) -> dict[str, Any]:
        info = self.transcoder.get_system_info()
        info["max_concurrent_jobs"] = self.config.jobs.max_concurrent_jobs
        info["store_backend"] = self.config.store_backend
        info["engine_running"] = self._started
        return info

    def get_performance_stats(self) -> dict[str, Any]:
        return {
            "transcoder": self.transcoder.get_performance_stats(),
            "jobs": self.progress.get_metrics(),
        }

    def get_quality_presets(self) -> dict[str, dict]:
        return self.transcoder.get_quality_presets()

    def subscribe(
        self,
        handler: EventHandler,
        event_types: Iterable[type[Event]] | None = None,
    ) -> Callable[[], None]:
        """Receive engine events; returns an unsubscribe callable."""
        return self.bus.subscribe(handler, event_types)
