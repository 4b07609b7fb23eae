"""Periodic cleanup of transcoded outputs, temp files and stale rows.

Each run executes five passes in order. A pass that raises is logged and
counted; the remaining passes still run.

1. corrupted: tiny or unreadable files under the output tree
2. orphans: output files no result row references
3. temp: old files under the temp and chunk directories
4. database: result rows whose output is gone, old terminal jobs
5. history: old analytics snapshots
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from mediashrink.config.models import CleanupConfig, StorageConfig
from mediashrink.core.datetime_utils import iso_before, utc_now
from mediashrink.core.file_utils import (
    get_file_size,
    iter_files,
    normalize_path,
    remove_file,
)
from mediashrink.core.formatting import sized
from mediashrink.db.store import JobStore
from mediashrink.events import CleanupCompleted, EventBus
from mediashrink.introspector.interface import MediaIntrospector
from mediashrink.storage.manager import StorageManager

logger = logging.getLogger(__name__)


@dataclass
class PassResult:
    """Outcome of one cleanup pass."""

    name: str
    files_cleaned: int = 0
    space_freed: int = 0
    records_cleaned: int = 0
    file_errors: int = 0
    files: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    @property
    def errors(self) -> int:
        return self.file_errors + (1 if self.error else 0)

    def removed(self, path: Path, size: int, reason: str) -> None:
        self.files_cleaned += 1
        self.space_freed += size
        self.files.append({"file": str(path), "reason": reason, "size": size})

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "files_cleaned": self.files_cleaned,
            "space_freed": sized(self.space_freed),
            "records_cleaned": self.records_cleaned,
            "errors": self.errors,
            "error": self.error,
            "files": list(self.files),
        }


@dataclass
class CleanupReport:
    """Aggregate of one cleanup run."""

    started_at: datetime
    duration_seconds: float
    passes: list[PassResult]

    @property
    def files_cleaned(self) -> int:
        return sum(p.files_cleaned for p in self.passes)

    @property
    def space_freed(self) -> int:
        return sum(p.space_freed for p in self.passes)

    @property
    def records_cleaned(self) -> int:
        return sum(p.records_cleaned for p in self.passes)

    @property
    def errors(self) -> int:
        return sum(p.errors for p in self.passes)

    @property
    def changed_anything(self) -> bool:
        return self.files_cleaned > 0 or self.records_cleaned > 0

    def get_pass(self, name: str) -> PassResult:
        for result in self.passes:
            if result.name == name:
                return result
        raise KeyError(name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
            "files_cleaned": self.files_cleaned,
            "space_freed": sized(self.space_freed),
            "records_cleaned": self.records_cleaned,
            "errors": self.errors,
            "passes": {p.name: p.to_dict() for p in self.passes},
        }


class CleanupService:
    """Runs the cleanup passes on demand and on a timer thread.

    Args:
        config: Cleanup thresholds and interval.
        storage_config: Locations of the output, temp and chunk trees.
        store: Job/result store.
        introspector: Used for the integrity re-probe of outputs. Without
            one only the size check applies.
        bus: Receives CleanupCompleted after every run.
        storage_manager: Its analytics cache is invalidated after a run that
            removed anything.
        active_outputs: Returns normalized paths of outputs currently being
            written. These are never touched.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        config: CleanupConfig,
        storage_config: StorageConfig,
        store: JobStore,
        introspector: MediaIntrospector | None = None,
        bus: EventBus | None = None,
        storage_manager: StorageManager | None = None,
        active_outputs: Callable[[], Iterable[str]] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        self.storage_config = storage_config
        self._store = store
        self._introspector = introspector
        self._bus = bus
        self._storage_manager = storage_manager
        self._active_outputs = active_outputs or (lambda: ())
        self._clock = clock

        self._run_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._stats = self._empty_stats()

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @staticmethod
    def _empty_stats() -> dict[str, Any]:
        return {
            "total_cleanups": 0,
            "files_cleaned": 0,
            "space_freed": 0,
            "records_cleaned": 0,
            "last_cleanup": None,
            "errors": 0,
        }

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the periodic cleanup thread (no-op when disabled)."""
        if not self.config.enabled:
            logger.info("Periodic cleanup disabled")
            return
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._timer_loop, name="mediashrink-cleanup", daemon=True
        )
        self._thread.start()
        logger.info(
            "Cleanup service started (every %s)",
            timedelta(seconds=self.config.interval_seconds),
        )

    def stop(self, timeout: float | None = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def update_config(
        self, config: CleanupConfig, storage_config: StorageConfig | None = None
    ) -> None:
        """Swap in new settings, restarting the timer if it is running."""
        restart = self.is_running
        if restart:
            self.stop()
        self.config = config
        if storage_config is not None:
            self.storage_config = storage_config
        if restart:
            self.start()

    def _timer_loop(self) -> None:
        while not self._stop_event.wait(self.config.interval_seconds):
            try:
                self.run_cleanup()
            except Exception:
                logger.exception("Scheduled cleanup failed")

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def run_cleanup(self) -> CleanupReport:
        """Run all five passes and return the aggregated report."""
        with self._run_lock:
            started_at = self._clock()
            started = time.monotonic()
            active = {normalize_path(p) for p in self._active_outputs()}

            passes = [
                self._run_pass("corrupted", self._clean_corrupted_files, active),
                self._run_pass("orphans", self._clean_orphaned_files, active),
                self._run_pass("temp", self._clean_temp_files, active),
                self._run_pass("database", self._clean_database, active),
                self._run_pass("history", self._prune_history, active),
            ]
            report = CleanupReport(
                started_at=started_at,
                duration_seconds=time.monotonic() - started,
                passes=passes,
            )

        with self._stats_lock:
            stats = self._stats
            stats["total_cleanups"] += 1
            stats["files_cleaned"] += report.files_cleaned
            stats["space_freed"] += report.space_freed
            stats["records_cleaned"] += report.records_cleaned
            stats["errors"] += report.errors
            stats["last_cleanup"] = started_at.isoformat()

        logger.info(
            "Cleanup finished: %d files, %s freed, %d records, %d errors",
            report.files_cleaned,
            sized(report.space_freed)["formatted"],
            report.records_cleaned,
            report.errors,
            extra={"duration_seconds": round(report.duration_seconds, 3)},
        )

        if report.changed_anything and self._storage_manager is not None:
            self._storage_manager.invalidate_analytics()
        if self._bus is not None:
            self._bus.publish(CleanupCompleted(report=report.to_dict()))
        return report

    def force_cleanup(self) -> CleanupReport:
        """Run a cleanup now, on the calling thread."""
        logger.info("Forced cleanup requested")
        return self.run_cleanup()

    def _run_pass(
        self,
        name: str,
        func: Callable[[PassResult, set[str]], None],
        active: set[str],
    ) -> PassResult:
        result = PassResult(name=name)
        try:
            func(result, active)
        except Exception as e:
            logger.exception("Cleanup pass '%s' failed", name)
            result.error = str(e) or type(e).__name__
        return result

    def _remove(self, result: PassResult, path: Path, reason: str) -> None:
        try:
            freed = remove_file(path)
        except OSError as e:
            logger.warning("Could not remove %s: %s", path, e)
            result.file_errors += 1
            return
        logger.info("Removed %s file %s", reason, path, extra={"bytes": freed})
        result.removed(path, freed, reason)

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def _clean_corrupted_files(self, result: PassResult, active: set[str]) -> None:
        threshold = self.config.corrupted_file_threshold
        check_integrity = self.config.verify_integrity and self._introspector
        for path in iter_files(self.storage_config.output_directory):
            if normalize_path(path) in active:
                continue
            size = get_file_size(path)
            if size is None:
                continue
            if size < threshold:
                self._remove(result, path, "too_small")
            elif check_integrity and not self._introspector.verify_integrity(path):
                self._remove(result, path, "unreadable")

    def _clean_orphaned_files(self, result: PassResult, active: set[str]) -> None:
        referenced = {
            normalize_path(r.transcoded_path) for r in self._store.list_results()
        }
        cutoff = time.time() - self.config.orphan_grace_seconds
        for path in iter_files(self.storage_config.output_directory):
            key = normalize_path(path)
            if key in referenced or key in active:
                continue
            try:
                if path.stat().st_mtime > cutoff:
                    continue
            except OSError:
                continue
            self._remove(result, path, "orphaned")

    def _clean_temp_files(self, result: PassResult, active: set[str]) -> None:
        cutoff = time.time() - self.config.temp_file_age_seconds
        for root in (
            self.storage_config.temp_directory,
            self.storage_config.chunk_directory,
        ):
            for path in iter_files(root):
                if normalize_path(path) in active:
                    continue
                try:
                    if path.stat().st_mtime >= cutoff:
                        continue
                except OSError:
                    continue
                self._remove(result, path, "old_temp")

    def _clean_database(self, result: PassResult, active: set[str]) -> None:
        for record in self._store.list_results():
            if Path(record.transcoded_path).exists():
                continue
            if record.id is not None and self._store.delete_result(record.id):
                result.records_cleaned += 1
                logger.info(
                    "Removed result %s: output missing (%s)",
                    record.id,
                    record.transcoded_path,
                )

        cutoff = iso_before(timedelta(days=self.config.max_job_age_days), self._clock())
        deleted_jobs = self._store.delete_terminal_jobs_before(cutoff)
        if deleted_jobs:
            logger.info("Removed %d finished jobs older than %s", deleted_jobs, cutoff)
        result.records_cleaned += deleted_jobs

    def _prune_history(self, result: PassResult, active: set[str]) -> None:
        cutoff = iso_before(
            timedelta(days=self.config.analytics_retention_days), self._clock()
        )
        deleted = self._store.delete_analytics_before(cutoff)
        if deleted:
            logger.info("Pruned %d analytics snapshots older than %s", deleted, cutoff)
        result.records_cleaned += deleted

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        with self._stats_lock:
            stats = dict(self._stats)
        stats["space_freed"] = sized(stats["space_freed"])
        stats["is_running"] = self.is_running
        stats["interval_seconds"] = self.config.interval_seconds
        return stats

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._stats = self._empty_stats()
