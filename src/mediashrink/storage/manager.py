"""Storage manager: output placement, result recording and analytics."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from mediashrink.config.models import StorageConfig
from mediashrink.core.datetime_utils import parse_iso_timestamp, utc_now
from mediashrink.core.file_utils import compute_sha256, directory_usage
from mediashrink.core.formatting import sized
from mediashrink.db.store import JobStore
from mediashrink.db.types import TranscodeResultRecord, compute_compression_ratio
from mediashrink.events import AnalyticsUpdated, EventBus
from mediashrink.executor.presets import get_preset
from mediashrink.storage.analytics import STORAGE_METRIC, compute_storage_snapshot
from mediashrink.storage.paths import date_subdirectory, shorten_base_name, unique_path

logger = logging.getLogger(__name__)


class StorageManager:
    """Decides where outputs go and keeps the storage analytics snapshot.

    The snapshot is cached in memory and persisted (metric ``storage_stats``)
    with an expiry. Concurrent readers after expiry share one recomputation.

    Args:
        config: Storage configuration.
        store: Job/result store.
        bus: Receives AnalyticsUpdated after every recomputation.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        config: StorageConfig,
        store: JobStore,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        self._store = store
        self._bus = bus
        self._clock = clock

        self._cache: dict | None = None
        self._cache_expires: datetime | None = None
        self._cache_lock = threading.Lock()
        self._refresh_lock = threading.Lock()

        # Output paths handed out but not yet released by the encoder
        self._reserved: set[Path] = set()
        self._reserved_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Directories and paths
    # ------------------------------------------------------------------

    def ensure_directories(self) -> None:
        """Create the output, temp and chunk roots."""
        for directory in (
            self.config.output_directory,
            self.config.temp_directory,
            self.config.chunk_directory,
        ):
            directory.mkdir(parents=True, exist_ok=True)

    def prepare_output_directory(self, input_path: Path) -> Path:
        """Return (and create) the directory for outputs of ``input_path``.

        ``output/YYYY/MM`` when organising by date, otherwise the input's
        directory relative to ``media_root`` under the output root. Falls
        back to the output root if that fails.
        """
        root = self.config.output_directory
        try:
            if self.config.organize_by_date:
                directory = root / date_subdirectory(self._clock())
            elif self.config.media_root is not None:
                relative = input_path.resolve().parent.relative_to(
                    self.config.media_root.resolve()
                )
                directory = root / relative
            else:
                directory = root
            directory.mkdir(parents=True, exist_ok=True)
            return directory
        except (OSError, ValueError) as e:
            logger.warning(
                "Could not prepare output directory for %s: %s", input_path, e
            )
            root.mkdir(parents=True, exist_ok=True)
            return root

    def generate_output_path(self, input_path: Path, quality: str) -> Path:
        """Reserve a collision-free output path ``<base>_<quality><ext>``.

        The path avoids both existing files and paths reserved by earlier
        calls, so concurrent jobs for same-named inputs never share an
        output. Call release_output_path() once the encode has finished
        writing (or removed) the file.
        """
        directory = self.prepare_output_directory(input_path)
        base = shorten_base_name(input_path.stem, self.config.max_filename_length)
        preset = get_preset(quality)
        extension = preset.extension if preset else ".mp4"
        preferred = directory / f"{base}_{quality}{extension}"
        with self._reserved_lock:
            path = unique_path(
                preferred, lambda p: p in self._reserved or p.exists()
            )
            self._reserved.add(path)
        return path

    def release_output_path(self, path: Path) -> None:
        with self._reserved_lock:
            self._reserved.discard(path)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def record_result(
        self,
        job_id: str,
        quality: str,
        original_path: Path,
        transcoded_path: Path,
        original_size: int,
        transcoded_size: int,
        processing_time_ms: int,
    ) -> TranscodeResultRecord:
        """Checksum a validated output and persist its result row."""
        checksum = compute_sha256(transcoded_path)
        record = TranscodeResultRecord(
            id=None,
            job_id=job_id,
            quality=quality,
            original_path=str(original_path),
            transcoded_path=str(transcoded_path),
            original_size=original_size,
            transcoded_size=transcoded_size,
            compression_ratio=compute_compression_ratio(
                original_size, transcoded_size
            ),
            space_saved=original_size - transcoded_size,
            checksum=checksum,
            processing_time_ms=processing_time_ms,
            created_at=self._clock().isoformat(),
        )
        saved = self._store.add_result(record)
        logger.info(
            "Recorded %s result for job %s: %s",
            quality,
            job_id,
            transcoded_path.name,
            extra={"compression_ratio": saved.compression_ratio},
        )
        return saved

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def _fresh_cache(self) -> dict | None:
        with self._cache_lock:
            if self._cache is None or self._cache_expires is None:
                return None
            if self._clock() >= self._cache_expires:
                return None
            return self._cache

    def _set_cache(self, snapshot: dict) -> None:
        with self._cache_lock:
            self._cache = snapshot
            self._cache_expires = parse_iso_timestamp(snapshot["expires_at"])

    def update_analytics(self) -> dict:
        """Recompute the snapshot, persist it and publish AnalyticsUpdated."""
        with self._refresh_lock:
            return self._recompute()

    def _recompute(self) -> dict:
        snapshot = compute_storage_snapshot(
            self.config, self._store.list_results(), self._clock()
        )
        self._store.save_analytics(
            STORAGE_METRIC, json.dumps(snapshot), snapshot["expires_at"]
        )
        self._set_cache(snapshot)
        logger.debug(
            "Storage analytics updated: %d files, %.1f%% used",
            snapshot["total_files"],
            snapshot["storage_usage"]["percent"],
        )
        if self._bus is not None:
            self._bus.publish(AnalyticsUpdated(snapshot=snapshot))
        return snapshot

    def get_cached_storage_analytics(self) -> dict:
        """Return the snapshot from memory, then the store, else recompute."""
        snapshot = self._fresh_cache()
        if snapshot is not None:
            return snapshot

        with self._refresh_lock:
            # Another caller may have refreshed while we waited
            snapshot = self._fresh_cache()
            if snapshot is not None:
                return snapshot

            record = self._store.get_analytics(
                STORAGE_METRIC, self._clock().isoformat()
            )
            if record is not None:
                try:
                    snapshot = json.loads(record.metric_value)
                    self._set_cache(snapshot)
                    return snapshot
                except (ValueError, KeyError) as e:
                    logger.warning("Ignoring unreadable analytics snapshot: %s", e)

            return self._recompute()

    def get_storage_analytics(self, force_refresh: bool = False) -> dict:
        if force_refresh:
            return self.update_analytics()
        return self.get_cached_storage_analytics()

    def invalidate_analytics(self) -> None:
        """Drop the memory cache and expire the persisted snapshot."""
        with self._cache_lock:
            self._cache = None
            self._cache_expires = None
        self._store.expire_analytics(STORAGE_METRIC)

    def get_compression_stats(self) -> dict:
        """Compression totals over every persisted result."""
        totals = self._store.get_compression_totals()
        breakdown = self._store.get_quality_breakdown()
        original = int(totals["total_original"])
        transcoded = int(totals["total_transcoded"])
        return {
            "files_processed": int(totals["total_files"]),
            "total_original_size": sized(original),
            "total_transcoded_size": sized(transcoded),
            "space_saved": sized(int(totals["total_saved"])),
            "compression_ratio": compute_compression_ratio(original, transcoded),
            "average_compression_ratio": round(totals["average_ratio"], 2),
            "average_processing_time_ms": round(totals["average_time_ms"]),
            "by_quality": {
                quality: {
                    "count": int(entry["count"]),
                    "space_saved": sized(int(entry["space_saved"])),
                    "average_ratio": round(entry["average_ratio"], 2),
                }
                for quality, entry in breakdown.items()
            },
        }

    def check_storage_space(self) -> dict:
        """Compare storage usage to the cleanup threshold."""
        usage = self.get_cached_storage_analytics()["storage_usage"]
        percent = usage["percent"]
        threshold = self.config.cleanup_threshold * 100
        needs_cleanup = percent > threshold
        if needs_cleanup:
            reason = (
                f"Storage usage ({percent:.1f}%) exceeds threshold ({threshold:.1f}%)"
            )
        else:
            reason = "Storage usage within acceptable limits"
        return {
            "needs_cleanup": needs_cleanup,
            "usage_percent": percent,
            "threshold": threshold,
            "reason": reason,
        }

    def get_storage_info(self) -> dict:
        def describe(path: Path) -> dict:
            size, count = directory_usage(path)
            return {
                "path": str(path),
                "exists": path.is_dir(),
                "size": sized(size),
                "file_count": count,
            }

        return {
            "output_directory": describe(self.config.output_directory),
            "temp_directory": describe(self.config.temp_directory),
            "chunk_directory": describe(self.config.chunk_directory),
            "analytics": self.get_cached_storage_analytics(),
            "config": {
                "max_storage_gb": self.config.max_storage_gb,
                "organize_by_date": self.config.organize_by_date,
                "cleanup_threshold": self.config.cleanup_threshold,
            },
        }
