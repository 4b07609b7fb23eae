"""Tests for the StorageManager and storage snapshots."""

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import pytest

from mediashrink.config.models import StorageConfig
from mediashrink.core.file_utils import compute_sha256
from mediashrink.db.types import Job, JobStatus, TranscodeResultRecord
from mediashrink.events import AnalyticsUpdated
from mediashrink.storage.analytics import STORAGE_METRIC, compute_storage_snapshot
from mediashrink.storage.manager import StorageManager

MB = 1_000_000


def add_job(store, input_path: str = "/media/movie.mkv") -> Job:
    job, _ = store.submit_job(
        Job(
            id=str(uuid.uuid4()),
            input_path=input_path,
            qualities=["720p"],
            status=JobStatus.COMPLETED,
            priority=0,
            created_at="2024-01-15T10:00:00+00:00",
        )
    )
    return job


def result_for(
    job_id: str, output: Path, original_size: int, quality: str = "720p"
) -> TranscodeResultRecord:
    size = output.stat().st_size if output.exists() else 0
    return TranscodeResultRecord(
        id=None,
        job_id=job_id,
        quality=quality,
        original_path="/media/movie.mkv",
        transcoded_path=str(output),
        original_size=original_size,
        transcoded_size=size,
        compression_ratio=round((original_size - size) / original_size * 100, 2),
        space_saved=original_size - size,
        checksum=None,
        processing_time_ms=1000,
        created_at="2024-01-15T11:00:00+00:00",
    )


@pytest.fixture
def small_quota(storage_config: StorageConfig) -> StorageConfig:
    return replace(storage_config, max_storage_gb=1.0, cleanup_threshold=0.5)


@pytest.fixture
def manager(small_quota, memory_store, event_bus, clock) -> StorageManager:
    manager = StorageManager(small_quota, memory_store, event_bus, clock)
    manager.ensure_directories()
    return manager


class TestComputeStorageSnapshot:
    """Tests for compute_storage_snapshot."""

    def test_counts_only_present_outputs(
        self, small_quota, make_file, temp_dir
    ) -> None:
        """Missing and tiny outputs are left out of the totals."""
        kept = make_file("output/movie_720p.mp4", 700 * MB)
        tiny = make_file("output/broken_720p.mp4", 100)
        now = datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc)

        snapshot = compute_storage_snapshot(
            small_quota,
            [
                result_for("j1", kept, 1200 * MB),
                result_for("j2", tiny, 1200 * MB),
                result_for("j3", temp_dir / "output" / "gone.mp4", 900 * MB),
            ],
            now,
        )

        assert snapshot["total_files"] == 1
        assert snapshot["total_original_size"]["bytes"] == 1200 * MB
        assert snapshot["total_space_saved"]["bytes"] == 500 * MB
        assert snapshot["compression_ratio"] == 41.7
        assert snapshot["quality_breakdown"]["720p"]["count"] == 1
        assert snapshot["directories"]["output"]["file_count"] == 2
        assert snapshot["storage_usage"]["percent"] == 65.2
        assert snapshot["last_updated"] == now.isoformat()
        assert snapshot["expires_at"] == "2024-03-05T12:15:00+00:00"

    def test_empty(self, storage_config) -> None:
        """No results and no directories give zeros."""
        now = datetime(2024, 3, 5, tzinfo=timezone.utc)
        snapshot = compute_storage_snapshot(storage_config, [], now)
        assert snapshot["total_files"] == 0
        assert snapshot["compression_ratio"] == 0.0
        assert snapshot["storage_usage"]["used"]["bytes"] == 0


class TestOutputPaths:
    """Tests for output directory selection and naming."""

    def test_ensure_directories(self, manager, small_quota) -> None:
        """All three roots exist after ensure_directories."""
        assert small_quota.output_directory.is_dir()
        assert small_quota.temp_directory.is_dir()
        assert small_quota.chunk_directory.is_dir()

    def test_organized_by_date(self, storage_config, memory_store) -> None:
        """Outputs go under YYYY/MM of the clock."""
        now = datetime(2024, 3, 5, tzinfo=timezone.utc)
        manager = StorageManager(storage_config, memory_store, clock=lambda: now)
        path = manager.generate_output_path(Path("/media/movie.mkv"), "720p")
        expected_dir = storage_config.output_directory / "2024" / "03"
        assert path == expected_dir / "movie_720p.mp4"
        assert expected_dir.is_dir()

    def test_mirrors_media_root(
        self, storage_config, memory_store, make_file, temp_dir
    ) -> None:
        """Without date folders the input layout below media_root is kept."""
        config = replace(
            storage_config, organize_by_date=False, media_root=temp_dir / "media"
        )
        source = make_file("media/shows/s01/e01.mkv", 10)
        manager = StorageManager(config, memory_store)
        path = manager.generate_output_path(source, "480p")
        assert path == config.output_directory / "shows" / "s01" / "e01_480p.mp4"

    def test_outside_media_root_falls_back(
        self, storage_config, memory_store, make_file, temp_dir
    ) -> None:
        """Inputs outside media_root are written to the output root."""
        config = replace(
            storage_config, organize_by_date=False, media_root=temp_dir / "media"
        )
        source = make_file("elsewhere/clip.mkv", 10)
        manager = StorageManager(config, memory_store)
        path = manager.generate_output_path(source, "720p")
        assert path == config.output_directory / "clip_720p.mp4"

    def test_flat_layout(self, storage_config, memory_store) -> None:
        """No date folders and no media_root means the output root."""
        config = replace(storage_config, organize_by_date=False)
        manager = StorageManager(config, memory_store)
        path = manager.generate_output_path(Path("/media/movie.mkv"), "720p_vp9")
        assert path == config.output_directory / "movie_720p_vp9.webm"

    def test_collision_gets_counter(self, storage_config, memory_store) -> None:
        """An existing output is never overwritten."""
        config = replace(storage_config, organize_by_date=False)
        manager = StorageManager(config, memory_store)
        first = manager.generate_output_path(Path("/media/movie.mkv"), "720p")
        first.touch()
        second = manager.generate_output_path(Path("/media/movie.mkv"), "720p")
        assert second.name == "movie_720p_1.mp4"

    def test_reserved_paths_not_reused(self, storage_config, memory_store) -> None:
        """Same-named inputs encoded together get distinct outputs."""
        config = replace(storage_config, organize_by_date=False)
        manager = StorageManager(config, memory_store)
        first = manager.generate_output_path(Path("/a/movie.mkv"), "720p")
        second = manager.generate_output_path(Path("/b/movie.mkv"), "720p")

        assert first.name == "movie_720p.mp4"
        assert second.name == "movie_720p_1.mp4"
        assert not first.exists()

    def test_released_path_is_reusable(self, storage_config, memory_store) -> None:
        """A released path that was never written is handed out again."""
        config = replace(storage_config, organize_by_date=False)
        manager = StorageManager(config, memory_store)
        first = manager.generate_output_path(Path("/a/movie.mkv"), "720p")
        manager.release_output_path(first)
        again = manager.generate_output_path(Path("/b/movie.mkv"), "720p")
        assert again == first

    def test_long_names_shortened(self, storage_config, memory_store) -> None:
        """Long stems are shortened before the quality suffix."""
        config = replace(storage_config, organize_by_date=False)
        manager = StorageManager(config, memory_store)
        name = "Some.Movie.2001.1080p.BluRay.x264.DTS-HD.MA.5.1-GROUP.extended.mkv"
        path = manager.generate_output_path(Path("/media") / name, "1080p")
        assert path.name.startswith("Some-")
        assert path.name.endswith("_1080p.mp4")


class TestRecordResult:
    """Tests for StorageManager.record_result."""

    def test_persists_with_checksum(
        self, manager, memory_store, temp_dir, clock
    ) -> None:
        """The stored row carries sizes, ratio and the output checksum."""
        job = add_job(memory_store)
        output = temp_dir / "output" / "movie_720p.mp4"
        output.write_bytes(b"x" * 4096)

        record = manager.record_result(
            job.id, "720p", Path("/media/movie.mkv"), output, 10_000, 4096, 1500
        )

        assert record.id is not None
        assert record.compression_ratio == 59.04
        assert record.space_saved == 5904
        assert record.checksum == compute_sha256(output)
        assert record.created_at == clock.now.isoformat()
        assert memory_store.get_results_for_job(job.id) == [record]


class TestAnalytics:
    """Tests for cached storage analytics."""

    def test_update_publishes(self, manager, recorded_events) -> None:
        """Recomputing publishes AnalyticsUpdated with the snapshot."""
        snapshot = manager.update_analytics()
        assert isinstance(recorded_events[-1], AnalyticsUpdated)
        assert recorded_events[-1].snapshot is snapshot

    def test_cached_until_expiry(self, manager, make_file, clock) -> None:
        """The snapshot is reused until its TTL passes."""
        first = manager.get_cached_storage_analytics()
        make_file("output/new.mp4", 5 * MB)
        assert manager.get_cached_storage_analytics() is first

        clock.advance(minutes=16)
        refreshed = manager.get_cached_storage_analytics()
        assert refreshed is not first
        assert refreshed["directories"]["output"]["file_count"] == 1

    def test_persisted_snapshot_is_shared(
        self, manager, small_quota, memory_store, clock
    ) -> None:
        """A second manager reads the stored snapshot instead of recomputing."""
        snapshot = manager.update_analytics()
        other = StorageManager(small_quota, memory_store, clock=clock)
        assert other.get_cached_storage_analytics() == snapshot
        assert memory_store.get_analytics(STORAGE_METRIC) is not None

    def test_invalidate_forces_recompute(
        self, small_quota, memory_store, make_file
    ) -> None:
        """invalidate_analytics drops both cache levels."""
        manager = StorageManager(small_quota, memory_store)
        manager.ensure_directories()
        first = manager.get_cached_storage_analytics()
        make_file("output/new.mp4", 5 * MB)
        manager.invalidate_analytics()
        second = manager.get_cached_storage_analytics()
        assert second is not first
        assert second["directories"]["output"]["file_count"] == 1

    def test_force_refresh(self, manager) -> None:
        """force_refresh always recomputes."""
        first = manager.get_storage_analytics()
        assert manager.get_storage_analytics(force_refresh=True) is not first

    def test_check_storage_space(self, manager, make_file) -> None:
        """Usage above the threshold asks for cleanup."""
        make_file("output/movie_720p.mp4", 700 * MB)
        check = manager.check_storage_space()
        assert check["needs_cleanup"]
        assert check["usage_percent"] == 65.2
        assert check["reason"] == (
            "Storage usage (65.2%) exceeds threshold (50.0%)"
        )

    def test_within_limits(self, manager) -> None:
        """An empty tree is within limits."""
        check = manager.check_storage_space()
        assert not check["needs_cleanup"]
        assert check["reason"] == "Storage usage within acceptable limits"


class TestCompressionStats:
    """Tests for StorageManager.get_compression_stats."""

    def test_totals(self, manager, memory_store, make_file) -> None:
        """Totals and per-quality figures come from every result."""
        job = add_job(memory_store)
        first = make_file("output/a_720p.mp4", 400 * MB)
        second = make_file("output/a_480p.mp4", 200 * MB)
        memory_store.add_result(result_for(job.id, first, 1000 * MB))
        memory_store.add_result(result_for(job.id, second, 1000 * MB, "480p"))

        stats = manager.get_compression_stats()

        assert stats["files_processed"] == 2
        assert stats["space_saved"]["bytes"] == 1400 * MB
        assert stats["compression_ratio"] == 70.0
        assert stats["average_compression_ratio"] == 70.0
        assert stats["average_processing_time_ms"] == 1000
        assert stats["by_quality"]["480p"]["average_ratio"] == 80.0
        assert stats["by_quality"]["720p"]["count"] == 1

    def test_empty(self, manager) -> None:
        """No results give zero totals."""
        stats = manager.get_compression_stats()
        assert stats["files_processed"] == 0
        assert stats["compression_ratio"] == 0.0
        assert stats["by_quality"] == {}

    def test_storage_info(self, manager, small_quota) -> None:
        """Storage info lists each directory and the configuration."""
        info = manager.get_storage_info()
        assert info["output_directory"]["exists"]
        assert info["config"]["max_storage_gb"] == 1.0
        assert "storage_usage" in info["analytics"]
