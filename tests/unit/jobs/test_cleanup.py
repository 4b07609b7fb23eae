"""Tests for the CleanupService passes."""

import os
import threading
import time
import uuid
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from mediashrink.config.models import CleanupConfig
from mediashrink.db.types import Job, JobStatus, TranscodeResultRecord
from mediashrink.events import CleanupCompleted
from mediashrink.jobs.cleanup import CleanupService

HOUR = 3600


def age(path: Path, seconds: float) -> Path:
    """Backdate a file's mtime."""
    stamp = time.time() - seconds
    os.utime(path, (stamp, stamp))
    return path


def add_job_with_result(
    store, output: Path, completed_at: str
) -> tuple[Job, TranscodeResultRecord]:
    job, _ = store.submit_job(
        Job(
            id=str(uuid.uuid4()),
            input_path=f"/media/{output.stem}.mkv",
            qualities=["720p"],
            status=JobStatus.COMPLETED,
            priority=0,
            created_at=completed_at,
            completed_at=completed_at,
        )
    )
    result = store.add_result(
        TranscodeResultRecord(
            id=None,
            job_id=job.id,
            quality="720p",
            original_path=job.input_path,
            transcoded_path=str(output),
            original_size=10_000,
            transcoded_size=4000,
            compression_ratio=60.0,
            space_saved=6000,
            checksum=None,
            processing_time_ms=100,
            created_at=completed_at,
        )
    )
    return job, result


@pytest.fixture
def make_service(storage_config, memory_store, event_bus, fake_introspector, clock):
    def factory(**overrides) -> CleanupService:
        config = CleanupConfig(**{"enabled": False, **overrides.pop("config", {})})
        kwargs = {
            "introspector": fake_introspector,
            "bus": event_bus,
            "clock": clock,
            **overrides,
        }
        return CleanupService(config, storage_config, memory_store, **kwargs)

    return factory


class TestCorruptedPass:
    """Tests for removal of tiny and unreadable outputs."""

    def test_tiny_and_unreadable(
        self, make_service, make_file, fake_introspector
    ) -> None:
        """Files under the threshold or failing the probe are removed."""
        tiny = make_file("output/tiny_720p.mp4", 512)
        broken = make_file("output/broken_720p.mp4", 50_000)
        good = make_file("output/good_720p.mp4", 50_000)
        fake_introspector.integrity = lambda path: path.name != "broken_720p.mp4"

        report = make_service().run_cleanup()

        corrupted = report.get_pass("corrupted")
        assert corrupted.files_cleaned == 2
        assert corrupted.space_freed == 50_512
        assert {f["reason"] for f in corrupted.files} == {"too_small", "unreadable"}
        assert not tiny.exists()
        assert not broken.exists()
        assert good.exists()

    def test_size_only_without_introspector(self, make_service, make_file) -> None:
        """Without a probe only the size check applies."""
        make_file("output/a_720p.mp4", 50_000)
        report = make_service(introspector=None).run_cleanup()
        assert report.get_pass("corrupted").files_cleaned == 0

    def test_active_outputs_skipped(self, make_service, make_file) -> None:
        """Outputs being written are never touched."""
        partial = make_file("output/partial_720p.mp4", 10)
        service = make_service(active_outputs=lambda: [str(partial)])
        report = service.run_cleanup()
        assert report.files_cleaned == 0
        assert partial.exists()


class TestOrphanPass:
    """Tests for removal of unreferenced outputs."""

    def test_orphans(self, make_service, make_file, memory_store) -> None:
        """Old unreferenced files go; referenced and recent files stay."""
        referenced = age(make_file("output/kept_720p.mp4", 50_000), 2 * HOUR)
        add_job_with_result(memory_store, referenced, "2099-01-01T00:00:00+00:00")
        orphan = age(make_file("output/orphan_720p.mp4", 50_000), 2 * HOUR)
        recent = make_file("output/recent_720p.mp4", 50_000)

        report = make_service().run_cleanup()

        orphans = report.get_pass("orphans")
        assert orphans.files_cleaned == 1
        assert orphans.files[0]["reason"] == "orphaned"
        assert not orphan.exists()
        assert referenced.exists()
        assert recent.exists()


class TestTempPass:
    """Tests for removal of old temp and chunk files."""

    def test_old_temp_files(self, make_service, make_file) -> None:
        """Files older than temp_file_age_seconds are removed from both trees."""
        old_temp = age(make_file("temp/job.part", 100), 2 * HOUR)
        old_chunk = age(make_file("chunks/upload/0001", 100), 2 * HOUR)
        fresh = make_file("temp/current.part", 100)

        report = make_service().run_cleanup()

        assert report.get_pass("temp").files_cleaned == 2
        assert not old_temp.exists()
        assert not old_chunk.exists()
        assert fresh.exists()


class TestDatabasePass:
    """Tests for stale results and old jobs."""

    def test_missing_outputs_and_old_jobs(
        self, make_service, make_file, memory_store, clock, temp_dir
    ) -> None:
        """Rows for vanished outputs and long-finished jobs are deleted."""
        old_job, _ = add_job_with_result(
            memory_store,
            temp_dir / "output" / "gone_720p.mp4",
            "2024-01-15T10:00:00+00:00",
        )
        present = make_file("output/here_720p.mp4", 50_000)
        recent_job, recent_result = add_job_with_result(
            memory_store, present, clock.now.isoformat()
        )

        report = make_service().run_cleanup()

        assert report.get_pass("database").records_cleaned == 2
        assert memory_store.get_job(old_job.id) is None
        assert memory_store.get_job(recent_job.id) is not None
        assert memory_store.list_results() == [recent_result]


class TestHistoryPass:
    """Tests for analytics snapshot pruning."""

    def test_prunes_old_snapshots(self, make_service, memory_store, clock) -> None:
        """Snapshots older than the retention window are deleted."""
        memory_store.save_analytics("storage_stats", "{}", "2099-01-01T00:00:00")
        clock.advance(days=31)

        report = make_service().run_cleanup()

        assert report.get_pass("history").records_cleaned == 1
        assert memory_store.get_analytics("storage_stats") is None


class TestRun:
    """Tests for whole cleanup runs."""

    def test_failing_pass_is_isolated(
        self, make_service, make_file, memory_store
    ) -> None:
        """A raising pass is reported and the others still run."""
        tiny = make_file("output/tiny_720p.mp4", 10)
        with patch.object(
            memory_store,
            "delete_analytics_before",
            side_effect=RuntimeError("database gone"),
        ):
            report = make_service().run_cleanup()

        assert report.get_pass("history").error == "database gone"
        assert report.errors == 1
        assert not tiny.exists()
        assert report.to_dict()["passes"]["history"]["errors"] == 1

    def test_publishes_and_invalidates(
        self, make_service, make_file, recorded_events
    ) -> None:
        """A run that removed files refreshes analytics and reports."""
        make_file("output/tiny_720p.mp4", 10)
        storage_manager = MagicMock()

        make_service(storage_manager=storage_manager).run_cleanup()

        storage_manager.invalidate_analytics.assert_called_once_with()
        events = [e for e in recorded_events if isinstance(e, CleanupCompleted)]
        assert events[0].report["files_cleaned"] == 1

    def test_no_changes_keeps_analytics(self, make_service) -> None:
        """An empty run leaves the analytics cache alone."""
        storage_manager = MagicMock()
        make_service(storage_manager=storage_manager).run_cleanup()
        storage_manager.invalidate_analytics.assert_not_called()

    def test_stats(self, make_service, make_file) -> None:
        """Totals accumulate across runs until reset."""
        service = make_service()
        make_file("output/tiny_720p.mp4", 10)
        service.run_cleanup()
        service.force_cleanup()

        stats = service.get_stats()
        assert stats["total_cleanups"] == 2
        assert stats["files_cleaned"] == 1
        assert stats["space_freed"]["bytes"] == 10
        assert stats["last_cleanup"] is not None
        assert not stats["is_running"]

        service.reset_stats()
        assert service.get_stats()["total_cleanups"] == 0


class TestTimer:
    """Tests for the periodic cleanup thread."""

    def test_disabled(self, make_service) -> None:
        """A disabled service never starts its thread."""
        service = make_service()
        service.start()
        assert not service.is_running

    def test_periodic_runs(self, make_service, event_bus) -> None:
        """An enabled service runs on its interval until stopped."""
        ran = threading.Event()
        event_bus.subscribe(lambda e: ran.set(), [CleanupCompleted])
        service = make_service(config={"enabled": True, "interval_seconds": 0.05})

        service.start()
        try:
            assert service.is_running
            assert ran.wait(5.0)
        finally:
            service.stop()
        assert not service.is_running

    def test_update_config_restarts_running_timer(
        self, make_service, storage_config
    ) -> None:
        """A running timer picks up the new interval; a stopped one stays off."""
        service = make_service(config={"enabled": True, "interval_seconds": 60})
        service.update_config(CleanupConfig(enabled=True, interval_seconds=30))
        assert not service.is_running

        service.start()
        try:
            service.update_config(
                CleanupConfig(enabled=True, interval_seconds=120), storage_config
            )
            assert service.is_running
            assert service.config.interval_seconds == 120
            assert service.storage_config is storage_config
        finally:
            service.stop()

    def test_update_config_can_disable(self, make_service) -> None:
        """Disabling through update_config stops the timer."""
        service = make_service(config={"enabled": True, "interval_seconds": 60})
        service.start()

        service.update_config(CleanupConfig(enabled=False))

        assert not service.is_running
