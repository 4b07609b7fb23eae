"""Contract tests for the JobStore backends.

Every test runs against both SQLiteJobStore and MemoryJobStore.
"""

import uuid
from pathlib import Path

import pytest

from mediashrink.core.datetime_utils import utc_now_iso
from mediashrink.db.store import (
    JobStore,
    MemoryJobStore,
    SQLiteJobStore,
    create_store,
)
from mediashrink.db.types import (
    Job,
    JobStatus,
    TranscodeResultRecord,
    compute_compression_ratio,
)
from mediashrink.jobs.exceptions import DuplicateJobError, QueueFullError


@pytest.fixture(params=["sqlite", "memory"])
def store(request, temp_dir: Path):
    """An initialized store for each backend."""
    store = create_store(request.param, temp_dir / "store.db")
    yield store
    store.close()


@pytest.fixture
def make_job():
    """Factory for queued Job records."""

    def factory(
        input_path: str = "/media/movie.mkv",
        *,
        priority: int = 0,
        created_at: str = "2024-01-15T10:00:00+00:00",
        max_attempts: int = 3,
        **kwargs,
    ) -> Job:
        return Job(
            id=str(uuid.uuid4()),
            input_path=input_path,
            qualities=["1080p", "720p"],
            status=kwargs.pop("status", JobStatus.QUEUED),
            priority=priority,
            created_at=created_at,
            max_attempts=max_attempts,
            **kwargs,
        )

    return factory


def make_result(job_id: str, quality: str = "720p", **kwargs) -> TranscodeResultRecord:
    values = {
        "id": None,
        "job_id": job_id,
        "quality": quality,
        "original_path": "/media/movie.mkv",
        "transcoded_path": f"/out/movie_{quality}.mp4",
        "original_size": 1000,
        "transcoded_size": 400,
        "compression_ratio": 60.0,
        "space_saved": 600,
        "checksum": "abc",
        "processing_time_ms": 2000,
        "created_at": "2024-01-15T11:00:00+00:00",
    }
    values.update(kwargs)
    return TranscodeResultRecord(**values)


class TestCreateStore:
    """Tests for create_store."""

    def test_backends(self, temp_dir: Path) -> None:
        """Backend tags select the implementation."""
        sqlite_store = create_store("sqlite", temp_dir / "a.db")
        assert isinstance(sqlite_store, SQLiteJobStore)
        assert isinstance(sqlite_store, JobStore)
        sqlite_store.close()
        assert isinstance(create_store("memory"), MemoryJobStore)

    def test_sqlite_requires_path(self) -> None:
        """The sqlite backend needs a database path."""
        with pytest.raises(ValueError, match="database path"):
            create_store("sqlite")

    def test_unknown_backend(self) -> None:
        """Unknown tags raise ValueError."""
        with pytest.raises(ValueError):
            create_store("redis")


class TestSubmit:
    """Tests for submit_job and lookups."""

    def test_submit_and_get(self, store, make_job) -> None:
        """A submitted job can be read back unchanged."""
        job = make_job(settings={"crf": 23})
        stored, created = store.submit_job(job)
        assert created is True
        assert stored.sequence is not None

        loaded = store.get_job(job.id)
        assert loaded.input_path == "/media/movie.mkv"
        assert loaded.qualities == ["1080p", "720p"]
        assert loaded.settings == {"crf": 23}
        assert loaded.status is JobStatus.QUEUED

    def test_duplicate_open_path_returns_existing(self, store, make_job) -> None:
        """A second submission for an open path returns the first job."""
        first = make_job()
        store.submit_job(first)
        existing, created = store.submit_job(make_job())
        assert created is False
        assert existing.id == first.id
        assert store.count_jobs_by_status()["queued"] == 1

    def test_terminal_job_does_not_block(self, store, make_job) -> None:
        """A finished job for the same path allows a new submission."""
        first = make_job()
        store.submit_job(first)
        store.transition_job(first.id, JobStatus.COMPLETED)
        _, created = store.submit_job(make_job())
        assert created is True

    def test_queue_limit(self, store, make_job) -> None:
        """max_queued rejects submissions once the queue is full."""
        store.submit_job(make_job("/a.mkv"), max_queued=2)
        store.submit_job(make_job("/b.mkv"), max_queued=2)
        with pytest.raises(QueueFullError):
            store.submit_job(make_job("/c.mkv"), max_queued=2)

    def test_unknown_job(self, store) -> None:
        """Unknown ids return None."""
        assert store.get_job("missing") is None
        assert store.find_open_job("/nothing.mkv") is None

    def test_find_open_job(self, store, make_job) -> None:
        """find_open_job ignores terminal jobs."""
        job = make_job()
        store.submit_job(job)
        assert store.find_open_job(job.input_path).id == job.id
        store.transition_job(job.id, JobStatus.CANCELLED)
        assert store.find_open_job(job.input_path) is None


class TestListAndCount:
    """Tests for list_jobs and count_jobs_by_status."""

    def test_newest_first(self, store, make_job) -> None:
        """Jobs are listed newest first."""
        old = make_job("/old.mkv", created_at="2024-01-01T00:00:00+00:00")
        new = make_job("/new.mkv", created_at="2024-02-01T00:00:00+00:00")
        store.submit_job(old)
        store.submit_job(new)
        assert [j.id for j in store.list_jobs()] == [new.id, old.id]
        assert [j.id for j in store.list_jobs(limit=1)] == [new.id]

    def test_filter_by_status(self, store, make_job) -> None:
        """Only jobs in the requested statuses are listed."""
        a = make_job("/a.mkv")
        b = make_job("/b.mkv")
        store.submit_job(a)
        store.submit_job(b)
        store.transition_job(b.id, JobStatus.CANCELLED)
        listed = store.list_jobs([JobStatus.CANCELLED])
        assert [j.id for j in listed] == [b.id]

    def test_counts_include_every_status(self, store, make_job) -> None:
        """Every status key is present, zero when empty."""
        store.submit_job(make_job())
        counts = store.count_jobs_by_status()
        assert set(counts) == {s.value for s in JobStatus}
        assert counts["queued"] == 1
        assert counts["failed"] == 0


class TestClaim:
    """Tests for claim_next_job."""

    def test_priority_then_fifo(self, store, make_job) -> None:
        """Higher priority first; equal priority in creation order."""
        low = make_job("/low.mkv", priority=0, created_at="2024-01-01T00:00:00")
        first = make_job("/first.mkv", priority=5, created_at="2024-01-02T00:00:00")
        second = make_job("/second.mkv", priority=5, created_at="2024-01-03T00:00:00")
        for job in (low, second, first):
            store.submit_job(job)

        claimed = [store.claim_next_job(max_active=10).id for _ in range(3)]
        assert claimed == [first.id, second.id, low.id]

    def test_same_timestamp_uses_insertion_order(self, store, make_job) -> None:
        """Identical priority and timestamp fall back to submission order."""
        a = make_job("/a.mkv")
        b = make_job("/b.mkv")
        store.submit_job(a)
        store.submit_job(b)
        assert store.claim_next_job(max_active=10).id == a.id

    def test_claim_marks_analyzing(self, store, make_job) -> None:
        """The claimed job is analyzing with a start time and zero progress."""
        job = make_job()
        store.submit_job(job)
        claimed = store.claim_next_job(max_active=1)
        assert claimed.status is JobStatus.ANALYZING
        assert claimed.started_at is not None
        stored = store.get_job(job.id)
        assert stored.status is JobStatus.ANALYZING
        assert stored.progress == 0.0

    def test_concurrency_ceiling(self, store, make_job) -> None:
        """No job is claimed once max_active jobs are active."""
        store.submit_job(make_job("/a.mkv"))
        store.submit_job(make_job("/b.mkv"))
        assert store.claim_next_job(max_active=1) is not None
        assert store.claim_next_job(max_active=1) is None

    def test_empty_queue(self, store) -> None:
        """An empty queue yields None."""
        assert store.claim_next_job(max_active=2) is None


class TestTransition:
    """Tests for transition_job and update_job_progress."""

    def test_compare_and_set(self, store, make_job) -> None:
        """The transition applies only from the expected statuses."""
        job = make_job()
        store.submit_job(job)
        assert not store.transition_job(
            job.id, JobStatus.COMPLETED, from_statuses=[JobStatus.TRANSCODING]
        )
        assert store.transition_job(
            job.id,
            JobStatus.CANCELLED,
            from_statuses=[JobStatus.QUEUED],
            completed_at="2024-01-15T12:00:00+00:00",
        )
        stored = store.get_job(job.id)
        assert stored.status is JobStatus.CANCELLED
        assert stored.completed_at == "2024-01-15T12:00:00+00:00"

    def test_unknown_job(self, store) -> None:
        """Transitions of unknown jobs report False."""
        assert store.transition_job("missing", JobStatus.CANCELLED) is False

    def test_rejects_unknown_columns(self, store, make_job) -> None:
        """Only whitelisted columns can be set."""
        job = make_job()
        store.submit_job(job)
        with pytest.raises(ValueError, match="Cannot update job columns"):
            store.transition_job(job.id, JobStatus.QUEUED, input_path="/evil")

    def test_reopen_with_open_sibling(self, store, make_job) -> None:
        """Reopening a job while its path has another open job is refused."""
        first = make_job()
        store.submit_job(first)
        store.transition_job(first.id, JobStatus.FAILED)
        second = make_job()
        store.submit_job(second)

        with pytest.raises(DuplicateJobError):
            store.transition_job(first.id, JobStatus.QUEUED)

    def test_progress_only_for_active_jobs(self, store, make_job) -> None:
        """Progress updates apply to analyzing/transcoding jobs only."""
        job = make_job()
        store.submit_job(job)
        assert store.update_job_progress(job.id, 10.0) is False
        store.claim_next_job(max_active=1)
        assert store.update_job_progress(job.id, 42.5) is True
        assert store.get_job(job.id).progress == 42.5


class TestRecordFailure:
    """Tests for record_job_failure."""

    def test_retryable_failure_requeues(self, store, make_job) -> None:
        """A transient failure with attempts left returns to the queue."""
        job = make_job()
        store.submit_job(job)
        store.claim_next_job(max_active=1)

        updated = store.record_job_failure(job.id, "encoder crashed", retryable=True)
        assert updated.status is JobStatus.QUEUED
        assert updated.attempts == 1
        assert updated.error_message == "encoder crashed"
        assert updated.started_at is None
        assert updated.progress == 0.0

    def test_permanent_failure(self, store, make_job) -> None:
        """Permanent failures end the job immediately."""
        job = make_job()
        store.submit_job(job)
        store.claim_next_job(max_active=1)

        updated = store.record_job_failure(job.id, "not a video", retryable=False)
        assert updated.status is JobStatus.FAILED
        assert updated.attempts == 1
        assert updated.completed_at is not None

    def test_attempt_cap(self, store, make_job) -> None:
        """The final attempt fails the job and attempts never exceed the cap."""
        job = make_job(max_attempts=2)
        store.submit_job(job)
        for error in ("first", "second"):
            store.claim_next_job(max_active=1)
            updated = store.record_job_failure(job.id, error, retryable=True)

        assert updated.status is JobStatus.FAILED
        assert updated.attempts == 2
        assert updated.error_message == "second"

    def test_inactive_job_unchanged(self, store, make_job) -> None:
        """A job cancelled meanwhile is returned untouched."""
        job = make_job()
        store.submit_job(job)
        store.transition_job(job.id, JobStatus.CANCELLED)
        updated = store.record_job_failure(job.id, "late error", retryable=True)
        assert updated.status is JobStatus.CANCELLED
        assert updated.attempts == 0

    def test_unknown_job(self, store) -> None:
        """Unknown jobs yield None."""
        assert store.record_job_failure("missing", "x", retryable=True) is None


class TestDeletion:
    """Tests for bulk deletion and recovery."""

    def test_delete_queued_jobs(self, store, make_job) -> None:
        """Only queued jobs are deleted."""
        a = make_job("/a.mkv")
        b = make_job("/b.mkv")
        store.submit_job(a)
        store.submit_job(b)
        store.claim_next_job(max_active=1)
        assert store.delete_queued_jobs() == 1
        assert store.get_job(a.id) is not None
        assert store.get_job(b.id) is None

    def test_delete_terminal_jobs_before_cascades(self, store, make_job) -> None:
        """Old terminal jobs are deleted along with their results."""
        old = make_job("/old.mkv", created_at="2024-01-01T00:00:00+00:00")
        recent = make_job("/recent.mkv", created_at="2024-03-01T00:00:00+00:00")
        open_job = make_job("/open.mkv", created_at="2023-01-01T00:00:00+00:00")
        for job in (old, recent, open_job):
            store.submit_job(job)
        store.transition_job(
            old.id, JobStatus.COMPLETED, completed_at="2024-01-02T00:00:00+00:00"
        )
        store.transition_job(
            recent.id, JobStatus.FAILED, completed_at="2024-03-02T00:00:00+00:00"
        )
        store.add_result(make_result(old.id, original_path="/old.mkv"))

        assert store.delete_terminal_jobs_before("2024-02-01T00:00:00+00:00") == 1
        assert store.get_job(old.id) is None
        assert store.get_results_for_job(old.id) == []
        assert store.get_job(recent.id) is not None
        assert store.get_job(open_job.id) is not None

    def test_requeue_active_jobs(self, store, make_job) -> None:
        """Active jobs go back to the queue keeping their attempts."""
        job = make_job()
        store.submit_job(job)
        store.claim_next_job(max_active=1)
        store.transition_job(job.id, JobStatus.TRANSCODING, attempts=1)

        assert store.requeue_active_jobs() == 1
        stored = store.get_job(job.id)
        assert stored.status is JobStatus.QUEUED
        assert stored.attempts == 1
        assert stored.started_at is None


class TestResults:
    """Tests for transcode result records."""

    def test_add_and_query(self, store, make_job) -> None:
        """Results are stored with an id and found per job and quality."""
        job = make_job()
        store.submit_job(job)
        first = store.add_result(make_result(job.id, "1080p"))
        second = store.add_result(make_result(job.id, "720p"))

        assert first.id is not None
        assert [r.quality for r in store.get_results_for_job(job.id)] == [
            "1080p",
            "720p",
        ]
        assert store.find_result("/media/movie.mkv", "720p").id == second.id
        assert store.find_result("/media/movie.mkv", "480p") is None
        assert len(store.list_results()) == 2

    def test_find_result_returns_newest(self, store, make_job) -> None:
        """Repeated results for the same file and quality resolve to the newest."""
        job = make_job()
        store.submit_job(job)
        store.add_result(make_result(job.id, transcoded_path="/out/a.mp4"))
        newest = store.add_result(make_result(job.id, transcoded_path="/out/b.mp4"))
        assert store.find_result("/media/movie.mkv", "720p").id == newest.id

    def test_delete_result(self, store, make_job) -> None:
        """delete_result reports whether a row was removed."""
        job = make_job()
        store.submit_job(job)
        result = store.add_result(make_result(job.id))
        assert store.delete_result(result.id) is True
        assert store.delete_result(result.id) is False

    def test_compression_totals(self, store, make_job) -> None:
        """Totals aggregate sizes, ratios and processing time."""
        empty = store.get_compression_totals()
        assert empty["total_files"] == 0
        assert empty["average_ratio"] == 0

        job = make_job()
        store.submit_job(job)
        store.add_result(make_result(job.id, "1080p"))
        store.add_result(
            make_result(
                job.id,
                "720p",
                transcoded_size=200,
                space_saved=800,
                compression_ratio=80.0,
                processing_time_ms=4000,
            )
        )
        totals = store.get_compression_totals()
        assert totals["total_files"] == 2
        assert totals["total_original"] == 2000
        assert totals["total_transcoded"] == 600
        assert totals["total_saved"] == 1400
        assert totals["average_ratio"] == pytest.approx(70.0)
        assert totals["average_time_ms"] == pytest.approx(3000)

    def test_quality_breakdown(self, store, make_job) -> None:
        """Breakdown groups results per quality."""
        job = make_job()
        store.submit_job(job)
        store.add_result(make_result(job.id, "720p"))
        store.add_result(make_result(job.id, "720p", compression_ratio=40.0))
        breakdown = store.get_quality_breakdown()
        assert breakdown["720p"]["count"] == 2
        assert breakdown["720p"]["space_saved"] == 1200
        assert breakdown["720p"]["average_ratio"] == pytest.approx(50.0)


class TestAnalytics:
    """Tests for analytics snapshots."""

    def test_latest_unexpired_snapshot(self, store) -> None:
        """get_analytics with ``now`` skips expired snapshots."""
        store.save_analytics("storage_stats", '{"v": 1}', "2000-01-01T00:00:00+00:00")
        assert store.get_analytics("storage_stats", now="2024-01-01T00:00:00") is None

        store.save_analytics("storage_stats", '{"v": 2}', "2999-01-01T00:00:00+00:00")
        record = store.get_analytics("storage_stats", now="2024-01-01T00:00:00")
        assert record.metric_value == '{"v": 2}'
        assert store.get_analytics("other") is None

    def test_expire_analytics(self, store) -> None:
        """Expiring a metric hides every current snapshot."""
        store.save_analytics("storage_stats", "{}", "2999-01-01T00:00:00+00:00")
        assert store.expire_analytics("storage_stats") == 1
        assert store.get_analytics("storage_stats", now=utc_now_iso()) is None
        assert store.get_analytics("storage_stats") is not None

    def test_delete_analytics_before(self, store) -> None:
        """Snapshots created before the cutoff are removed."""
        store.save_analytics("storage_stats", "{}", "2999-01-01T00:00:00+00:00")
        assert store.delete_analytics_before("2000-01-01T00:00:00+00:00") == 0
        assert store.delete_analytics_before("2999-01-01T00:00:00+00:00") == 1
        assert store.get_analytics("storage_stats") is None


class TestComputeCompressionRatio:
    """Tests for compute_compression_ratio."""

    def test_percentage(self) -> None:
        """Ratio is the saved percentage with two decimals."""
        assert compute_compression_ratio(1_200_000_000, 700_000_000) == 41.67

    def test_zero_original(self) -> None:
        """A zero-size original yields 0."""
        assert compute_compression_ratio(0, 100) == 0.0

    def test_inflation_is_negative(self) -> None:
        """Outputs larger than the input give a negative ratio."""
        assert compute_compression_ratio(100, 150) == -50.0
