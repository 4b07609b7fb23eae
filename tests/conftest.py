"""Shared test fixtures for mediashrink."""

import os
import shutil
import tempfile
import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from mediashrink.config.models import (
    AnalyzerConfig,
    CleanupConfig,
    EngineConfig,
    JobsConfig,
    ProgressConfig,
    StorageConfig,
    TranscoderConfig,
)
from mediashrink.core.datetime_utils import utc_now
from mediashrink.db.store import MemoryJobStore
from mediashrink.engine import TranscodingEngine
from mediashrink.events import Event, EventBus
from mediashrink.executor.cancellation import CancellationToken
from mediashrink.executor.runner import EncodeOutcome
from mediashrink.executor.transcoder import Transcoder
from mediashrink.introspector.interface import MediaIntrospectionError
from mediashrink.introspector.types import MediaInfo
from mediashrink.tools.ffmpeg_progress import EncodeProgress

MB = 1_000_000


def write_sparse_file(path: Path, size: int) -> Path:
    """Create ``path`` with ``size`` bytes without writing them to disk."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as f:
        f.truncate(size)
    return path


def build_media_info(**overrides) -> MediaInfo:
    """MediaInfo for a one-hour h264 720p file unless overridden."""
    values = {
        "duration": 3600.0,
        "total_bitrate": 2_666_666,
        "video_bitrate": 2_500_000,
        "audio_bitrate": 128_000,
        "video_codec": "h264",
        "audio_codec": "aac",
        "width": 1280,
        "height": 720,
        "frame_rate": 23.976,
        "container": "matroska,webm",
        "file_size": 0,
        "raw_video_codec": "h264",
    }
    values.update(overrides)
    return MediaInfo(**values)


class FakeIntrospector:
    """In-memory MediaIntrospector.

    ``infos`` maps file names to MediaInfo; other files get ``default``.
    ``file_size`` 0 is replaced by the real size of the file.
    """

    def __init__(self) -> None:
        self.default = build_media_info()
        self.infos: dict[str, MediaInfo] = {}
        self.failures: dict[str, str] = {}
        self.integrity: bool | Callable[[Path], bool] = True
        self.probed: list[Path] = []
        self.verified: list[Path] = []

    def get_media_info(self, path: Path) -> MediaInfo:
        path = Path(path)
        self.probed.append(path)
        if path.name in self.failures:
            raise MediaIntrospectionError(self.failures[path.name])
        info = self.infos.get(path.name, self.default)
        if info.file_size == 0 and path.exists():
            info = replace(info, file_size=path.stat().st_size)
        return info

    def verify_integrity(self, path: Path) -> bool:
        path = Path(path)
        self.verified.append(path)
        if callable(self.integrity):
            return self.integrity(path)
        return self.integrity


class FakeClock:
    """Callable UTC clock that only moves when advanced."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utc_now()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeEncoder:
    """Stand-in for executor.runner.run_encode that never starts ffmpeg.

    Writes a sparse output file at ``cmd[-1]`` and reports progress. The
    output is ``output_size`` bytes, or half the input when None.
    ``outcomes`` are returned (without writing output) before any success.
    With ``block`` set, each call waits for its cancellation token.
    """

    def __init__(self) -> None:
        self.output_size: int | None = None
        self.outcomes: list[EncodeOutcome] = []
        self.block = False
        self.commands: list[list[str]] = []
        self.started = threading.Event()

    @staticmethod
    def input_path(cmd: list[str]) -> Path:
        return Path(cmd[cmd.index("-i") + 1])

    def __call__(
        self,
        cmd: list[str],
        *,
        cancel_token: CancellationToken | None = None,
        on_progress: Callable[[EncodeProgress], None] | None = None,
        timeout: float | None = None,
        kill_grace_seconds: float = 10.0,
    ) -> EncodeOutcome:
        self.commands.append(cmd)
        self.started.set()
        if self.block and cancel_token is not None:
            cancelled = cancel_token.wait(10.0)
            return EncodeOutcome(-15, "", cancelled=cancelled)
        if self.outcomes:
            return self.outcomes.pop(0)
        if on_progress is not None:
            on_progress(EncodeProgress(out_time_us=1_800_000_000, progress="continue"))
            on_progress(EncodeProgress(out_time_us=3_600_000_000, progress="end"))
        size = self.output_size
        if size is None:
            size = self.input_path(cmd).stat().st_size // 2
        write_sparse_file(Path(cmd[-1]), size)
        return EncodeOutcome(0, "", duration=0.01)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test isolation."""
    dir_path = tempfile.mkdtemp()
    yield Path(dir_path)
    shutil.rmtree(dir_path, ignore_errors=True)


@pytest.fixture(autouse=True)
def isolated_data_dir(temp_dir: Path):
    """Point the data directory and config file into the temp directory.

    Keeps tests from reading ~/.mediashrink or MEDIASHRINK_* variables of
    the developer's shell.
    """
    data_dir = temp_dir / ".mediashrink"
    data_dir.mkdir()
    clean_env = {
        key: value
        for key, value in os.environ.items()
        if not key.startswith("MEDIASHRINK_")
    }
    clean_env["MEDIASHRINK_DATA_DIR"] = str(data_dir)
    clean_env["MEDIASHRINK_CONFIG_PATH"] = str(data_dir / "config.toml")
    with patch.dict(os.environ, clean_env, clear=True):
        yield data_dir


@pytest.fixture
def make_file(temp_dir: Path) -> Callable[..., Path]:
    """Factory for sparse files: ``make_file("media/movie.mkv", 200 * MB)``."""

    def factory(relative: str | Path, size: int) -> Path:
        return write_sparse_file(temp_dir / relative, size)

    return factory


@pytest.fixture
def media_info_factory() -> Callable[..., MediaInfo]:
    """Factory for MediaInfo values (h264 720p, one hour by default)."""
    return build_media_info


@pytest.fixture
def fake_introspector() -> FakeIntrospector:
    """A MediaIntrospector that never runs ffprobe."""
    return FakeIntrospector()


@pytest.fixture
def clock() -> FakeClock:
    """A FakeClock starting at the current time."""
    return FakeClock()


@pytest.fixture
def fake_ffmpeg(temp_dir: Path) -> Path:
    """An executable placeholder for the ffmpeg binary."""
    path = temp_dir / "bin" / "ffmpeg"
    path.parent.mkdir()
    path.write_text("#!/bin/sh\nexit 0\n")
    path.chmod(0o755)
    return path


@pytest.fixture
def fake_encoder():
    """Patch run_encode with a FakeEncoder for the duration of a test."""
    encoder = FakeEncoder()
    with patch("mediashrink.executor.transcoder.run_encode", encoder):
        yield encoder


@pytest.fixture
def transcoder(
    fake_ffmpeg: Path, fake_encoder: FakeEncoder, fake_introspector
) -> Transcoder:
    """A CPU-only Transcoder whose encodes go to ``fake_encoder``."""
    return Transcoder(
        TranscoderConfig(enable_gpu=False, kill_grace_seconds=1.0),
        fake_introspector,
        ffmpeg_path=fake_ffmpeg,
    )


@pytest.fixture
def storage_config(temp_dir: Path) -> StorageConfig:
    """Storage directories inside the temp directory."""
    return StorageConfig(
        output_directory=temp_dir / "output",
        temp_directory=temp_dir / "temp",
        chunk_directory=temp_dir / "chunks",
    )


@pytest.fixture
def engine_config(temp_dir: Path, storage_config: StorageConfig) -> EngineConfig:
    """In-memory engine configuration with fast timers and no GPU."""
    return EngineConfig(
        jobs=JobsConfig(max_concurrent_jobs=2, dispatch_wakeup_seconds=0.05),
        analyzer=AnalyzerConfig(),
        transcoder=TranscoderConfig(enable_gpu=False, kill_grace_seconds=1.0),
        storage=storage_config,
        cleanup=CleanupConfig(enabled=False),
        progress=ProgressConfig(broadcast_interval_seconds=0.05),
        store_backend="memory",
    )


@pytest.fixture
def memory_store() -> MemoryJobStore:
    """An initialized in-memory job store."""
    store = MemoryJobStore()
    store.initialize()
    return store


@pytest.fixture
def event_bus() -> EventBus:
    """A fresh event bus."""
    return EventBus()


@pytest.fixture
def recorded_events(event_bus: EventBus) -> list[Event]:
    """Every event published on ``event_bus``, in order."""
    events: list[Event] = []
    event_bus.subscribe(events.append)
    return events


@pytest.fixture
def engine(engine_config, memory_store, fake_introspector, transcoder, event_bus):
    """A TranscodingEngine over the memory store with encodes faked."""
    engine = TranscodingEngine(
        engine_config,
        memory_store,
        introspector=fake_introspector,
        transcoder=transcoder,
        bus=event_bus,
    )
    engine.storage.ensure_directories()
    yield engine
    engine.close()
