"""Configuration data models.

This module defines dataclasses for mediashrink configuration options.
Each section maps to a ``[section]`` table in the TOML config file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

MIB = 1024 * 1024

DEFAULT_QUALITIES: tuple[str, ...] = ("1080p", "720p")
CANDIDATE_QUALITIES: tuple[str, ...] = ("1080p", "720p", "480p")

SUPPORTED_EXTENSIONS: tuple[str, ...] = (
    ".mp4",
    ".avi",
    ".mkv",
    ".mov",
    ".wmv",
    ".flv",
    ".webm",
)


@dataclass
class ToolPathsConfig:
    """Configuration for external tool paths.

    All paths are optional. If not specified, tools are looked up in PATH.
    """

    ffmpeg: Path | None = None
    ffprobe: Path | None = None


@dataclass
class JobsConfig:
    """Configuration for the job queue and dispatcher."""

    # Hard ceiling on jobs in analyzing/transcoding
    max_concurrent_jobs: int = 2

    # Admission limit on queued jobs (0 = unlimited)
    max_queue_size: int = 100

    default_qualities: list[str] = field(
        default_factory=lambda: list(DEFAULT_QUALITIES)
    )
    default_priority: int = 0
    max_attempts: int = 3

    # Safety wakeup for the dispatcher when no notification arrives
    dispatch_wakeup_seconds: float = 5.0

    # Requeue jobs left in analyzing/transcoding by a previous process
    recover_on_start: bool = True

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_concurrent_jobs < 1:
            raise ValueError(
                f"max_concurrent_jobs must be >= 1, got {self.max_concurrent_jobs}"
            )
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.max_queue_size < 0:
            raise ValueError(
                f"max_queue_size must be >= 0, got {self.max_queue_size}"
            )
        if self.dispatch_wakeup_seconds <= 0:
            raise ValueError("dispatch_wakeup_seconds must be positive")


@dataclass
class AnalyzerConfig:
    """Configuration for the file analyzer.

    The heuristic ratios are used only when bitrate or duration could not be
    probed. They are rough savings estimates per source codec, not measured
    values.
    """

    min_file_size_mb: float = 100.0
    min_compression_percent: float = 5.0
    prevent_data_inflation: bool = True

    # Estimated growth tolerated before the inflation guard rejects
    max_inflation_percent: float = 0.0

    supported_extensions: list[str] = field(
        default_factory=lambda: list(SUPPORTED_EXTENSIONS)
    )
    candidate_qualities: list[str] = field(
        default_factory=lambda: list(CANDIDATE_QUALITIES)
    )

    # Target total bitrate (bits/s) per quality for size estimation
    target_bitrates: dict[str, int] = field(
        default_factory=lambda: {
            "1080p": 1_200_000,
            "720p": 800_000,
            "480p": 600_000,
        }
    )
    default_target_bitrate: int = 800_000

    # Container overhead applied to bitrate-based estimates
    size_overhead: float = 1.1

    # Savings ratio by source codec when bitrate-based estimation is impossible
    heuristic_ratios: dict[str, float] = field(
        default_factory=lambda: {
            "h264": 0.6,
            "mpeg4": 0.7,
            "wmv": 0.7,
            "mpeg2video": 0.7,
            "h265": 0.1,
        }
    )
    heuristic_default_ratio: float = 0.5
    heuristic_quality_multipliers: dict[str, float] = field(
        default_factory=lambda: {"720p": 1.1, "480p": 1.2}
    )
    heuristic_max_ratio: float = 0.95

    # An existing result counts as "already transcoded" only above this size
    existing_output_min_bytes: int = MIB

    batch_size: int = 5

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.min_file_size_mb < 0:
            raise ValueError("min_file_size_mb must be >= 0")
        if not 0 <= self.min_compression_percent < 100:
            raise ValueError(
                "min_compression_percent must be in [0, 100), "
                f"got {self.min_compression_percent}"
            )
        if self.max_inflation_percent < 0:
            raise ValueError("max_inflation_percent must be >= 0")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        for codec, ratio in self.heuristic_ratios.items():
            if not 0 <= ratio < 1:
                raise ValueError(
                    f"heuristic ratio for {codec} must be in [0, 1), got {ratio}"
                )
        self.supported_extensions = [
            ext.casefold() if ext.startswith(".") else f".{ext.casefold()}"
            for ext in self.supported_extensions
        ]

    @property
    def min_file_size_bytes(self) -> int:
        """Minimum candidate file size in bytes."""
        return int(self.min_file_size_mb * MIB)


@dataclass
class TranscoderConfig:
    """Configuration for the transcoder and output validation."""

    enable_gpu: bool = True
    gpu_device: int = 0
    gpu_preset: str = "p4"
    vp9_speed: int = 4
    cpu_preset: str = "medium"

    min_compression_percent: float = 5.0
    prevent_data_inflation: bool = True
    min_output_bytes: int = MIB
    verify_integrity: bool = True

    # Seconds between SIGTERM and SIGKILL when cancelling an encode
    kill_grace_seconds: float = 10.0

    # Maximum wall time per encode (None = unlimited)
    encode_timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not 0 <= self.vp9_speed <= 8:
            raise ValueError(f"vp9_speed must be in [0, 8], got {self.vp9_speed}")
        if self.gpu_device < 0:
            raise ValueError(f"gpu_device must be >= 0, got {self.gpu_device}")
        if self.kill_grace_seconds < 0:
            raise ValueError("kill_grace_seconds must be >= 0")


@dataclass
class StorageConfig:
    """Configuration for output placement and storage analytics."""

    output_directory: Path = field(default_factory=lambda: Path("uploads/transcoded"))
    temp_directory: Path = field(default_factory=lambda: Path("uploads/temp"))
    chunk_directory: Path = field(default_factory=lambda: Path("uploads/chunks"))

    # Mirror input layout relative to this root when organize_by_date is off
    media_root: Path | None = None
    organize_by_date: bool = True

    max_storage_gb: float = 1000.0
    cleanup_threshold: float = 0.9
    analytics_ttl_minutes: float = 15.0
    max_filename_length: int = 60

    # Results at or below this size are ignored by analytics
    min_result_bytes: int = 1024

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_storage_gb <= 0:
            raise ValueError("max_storage_gb must be positive")
        if not 0 < self.cleanup_threshold <= 1:
            raise ValueError(
                f"cleanup_threshold must be in (0, 1], got {self.cleanup_threshold}"
            )
        if self.analytics_ttl_minutes <= 0:
            raise ValueError("analytics_ttl_minutes must be positive")
        if self.max_filename_length < 16:
            raise ValueError("max_filename_length must be >= 16")


@dataclass
class CleanupConfig:
    """Configuration for the periodic cleanup service."""

    enabled: bool = True
    interval_seconds: float = 3600.0
    corrupted_file_threshold: int = 1024
    verify_integrity: bool = True

    # Files younger than this are never considered orphans
    orphan_grace_seconds: float = 600.0

    temp_file_age_seconds: float = 3600.0
    max_job_age_days: int = 7
    analytics_retention_days: int = 30

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self.corrupted_file_threshold < 0:
            raise ValueError("corrupted_file_threshold must be >= 0")
        if self.max_job_age_days < 0 or self.analytics_retention_days < 0:
            raise ValueError("retention windows must be >= 0")


@dataclass
class ProgressConfig:
    """Configuration for the in-memory progress tracker."""

    max_history_size: int = 100
    retention_hours: float = 24.0

    # Interval for overall-progress broadcasts while jobs are active
    broadcast_interval_seconds: float = 1.0

    # How often records older than retention_hours are dropped
    prune_interval_seconds: float = 3600.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_history_size < 1:
            raise ValueError("max_history_size must be >= 1")
        if self.broadcast_interval_seconds <= 0:
            raise ValueError("broadcast_interval_seconds must be positive")
        if self.prune_interval_seconds <= 0:
            raise ValueError("prune_interval_seconds must be positive")


@dataclass
class LoggingConfig:
    """Configuration for structured logging."""

    # Log level: debug, info, warning, error
    level: str = "info"

    # Log file path (None = stderr only)
    file: Path | None = None

    # Log format: text or json
    format: str = "text"

    # Also log to stderr when file is set
    include_stderr: bool = False

    # Rotation threshold in bytes (default 10MB)
    max_bytes: int = 10_485_760

    # Number of rotated files to keep
    backup_count: int = 5

    def __post_init__(self) -> None:
        """Validate configuration."""
        valid_levels = {"debug", "info", "warning", "error"}
        if self.level.lower() not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}, got {self.level}")
        valid_formats = {"text", "json"}
        if self.format.lower() not in valid_formats:
            raise ValueError(
                f"format must be one of {valid_formats}, got {self.format}"
            )


@dataclass
class EngineConfig:
    """Top-level mediashrink configuration."""

    tools: ToolPathsConfig = field(default_factory=ToolPathsConfig)
    jobs: JobsConfig = field(default_factory=JobsConfig)
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)
    transcoder: TranscoderConfig = field(default_factory=TranscoderConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    cleanup: CleanupConfig = field(default_factory=CleanupConfig)
    progress: ProgressConfig = field(default_factory=ProgressConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Storage backend tag: "sqlite" or "memory"
    store_backend: str = "sqlite"
    database_path: Path | None = None

    def __post_init__(self) -> None:
        """Validate configuration."""
        valid_backends = {"sqlite", "memory"}
        if self.store_backend not in valid_backends:
            raise ValueError(
                f"store_backend must be one of {valid_backends}, "
                f"got {self.store_backend}"
            )
