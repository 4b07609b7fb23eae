"""Storage analytics snapshot computation."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta
from pathlib import Path

from mediashrink.config.models import StorageConfig
from mediashrink.core.file_utils import directory_usage, get_file_size
from mediashrink.core.formatting import sized
from mediashrink.db.types import TranscodeResultRecord

GIB = 1024**3

STORAGE_METRIC = "storage_stats"


def _directory_entry(path: Path) -> dict:
    size, count = directory_usage(path)
    return {"path": str(path), "size": sized(size), "file_count": count}


def compute_storage_snapshot(
    config: StorageConfig,
    results: Iterable[TranscodeResultRecord],
    now: datetime,
) -> dict:
    """Walk the storage trees and cross-check results against the disk.

    A result counts only if its output still exists and is larger than
    ``config.min_result_bytes``.

    Args:
        config: Storage configuration (directories, quota, TTL).
        results: Every persisted transcode result.
        now: Snapshot time; also the base for ``expires_at``.

    Returns:
        JSON-serialisable snapshot dict.
    """
    output_dir = _directory_entry(config.output_directory)
    temp_dir = _directory_entry(config.temp_directory)

    total_original = 0
    total_transcoded = 0
    active_files = 0
    by_quality: dict[str, dict] = {}
    for result in results:
        size = get_file_size(Path(result.transcoded_path))
        if size is None or size <= config.min_result_bytes:
            continue
        active_files += 1
        total_original += result.original_size
        total_transcoded += result.transcoded_size
        entry = by_quality.setdefault(result.quality, {"count": 0, "space_saved": 0})
        entry["count"] += 1
        entry["space_saved"] += result.space_saved

    space_saved = total_original - total_transcoded
    ratio = space_saved / total_original * 100 if total_original > 0 else 0.0

    used = output_dir["size"]["bytes"] + temp_dir["size"]["bytes"]
    quota = int(config.max_storage_gb * GIB)
    expires_at = now + timedelta(minutes=config.analytics_ttl_minutes)

    return {
        "total_files": active_files,
        "total_original_size": sized(total_original),
        "total_transcoded_size": sized(total_transcoded),
        "total_space_saved": sized(space_saved),
        "compression_ratio": round(ratio, 1),
        "quality_breakdown": {
            quality: {
                "count": entry["count"],
                "space_saved": sized(entry["space_saved"]),
            }
            for quality, entry in sorted(by_quality.items())
        },
        "storage_usage": {
            "used": sized(used),
            "max": sized(quota),
            "percent": round(used / quota * 100, 1),
        },
        "directories": {"output": output_dir, "temp": temp_dir},
        "last_updated": now.isoformat(),
        "expires_at": expires_at.isoformat(),
    }
