"""Parsing of ffprobe JSON output into MediaInfo."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from mediashrink.core.codecs import normalize_codec
from mediashrink.introspector.interface import MediaIntrospectionError
from mediashrink.introspector.types import MediaInfo


def _to_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_frame_rate(value: str | None) -> float | None:
    """Parse an ffprobe rational frame rate ("30000/1001") to fps."""
    if not value:
        return None
    numerator, _, denominator = value.partition("/")
    try:
        num = float(numerator)
        den = float(denominator) if denominator else 1.0
    except ValueError:
        return None
    if den == 0 or num == 0:
        return None
    return round(num / den, 3)


def parse_ffprobe_output(path: Path, data: dict[str, Any]) -> MediaInfo:
    """Convert ``ffprobe -show_streams -show_format`` JSON to MediaInfo.

    Args:
        path: File the output belongs to (for messages and size fallback).
        data: Parsed ffprobe JSON.

    Returns:
        MediaInfo for the first video stream and first audio stream.

    Raises:
        MediaIntrospectionError: If the file has no video stream.
    """
    streams = data.get("streams", [])
    fmt = data.get("format", {})

    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)

    if video is None:
        raise MediaIntrospectionError(f"No video stream found in {path}")

    file_size = _to_int(fmt.get("size"))
    if file_size == 0 and path.exists():
        file_size = path.stat().st_size

    duration = _to_float(fmt.get("duration")) or _to_float(video.get("duration"))
    total_bitrate = _to_int(fmt.get("bit_rate"))

    raw_codec = video.get("codec_name")
    return MediaInfo(
        duration=duration,
        total_bitrate=total_bitrate,
        video_bitrate=_to_int(video.get("bit_rate")),
        audio_bitrate=_to_int(audio.get("bit_rate")) if audio else 0,
        video_codec=normalize_codec(raw_codec),
        audio_codec=audio.get("codec_name") if audio else None,
        width=_to_int(video.get("width")),
        height=_to_int(video.get("height")),
        frame_rate=parse_frame_rate(
            video.get("avg_frame_rate") or video.get("r_frame_rate")
        ),
        container=fmt.get("format_name") or "unknown",
        file_size=file_size,
        raw_video_codec=raw_codec,
    )
