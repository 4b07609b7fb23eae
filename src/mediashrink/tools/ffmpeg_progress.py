"""FFmpeg progress parsing utilities.

ffmpeg run with ``-progress pipe:1 -nostats`` writes ``key=value`` lines to
stdout, one block per report, each block ending in ``progress=continue`` or
``progress=end``. This module turns that stream into EncodeProgress values.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass
class EncodeProgress:
    """One parsed ffmpeg progress report."""

    frame: int | None = None
    fps: float | None = None
    bitrate: str | None = None
    total_size: int | None = None
    out_time_us: int | None = None  # Output time in microseconds
    speed: str | None = None
    progress: str | None = None  # "continue" or "end"

    @property
    def out_time_seconds(self) -> float | None:
        """Get output time in seconds."""
        if self.out_time_us is not None:
            return self.out_time_us / 1_000_000
        return None

    @property
    def is_final(self) -> bool:
        return self.progress == "end"

    @property
    def speed_factor(self) -> float | None:
        """Encoding speed as a float multiple of real time ("2.5x" -> 2.5)."""
        if not self.speed:
            return None
        try:
            return float(self.speed.rstrip("x"))
        except ValueError:
            return None

    def get_percent(self, duration_seconds: float | None) -> float:
        """Calculate progress percentage based on duration.

        Args:
            duration_seconds: Total duration of the input in seconds.

        Returns:
            Progress percentage (0.0 to 100.0), 100.0 for the final report,
            or 0.0 if unknown.
        """
        if self.is_final:
            return 100.0
        if duration_seconds is None or duration_seconds <= 0:
            return 0.0
        out_time = self.out_time_seconds
        if out_time is None:
            return 0.0
        return max(0.0, min(100.0, (out_time / duration_seconds) * 100))

    def to_metrics(self) -> dict[str, float | int | str | None]:
        """Normalized fields for progress events."""
        return {
            "frame": self.frame,
            "fps": self.fps,
            "speed": self.speed_factor,
            "bitrate": self.bitrate,
            "total_size": self.total_size,
            "out_time_seconds": self.out_time_seconds,
        }


_OUT_TIME_PATTERN = re.compile(r"^(\d+):(\d{2}):(\d{2})(?:\.(\d+))?$")


def _parse_out_time(value: str) -> int:
    """``HH:MM:SS.micro`` to microseconds."""
    match = _OUT_TIME_PATTERN.match(value)
    if not match:
        raise ValueError(f"bad out_time: {value!r}")
    hours, minutes, seconds, fraction = match.groups()
    whole = int(hours) * 3600 + int(minutes) * 60 + int(seconds)
    return whole * 1_000_000 + int((fraction or "")[:6].ljust(6, "0"))


# key -> (field, converter); out_time_ms also carries microseconds
_FIELDS: dict[str, tuple[str, Callable[[str], Any]]] = {
    "frame": ("frame", int),
    "fps": ("fps", float),
    "bitrate": ("bitrate", str),
    "total_size": ("total_size", int),
    "out_time_us": ("out_time_us", int),
    "out_time_ms": ("out_time_us", int),
    "out_time": ("out_time_us", _parse_out_time),
    "speed": ("speed", str),
    "progress": ("progress", str),
}


def parse_progress_line(line: str) -> dict[str, str | int | float | None]:
    """Parse one ``key=value`` line of ``-progress`` output.

    The three out_time keys all map to ``out_time_us``.

    Returns:
        ``{field: value}``, or an empty dict for unknown keys and for
        values that are empty, ``N/A`` or malformed.
    """
    key, sep, value = line.partition("=")
    key, value = key.strip(), value.strip()
    if not sep or key not in _FIELDS or value in ("", "N/A"):
        return {}
    field, convert = _FIELDS[key]
    try:
        return {field: convert(value)}
    except ValueError:
        return {}


def parse_progress_block(block: str) -> EncodeProgress:
    """Parse a complete FFmpeg progress block.

    Args:
        block: A block of progress output lines.

    Returns:
        Parsed EncodeProgress object.
    """
    result = EncodeProgress()
    for line in block.splitlines():
        for key, value in parse_progress_line(line).items():
            setattr(result, key, value)
    return result


class ProgressStreamParser:
    """Incrementally assemble progress blocks from a line stream.

    Example:
        parser = ProgressStreamParser()
        for line in process.stdout:
            report = parser.feed(line)
            if report is not None:
                handle(report)
    """

    def __init__(self) -> None:
        self._current = EncodeProgress()

    def feed(self, line: str) -> EncodeProgress | None:
        """Consume one line; return a finished report at block boundaries."""
        for key, value in parse_progress_line(line).items():
            setattr(self._current, key, value)
        if self._current.progress is None:
            return None
        report, self._current = self._current, EncodeProgress()
        return report
