"""Media metadata extracted by the introspector."""

from __future__ import annotations

from dataclasses import asdict, dataclass

from mediashrink.core.formatting import get_resolution_label


@dataclass(frozen=True)
class MediaInfo:
    """Probed properties of a media file.

    Bitrates are in bits per second; 0 means "not reported by the probe".
    ``video_codec`` is canonical (see mediashrink.core.codecs).
    """

    duration: float
    total_bitrate: int
    video_bitrate: int
    audio_bitrate: int
    video_codec: str
    audio_codec: str | None
    width: int
    height: int
    frame_rate: float | None
    container: str
    file_size: int
    raw_video_codec: str | None = None

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def resolution_label(self) -> str:
        return get_resolution_label(self.width, self.height)

    @property
    def has_bitrate_estimate_inputs(self) -> bool:
        """True if duration and bitrate are both known."""
        return self.duration > 0 and self.total_bitrate > 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["resolution"] = self.resolution
        return data
