"""Quality presets for transcoded outputs."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType


@dataclass(frozen=True)
class QualityPreset:
    """Encoding parameters for one output quality.

    Attributes:
        name: Quality label ("720p", "1080p_vp9", ...).
        width: Output frame width.
        height: Output frame height.
        video_bitrate_kbps: Target and maximum video bitrate.
        audio_bitrate_kbps: Audio bitrate.
        video_codec: "hevc" or "libvpx-vp9".
        audio_codec: ffmpeg audio encoder.
        container: Output container, also the file extension.
        quality: Constant-quality value (nvenc cq / x265 and vp9 crf).
    """

    name: str
    width: int
    height: int
    video_bitrate_kbps: int
    audio_bitrate_kbps: int
    video_codec: str
    audio_codec: str
    container: str
    quality: int

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def extension(self) -> str:
        return f".{self.container}"

    @property
    def is_vp9(self) -> bool:
        return self.video_codec == "libvpx-vp9"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "resolution": self.resolution,
            "video_bitrate": f"{self.video_bitrate_kbps}k",
            "audio_bitrate": f"{self.audio_bitrate_kbps}k",
            "video_codec": self.video_codec,
            "audio_codec": self.audio_codec,
            "container": self.container,
            "quality": self.quality,
        }


QUALITY_PRESETS: MappingProxyType[str, QualityPreset] = MappingProxyType(
    {
        "1080p": QualityPreset("1080p", 1920, 1080, 1200, 96, "hevc", "aac", "mp4", 23),
        "720p": QualityPreset("720p", 1280, 720, 800, 80, "hevc", "aac", "mp4", 25),
        "480p": QualityPreset("480p", 854, 480, 600, 64, "hevc", "aac", "mp4", 27),
        "1080p_vp9": QualityPreset(
            "1080p_vp9", 1920, 1080, 1000, 96, "libvpx-vp9", "libopus", "webm", 30
        ),
        "720p_vp9": QualityPreset(
            "720p_vp9", 1280, 720, 700, 80, "libvpx-vp9", "libopus", "webm", 32
        ),
    }
)


def get_preset(quality: str) -> QualityPreset | None:
    return QUALITY_PRESETS.get(quality)
