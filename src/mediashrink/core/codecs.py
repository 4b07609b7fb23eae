"""Codec definitions and normalization.

ffprobe reports the same codec under several names (``avc``, ``h264``,
``avc1``...). Everything downstream of the introspector works with the
canonical names defined here.
"""

from __future__ import annotations

from dataclasses import dataclass

# =============================================================================
# Codec Aliases
# =============================================================================

# Canonical name -> every spelling ffprobe or container tags may use.
VIDEO_CODEC_ALIASES: dict[str, frozenset[str]] = {
    "h264": frozenset({"h264", "h.264", "avc", "avc1", "x264"}),
    "h265": frozenset({"h265", "h.265", "hevc", "x265", "hvc1", "hev1"}),
    "mpeg4": frozenset({"mpeg4", "mp4v", "xvid", "divx"}),
    "av1": frozenset({"av1", "av01", "libaom-av1", "libdav1d"}),
    "vp9": frozenset({"vp9", "vp09", "libvpx-vp9"}),
    "vp8": frozenset({"vp8", "vp08", "libvpx"}),
    "mpeg2video": frozenset({"mpeg2video", "mpeg2", "mp2v"}),
    "wmv": frozenset({"wmv", "wmv1", "wmv2", "wmv3", "vc1"}),
}

UNKNOWN_CODEC = "unknown"


def normalize_codec(codec: str | None) -> str:
    """Normalize a video codec name to its canonical form.

    Args:
        codec: Codec name as reported by ffprobe (any case).

    Returns:
        Canonical codec name, the lowercased input if it is not a known
        alias, or "unknown" for empty input.
    """
    if not codec:
        return UNKNOWN_CODEC
    normalized = codec.casefold().strip()
    if not normalized:
        return UNKNOWN_CODEC

    for canonical, variants in VIDEO_CODEC_ALIASES.items():
        if normalized in variants:
            return canonical

    return normalized


# =============================================================================
# Codec Efficiency
# =============================================================================


@dataclass(frozen=True)
class CodecEfficiency:
    """How well a codec compresses relative to modern encoders.

    Attributes:
        codec: Canonical codec name.
        efficient: True if re-encoding is not worth it.
        score: Efficiency score from 0 (unknown) to 100.
        description: Short human-readable summary.
    """

    codec: str
    efficient: bool
    score: int
    description: str


CODEC_EFFICIENCY: dict[str, CodecEfficiency] = {
    "av1": CodecEfficiency("av1", True, 98, "Most efficient"),
    "h265": CodecEfficiency("h265", True, 95, "Highly efficient"),
    "vp9": CodecEfficiency("vp9", True, 90, "Very efficient"),
    "h264": CodecEfficiency("h264", False, 60, "Moderate efficiency"),
    "vp8": CodecEfficiency("vp8", False, 50, "Moderate efficiency"),
    "mpeg2video": CodecEfficiency("mpeg2video", False, 35, "Low efficiency"),
    "mpeg4": CodecEfficiency("mpeg4", False, 30, "Low efficiency"),
    "wmv": CodecEfficiency("wmv", False, 25, "Low efficiency"),
}


def get_codec_efficiency(codec: str | None) -> CodecEfficiency:
    """Look up the efficiency entry for a codec name or any of its aliases.

    Unknown codecs get a score of 0 and are never considered efficient.
    """
    canonical = normalize_codec(codec)
    entry = CODEC_EFFICIENCY.get(canonical)
    if entry is None:
        return CodecEfficiency(canonical, False, 0, "Unknown codec")
    return entry
