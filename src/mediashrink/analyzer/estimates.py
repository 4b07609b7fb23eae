"""Output size estimation.

Bitrate-based estimates use the quality's target bitrate times the duration,
plus container overhead. When the probe did not report duration or bitrate
the configured heuristic savings ratios are used instead; those are rough
per-codec guesses, not measurements.
"""

from __future__ import annotations

from dataclasses import dataclass

from mediashrink.analyzer.types import EstimateMethod
from mediashrink.config.models import AnalyzerConfig
from mediashrink.introspector.types import MediaInfo


@dataclass(frozen=True)
class SizeEstimate:
    estimated_size: int
    method: EstimateMethod
    savings_ratio: float | None = None


def heuristic_savings_ratio(codec: str, quality: str, config: AnalyzerConfig) -> float:
    """Return the heuristic savings fraction for a source codec and quality.

    Args:
        codec: Canonical source codec.
        quality: Target quality label.
        config: Analyzer configuration holding the ratio tables.

    Returns:
        Fraction of the original size expected to be saved, capped at
        ``config.heuristic_max_ratio``.
    """
    ratio = config.heuristic_ratios.get(codec, config.heuristic_default_ratio)
    ratio *= config.heuristic_quality_multipliers.get(quality, 1.0)
    return min(ratio, config.heuristic_max_ratio)


def estimate_output_size(
    media_info: MediaInfo,
    original_size: int,
    quality: str,
    config: AnalyzerConfig,
) -> SizeEstimate:
    """Estimate the transcoded size of a file at a quality level."""
    if media_info.has_bitrate_estimate_inputs:
        target = config.target_bitrates.get(quality, config.default_target_bitrate)
        size = target * media_info.duration / 8 * config.size_overhead
        return SizeEstimate(int(size), EstimateMethod.BITRATE)

    ratio = heuristic_savings_ratio(media_info.video_codec, quality, config)
    return SizeEstimate(
        int(original_size * (1 - ratio)), EstimateMethod.HEURISTIC, ratio
    )
