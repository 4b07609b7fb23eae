"""Tests for output size estimation."""

import pytest

from mediashrink.analyzer.estimates import (
    estimate_output_size,
    heuristic_savings_ratio,
)
from mediashrink.analyzer.types import EstimateMethod
from mediashrink.config.models import AnalyzerConfig


class TestEstimateOutputSize:
    """Tests for estimate_output_size."""

    def test_bitrate_estimate(self, media_info_factory) -> None:
        """Target bitrate times duration plus 10% container overhead."""
        info = media_info_factory(duration=3600.0, total_bitrate=2_666_666)
        estimate = estimate_output_size(info, 1_200_000_000, "720p", AnalyzerConfig())
        assert estimate.method is EstimateMethod.BITRATE
        assert estimate.estimated_size == 396_000_000
        assert estimate.savings_ratio is None

    def test_unknown_quality_uses_default_bitrate(self, media_info_factory) -> None:
        """Qualities without a target use the default bitrate."""
        info = media_info_factory(duration=100.0)
        estimate = estimate_output_size(info, 10**9, "1080p_vp9", AnalyzerConfig())
        assert estimate.estimated_size == int(800_000 * 100 / 8 * 1.1)

    def test_heuristic_without_bitrate(self, media_info_factory) -> None:
        """Missing bitrate falls back to the per-codec savings ratio."""
        info = media_info_factory(total_bitrate=0)
        estimate = estimate_output_size(info, 1_000_000, "1080p", AnalyzerConfig())
        assert estimate.method is EstimateMethod.HEURISTIC
        assert estimate.savings_ratio == pytest.approx(0.6)
        assert estimate.estimated_size == 400_000

    def test_heuristic_without_duration(self, media_info_factory) -> None:
        """Missing duration also falls back to the heuristic."""
        info = media_info_factory(duration=0.0, video_codec="mpeg4")
        estimate = estimate_output_size(info, 1_000_000, "1080p", AnalyzerConfig())
        assert estimate.method is EstimateMethod.HEURISTIC
        assert estimate.estimated_size == 300_000


class TestHeuristicSavingsRatio:
    """Tests for heuristic_savings_ratio."""

    def test_quality_multiplier(self) -> None:
        """Lower qualities save more."""
        config = AnalyzerConfig()
        assert heuristic_savings_ratio("h264", "720p", config) == pytest.approx(0.66)
        assert heuristic_savings_ratio("h264", "480p", config) == pytest.approx(0.72)

    def test_default_ratio(self) -> None:
        """Codecs without a ratio use the default."""
        assert heuristic_savings_ratio("vp8", "1080p", AnalyzerConfig()) == 0.5

    def test_capped(self) -> None:
        """The ratio never exceeds heuristic_max_ratio."""
        config = AnalyzerConfig(
            heuristic_ratios={"wmv": 0.9},
            heuristic_quality_multipliers={"480p": 2.0},
        )
        assert heuristic_savings_ratio("wmv", "480p", config) == 0.95
