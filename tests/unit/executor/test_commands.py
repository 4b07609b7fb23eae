"""Tests for presets and ffmpeg command construction."""

from pathlib import Path

import pytest

from mediashrink.config.models import TranscoderConfig
from mediashrink.executor.commands import (
    EncodingStrategy,
    build_ffmpeg_command,
    select_strategy,
)
from mediashrink.executor.presets import QUALITY_PRESETS, get_preset

FFMPEG = Path("/usr/bin/ffmpeg")
INPUT = Path("/media/movie.mkv")
OUTPUT = Path("/out/movie_720p.mp4")


def option(cmd: list[str], flag: str) -> str:
    return cmd[cmd.index(flag) + 1]


class TestPresets:
    """Tests for the quality preset table."""

    def test_hevc_presets(self) -> None:
        """HEVC presets target mp4 at decreasing bitrates."""
        assert get_preset("1080p").resolution == "1920x1080"
        assert get_preset("1080p").video_bitrate_kbps == 1200
        assert get_preset("720p").video_bitrate_kbps == 800
        assert get_preset("480p").resolution == "854x480"
        assert all(
            QUALITY_PRESETS[q].container == "mp4" for q in ("1080p", "720p", "480p")
        )

    def test_vp9_presets(self) -> None:
        """VP9 presets produce webm with opus audio."""
        preset = get_preset("720p_vp9")
        assert preset.is_vp9
        assert preset.extension == ".webm"
        assert preset.audio_codec == "libopus"

    def test_unknown(self) -> None:
        """Unknown qualities have no preset."""
        assert get_preset("8k") is None

    def test_to_dict(self) -> None:
        """Presets serialize with ffmpeg-style bitrates."""
        data = get_preset("720p").to_dict()
        assert data["video_bitrate"] == "800k"
        assert data["resolution"] == "1280x720"


class TestSelectStrategy:
    """Tests for select_strategy."""

    def test_hevc_prefers_gpu(self) -> None:
        """HEVC presets use the GPU when it is enabled."""
        assert select_strategy(get_preset("720p"), True) is EncodingStrategy.GPU
        assert select_strategy(get_preset("720p"), False) is EncodingStrategy.CPU

    def test_vp9_ignores_gpu(self) -> None:
        """VP9 presets always use libvpx."""
        assert select_strategy(get_preset("1080p_vp9"), True) is EncodingStrategy.VP9


class TestBuildFfmpegCommand:
    """Tests for build_ffmpeg_command."""

    def test_common_arguments(self) -> None:
        """Every command reads the input, reports progress and ends in the output."""
        cmd = build_ffmpeg_command(
            FFMPEG,
            INPUT,
            OUTPUT,
            get_preset("720p"),
            EncodingStrategy.CPU,
            TranscoderConfig(),
        )
        assert cmd[0] == str(FFMPEG)
        assert option(cmd, "-i") == str(INPUT)
        assert option(cmd, "-progress") == "pipe:1"
        assert "-nostats" in cmd
        assert option(cmd, "-vf") == "scale=1280:720"
        assert option(cmd, "-b:a") == "80k"
        assert option(cmd, "-movflags") == "+faststart"
        assert cmd[-1] == str(OUTPUT)

    def test_gpu_arguments(self) -> None:
        """GPU encodes use hevc_nvenc on the configured device."""
        config = TranscoderConfig(gpu_device=1, gpu_preset="p6")
        cmd = build_ffmpeg_command(
            FFMPEG, INPUT, OUTPUT, get_preset("1080p"), EncodingStrategy.GPU, config
        )
        assert option(cmd, "-c:v") == "hevc_nvenc"
        assert option(cmd, "-gpu") == "1"
        assert option(cmd, "-preset") == "p6"
        assert option(cmd, "-cq") == "23"
        assert option(cmd, "-b:v") == "1200k"
        assert option(cmd, "-bufsize") == "1800k"

    def test_cpu_arguments(self) -> None:
        """CPU encodes use libx265 with tuned parameters."""
        cmd = build_ffmpeg_command(
            FFMPEG,
            INPUT,
            OUTPUT,
            get_preset("480p"),
            EncodingStrategy.CPU,
            TranscoderConfig(cpu_preset="slow"),
        )
        assert option(cmd, "-c:v") == "libx265"
        assert option(cmd, "-preset") == "slow"
        assert "-x265-params" in cmd
        assert "-gpu" not in cmd

    def test_vp9_arguments(self) -> None:
        """VP9 encodes use row multithreading and no faststart."""
        output = Path("/out/movie_720p_vp9.webm")
        cmd = build_ffmpeg_command(
            FFMPEG,
            INPUT,
            output,
            get_preset("720p_vp9"),
            EncodingStrategy.VP9,
            TranscoderConfig(vp9_speed=2),
        )
        assert option(cmd, "-c:v") == "libvpx-vp9"
        assert option(cmd, "-cpu-used") == "2"
        assert option(cmd, "-row-mt") == "1"
        assert option(cmd, "-c:a") == "libopus"
        assert "-movflags" not in cmd
        assert cmd[-1] == str(output)

    @pytest.mark.parametrize("strategy", list(EncodingStrategy))
    def test_all_arguments_are_strings(self, strategy: EncodingStrategy) -> None:
        """The command can be handed to subprocess unchanged."""
        cmd = build_ffmpeg_command(
            FFMPEG, INPUT, OUTPUT, get_preset("720p"), strategy, TranscoderConfig()
        )
        assert all(isinstance(arg, str) for arg in cmd)
