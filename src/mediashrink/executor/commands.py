"""FFmpeg command construction for each encoding strategy."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from mediashrink.config.models import TranscoderConfig
from mediashrink.executor.presets import QualityPreset

# Tuned for quality-per-bit over speed
X265_PARAMS = (
    "bframes=8:b-adapt=2:ref=6:me=3:subme=7:merange=57:rd=6:"
    "psy-rd=2.0:aq-mode=3:aq-strength=1.0"
)


class EncodingStrategy(Enum):
    """Which video encoder family an encode uses."""

    GPU = "gpu"  # hevc_nvenc
    VP9 = "vp9"  # libvpx-vp9
    CPU = "cpu"  # libx265


def select_strategy(preset: QualityPreset, gpu_enabled: bool) -> EncodingStrategy:
    """Pick the strategy for a preset given current accelerator state."""
    if preset.is_vp9:
        return EncodingStrategy.VP9
    return EncodingStrategy.GPU if gpu_enabled else EncodingStrategy.CPU


def _rate_args(preset: QualityPreset, bufsize_factor: float) -> list[str]:
    bitrate = f"{preset.video_bitrate_kbps}k"
    bufsize = f"{int(preset.video_bitrate_kbps * bufsize_factor)}k"
    return ["-b:v", bitrate, "-maxrate", bitrate, "-bufsize", bufsize]


def build_gpu_video_args(
    preset: QualityPreset, config: TranscoderConfig
) -> list[str]:
    """hevc_nvenc arguments: VBR with constant-quality target and AQ."""
    return [
        "-c:v", "hevc_nvenc",
        "-preset", config.gpu_preset,
        "-profile:v", "main",
        "-rc", "vbr",
        "-cq", str(preset.quality),
        "-spatial_aq", "1",
        "-temporal_aq", "1",
        "-rc-lookahead", "20",
        "-tag:v", "hvc1",
        "-gpu", str(config.gpu_device),
        *_rate_args(preset, 1.5),
    ]  # fmt: skip


def build_vp9_video_args(
    preset: QualityPreset, config: TranscoderConfig
) -> list[str]:
    """libvpx-vp9 arguments: good deadline, row multithreading, tiling."""
    return [
        "-c:v", "libvpx-vp9",
        "-deadline", "good",
        "-cpu-used", str(config.vp9_speed),
        "-row-mt", "1",
        "-tile-columns", "2",
        "-frame-parallel", "1",
        "-threads", "0",
        "-crf", str(preset.quality),
        *_rate_args(preset, 2),
    ]  # fmt: skip


def build_cpu_video_args(
    preset: QualityPreset, config: TranscoderConfig
) -> list[str]:
    """libx265 arguments."""
    return [
        "-c:v", "libx265",
        "-preset", config.cpu_preset,
        "-crf", str(preset.quality),
        "-x265-params", X265_PARAMS,
        "-tag:v", "hvc1",
        *_rate_args(preset, 2),
    ]  # fmt: skip


_VIDEO_ARG_BUILDERS = {
    EncodingStrategy.GPU: build_gpu_video_args,
    EncodingStrategy.VP9: build_vp9_video_args,
    EncodingStrategy.CPU: build_cpu_video_args,
}


def build_ffmpeg_command(
    ffmpeg_path: Path,
    input_path: Path,
    output_path: Path,
    preset: QualityPreset,
    strategy: EncodingStrategy,
    config: TranscoderConfig,
) -> list[str]:
    """Build the full ffmpeg argument list for one encode.

    Progress is written to stdout in ``key=value`` blocks
    (``-progress pipe:1 -nostats``); stderr carries only errors.

    Args:
        ffmpeg_path: ffmpeg executable.
        input_path: Source file.
        output_path: Destination file (overwritten).
        preset: Quality preset.
        strategy: Video encoder family.
        config: Transcoder configuration.

    Returns:
        Argument list suitable for subprocess.
    """
    cmd = [
        str(ffmpeg_path),
        "-hide_banner",
        "-nostdin",
        "-y",
        "-loglevel", "error",
        "-progress", "pipe:1",
        "-nostats",
        "-i", str(input_path),
        "-map", "0:v:0",
        "-map", "0:a:0?",
    ]  # fmt: skip
    cmd.extend(_VIDEO_ARG_BUILDERS[strategy](preset, config))
    cmd.extend(["-vf", f"scale={preset.width}:{preset.height}"])
    cmd.extend(
        ["-c:a", preset.audio_codec, "-b:a", f"{preset.audio_bitrate_kbps}k"]
    )
    if preset.container == "mp4":
        cmd.extend(["-movflags", "+faststart"])
    cmd.append(str(output_path))
    return cmd
