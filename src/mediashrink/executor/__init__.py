"""Encoding: presets, ffmpeg command construction, process control, validation."""

from mediashrink.executor.cancellation import CancellationToken
from mediashrink.executor.commands import EncodingStrategy, build_ffmpeg_command
from mediashrink.executor.exceptions import (
    DataInflationError,
    EncoderProcessError,
    InsufficientCompressionError,
    IntegrityCheckError,
    OutputTooSmallError,
    OutputValidationError,
    TranscodeCancelledError,
    TranscodeError,
    UnknownPresetError,
)
from mediashrink.executor.presets import QUALITY_PRESETS, QualityPreset, get_preset
from mediashrink.executor.transcoder import TranscodeOutput, Transcoder

__all__ = [
    "QUALITY_PRESETS",
    "CancellationToken",
    "DataInflationError",
    "EncoderProcessError",
    "EncodingStrategy",
    "InsufficientCompressionError",
    "IntegrityCheckError",
    "OutputTooSmallError",
    "OutputValidationError",
    "QualityPreset",
    "TranscodeCancelledError",
    "TranscodeError",
    "TranscodeOutput",
    "Transcoder",
    "UnknownPresetError",
    "build_ffmpeg_command",
    "get_preset",
]
