"""Transcoder: runs ffmpeg encodes for quality presets and validates outputs."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from mediashrink.config.models import TranscoderConfig
from mediashrink.core.file_utils import get_file_size
from mediashrink.core.formatting import format_duration
from mediashrink.executor.cancellation import CancellationToken
from mediashrink.executor.commands import (
    EncodingStrategy,
    build_ffmpeg_command,
    select_strategy,
)
from mediashrink.executor.exceptions import (
    EncoderProcessError,
    TranscodeCancelledError,
    UnknownPresetError,
)
from mediashrink.executor.presets import QUALITY_PRESETS, QualityPreset
from mediashrink.executor.runner import run_encode
from mediashrink.executor.validation import ValidatedOutput, validate_output
from mediashrink.introspector.interface import MediaIntrospector
from mediashrink.tools.detection import (
    get_system_info,
    probe_hw_encoder,
    require_tool,
)
from mediashrink.tools.ffmpeg_progress import EncodeProgress

logger = logging.getLogger(__name__)

# stderr fragments (lower-case) meaning the GPU encoder could not start
HARDWARE_FALLBACK_PATTERNS = (
    "cannot load libcuda",
    "cannot load libnvidia-encode",
    "no capable devices found",
    "openencodesessionex failed",
    "cuinit",
    "cuda_error",
    "driver does not support the required nvenc api",
    "unknown encoder 'hevc_nvenc'",
    "error while opening encoder",
)

ProgressCallback = Callable[[float, EncodeProgress], None]


def is_hardware_failure(stderr: str) -> bool:
    """True if ffmpeg stderr shows a hardware encoder initialisation failure."""
    lowered = stderr.lower()
    return any(pattern in lowered for pattern in HARDWARE_FALLBACK_PATTERNS)


@dataclass(frozen=True)
class TranscodeOutput:
    """A validated encode.

    Attributes:
        output_path: Final output file (extension from the preset container).
        quality: Quality label.
        original_size: Source size in bytes.
        output_size: Output size in bytes.
        space_saved: original_size - output_size.
        compression_ratio: Saved percentage of the original.
        processing_time_ms: Encode plus validation wall time.
        strategy: Encoder family actually used.
    """

    output_path: Path
    quality: str
    original_size: int
    output_size: int
    space_saved: int
    compression_ratio: float
    processing_time_ms: int
    strategy: EncodingStrategy


@dataclass(frozen=True)
class _EncodeRequest:
    input_path: Path
    output_path: Path
    preset: QualityPreset
    job_id: str | None
    token: CancellationToken
    on_progress: ProgressCallback | None
    duration: float | None


class Transcoder:
    """Encodes files to quality presets with ffmpeg.

    Thread-safe: encodes for different jobs may run concurrently. Each
    running encode is registered under its job id so it can be cancelled.
    """

    def __init__(
        self,
        config: TranscoderConfig,
        introspector: MediaIntrospector | None = None,
        ffmpeg_path: Path | None = None,
        ffprobe_path: Path | None = None,
    ) -> None:
        self.config = config
        self._introspector = introspector
        self._configured_ffmpeg = ffmpeg_path
        self._configured_ffprobe = ffprobe_path
        self._ffmpeg_path: Path | None = None

        self._lock = threading.Lock()
        self._active: dict[str, CancellationToken] = {}
        self._gpu_disabled = not config.enable_gpu
        self._gpu_available: bool | None = None

        self._total_jobs = 0
        self._successful_jobs = 0
        self._failed_jobs = 0
        self._total_processing_ms = 0

    @property
    def ffmpeg_path(self) -> Path:
        """Path to ffmpeg, resolved on first use.

        Raises:
            ToolNotFoundError: If ffmpeg is not available.
        """
        if self._ffmpeg_path is None:
            self._ffmpeg_path = require_tool("ffmpeg", self._configured_ffmpeg)
        return self._ffmpeg_path

    @property
    def gpu_enabled(self) -> bool:
        return not self._gpu_disabled

    @property
    def active_jobs(self) -> list[str]:
        with self._lock:
            return list(self._active)

    def update_config(self, config: TranscoderConfig) -> None:
        """Use ``config`` for subsequent encodes; running encodes are unaffected.

        The cached GPU check is discarded so the next encode repeats it.
        """
        with self._lock:
            self.config = config
            self._gpu_disabled = not config.enable_gpu
            self._gpu_available = None

    def disable_gpu(self, reason: str) -> None:
        if not self._gpu_disabled:
            logger.warning("Disabling GPU encoding: %s", reason)
        self._gpu_disabled = True

    def test_accelerator_availability(self, refresh: bool = False) -> bool:
        """Check whether hevc_nvenc can encode on the configured device.

        The result is cached; a failed probe disables GPU encoding.
        """
        if not self.config.enable_gpu:
            return False
        if self._gpu_available is None or refresh:
            self._gpu_available = probe_hw_encoder(
                self.ffmpeg_path, "hevc_nvenc", self.config.gpu_device
            )
            if self._gpu_available:
                logger.info(
                    "GPU encoding available on device %d", self.config.gpu_device
                )
                self._gpu_disabled = False
            else:
                self.disable_gpu("hevc_nvenc probe failed")
        return self._gpu_available

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode(
        self,
        input_path: Path,
        output_path: Path,
        quality: str,
        *,
        job_id: str | None = None,
        cancel_token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
        duration: float | None = None,
    ) -> TranscodeOutput:
        """Encode ``input_path`` at ``quality`` and validate the result.

        Args:
            input_path: Source file.
            output_path: Requested output; its extension is replaced with the
                preset container's.
            quality: Quality preset name.
            job_id: Registers the encode for cancel(job_id).
            cancel_token: Cancels the encode; one is created if omitted.
            on_progress: Called with (percent, report) for each progress block.
            duration: Source duration in seconds, for progress percentages.

        Returns:
            TranscodeOutput for the validated file.

        Raises:
            UnknownPresetError: If ``quality`` has no preset.
            TranscodeCancelledError: If cancelled.
            EncoderProcessError: If ffmpeg fails or times out.
            OutputValidationError: If the output fails validation.
        """
        preset = QUALITY_PRESETS.get(quality)
        if preset is None:
            raise UnknownPresetError(quality)

        output_path = output_path.with_suffix(preset.extension)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        original_size = get_file_size(input_path) or 0

        token = cancel_token or CancellationToken()
        key = job_id or uuid.uuid4().hex
        with self._lock:
            self._active[key] = token

        start = time.monotonic()
        try:
            strategy = self._encode_with_fallback(
                _EncodeRequest(
                    input_path,
                    output_path,
                    preset,
                    job_id,
                    token,
                    on_progress,
                    duration,
                )
            )
            validated = self.validate(output_path, original_size, quality)
        except TranscodeCancelledError:
            self._remove_partial(output_path)
            raise
        except Exception:
            self._remove_partial(output_path)
            self._record_stats(False, start)
            raise
        finally:
            with self._lock:
                self._active.pop(key, None)

        elapsed_ms = self._record_stats(True, start)
        logger.info(
            "Encoded %s at %s: %.1f%% smaller",
            input_path.name,
            quality,
            validated.compression_ratio,
            extra={"strategy": strategy.value, "processing_time_ms": elapsed_ms},
        )
        return TranscodeOutput(
            output_path=output_path,
            quality=quality,
            original_size=original_size,
            output_size=validated.output_size,
            space_saved=validated.space_saved,
            compression_ratio=validated.compression_ratio,
            processing_time_ms=elapsed_ms,
            strategy=strategy,
        )

    def _encode_with_fallback(self, request: _EncodeRequest) -> EncodingStrategy:
        strategy = select_strategy(request.preset, self.gpu_enabled)
        try:
            self._run_strategy(request, strategy)
            return strategy
        except EncoderProcessError as e:
            if strategy != EncodingStrategy.GPU or not is_hardware_failure(
                e.stderr_tail
            ):
                raise
            self.disable_gpu(
                f"hardware encoder failed for {request.input_path.name}"
            )

        logger.info(
            "Retrying %s at %s on CPU", request.input_path.name, request.preset.name
        )
        self._remove_partial(request.output_path)
        self._run_strategy(request, EncodingStrategy.CPU)
        return EncodingStrategy.CPU

    def _run_strategy(
        self, request: _EncodeRequest, strategy: EncodingStrategy
    ) -> None:
        preset = request.preset
        cmd = build_ffmpeg_command(
            self.ffmpeg_path,
            request.input_path,
            request.output_path,
            preset,
            strategy,
            self.config,
        )
        logger.debug("Running: %s", " ".join(cmd))

        def report(progress: EncodeProgress) -> None:
            if request.on_progress is not None:
                request.on_progress(progress.get_percent(request.duration), progress)

        try:
            outcome = run_encode(
                cmd,
                cancel_token=request.token,
                on_progress=report,
                timeout=self.config.encode_timeout_seconds,
                kill_grace_seconds=self.config.kill_grace_seconds,
            )
        except OSError as e:
            raise EncoderProcessError(
                f"Could not start ffmpeg: {e}", quality=preset.name
            ) from e

        if outcome.cancelled:
            raise TranscodeCancelledError(request.job_id, quality=preset.name)
        if outcome.timed_out:
            raise EncoderProcessError(
                f"ffmpeg timed out after {outcome.duration:.0f}s",
                quality=preset.name,
                stderr_tail=outcome.stderr_tail,
            )
        if outcome.return_code != 0:
            last_line = (
                outcome.stderr_tail.splitlines()[-1] if outcome.stderr_tail else ""
            )
            raise EncoderProcessError(
                f"ffmpeg exited with code {outcome.return_code}: {last_line}",
                quality=preset.name,
                return_code=outcome.return_code,
                stderr_tail=outcome.stderr_tail,
            )

    def validate(
        self, output_path: Path, original_size: int, quality: str | None = None
    ) -> ValidatedOutput:
        """Validate an encoded output; see executor.validation.validate_output."""
        integrity_check = (
            self._introspector.verify_integrity if self._introspector else None
        )
        return validate_output(
            output_path, original_size, self.config, integrity_check, quality
        )

    @staticmethod
    def _remove_partial(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove partial output %s: %s", path, e)

    # ------------------------------------------------------------------
    # Control and reporting
    # ------------------------------------------------------------------

    def cancel(self, job_id: str) -> bool:
        """Cancel a running encode. Returns False if none is registered."""
        with self._lock:
            token = self._active.get(job_id)
        if token is None:
            return False
        token.cancel(job_id)
        logger.info("Cancelled encode for job %s", job_id)
        return True

    def shutdown(self) -> None:
        """Terminate all running encodes."""
        with self._lock:
            tokens = list(self._active.items())
        for job_id, token in tokens:
            token.cancel(job_id)
        if tokens:
            logger.info("Terminating %d active encodes", len(tokens))

    def _record_stats(self, success: bool, start: float) -> int:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        with self._lock:
            self._total_jobs += 1
            self._total_processing_ms += elapsed_ms
            if success:
                self._successful_jobs += 1
            else:
                self._failed_jobs += 1
        return elapsed_ms

    def get_performance_stats(self) -> dict:
        with self._lock:
            total = self._total_jobs
            average_ms = self._total_processing_ms / total if total else 0.0
            return {
                "total_jobs": total,
                "successful_jobs": self._successful_jobs,
                "failed_jobs": self._failed_jobs,
                "total_processing_time_ms": self._total_processing_ms,
                "average_processing_time_ms": round(average_ms),
                "average_processing_time": format_duration(average_ms / 1000),
                "success_rate": (
                    round(self._successful_jobs / total * 100, 1) if total else 0.0
                ),
            }

    @staticmethod
    def get_quality_presets() -> dict[str, dict]:
        return {name: preset.to_dict() for name, preset in QUALITY_PRESETS.items()}

    def get_system_info(self) -> dict:
        info = get_system_info(self._configured_ffmpeg, self._configured_ffprobe)
        info["gpu_enabled"] = self.gpu_enabled
        info["gpu_available"] = self._gpu_available
        info["gpu_device"] = self.config.gpu_device
        return info
