"""Post-encode output validation."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from mediashrink.config.models import TranscoderConfig
from mediashrink.core.file_utils import get_file_size
from mediashrink.core.formatting import format_file_size
from mediashrink.db.types import compute_compression_ratio
from mediashrink.executor.exceptions import (
    DataInflationError,
    InsufficientCompressionError,
    IntegrityCheckError,
    OutputTooSmallError,
    OutputValidationError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidatedOutput:
    output_size: int
    space_saved: int
    compression_ratio: float


def _check_output(
    output_path: Path,
    original_size: int,
    config: TranscoderConfig,
    integrity_check: Callable[[Path], bool] | None,
    quality: str | None,
) -> ValidatedOutput:
    output_size = get_file_size(output_path)
    if output_size is None or output_size < config.min_output_bytes:
        raise OutputTooSmallError(
            f"Output file too small: {format_file_size(output_size or 0)}",
            output_path,
            quality=quality,
        )

    space_saved = original_size - output_size
    if config.prevent_data_inflation and output_size >= original_size:
        growth = output_size - original_size
        percent = growth / original_size * 100 if original_size else 0.0
        raise DataInflationError(
            f"Data inflation detected: +{format_file_size(growth)} "
            f"(+{percent:.1f}%)",
            output_path,
            quality=quality,
        )

    ratio = compute_compression_ratio(original_size, output_size)
    if ratio < config.min_compression_percent:
        raise InsufficientCompressionError(
            f"Insufficient compression: {ratio:.1f}% "
            f"(minimum: {config.min_compression_percent:g}%)",
            output_path,
            quality=quality,
        )

    if (
        config.verify_integrity
        and integrity_check is not None
        and not integrity_check(output_path)
    ):
        raise IntegrityCheckError(
            f"File integrity check failed: {output_path.name}",
            output_path,
            quality=quality,
        )

    return ValidatedOutput(output_size, space_saved, ratio)


def validate_output(
    output_path: Path,
    original_size: int,
    config: TranscoderConfig,
    integrity_check: Callable[[Path], bool] | None = None,
    quality: str | None = None,
) -> ValidatedOutput:
    """Validate an encoded file against its source.

    Checks, in order: minimum size, data inflation (when enabled), minimum
    compression, and an integrity re-probe. A failing output is deleted.

    Args:
        output_path: Encoded file.
        original_size: Size of the source in bytes.
        config: Transcoder thresholds.
        integrity_check: Returns False if the file is not a readable video.
        quality: Quality label, attached to raised errors.

    Returns:
        ValidatedOutput with size and compression figures.

    Raises:
        OutputValidationError: One subclass per failed check.
    """
    try:
        return _check_output(
            output_path, original_size, config, integrity_check, quality
        )
    except OutputValidationError as e:
        logger.warning(
            "Output validation failed (%s) for %s: %s", e.check, output_path, e
        )
        try:
            output_path.unlink(missing_ok=True)
        except OSError as unlink_error:
            logger.warning(
                "Could not delete invalid output %s: %s", output_path, unlink_error
            )
        raise
