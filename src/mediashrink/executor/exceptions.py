"""Transcode failure types.

Encoder process failures are transient (a retry may succeed). Output
validation failures mean the produced file is unusable for this input and
are never retried. Cancellation is neither: it is terminal by request.
"""

from __future__ import annotations

from pathlib import Path


class TranscodeError(Exception):
    """Base class for transcoding failures."""

    retryable: bool = False

    def __init__(self, message: str, *, quality: str | None = None) -> None:
        super().__init__(message)
        self.quality = quality


class UnknownPresetError(TranscodeError):
    """Requested quality has no preset."""

    def __init__(self, quality: str) -> None:
        super().__init__(f"Unknown quality preset: {quality}", quality=quality)


class EncoderProcessError(TranscodeError):
    """ffmpeg exited non-zero, timed out, or could not be started."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        quality: str | None = None,
        return_code: int | None = None,
        stderr_tail: str = "",
    ) -> None:
        super().__init__(message, quality=quality)
        self.return_code = return_code
        self.stderr_tail = stderr_tail


class TranscodeCancelledError(TranscodeError):
    """The encode was cancelled through its cancellation token."""

    def __init__(self, job_id: str | None, quality: str | None = None) -> None:
        super().__init__(f"Transcoding cancelled for job {job_id}", quality=quality)
        self.job_id = job_id


class OutputValidationError(TranscodeError):
    """The encoded output failed a post-encode check.

    Attributes:
        check: Name of the failed check.
        output_path: The (already deleted) output file.
    """

    check = "output"

    def __init__(
        self, message: str, output_path: Path, *, quality: str | None = None
    ) -> None:
        super().__init__(message, quality=quality)
        self.output_path = output_path


class OutputTooSmallError(OutputValidationError):
    check = "size"


class DataInflationError(OutputValidationError):
    check = "inflation"


class InsufficientCompressionError(OutputValidationError):
    check = "compression"


class IntegrityCheckError(OutputValidationError):
    check = "integrity"
