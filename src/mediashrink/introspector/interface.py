"""Protocol for media introspection."""

from pathlib import Path
from typing import Protocol

from mediashrink.introspector.types import MediaInfo


class MediaIntrospectionError(Exception):
    """Raised when media file introspection fails."""


class MediaIntrospector(Protocol):
    """Protocol for media file introspection.

    The analyzer, transcoder and cleanup service depend on this protocol,
    not on ffprobe directly, so tests can substitute a fake.
    """

    def get_media_info(self, path: Path) -> MediaInfo:
        """Extract media properties from a file.

        Raises:
            MediaIntrospectionError: If the file cannot be introspected.
        """
        ...

    def verify_integrity(self, path: Path) -> bool:
        """Return True if the file probes cleanly with a video stream."""
        ...


class UnavailableIntrospector:
    """Stand-in used when ffprobe cannot be found.

    Every probe fails with the stored reason, so analysis reports
    PROBE_FAILED instead of the engine refusing to start.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason

    def get_media_info(self, path: Path) -> MediaInfo:
        raise MediaIntrospectionError(self.reason)

    def verify_integrity(self, path: Path) -> bool:
        raise MediaIntrospectionError(self.reason)
