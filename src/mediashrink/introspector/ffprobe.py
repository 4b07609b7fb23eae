"""MediaIntrospector backed by ``ffprobe -print_format json``."""

from __future__ import annotations

import json
import logging
import subprocess  # nosec B404 - only for TimeoutExpired
from pathlib import Path

from mediashrink.core.subprocess_utils import run_command
from mediashrink.introspector.interface import MediaIntrospectionError
from mediashrink.introspector.parsers import parse_ffprobe_output
from mediashrink.introspector.types import MediaInfo
from mediashrink.tools.detection import find_tool

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 60

_PROBE_ARGS = ("-v", "error", "-print_format", "json", "-show_streams", "-show_format")


class FFprobeIntrospector:
    """Probes files with ffprobe.

    Args:
        ffprobe_path: Explicit ffprobe binary; looked up on PATH when None.

    Raises:
        MediaIntrospectionError: ffprobe cannot be found.
    """

    def __init__(self, ffprobe_path: Path | None = None) -> None:
        found = find_tool("ffprobe", ffprobe_path)
        if found is None:
            raise MediaIntrospectionError(
                "ffprobe is not installed or not in PATH; install ffmpeg or set "
                "MEDIASHRINK_FFPROBE_PATH (or tools.ffprobe in config.toml)"
            )
        self._ffprobe_path = found

    @property
    def ffprobe_path(self) -> Path:
        return self._ffprobe_path

    def _probe(self, path: Path) -> dict:
        if not path.exists():
            raise MediaIntrospectionError(f"File not found: {path}")
        try:
            result = run_command(
                [self._ffprobe_path, *_PROBE_ARGS, path], timeout=PROBE_TIMEOUT
            )
        except subprocess.TimeoutExpired as e:
            raise MediaIntrospectionError(
                f"ffprobe timed out for {path} after {e.timeout}s"
            ) from e
        except OSError as e:
            raise MediaIntrospectionError(f"Could not run ffprobe: {e}") from e

        if result.returncode != 0:
            detail = result.stderr.strip() or f"exit code {result.returncode}"
            raise MediaIntrospectionError(f"ffprobe failed for {path}: {detail}")
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise MediaIntrospectionError(
                f"Invalid ffprobe output for {path}: {e}"
            ) from e
        if "streams" not in data or "format" not in data:
            raise MediaIntrospectionError(
                f"Incomplete ffprobe output for {path} (corrupted or not media)"
            )
        return data

    def get_media_info(self, path: Path) -> MediaInfo:
        """Probe ``path``.

        Raises:
            MediaIntrospectionError: Missing file, ffprobe failure or timeout,
                or output without streams and format.
        """
        return parse_ffprobe_output(path, self._probe(path))

    def verify_integrity(self, path: Path) -> bool:
        """True when the file probes and has a video stream with a size."""
        try:
            info = self.get_media_info(path)
        except MediaIntrospectionError as e:
            logger.info("Integrity check failed for %s: %s", path.name, e)
            return False
        return info.width > 0 and info.height > 0
