"""External tool discovery and capability probing.

Finds ffmpeg/ffprobe (configured path first, then PATH), probes hardware
encoders by actually encoding a synthetic frame, and collects the system
information reported by ``mediashrink doctor``.
"""

from __future__ import annotations

import logging
import os
import platform
import re
import shutil
import subprocess  # nosec B404 - subprocess is required for tool probing
from pathlib import Path

from mediashrink.core.subprocess_utils import run_command

logger = logging.getLogger(__name__)

DETECTION_TIMEOUT = 10

_FFMPEG_VERSION_PATTERN = re.compile(r"ffmpeg version (\S+)")

INSTALL_HINTS: dict[str, str] = {
    "ffmpeg": "Install ffmpeg (e.g. 'apt install ffmpeg' or 'brew install ffmpeg') "
    "or set MEDIASHRINK_FFMPEG_PATH.",
    "ffprobe": "ffprobe ships with ffmpeg; install ffmpeg "
    "or set MEDIASHRINK_FFPROBE_PATH.",
}


class ToolNotFoundError(RuntimeError):
    """Raised when a required external tool cannot be located."""

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        hint = INSTALL_HINTS.get(tool_name, "")
        super().__init__(f"Required tool not available: {tool_name}. {hint}".strip())


def find_tool(name: str, configured_path: Path | None = None) -> Path | None:
    """Find a tool executable.

    Args:
        name: Tool name (e.g., "ffmpeg").
        configured_path: Optional configured path override.

    Returns:
        Path to tool executable, or None if not found.
    """
    if configured_path:
        if configured_path.is_file():
            return configured_path
        logger.warning(
            "Configured path for %s is not a file: %s", name, configured_path
        )

    which_result = shutil.which(name)
    if which_result:
        return Path(which_result)

    return None


def require_tool(name: str, configured_path: Path | None = None) -> Path:
    """Like find_tool(), but raise ToolNotFoundError when missing."""
    path = find_tool(name, configured_path)
    if path is None:
        raise ToolNotFoundError(name)
    return path


def probe_hw_encoder(ffmpeg_path: Path, encoder: str, device: int = 0) -> bool:
    """Probe a hardware encoder for actual usability.

    An encoder listed by ``ffmpeg -encoders`` may still fail at runtime
    (no GPU, driver mismatch), so this encodes one synthetic frame.

    Args:
        ffmpeg_path: Path to ffmpeg executable.
        encoder: Encoder name to test (e.g., "hevc_nvenc").
        device: GPU index passed to nvenc encoders.

    Returns:
        True if encoder is usable, False otherwise.
    """
    null_device = "NUL" if platform.system() == "Windows" else "/dev/null"
    cmd = [
        str(ffmpeg_path),
        "-hide_banner",
        "-f",
        "lavfi",
        "-i",
        "nullsrc=s=256x256:d=0.1",
        "-frames:v",
        "1",
        "-c:v",
        encoder,
    ]
    if encoder.endswith("_nvenc"):
        cmd += ["-gpu", str(device)]
    cmd += ["-f", "null", "-y", null_device]

    try:
        _stdout, stderr, returncode = run_command(cmd, timeout=DETECTION_TIMEOUT)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.info("Hardware encoder probe for %s failed: %s", encoder, e)
        return False

    if returncode != 0:
        logger.info(
            "Hardware encoder %s unavailable (exit %d): %s",
            encoder,
            returncode,
            stderr.strip().splitlines()[-1] if stderr.strip() else "",
        )
        return False
    return True


def get_ffmpeg_version(ffmpeg_path: Path | None) -> str | None:
    """Return the ffmpeg version string, or None if it cannot be determined."""
    if ffmpeg_path is None:
        return None
    try:
        stdout, _stderr, returncode = run_command(
            [ffmpeg_path, "-version"], timeout=DETECTION_TIMEOUT
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if returncode != 0:
        return None
    match = _FFMPEG_VERSION_PATTERN.search(stdout)
    if match:
        return match.group(1)
    return stdout.splitlines()[0] if stdout else None


def list_nvidia_gpus() -> list[dict[str, str]]:
    """List NVIDIA GPUs via nvidia-smi. Empty when unavailable."""
    nvidia_smi = shutil.which("nvidia-smi")
    if nvidia_smi is None:
        return []
    try:
        stdout, _stderr, returncode = run_command(
            [
                nvidia_smi,
                "--query-gpu=index,name,memory.total,driver_version",
                "--format=csv,noheader",
            ],
            timeout=DETECTION_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("nvidia-smi failed: %s", e)
        return []
    if returncode != 0:
        return []

    gpus = []
    for line in stdout.splitlines():
        parts = [part.strip() for part in line.split(",")]
        if len(parts) >= 4:
            gpus.append(
                {
                    "index": parts[0],
                    "name": parts[1],
                    "memory": parts[2],
                    "driver": parts[3],
                }
            )
    return gpus


def get_system_info(
    ffmpeg_path: Path | None = None, ffprobe_path: Path | None = None
) -> dict:
    """Collect CPU, GPU and tool information.

    Returns:
        Dict with cpu_count, platform, gpus, ffmpeg/ffprobe paths and the
        ffmpeg version.
    """
    ffmpeg = find_tool("ffmpeg", ffmpeg_path)
    ffprobe = find_tool("ffprobe", ffprobe_path)
    return {
        "cpu_count": os.cpu_count() or 1,
        "platform": platform.platform(),
        "gpus": list_nvidia_gpus(),
        "ffmpeg_path": str(ffmpeg) if ffmpeg else None,
        "ffprobe_path": str(ffprobe) if ffprobe else None,
        "ffmpeg_version": get_ffmpeg_version(ffmpeg),
    }
