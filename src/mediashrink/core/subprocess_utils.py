"""Short-lived tool calls (``ffprobe``, ``nvidia-smi``, ``ffmpeg -version``).

Encodes are long-running and cancellable, and go through
mediashrink.executor.runner instead.
"""

from __future__ import annotations

import logging
import subprocess  # nosec B404 - ffmpeg tools are external programs
import time
from pathlib import Path
from typing import Any, NamedTuple

logger = logging.getLogger(__name__)


class CommandResult(NamedTuple):
    stdout: str
    stderr: str
    returncode: int


def run_command(
    args: list[str | Path], timeout: int = 120, **kwargs: Any
) -> CommandResult:
    """Run a tool to completion and capture its text output.

    Undecodable bytes are replaced, since ffprobe echoes file names and
    metadata in whatever encoding the file used.

    Args:
        args: Executable and arguments; Path objects are accepted.
        timeout: Seconds before the child is killed.
        **kwargs: Passed through to ``subprocess.run``.

    Raises:
        FileNotFoundError: The executable does not exist.
        subprocess.TimeoutExpired: The tool ran past ``timeout``.
    """
    argv = [str(arg) for arg in args]
    tool = Path(argv[0]).name
    started = time.monotonic()
    try:
        completed = subprocess.run(  # nosec B603 - argv built by mediashrink
            argv,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            **kwargs,
        )
    except subprocess.TimeoutExpired:
        logger.warning("%s timed out after %ds", tool, timeout, extra={"tool": tool})
        raise

    logger.debug(
        "%s exited with %d",
        tool,
        completed.returncode,
        extra={"tool": tool, "elapsed_seconds": round(time.monotonic() - started, 3)},
    )
    return CommandResult(completed.stdout, completed.stderr, completed.returncode)
