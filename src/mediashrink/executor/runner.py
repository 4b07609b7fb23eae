"""Run an ffmpeg encode with progress, cancellation and timeout handling."""

from __future__ import annotations

import logging
import queue
import subprocess  # nosec B404 - subprocess is required for FFmpeg invocation
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from mediashrink.executor.cancellation import CancellationToken
from mediashrink.tools.ffmpeg_progress import EncodeProgress, ProgressStreamParser

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.5
STDERR_TAIL_LINES = 50
READER_JOIN_TIMEOUT = 5.0


@dataclass
class EncodeOutcome:
    """How an encode process ended.

    Attributes:
        return_code: Process exit status (-1 if it never exited normally).
        stderr_tail: Last lines of stderr, for error messages.
        cancelled: The cancellation token fired.
        timed_out: The wall-clock limit was exceeded.
        duration: Seconds from start to exit.
    """

    return_code: int
    stderr_tail: str
    cancelled: bool = False
    timed_out: bool = False
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.return_code == 0 and not self.cancelled and not self.timed_out


def terminate_process(process: subprocess.Popen, grace_seconds: float) -> None:
    """Send SIGTERM, then SIGKILL if the process outlives the grace period."""
    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        logger.warning(
            "Process %d ignored SIGTERM for %.0fs, killing", process.pid, grace_seconds
        )
        process.kill()
        process.wait()


def run_encode(
    cmd: list[str],
    *,
    cancel_token: CancellationToken | None = None,
    on_progress: Callable[[EncodeProgress], None] | None = None,
    timeout: float | None = None,
    kill_grace_seconds: float = 10.0,
) -> EncodeOutcome:
    """Run an ffmpeg command that writes ``-progress`` blocks to stdout.

    stdout is read on a separate thread and fed to a ProgressStreamParser;
    stderr is drained on another thread and only its tail is kept. The
    calling thread polls for exit, cancellation and timeout.

    Args:
        cmd: ffmpeg argument list.
        cancel_token: Terminates the process when cancelled.
        on_progress: Called with each parsed progress report. Exceptions
            raised by the callback are logged and ignored.
        timeout: Wall-clock limit in seconds (None = unlimited).
        kill_grace_seconds: Delay between SIGTERM and SIGKILL.

    Returns:
        EncodeOutcome describing how the process ended.

    Raises:
        OSError: If the process cannot be started.
    """
    start = time.monotonic()
    process = subprocess.Popen(  # nosec B603 - ffmpeg path is validated
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        errors="replace",
    )

    stdout_queue: queue.Queue[str | None] = queue.Queue()
    stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

    def read_stdout() -> None:
        try:
            assert process.stdout is not None
            for line in process.stdout:
                stdout_queue.put(line)
        except (ValueError, OSError) as e:
            logger.debug("Stdout reader stopped: %s", e)
        finally:
            stdout_queue.put(None)

    def read_stderr() -> None:
        try:
            assert process.stderr is not None
            for line in process.stderr:
                stderr_tail.append(line.rstrip())
        except (ValueError, OSError) as e:
            logger.debug("Stderr reader stopped: %s", e)

    readers = [
        threading.Thread(target=read_stdout, daemon=True),
        threading.Thread(target=read_stderr, daemon=True),
    ]
    for reader in readers:
        reader.start()

    parser = ProgressStreamParser()
    cancelled = False
    timed_out = False
    stdout_done = False

    def handle_line(line: str) -> None:
        try:
            report = parser.feed(line)
        except Exception as e:
            logger.debug("Failed to parse progress line %r: %s", line, e)
            return
        if report is not None and on_progress is not None:
            try:
                on_progress(report)
            except Exception as e:
                logger.warning("Progress callback error: %s", e)

    while True:
        if cancel_token is not None and cancel_token.cancelled:
            cancelled = True
            break
        if timeout is not None and time.monotonic() - start >= timeout:
            timed_out = True
            break
        if stdout_done:
            if process.poll() is not None:
                break
            time.sleep(POLL_INTERVAL)
            continue
        try:
            line = stdout_queue.get(timeout=POLL_INTERVAL)
        except queue.Empty:
            continue
        if line is None:
            stdout_done = True
        else:
            handle_line(line)

    if cancelled or timed_out:
        logger.info(
            "Stopping encode (%s), pid %d",
            "cancelled" if cancelled else "timed out",
            process.pid,
        )
        terminate_process(process, kill_grace_seconds)

    process.wait()
    for reader in readers:
        reader.join(timeout=READER_JOIN_TIMEOUT)

    # Reports emitted between the last poll and exit
    while not cancelled:
        try:
            line = stdout_queue.get_nowait()
        except queue.Empty:
            break
        if line is None:
            break
        handle_line(line)

    return EncodeOutcome(
        return_code=process.returncode if not timed_out else -1,
        stderr_tail="\n".join(stderr_tail),
        cancelled=cancelled,
        timed_out=timed_out,
        duration=time.monotonic() - start,
    )
