"""Cooperative cancellation for long-running encodes."""

from __future__ import annotations

import threading


class CancellationToken:
    """Thread-safe, one-way cancellation flag.

    The job layer cancels; the subprocess wrapper polls ``cancelled`` (or
    waits on it) and terminates the child process.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or timeout. Returns True if cancelled."""
        return self._event.wait(timeout)
