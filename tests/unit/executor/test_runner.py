"""Tests for run_encode using small Python child processes."""

import sys
import threading

from mediashrink.executor.cancellation import CancellationToken
from mediashrink.executor.runner import EncodeOutcome, run_encode
from mediashrink.tools.ffmpeg_progress import EncodeProgress

PROGRESS_SCRIPT = """
import sys
for us in (1000000, 2000000):
    print(f"frame={us // 40000}")
    print(f"out_time_us={us}")
    print("progress=continue", flush=True)
print("out_time_us=4000000")
print("progress=end", flush=True)
"""

FAILING_SCRIPT = """
import sys
sys.stderr.write("first line\\nUnknown encoder 'hevc_nvenc'\\n")
sys.exit(1)
"""

SLEEP_SCRIPT = "import time; time.sleep(30)"


def python(script: str) -> list[str]:
    return [sys.executable, "-c", script]


class TestEncodeOutcome:
    """Tests for EncodeOutcome.success."""

    def test_success(self) -> None:
        """Only a clean zero exit counts as success."""
        assert EncodeOutcome(0, "").success
        assert not EncodeOutcome(1, "").success
        assert not EncodeOutcome(0, "", cancelled=True).success
        assert not EncodeOutcome(-1, "", timed_out=True).success


class TestRunEncode:
    """Tests for run_encode."""

    def test_progress_reports(self) -> None:
        """Each progress block is delivered in order."""
        reports: list[EncodeProgress] = []
        outcome = run_encode(python(PROGRESS_SCRIPT), on_progress=reports.append)

        assert outcome.success
        assert [r.out_time_us for r in reports] == [1_000_000, 2_000_000, 4_000_000]
        assert reports[0].frame == 25
        assert reports[-1].is_final

    def test_failing_process(self) -> None:
        """A non-zero exit keeps the stderr tail."""
        outcome = run_encode(python(FAILING_SCRIPT))
        assert outcome.return_code == 1
        assert not outcome.success
        assert outcome.stderr_tail.splitlines()[-1] == "Unknown encoder 'hevc_nvenc'"

    def test_callback_errors_are_ignored(self) -> None:
        """A raising progress callback does not stop the encode."""

        def broken(report: EncodeProgress) -> None:
            raise RuntimeError("callback bug")

        outcome = run_encode(python(PROGRESS_SCRIPT), on_progress=broken)
        assert outcome.success

    def test_cancellation(self) -> None:
        """Cancelling the token terminates the process."""
        token = CancellationToken()
        timer = threading.Timer(0.3, token.cancel, args=("user request",))
        timer.start()
        try:
            outcome = run_encode(
                python(SLEEP_SCRIPT), cancel_token=token, kill_grace_seconds=2.0
            )
        finally:
            timer.cancel()

        assert outcome.cancelled
        assert not outcome.success
        assert outcome.duration < 10
        assert token.reason == "user request"

    def test_timeout(self) -> None:
        """Exceeding the wall-clock limit terminates the process."""
        outcome = run_encode(
            python(SLEEP_SCRIPT), timeout=0.5, kill_grace_seconds=2.0
        )
        assert outcome.timed_out
        assert outcome.return_code == -1
        assert outcome.duration < 10


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_first_reason_wins(self) -> None:
        """Only the first cancel records its reason."""
        token = CancellationToken()
        assert not token.cancelled
        assert token.wait(0.01) is False
        token.cancel("shutdown")
        token.cancel("user")
        assert token.cancelled
        assert token.reason == "shutdown"
        assert token.wait(0.01) is True
