"""mediashrink: a job-queue driven media transcoding engine."""

__version__ = "0.1.0"
