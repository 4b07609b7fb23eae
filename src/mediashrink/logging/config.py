"""Root logger setup from the ``[logging]`` config section."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

from mediashrink.logging.context import JobContextFilter
from mediashrink.logging.handlers import JSONFormatter

if TYPE_CHECKING:
    from mediashrink.config.models import LoggingConfig

# job_tag is "[job 1a2b3c4d:720p] " inside a job context, else empty
TEXT_FORMAT = "%(asctime)s - %(job_tag)s%(name)s - %(levelname)s - %(message)s"
TEXT_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"

_LEVELS = ("debug", "info", "warning", "error")


def _resolve_level(name: str) -> int:
    name = name.casefold()
    if name not in _LEVELS:
        return logging.INFO
    return getattr(logging, name.upper())


def _build_formatter(fmt: str) -> logging.Formatter:
    if fmt.casefold() == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT)


def _open_log_file(config: LoggingConfig) -> logging.Handler | None:
    """Rotating handler for ``config.file``, or None if it cannot be opened."""
    path = Path(config.file).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            path,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        # logging is not set up yet
        sys.stderr.write(f"Warning: Could not open log file {config.file}: {e}\n")
        return None


def configure_logging(config: LoggingConfig) -> None:
    """Replace the root logger's handlers according to ``config``.

    Logs go to a rotating file when ``file`` is set, and to stderr when
    ``include_stderr`` is true or no file could be opened. Every handler
    carries a JobContextFilter so records are tagged with the active job.
    """
    level = _resolve_level(config.level)
    formatter = _build_formatter(config.format)

    handlers: list[logging.Handler] = []
    if config.file:
        file_handler = _open_log_file(config)
        if file_handler is not None:
            handlers.append(file_handler)
    if config.include_stderr or not handlers:
        handlers.append(logging.StreamHandler(sys.stderr))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(JobContextFilter())
        root.addHandler(handler)
