"""Shared CLI output helpers for JSON and human-readable output."""

from __future__ import annotations

import json
import sys
from typing import Any, NoReturn

import click

# Exit code for user errors (bad arguments, unknown job, refused transition)
EXIT_USER_ERROR = 1


def echo_json(data: Any) -> None:
    """Print ``data`` as indented JSON (paths and datetimes as strings)."""
    click.echo(json.dumps(data, indent=2, default=str))


def error_exit(message: str, json_output: bool = False) -> NoReturn:
    """Print an error and exit with EXIT_USER_ERROR.

    Args:
        message: Error message to display.
        json_output: Whether to format the error as JSON.
    """
    if json_output:
        click.echo(
            json.dumps({"status": "failed", "error": {"message": message}}),
            err=True,
        )
    else:
        click.echo(f"Error: {message}", err=True)
    sys.exit(EXIT_USER_ERROR)


def status_color(status: str) -> str | None:
    return {
        "queued": "cyan",
        "analyzing": "yellow",
        "transcoding": "yellow",
        "completed": "green",
        "failed": "red",
        "cancelled": "magenta",
    }.get(status)


def format_job_row(job: dict[str, Any]) -> str:
    """One table row: id prefix, status, progress, attempts, file name."""
    status = f"{job['status']:<12}"
    name = job["input_path"].rsplit("/", 1)[-1]
    if len(name) > 40:
        name = name[:37] + "..."
    return (
        f"{job['id'][:8]:<10} {click.style(status, fg=status_color(job['status']))} "
        f"{job['progress']:>5.1f}% {job['attempts']}/{job['max_attempts']:<5} "
        f"{name:<40} {job['created_at'][:19]}"
    )
