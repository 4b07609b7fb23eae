"""Job queue commands: submit, status, jobs list, cancel, retry, clear."""

from __future__ import annotations

from pathlib import Path

import click

from mediashrink.cli import get_engine
from mediashrink.cli.output import echo_json, error_exit, format_job_row, status_color
from mediashrink.executor.presets import QUALITY_PRESETS
from mediashrink.jobs.exceptions import JobTrackingError

_STATUSES = ("queued", "analyzing", "transcoding", "completed", "failed", "cancelled")

_JSON_OPTION = click.option(
    "--json", "json_output", is_flag=True, help="Output in JSON format."
)


@click.command("submit")
@click.argument("input_path", type=click.Path(path_type=Path))
@click.option(
    "--quality",
    "-q",
    "qualities",
    multiple=True,
    type=click.Choice(list(QUALITY_PRESETS)),
    help="Quality to produce (repeatable; default from config).",
)
@click.option("--priority", "-p", type=int, default=None, help="0-1000, higher first.")
@click.option("--max-attempts", type=int, default=None, help="Attempt cap.")
@_JSON_OPTION
@click.pass_context
def submit_command(
    ctx: click.Context,
    input_path: Path,
    qualities: tuple[str, ...],
    priority: int | None,
    max_attempts: int | None,
    json_output: bool,
) -> None:
    """Queue INPUT_PATH for transcoding.

    Submitting a file that already has an open job prints that job instead
    of creating a second one.

    Examples:

        mediashrink submit movie.mkv -q 1080p -q 720p --priority 10
    """
    engine = get_engine(ctx)
    options: dict = {}
    if qualities:
        options["qualities"] = list(qualities)
    if priority is not None:
        options["priority"] = priority
    if max_attempts is not None:
        options["max_attempts"] = max_attempts

    try:
        job, created = engine.jobs.submit(str(input_path), options)
    except JobTrackingError as e:
        error_exit(str(e), json_output)

    if json_output:
        echo_json({"job_id": job.id, "created": created, "status": job.status.value})
        return
    if created:
        click.echo(f"Queued job {job.id} ({', '.join(job.qualities)})")
    else:
        click.echo(f"Job {job.id} is already {job.status.value} for {job.input_path}")


@click.command("status")
@click.argument("job_id", required=False)
@_JSON_OPTION
@click.pass_context
def status_command(ctx: click.Context, job_id: str | None, json_output: bool) -> None:
    """Show one job, or the queue summary when JOB_ID is omitted."""
    engine = get_engine(ctx)
    if job_id is None:
        status = engine.get_queue_status()
        if json_output:
            echo_json(status)
            return
        click.echo("Job Queue Status")
        click.echo("-" * 30)
        for key in _STATUSES:
            click.echo(f"  {key.capitalize() + ':':<13}{status[key]:>5}")
        click.echo("-" * 30)
        click.echo(f"  {'Total:':<13}{status['total']:>5}")
        click.echo(f"  Concurrency: {status['max_concurrent_jobs']}")
        return

    try:
        job = engine.get_job_status(job_id)
    except JobTrackingError as e:
        error_exit(str(e), json_output)

    if json_output:
        echo_json(job)
        return

    click.echo(f"\nJob: {job['id']}")
    click.echo("-" * 50)
    click.echo(
        f"  Status:      {click.style(job['status'], fg=status_color(job['status']))}"
    )
    click.echo(f"  File:        {job['input_path']}")
    click.echo(f"  Qualities:   {', '.join(job['qualities'])}")
    click.echo(f"  Priority:    {job['priority']}")
    click.echo(f"  Attempts:    {job['attempts']}/{job['max_attempts']}")
    click.echo(f"  Progress:    {job['progress']:.1f}%")
    click.echo(f"  Created:     {job['created_at']}")
    if job["started_at"]:
        click.echo(f"  Started:     {job['started_at']}")
    if job["completed_at"]:
        click.echo(f"  Completed:   {job['completed_at']}")
    if job["skip_reason"]:
        click.echo(f"  Skipped:     {job['skip_reason']}")
    if job["error_message"]:
        click.echo(f"  Error:       {click.style(job['error_message'], fg='red')}")
    for result in job["results"]:
        click.echo(
            f"  Output:      {result['quality']}: {result['output_path']} "
            f"({result['compression_ratio']:.1f}% smaller)"
        )
    click.echo("")


@click.group("jobs")
def jobs_group() -> None:
    """Inspect the job queue."""


@jobs_group.command("list")
@click.option(
    "--status",
    "-s",
    type=click.Choice([*_STATUSES, "all"]),
    default="all",
    help="Filter by job status.",
)
@click.option("--limit", "-n", type=int, default=50, help="Maximum jobs to show.")
@_JSON_OPTION
@click.pass_context
def list_jobs(ctx: click.Context, status: str, limit: int, json_output: bool) -> None:
    """List jobs, newest first."""
    engine = get_engine(ctx)
    jobs = engine.list_jobs(None if status == "all" else status, limit)
    if json_output:
        echo_json(jobs)
        return
    if not jobs:
        click.echo("No jobs found.")
        return
    click.echo(
        f"{'ID':<10} {'STATUS':<12} {'PROG':>6} {'TRIES':<7} "
        f"{'FILE':<40} {'CREATED':<19}"
    )
    click.echo("-" * 100)
    for job in jobs:
        click.echo(format_job_row(job))


@click.command("cancel")
@click.argument("job_id")
@_JSON_OPTION
@click.pass_context
def cancel_command(ctx: click.Context, job_id: str, json_output: bool) -> None:
    """Cancel a queued or running job."""
    engine = get_engine(ctx)
    try:
        job = engine.cancel_job(job_id)
    except JobTrackingError as e:
        error_exit(str(e), json_output)
    if json_output:
        echo_json(job)
    else:
        click.echo(f"Cancelled job {job_id}")


@click.command("retry")
@click.argument("job_id")
@_JSON_OPTION
@click.pass_context
def retry_command(ctx: click.Context, job_id: str, json_output: bool) -> None:
    """Requeue a failed or cancelled job."""
    engine = get_engine(ctx)
    try:
        job = engine.retry_job(job_id)
    except JobTrackingError as e:
        error_exit(str(e), json_output)
    if json_output:
        echo_json(job)
    else:
        click.echo(f"Requeued job {job_id} (attempt {job['attempts'] + 1})")


@click.command("clear")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@_JSON_OPTION
@click.pass_context
def clear_command(ctx: click.Context, yes: bool, json_output: bool) -> None:
    """Cancel active jobs and delete every queued job."""
    if not yes and not click.confirm(
        "Cancel all active jobs and delete all queued jobs?", default=False
    ):
        click.echo("Aborted.")
        return
    counts = get_engine(ctx).clear_queue()
    if json_output:
        echo_json(counts)
    else:
        click.echo(
            f"Cancelled {counts['cancelled']} active job(s), "
            f"deleted {counts['deleted']} queued job(s)."
        )
