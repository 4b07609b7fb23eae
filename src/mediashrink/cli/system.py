"""System commands: doctor (tool and accelerator checks) and run."""

from __future__ import annotations

import sys

import click

from mediashrink.cli import get_engine
from mediashrink.cli.output import echo_json
from mediashrink.config import validate_config
from mediashrink.events import Event, JobCompleted, JobFailed, ProgressUpdated
from mediashrink.tools.detection import ToolNotFoundError

EXIT_OK = 0
EXIT_WARNINGS = 1
EXIT_CRITICAL = 2


def _format_status(available: bool) -> str:
    return "✓" if available else "✗"


@click.command("doctor")
@click.option("--json", "json_output", is_flag=True, help="Output results as JSON")
@click.pass_context
def doctor_command(ctx: click.Context, json_output: bool) -> None:
    """Check ffmpeg/ffprobe, the GPU encoder and the configuration.

    Exit codes:
      0 - Everything available
      1 - Warnings (no GPU encoder, configuration problems)
      2 - Critical issues (ffmpeg or ffprobe missing)
    """
    engine = get_engine(ctx)
    info = engine.get_system_info()
    problems = validate_config(engine.config)

    tools_ok = bool(info["ffmpeg_path"]) and bool(info["ffprobe_path"])
    gpu_available = False
    if tools_ok and engine.config.transcoder.enable_gpu:
        try:
            gpu_available = engine.test_accelerator_availability()
        except ToolNotFoundError:
            tools_ok = False

    if not tools_ok:
        exit_code = EXIT_CRITICAL
    elif problems or (engine.config.transcoder.enable_gpu and not gpu_available):
        exit_code = EXIT_WARNINGS
    else:
        exit_code = EXIT_OK

    if json_output:
        echo_json(
            {
                "system": info,
                "gpu_available": gpu_available,
                "config_problems": problems,
                "quality_presets": engine.get_quality_presets(),
                "exit_code": exit_code,
            }
        )
        sys.exit(exit_code)

    click.echo("mediashrink doctor")
    click.echo("-" * 40)
    ffmpeg_ok = _format_status(bool(info["ffmpeg_path"]))
    ffprobe_ok = _format_status(bool(info["ffprobe_path"]))
    click.echo(f"  {ffmpeg_ok} ffmpeg   {info['ffmpeg_version'] or 'not found'}")
    click.echo(f"  {ffprobe_ok} ffprobe  {info['ffprobe_path'] or 'not found'}")
    if engine.config.transcoder.enable_gpu:
        click.echo(
            f"  {_format_status(gpu_available)} hevc_nvenc on GPU "
            f"{engine.config.transcoder.gpu_device}"
        )
    else:
        click.echo("  - GPU encoding disabled in configuration")
    for gpu in info["gpus"]:
        click.echo(f"      {gpu['name']} ({gpu['memory']})")
    click.echo(f"  CPUs: {info['cpu_count']}  Platform: {info['platform']}")
    if problems:
        click.echo("")
        click.echo("Configuration problems:")
        for problem in problems:
            click.echo(f"  - {problem}")
    sys.exit(exit_code)


@click.command("run")
@click.option(
    "--watch",
    is_flag=True,
    help="Keep running after the queue drains (stop with Ctrl+C).",
)
@click.option("--quiet", "-q", is_flag=True, help="Do not print progress lines.")
@click.pass_context
def run_command(ctx: click.Context, watch: bool, quiet: bool) -> None:
    """Start the engine and process queued jobs.

    Without --watch, exits once no job is queued or running. Interrupted
    jobs return to the queue.
    """
    engine = get_engine(ctx)
    last_shown: dict[str, int] = {}

    def show(event: Event) -> None:
        if isinstance(event, ProgressUpdated):
            # One line per 10% step
            step = int(event.progress // 10)
            if last_shown.get(event.job_id) == step:
                return
            last_shown[event.job_id] = step
            click.echo(
                f"{event.job_id[:8]} {event.status:<12} {event.progress:5.1f}%"
                + (f"  {event.message}" if event.message else "")
            )
        elif isinstance(event, JobCompleted):
            click.echo(click.style(f"{event.job_id[:8]} completed", fg="green"))
        elif isinstance(event, JobFailed):
            state = "will retry" if event.will_retry else "failed"
            click.echo(
                click.style(f"{event.job_id[:8]} {state}: {event.error}", fg="red")
            )

    unsubscribe = None
    if not quiet:
        unsubscribe = engine.subscribe(show, [ProgressUpdated, JobCompleted, JobFailed])

    engine.start()
    try:
        while True:
            idle = engine.wait_until_idle(timeout=1.0)
            if idle and not watch:
                break
    except KeyboardInterrupt:
        click.echo("Interrupted, stopping engine...", err=True)
    finally:
        if unsubscribe is not None:
            unsubscribe()
        engine.stop()

    status = engine.get_queue_status()
    click.echo(
        f"Done: {status['completed']} completed, {status['failed']} failed, "
        f"{status['queued']} queued"
    )
