"""Command-line interface for mediashrink."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import click

from mediashrink.config import ConfigError, get_config
from mediashrink.logging import configure_logging

if TYPE_CHECKING:
    from mediashrink.engine import TranscodingEngine

logger = logging.getLogger(__name__)


def get_engine(ctx: click.Context) -> TranscodingEngine:
    """Return the engine for this invocation, creating it on first use.

    Tests inject a ready engine through ``obj={"engine": engine}``.
    """
    root = ctx.find_root()
    engine = root.obj.get("engine")
    if engine is None:
        from mediashrink.engine import TranscodingEngine

        engine = TranscodingEngine(root.obj["config"])
        root.obj["engine"] = engine
        root.call_on_close(engine.close)
    return engine


@click.group()
@click.version_option(package_name="mediashrink")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Config file (default: ~/.mediashrink/config.toml).",
)
@click.option(
    "--backend",
    type=click.Choice(["sqlite", "memory"]),
    default=None,
    help="Override the job store backend.",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Override log level (default: info).",
)
@click.option(
    "--log-json",
    is_flag=True,
    default=False,
    help="Use JSON log format.",
)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Path | None,
    backend: str | None,
    log_level: str | None,
    log_json: bool,
) -> None:
    """mediashrink - shrink media libraries by transcoding to efficient codecs."""
    ctx.ensure_object(dict)
    # Preserve an engine passed in by tests
    if "engine" in ctx.obj:
        return

    overrides: dict = {}
    if backend:
        overrides["store_backend"] = backend
    logging_overrides = {}
    if log_level:
        logging_overrides["level"] = log_level
    if log_json:
        logging_overrides["format"] = "json"
    if logging_overrides:
        overrides["logging"] = logging_overrides

    try:
        config = get_config(config_path, overrides or None)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    configure_logging(config.logging)
    ctx.obj["config"] = config


def _register_commands() -> None:
    from mediashrink.cli.analyze import analyze_command
    from mediashrink.cli.jobs import (
        cancel_command,
        clear_command,
        jobs_group,
        retry_command,
        status_command,
        submit_command,
    )
    from mediashrink.cli.storage import storage_group
    from mediashrink.cli.system import doctor_command, run_command

    main.add_command(submit_command)
    main.add_command(status_command)
    main.add_command(jobs_group)
    main.add_command(cancel_command)
    main.add_command(retry_command)
    main.add_command(clear_command)
    main.add_command(analyze_command)
    main.add_command(storage_group)
    main.add_command(doctor_command)
    main.add_command(run_command)


_register_commands()
