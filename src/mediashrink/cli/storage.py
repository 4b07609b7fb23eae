"""Storage commands: analytics, compression stats and cleanup."""

from __future__ import annotations

import click

from mediashrink.cli import get_engine
from mediashrink.cli.output import echo_json

_JSON_OPTION = click.option(
    "--json", "json_output", is_flag=True, help="Output in JSON format."
)


@click.group("storage")
def storage_group() -> None:
    """Inspect and reclaim output storage."""


@storage_group.command("analytics")
@click.option(
    "--refresh", is_flag=True, help="Recompute instead of using the cached snapshot."
)
@_JSON_OPTION
@click.pass_context
def analytics_command(ctx: click.Context, refresh: bool, json_output: bool) -> None:
    """Show the storage analytics snapshot."""
    snapshot = get_engine(ctx).get_storage_analytics(force_refresh=refresh)
    if json_output:
        echo_json(snapshot)
        return
    usage = snapshot["storage_usage"]
    click.echo("Storage Analytics")
    click.echo("-" * 40)
    click.echo(f"  Files:          {snapshot['total_files']}")
    click.echo(f"  Original size:  {snapshot['total_original_size']['formatted']}")
    click.echo(f"  Output size:    {snapshot['total_transcoded_size']['formatted']}")
    click.echo(
        f"  Space saved:    {snapshot['total_space_saved']['formatted']} "
        f"({snapshot['compression_ratio']:.1f}%)"
    )
    click.echo(
        f"  Usage:          {usage['used']['formatted']} of "
        f"{usage['max']['formatted']} ({usage['percent']:.1f}%)"
    )
    for quality, entry in snapshot["quality_breakdown"].items():
        click.echo(
            f"    {quality:<10} {entry['count']:>4} files, "
            f"{entry['space_saved']['formatted']} saved"
        )
    click.echo(f"  Updated:        {snapshot['last_updated']}")


@storage_group.command("stats")
@_JSON_OPTION
@click.pass_context
def stats_command(ctx: click.Context, json_output: bool) -> None:
    """Show compression statistics over all results."""
    stats = get_engine(ctx).get_compression_stats()
    if json_output:
        echo_json(stats)
        return
    click.echo("Compression Statistics")
    click.echo("-" * 40)
    click.echo(f"  Files processed:   {stats['files_processed']}")
    click.echo(f"  Space saved:       {stats['space_saved']['formatted']}")
    click.echo(f"  Overall ratio:     {stats['compression_ratio']:.1f}%")
    click.echo(f"  Average ratio:     {stats['average_compression_ratio']:.1f}%")
    click.echo(f"  Average time:      {stats['average_processing_time_ms']} ms")


@storage_group.command("cleanup")
@_JSON_OPTION
@click.pass_context
def cleanup_command(ctx: click.Context, json_output: bool) -> None:
    """Run all cleanup passes now."""
    report = get_engine(ctx).force_cleanup()
    if json_output:
        echo_json(report)
        return
    click.echo(
        f"Removed {report['files_cleaned']} file(s) "
        f"({report['space_freed']['formatted']}) and "
        f"{report['records_cleaned']} record(s)"
    )
    for name, result in report["passes"].items():
        line = f"  {name:<10} {result['files_cleaned']:>4} files"
        line += f" {result['records_cleaned']:>4} records"
        if result["error"]:
            line += " " + click.style(f"error: {result['error']}", fg="red")
        click.echo(line)
    if report["errors"]:
        click.echo(f"{report['errors']} error(s) during cleanup", err=True)
