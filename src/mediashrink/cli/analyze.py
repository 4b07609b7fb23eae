"""The analyze command: report whether files are worth transcoding."""

from __future__ import annotations

from pathlib import Path

import click

from mediashrink.analyzer import FileAnalysis
from mediashrink.cli import get_engine
from mediashrink.cli.output import echo_json
from mediashrink.core.formatting import format_file_size


def _print_analysis(analysis: FileAnalysis) -> None:
    name = Path(analysis.path).name
    if analysis.rejection is not None:
        click.echo(f"{name}: {click.style('rejected', fg='red')} - {analysis.reason}")
        return

    verdict = (
        click.style("transcode", fg="green")
        if analysis.needs_transcoding
        else click.style("skip", fg="yellow")
    )
    click.echo(f"{name}: {verdict} - {analysis.reason}")
    info = analysis.media_info
    if info is not None:
        click.echo(
            f"  {info.video_codec} {info.resolution} "
            f"{format_file_size(analysis.file_size)}, {info.duration:.0f}s"
        )
    if analysis.decision is not None:
        for quality, decision in analysis.decision.qualities.items():
            mark = "+" if decision.accepted else "-"
            click.echo(f"  {mark} {quality}: {decision.message}")


@click.command("analyze")
@click.argument("paths", nargs=-1, required=True, type=click.Path(path_type=Path))
@click.option("--json", "json_output", is_flag=True, help="Output in JSON format.")
@click.pass_context
def analyze_command(
    ctx: click.Context, paths: tuple[Path, ...], json_output: bool
) -> None:
    """Analyze PATHS and recommend qualities to transcode.

    Examples:

        mediashrink analyze movie.mkv

        mediashrink analyze /media/*.mp4 --json
    """
    engine = get_engine(ctx)
    if len(paths) == 1:
        analysis = engine.analyze_file(paths[0])
        if json_output:
            echo_json(analysis.to_dict())
        else:
            _print_analysis(analysis)
        return

    batch = engine.analyze_batch(list(paths))
    summary = batch["summary"]
    if json_output:
        echo_json(
            {
                "analyses": [a.to_dict() for a in batch["analyses"]],
                "summary": summary,
            }
        )
        return

    for analysis in batch["analyses"]:
        _print_analysis(analysis)
    click.echo("")
    click.echo(
        f"{summary['needs_transcoding']} of {summary['total_files']} files "
        f"worth transcoding, potential savings "
        f"{summary['total_potential_savings']['formatted']}"
    )
