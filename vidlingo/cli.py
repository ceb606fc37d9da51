"""Command line interface for running translations and inspecting runs."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer

from vidlingo.config import VidlingoConfig, load_config
from vidlingo.contracts import RunInput
from vidlingo.errors import PipelineError
from vidlingo.models import Run, RunStatus
from vidlingo.persistence import RunRepository, get_repository
from vidlingo.registry import RunRegistry

app = typer.Typer(help="CLI for vidlingo media translation runs")

# Command groups
runs_app = typer.Typer(help="Commands for inspecting and managing runs")

app.add_typer(runs_app, name="runs")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to a YAML configuration file"
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level"),
) -> None:
    """vidlingo CLI entry point."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"config_path": config}


def _config(ctx: typer.Context) -> VidlingoConfig:
    return load_config((ctx.obj or {}).get("config_path"))


def _repository(ctx: typer.Context) -> RunRepository:
    # without an explicit file the process-wide repository is reused
    if (ctx.obj or {}).get("config_path"):
        return get_repository(config=_config(ctx))
    return get_repository()


async def _follow(registry: RunRegistry, run_id: str, poll_interval: float) -> Run:
    last_version = -1
    finished = False
    while True:
        snapshot = await registry.query_progress(run_id)
        if snapshot.version != last_version:
            last_version = snapshot.version
            typer.echo(
                f"[{snapshot.percent_complete:3d}%] {snapshot.stage_name}: {snapshot.message}"
            )
        if snapshot.is_terminal or finished:
            break
        try:
            await registry.wait(run_id, timeout=poll_interval)
            finished = True
        except asyncio.TimeoutError:
            continue
    return await registry.wait(run_id)


def _print_run(run: Run) -> None:
    typer.echo(f"Run {run.run_id}: {run.status.value}")
    typer.echo(f"  Media: {run.input.media}")
    typer.echo(f"  Target language: {run.input.target_language}")
    typer.echo(f"  Completed stages: {run.current_stage_index}")
    if run.error:
        stage = f" at {run.error.stage}" if run.error.stage else ""
        typer.echo(f"  Error ({run.error.kind}{stage}): {run.error.message}")
    if run.result:
        typer.echo(f"  Summary: {run.result.summary}")
        for point in run.result.key_points:
            typer.echo(f"    - {point}")
        typer.echo(f"  Subtitles: {run.result.subtitles_path}")
        if run.result.output_video_path:
            typer.echo(f"  Video: {run.result.output_video_path}")
        typer.echo(f"  Artifacts: {run.result.artifacts_dir}")
        typer.echo(f"  Processing time: {run.result.processing_time_ms} ms")


@app.command("translate")
def translate(
    ctx: typer.Context,
    media: str = typer.Argument(..., help="URL or local path of the media file"),
    target_language: str = typer.Option(..., "--target", "-t", help="Target language"),
    source_language: Optional[str] = typer.Option(
        None, "--source", "-s", help="Source language hint (auto-detected if omitted)"
    ),
    file_name: Optional[str] = typer.Option(
        None, "--file-name", help="Original file name used in the run id"
    ),
    video: bool = typer.Option(
        True, "--video/--no-video", help="Produce a subtitled copy of the video"
    ),
    burn_in: bool = typer.Option(
        False, "--burn-in", help="Burn subtitles into the video instead of adding a track"
    ),
    poll_interval: float = typer.Option(1.0, help="Seconds between progress updates"),
) -> None:
    """
    Translate a media file and follow the run until it finishes.

    Example:
        vidlingo translate ./talk.mp4 --target Spanish
        vidlingo translate https://example.com/clip.webm -t French --burn-in
    """
    config = _config(ctx)
    try:
        request = RunInput(
            media=media,
            target_language=target_language,
            source_language=source_language,
            file_name=file_name,
            output={"generate_video": video, "burn_in_subtitles": burn_in},
        )
    except ValueError as e:
        typer.echo(f"Invalid input: {e}")
        raise typer.Exit(code=2)

    async def _run() -> Run:
        registry = RunRegistry.from_config(config)
        try:
            run_id = await registry.start(request)
            typer.echo(f"Run ID: {run_id}")
            return await _follow(registry, run_id, poll_interval)
        finally:
            await registry.shutdown(wait=False)

    run = asyncio.run(_run())
    _print_run(run)
    if run.status != RunStatus.COMPLETED:
        raise typer.Exit(code=1)


@runs_app.command("list")
def runs_list(
    ctx: typer.Context,
    status: Optional[RunStatus] = typer.Option(None, help="Only show runs in this status"),
) -> None:
    """
    List runs with their current status.

    Example:
        vidlingo runs list --status FAILED
    """
    repo = _repository(ctx)
    runs = asyncio.run(repo.list_runs(status))
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        typer.echo(f"{run.run_id}\t{run.status.value}\t{run.current_stage_index}")


@runs_app.command("show")
def runs_show(ctx: typer.Context, run_id: str) -> None:
    """Show the state, result or error of a run."""
    repo = _repository(ctx)
    run = asyncio.run(repo.get_run(run_id))
    if not run:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    _print_run(run)


@runs_app.command("resume")
def runs_resume(
    ctx: typer.Context,
    run_id: str,
    poll_interval: float = typer.Option(1.0, help="Seconds between progress updates"),
) -> None:
    """Resume a failed, cancelled or interrupted run from its last checkpoint."""
    config = _config(ctx)

    async def _run() -> Run:
        registry = RunRegistry.from_config(config)
        try:
            await registry.resume(run_id)
            return await _follow(registry, run_id, poll_interval)
        finally:
            await registry.shutdown(wait=False)

    try:
        run = asyncio.run(_run())
    except PipelineError as e:
        typer.echo(str(e))
        raise typer.Exit(code=1)
    _print_run(run)
    if run.status != RunStatus.COMPLETED:
        raise typer.Exit(code=1)


@runs_app.command("recover")
def runs_recover(ctx: typer.Context) -> None:
    """Finish every run a previous process left pending or running."""
    config = _config(ctx)

    async def _run() -> list[Run]:
        registry = RunRegistry.from_config(config)
        run_ids = await registry.recover()
        try:
            return [await registry.wait(run_id) for run_id in run_ids]
        finally:
            await registry.shutdown()

    runs = asyncio.run(_run())
    if not runs:
        typer.echo("No interrupted runs")
        return
    for run in runs:
        typer.echo(f"{run.run_id}\t{run.status.value}")


@runs_app.command("purge")
def runs_purge(ctx: typer.Context, run_id: str) -> None:
    """Delete the stored checkpoints of a finished run."""
    repo = _repository(ctx)
    run = asyncio.run(repo.get_run(run_id))
    if not run:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    if not run.status.is_terminal:
        typer.echo(f"Run {run_id} is {run.status.value}; only finished runs can be purged")
        raise typer.Exit(code=1)
    removed = asyncio.run(repo.purge_checkpoints(run_id))
    typer.echo(f"Removed {removed} checkpoints for run {run_id}")


if __name__ == "__main__":
    app()
