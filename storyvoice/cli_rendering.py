"""CLI output and error rendering helpers.

This module centralizes user-facing CLI presentation for command diagnostics,
run summaries, failed-segment warnings, segment previews, and cache info.
"""

from __future__ import annotations

from typing import NoReturn

import typer

from .cache.store import format_bytes
from .config import StoryvoiceConfig
from .errors import PipelineStageError
from .models.datatypes import Segment
from .pipeline.estimates import estimate_audio_duration_ms, estimate_cost_usd, format_duration
from .pipeline.generation import SegmentGenerationResult
from .pipeline.orchestrator import AudiobookResult, CacheInfo
from .tts.voices import resolve_voice


def exit_with_command_error(command_name: str, exc: Exception) -> NoReturn:
    """Print concise diagnostics for command failures and exit with code 1."""

    if isinstance(exc, PipelineStageError):
        typer.secho(
            f"{command_name} failed at stage `{exc.stage}`: {exc.detail}",
            fg=typer.colors.RED,
            err=True,
        )
        if exc.hint:
            typer.secho(f"Hint: {exc.hint}", fg=typer.colors.YELLOW, err=True)
    else:
        typer.secho(f"{command_name} failed: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


def echo_plan_summary(result: AudiobookResult) -> None:
    """Print the cache partition of a run with cost and duration estimates."""

    planned_chars = sum(len(segment.text) for segment in result.planned_segments)
    typer.echo(f"Segments selected: {len(result.selected_segments)}")
    typer.echo(f"Segments cached: {len(result.cached_segments)}")
    typer.echo(f"Segments to generate: {len(result.planned_segments)}")
    typer.echo(f"Estimated cost (USD): {estimate_cost_usd(planned_chars):.4f}")
    estimated_ms = sum(
        estimate_audio_duration_ms(segment.text) for segment in result.selected_segments
    )
    typer.echo(f"Estimated duration: {format_duration(estimated_ms)}")
    for warning in result.warnings:
        typer.secho(f"Warning: {warning}", fg=typer.colors.YELLOW, err=True)


def echo_failed_segments(failed: tuple[SegmentGenerationResult, ...]) -> None:
    """Print one warning line per failed segment."""

    if not failed:
        return
    typer.secho(
        f"Warning: {len(failed)} segment(s) failed to generate:",
        fg=typer.colors.YELLOW,
        err=True,
    )
    for result in failed:
        typer.secho(
            f"  - {result.segment.id} [{result.segment.speaker}]: {result.error}",
            fg=typer.colors.YELLOW,
            err=True,
        )


def echo_run_summary(result: AudiobookResult) -> None:
    """Print generated/cached/failed counts and output locations."""

    typer.echo(f"Generated: {len(result.generated_segments)}")
    typer.echo(f"Cached: {len(result.cached_segments)}")
    typer.echo(f"Failed: {len(result.failed_segments)}")
    for warning in result.warnings:
        typer.secho(f"Warning: {warning}", fg=typer.colors.YELLOW, err=True)
    if result.output_path is not None:
        typer.echo(f"Audiobook: {result.output_path}")
        typer.echo(f"Duration: {format_duration(result.total_duration_ms)}")
    if result.manifest_path is not None:
        typer.echo(f"Manifest: {result.manifest_path}")


def echo_segment_preview(segments: list[Segment], config: StoryvoiceConfig) -> None:
    """Print segments with their resolved voices."""

    for segment in segments:
        voice = resolve_voice(config, segment.speaker)
        preview = segment.text if len(segment.text) <= 80 else f"{segment.text[:77]}..."
        typer.echo(
            f"{segment.index:4d}. [{segment.speaker}] ({voice.voice_name or 'default'}) {preview}"
        )


def echo_cache_info(info: CacheInfo) -> None:
    """Print cache location and entry statistics."""

    typer.echo(f"Cache directory: {info.cache_dir}")
    if info.manifest is None:
        typer.echo("Cache manifest: none")
        return
    typer.echo(f"Cached segments: {info.stats.cached_count}")
    typer.echo(f"Failed segments: {info.stats.failed_count}")
    typer.echo(f"Cached audio: {format_duration(info.stats.total_duration_ms)}")
    typer.echo(f"Cache size: {format_bytes(info.directory_size)}")
    if info.stats.oldest_entry:
        typer.echo(f"Oldest entry: {info.stats.oldest_entry}")
    if info.stats.newest_entry:
        typer.echo(f"Newest entry: {info.stats.newest_entry}")
    typer.echo(f"Last updated: {info.manifest.last_updated}")
