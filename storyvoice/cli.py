"""Command-line interface for Storyvoice.

Responsibilities:
- Expose user-facing commands for generation and cache maintenance.
- Convert CLI arguments into `StoryvoiceConfig` and `GenerateOptions`.

Key public functions:
- `app`: Typer application instance.
- `main`: invoke the Typer application.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
import os
from pathlib import Path
from typing import Annotated

import typer

from .cache.store import CacheStore
from .cli_rendering import (
    echo_cache_info,
    echo_failed_segments,
    echo_plan_summary,
    echo_run_summary,
    echo_segment_preview,
    exit_with_command_error,
)
from .config import ConfigLoader, RuntimeConfigSources, StoryvoiceConfig
from .errors import PipelineStageError
from .parsing import normalize_optional_string, parse_speaker_list
from .pipeline import GenerateOptions, StoryvoicePipeline
from .pipeline.generation import SegmentGenerationResult
from .telemetry.logger import RunLogger
from .text.story_parser import filter_by_speakers, segment_window

app = typer.Typer(
    name="storyvoice",
    no_args_is_help=True,
    help="Storyvoice CLI: turn speaker-tagged stories into audiobooks.",
)

_DEFAULT_OUTPUT_DIR = Path("output")


class BuildProgressIndicator:
    """Render deterministic per-stage and per-segment progress lines."""

    _SPINNER_FRAMES = "|/-\\"

    def __init__(self, command_name: str) -> None:
        """Initialize progress indicator metadata for a command invocation."""

        self._command_name = command_name

    def on_stage_start(self, stage_name: str, stage_index: int, stage_total: int) -> None:
        """Print one progress line for a stage start transition."""

        spinner = self._SPINNER_FRAMES[(stage_index - 1) % len(self._SPINNER_FRAMES)]
        typer.echo(
            f"[progress] command={self._command_name} "
            f"{spinner} {stage_index}/{stage_total} stage={stage_name}"
        )

    def on_segment_complete(
        self, completed: int, total: int, result: SegmentGenerationResult
    ) -> None:
        """Print one progress line per finished segment."""

        status = "ok" if result.success else "failed"
        typer.echo(
            f"[progress] command={self._command_name} segment={completed}/{total} "
            f"id={result.segment.id} status={status}"
        )


def _load_config(config_path: Path | None) -> StoryvoiceConfig:
    """Load a config file when requested and map failures to stage errors."""

    if config_path is None:
        return ConfigLoader.default()

    try:
        return ConfigLoader.from_file(config_path)
    except FileNotFoundError as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Config file not found: `{config_path}`.",
            hint="Create one with `storyvoice init <story>` or pass `--config <path>`.",
        ) from exc
    except ValueError as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Invalid config file `{config_path}`: {exc}",
            hint="Fix config schema/values and rerun.",
        ) from exc
    except OSError as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Failed to load config file `{config_path}`: {exc}",
            hint="Verify file permissions.",
        ) from exc


def _runtime_sources(api_key: str | None) -> RuntimeConfigSources:
    """Build runtime value sources from CLI input and the environment."""

    cli_values: dict[str, str] = {}
    normalized_key = normalize_optional_string(api_key)
    if normalized_key is not None:
        cli_values["api_key"] = normalized_key
    return RuntimeConfigSources(cli=cli_values, env=dict(os.environ))


@app.command("init")
def init_command(
    story: Annotated[Path, typer.Argument(help="Path to the story script.")],
    config_path: Annotated[
        Path,
        typer.Option("--config", help="Config file to create (`.json`, `.yaml`, `.yml`)."),
    ] = Path("storyvoice.json"),
    overwrite: Annotated[
        bool, typer.Option("--overwrite", help="Replace an existing config file.")
    ] = False,
) -> None:
    """Create a starter config with one voice per story speaker."""

    try:
        if config_path.exists() and not overwrite:
            raise PipelineStageError(
                stage="config",
                detail=f"Config file already exists: `{config_path}`.",
                hint="Pass `--overwrite` to replace it.",
            )
        parsed = StoryvoicePipeline().parse_story(story)
        written = ConfigLoader.save(ConfigLoader.for_speakers(parsed.speakers), config_path)
    except Exception as exc:
        exit_with_command_error("init", exc)

    typer.echo(f"Speakers: {', '.join(parsed.speakers)}")
    typer.echo(f"Config: {written}")


@app.command("generate")
def generate_command(
    story: Annotated[Path, typer.Argument(help="Path to the story script.")],
    config_path: Annotated[
        Path | None, typer.Option("--config", help="Path to YAML/JSON config file.")
    ] = None,
    out: Annotated[Path, typer.Option("--out", help="Output directory.")] = _DEFAULT_OUTPUT_DIR,
    force: Annotated[
        bool, typer.Option("--force", help="Regenerate every selected segment.")
    ] = False,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Show the plan without calling the provider.")
    ] = False,
    speakers: Annotated[
        str | None,
        typer.Option("--speakers", help="Comma-separated speakers to include."),
    ] = None,
    start_from: Annotated[
        int, typer.Option("--start-from", min=0, help="First segment index to include.")
    ] = 0,
    max_segments: Annotated[
        int | None,
        typer.Option("--max-segments", min=1, help="Maximum number of segments to include."),
    ] = None,
    timestamp: Annotated[
        bool, typer.Option("--timestamp", help="Add a timestamp to output file names.")
    ] = False,
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", min=1, help="Maximum concurrent synthesis requests."),
    ] = None,
    api_key: Annotated[
        str | None, typer.Option("--api-key", help="Provider API key for this run.")
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", help="Write a debug log into the cache directory.")
    ] = False,
) -> None:
    """Generate (or update) the audiobook for a story."""

    run_logger: RunLogger | None = None
    try:
        config = _load_config(config_path)
        if concurrency is not None:
            config = replace(config, concurrency=concurrency)
        run_logger = RunLogger(
            debug_log_path=(
                CacheStore.for_story(out, story).debug_log_path if verbose else None
            )
        )
        progress = BuildProgressIndicator(command_name="generate")
        pipeline = StoryvoicePipeline(
            run_logger=run_logger,
            stage_progress_callback=progress.on_stage_start,
            segment_progress_callback=progress.on_segment_complete,
            runtime_sources=_runtime_sources(api_key),
        )
        options = GenerateOptions(
            force=force,
            dry_run=dry_run,
            speakers=parse_speaker_list(speakers),
            start_from=start_from,
            max_segments=max_segments,
            output_suffix=datetime.now().strftime("%Y%m%d_%H%M%S") if timestamp else None,
            concurrency=concurrency,
        )
        result = pipeline.generate(story, config, out, options)
    except Exception as exc:
        exit_with_command_error("generate", exc)
    finally:
        if run_logger is not None:
            run_logger.close()

    if result.dry_run:
        echo_plan_summary(result)
        return
    echo_run_summary(result)
    echo_failed_segments(result.failed_segments)
    if not result.success:
        raise typer.Exit(code=1)


@app.command("preview")
def preview_command(
    story: Annotated[Path, typer.Argument(help="Path to the story script.")],
    config_path: Annotated[
        Path | None, typer.Option("--config", help="Path to YAML/JSON config file.")
    ] = None,
    segments: Annotated[
        int, typer.Option("--segments", min=1, help="Number of segments to show.")
    ] = 10,
    start_from: Annotated[
        int, typer.Option("--start-from", min=0, help="First segment index to show.")
    ] = 0,
    speaker: Annotated[
        str | None, typer.Option("--speaker", help="Only show segments for one speaker.")
    ] = None,
) -> None:
    """Show parsed segments with their resolved voices."""

    try:
        config = _load_config(config_path)
        parsed = StoryvoicePipeline().parse_story(story)
        selected = segment_window(
            filter_by_speakers(parsed.segments, parse_speaker_list(speaker)),
            start_from,
            segments,
        )
    except Exception as exc:
        exit_with_command_error("preview", exc)

    typer.echo(f"Segments: {len(parsed.segments)}")
    typer.echo(f"Speakers: {', '.join(parsed.speakers)}")
    echo_segment_preview(selected, config)


@app.command("update-styles")
def update_styles_command(
    story: Annotated[Path, typer.Argument(help="Path to the story script.")],
    config_path: Annotated[
        Path | None, typer.Option("--config", help="Path to YAML/JSON config file.")
    ] = None,
    out: Annotated[Path, typer.Option("--out", help="Output directory.")] = _DEFAULT_OUTPUT_DIR,
    speakers: Annotated[
        str | None,
        typer.Option("--speakers", help="Comma-separated speakers to refresh."),
    ] = None,
    force: Annotated[
        bool, typer.Option("--force", help="Regenerate every segment of the selected speakers.")
    ] = False,
    api_key: Annotated[
        str | None, typer.Option("--api-key", help="Provider API key for this run.")
    ] = None,
) -> None:
    """Regenerate only segments whose voice configuration changed."""

    try:
        config = _load_config(config_path)
        progress = BuildProgressIndicator(command_name="update-styles")
        pipeline = StoryvoicePipeline(
            run_logger=RunLogger(),
            stage_progress_callback=progress.on_stage_start,
            segment_progress_callback=progress.on_segment_complete,
            runtime_sources=_runtime_sources(api_key),
        )
        refresh = pipeline.refresh_styles(
            story, config, out, parse_speaker_list(speakers), force=force
        )
    except Exception as exc:
        exit_with_command_error("update-styles", exc)

    if refresh.run is None:
        typer.echo("No style changes detected.")
        return
    typer.echo(f"Regenerated: {len(refresh.run.succeeded)}")
    echo_failed_segments(refresh.run.failed)
    typer.echo("Run `storyvoice generate` to assemble the updated audiobook.")
    if refresh.run.failed:
        raise typer.Exit(code=1)


@app.command("invalidate")
def invalidate_command(
    story: Annotated[Path, typer.Argument(help="Path to the story script.")],
    speakers: Annotated[
        str, typer.Option("--speakers", help="Comma-separated speakers to invalidate.")
    ],
    out: Annotated[Path, typer.Option("--out", help="Output directory.")] = _DEFAULT_OUTPUT_DIR,
) -> None:
    """Remove cached audio for speakers so it is regenerated next run."""

    try:
        names = parse_speaker_list(speakers)
        if not names:
            raise PipelineStageError(
                stage="invalidate",
                detail="No speakers given.",
                hint="Pass `--speakers NARRATOR,ALICE`.",
            )
        removed = StoryvoicePipeline().invalidate(story, out, names)
    except Exception as exc:
        exit_with_command_error("invalidate", exc)

    typer.echo(f"Invalidated segments: {removed}")


@app.command("info")
def info_command(
    story: Annotated[Path, typer.Argument(help="Path to the story script.")],
    out: Annotated[Path, typer.Option("--out", help="Output directory.")] = _DEFAULT_OUTPUT_DIR,
) -> None:
    """Show cache statistics for a story."""

    try:
        info = StoryvoicePipeline().cache_info(story, out)
    except Exception as exc:
        exit_with_command_error("info", exc)

    echo_cache_info(info)


@app.command("clean")
def clean_command(
    story: Annotated[Path, typer.Argument(help="Path to the story script.")],
    out: Annotated[Path, typer.Option("--out", help="Output directory.")] = _DEFAULT_OUTPUT_DIR,
    cache_only: Annotated[
        bool, typer.Option("--cache-only", help="Only remove the segment cache.")
    ] = False,
    output_only: Annotated[
        bool, typer.Option("--output-only", help="Only remove assembled outputs.")
    ] = False,
) -> None:
    """Remove the story's segment cache and assembled outputs."""

    try:
        if cache_only and output_only:
            raise PipelineStageError(
                stage="clean",
                detail="`--cache-only` and `--output-only` are mutually exclusive.",
            )
        removed = StoryvoicePipeline().clean(
            story, out, cache=not output_only, outputs=not cache_only
        )
    except Exception as exc:
        exit_with_command_error("clean", exc)

    if not removed:
        typer.echo("Nothing to clean.")
        return
    for path in removed:
        typer.echo(f"Removed: {path}")


def main() -> None:
    """CLI entrypoint for console scripts."""
    app()


if __name__ == "__main__":
    main()
