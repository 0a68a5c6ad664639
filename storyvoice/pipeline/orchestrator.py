"""Pipeline orchestration for Storyvoice.

Responsibilities:
- Define the stage order for the story-to-audiobook flow.
- Combine cache planning, generation, and assembly into one run result.
- Provide cache maintenance flows (style refresh, invalidation, info, clean).

Key types:
- `StoryvoicePipeline`: orchestration facade.
- `GenerateOptions`: per-run selection and behavior switches.
- `AudiobookResult`: outcome of a generate run.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
import time

from ..audio.assembler import (
    AssemblyError,
    AssemblyInput,
    AssemblyOptions,
    AssemblyResult,
    AudioAssembler,
)
from ..audio.wav import WavFormat
from ..cache.planner import CacheHit, IncrementalPlanner
from ..cache.store import CacheStats, CacheStore
from ..config import RuntimeConfigSources, StoryvoiceConfig
from ..errors import PipelineStageError
from ..models.datatypes import CacheManifest, GenerationStats, Segment
from ..provider_factory import ProviderFactory
from ..telemetry.logger import RunLogger
from ..text.story_parser import (
    ParsedStory,
    StoryParser,
    filter_by_speakers,
    segment_window,
)
from ..tts.synthesizer import SpeechSynthesizer
from .generation import (
    DEFAULT_SAVE_EVERY,
    GenerationOrchestrator,
    GenerationRun,
    SegmentGenerationResult,
)
from .telemetry import PipelineTelemetryMixin


@dataclass(frozen=True, slots=True)
class GenerateOptions:
    """Selection and behavior switches for one generate run.

    Attributes:
        force: Regenerate every selected segment regardless of cache state.
        dry_run: Plan only, without synthesis or assembly.
        speakers: Restrict the run to these speakers.
        start_from: First story index to include.
        max_segments: Maximum number of segments to include.
        output_suffix: Optional suffix (for example a timestamp) for output names.
        concurrency: Override of the configured worker pool width.
        save_every: Manifest save cadence in completed segments.
    """

    force: bool = False
    dry_run: bool = False
    speakers: tuple[str, ...] = field(default_factory=tuple)
    start_from: int = 0
    max_segments: int | None = None
    output_suffix: str | None = None
    concurrency: int | None = None
    save_every: int = DEFAULT_SAVE_EVERY

    @property
    def selects_whole_story(self) -> bool:
        """Return whether no filter narrows the story."""

        return not self.speakers and self.start_from == 0 and self.max_segments is None


@dataclass(frozen=True, slots=True)
class AudiobookResult:
    """Outcome of one generate run.

    Attributes:
        success: `True` only when no selected segment failed.
        story_path: Story file the run was built from.
        selected_segments: Segments selected for the run.
        planned_segments: Segments that needed synthesis.
        cached_segments: Segments served from cache.
        generated_segments: Segments synthesized successfully in this run.
        failed_segments: Segments that ended in terminal failure.
        warnings: Non-fatal diagnostics.
        output_path: Assembled audiobook, `None` for dry runs.
        manifest_path: Timing manifest, `None` for dry runs.
        total_duration_ms: Duration of the assembled audiobook.
        dry_run: Whether the run only planned.
    """

    success: bool
    story_path: Path
    selected_segments: tuple[Segment, ...]
    planned_segments: tuple[Segment, ...]
    cached_segments: tuple[CacheHit, ...]
    generated_segments: tuple[SegmentGenerationResult, ...] = field(default_factory=tuple)
    failed_segments: tuple[SegmentGenerationResult, ...] = field(default_factory=tuple)
    warnings: tuple[str, ...] = field(default_factory=tuple)
    output_path: Path | None = None
    manifest_path: Path | None = None
    total_duration_ms: float = 0.0
    dry_run: bool = False


@dataclass(frozen=True, slots=True)
class StyleRefreshResult:
    """Outcome of regenerating segments whose voice changed.

    Attributes:
        changed_segments: Segments selected for regeneration.
        run: Generation pass, `None` when nothing changed.
    """

    changed_segments: tuple[Segment, ...]
    run: GenerationRun | None = None


@dataclass(frozen=True, slots=True)
class CacheInfo:
    """Cache state summary for one story.

    Attributes:
        cache_dir: Per-story cache root.
        manifest: Loaded manifest, `None` when absent.
        stats: Aggregate entry statistics.
        directory_size: Bytes used by the cache directory.
    """

    cache_dir: Path
    manifest: CacheManifest | None
    stats: CacheStats
    directory_size: int


@dataclass(frozen=True, slots=True)
class _RunPlan:
    """Internal planning outcome for a generate run."""

    manifest: CacheManifest
    selected: tuple[Segment, ...]
    to_generate: tuple[Segment, ...]
    from_cache: tuple[CacheHit, ...]
    warnings: tuple[str, ...]


SynthesizerFactory = Callable[[StoryvoiceConfig], SpeechSynthesizer]


class StoryvoicePipeline(PipelineTelemetryMixin):
    """Coordinate all stages for a single Storyvoice run."""

    def __init__(
        self,
        run_logger: RunLogger | None = None,
        stage_progress_callback: Callable[[str, int, int], None] | None = None,
        segment_progress_callback: (
            Callable[[int, int, SegmentGenerationResult], None] | None
        ) = None,
        synthesizer_factory: SynthesizerFactory | None = None,
        runtime_sources: RuntimeConfigSources | None = None,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize runtime logging, progress hooks, and provider construction."""

        self._run_logger = run_logger
        self._stage_progress_callback = stage_progress_callback
        self._segment_progress_callback = segment_progress_callback
        self._synthesizer_factory = synthesizer_factory
        self._runtime_sources = runtime_sources
        self._sleeper = sleeper
        self._parser = StoryParser()
        self._assembler = AudioAssembler()

    def parse_story(self, story_path: Path) -> ParsedStory:
        """Parse and validate a story file, mapping failures to stage errors."""

        try:
            story = self._parser.parse_file(story_path)
        except FileNotFoundError as exc:
            raise PipelineStageError(
                stage="parse",
                detail=f"Story file not found: `{story_path}`.",
                hint="Pass the path of an existing story script.",
            ) from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise PipelineStageError(
                stage="parse",
                detail=f"Failed to read story file `{story_path}`: {exc}",
                hint="Verify file permissions and UTF-8 encoding.",
            ) from exc

        validation = self._parser.validate(story)
        if not validation.is_valid:
            raise PipelineStageError(
                stage="parse",
                detail="; ".join(validation.errors),
                hint="Tag lines as `[SPEAKER] text` or `SPEAKER: text`.",
            )
        if self._run_logger is not None:
            for warning in validation.warnings:
                self._run_logger.debug(f"Story warning: {warning}")
        return story

    def generate(
        self,
        story_path: Path,
        config: StoryvoiceConfig,
        output_dir: Path,
        options: GenerateOptions | None = None,
    ) -> AudiobookResult:
        """Run parse, plan, generate, assemble, and manifest stages for a story."""

        resolved = options if options is not None else GenerateOptions()
        config_warnings = self._validate_config(config)
        story = self._run_stage("parse", lambda: self.parse_story(story_path))
        store = CacheStore.for_story(output_dir, story_path)
        plan = self._run_stage(
            "plan", lambda: self._plan(story, story_path, config, store, resolved)
        )
        warnings = [*config_warnings, *plan.warnings]

        if resolved.dry_run:
            return AudiobookResult(
                success=True,
                story_path=story_path,
                selected_segments=plan.selected,
                planned_segments=plan.to_generate,
                cached_segments=plan.from_cache,
                warnings=tuple(warnings),
                dry_run=True,
            )

        run = self._run_stage(
            "generate",
            lambda: self._generate(plan.manifest, plan.to_generate, config, store, resolved),
        )
        usable_duration = sum(result.duration_ms for result in run.succeeded) + sum(
            hit.cached.duration_ms for hit in plan.from_cache
        )
        stats = GenerationStats(
            total_segments=len(plan.selected),
            generated_segments=len(run.succeeded),
            cached_segments=len(plan.from_cache),
            failed_segments=len(run.failed),
            total_time_ms=run.elapsed_ms,
            total_audio_duration_ms=usable_duration,
        )
        store.save(store.with_stats(run.manifest, stats))
        warnings.extend(
            f"{result.segment.id}: {result.warning}" for result in run.succeeded if result.warning
        )

        inputs = self._assembly_inputs(store, plan.from_cache, run.succeeded)
        if not inputs:
            raise PipelineStageError(
                stage="generate",
                detail="No segments were successfully generated.",
                hint="Check the API key, provider status, and failed segment errors.",
            )

        suffix = f"_{resolved.output_suffix}" if resolved.output_suffix else ""
        output_path = output_dir / f"{story_path.stem}{suffix}_audiobook.wav"
        manifest_path = output_dir / f"{story_path.stem}{suffix}_manifest.json"
        assembly = self._run_stage(
            "assemble",
            lambda: self._assemble(inputs, output_path, config, story_path),
        )
        self._run_stage(
            "manifest",
            lambda: self._write_timing_manifest(assembly, manifest_path),
        )

        return AudiobookResult(
            success=not run.failed,
            story_path=story_path,
            selected_segments=plan.selected,
            planned_segments=plan.to_generate,
            cached_segments=plan.from_cache,
            generated_segments=run.succeeded,
            failed_segments=run.failed,
            warnings=tuple(warnings),
            output_path=assembly.output_path,
            manifest_path=manifest_path,
            total_duration_ms=assembly.total_duration_ms,
        )

    def refresh_styles(
        self,
        story_path: Path,
        config: StoryvoiceConfig,
        output_dir: Path,
        speakers: tuple[str, ...] = (),
        force: bool = False,
    ) -> StyleRefreshResult:
        """Regenerate segments whose voice changed, writing through the cache only."""

        self._validate_config(config)
        story = self._run_stage("parse", lambda: self.parse_story(story_path))
        store = CacheStore.for_story(output_dir, story_path)

        def _select() -> tuple[CacheManifest, tuple[Segment, ...]]:
            """Load the manifest and select segments with changed voices."""

            manifest = store.load()
            if force:
                changed = filter_by_speakers(story.segments, speakers)
            else:
                changed = IncrementalPlanner(config).segments_with_style_change(
                    manifest, story.segments, speakers
                )
            if manifest is None:
                manifest = store.create(story_path, story.story_hash, config.config_hash())
            return manifest, tuple(changed)

        manifest, changed = self._run_stage("plan", _select)
        if not changed:
            return StyleRefreshResult(changed_segments=())
        run = self._run_stage(
            "generate",
            lambda: self._generate(manifest, changed, config, store, GenerateOptions()),
        )
        return StyleRefreshResult(changed_segments=changed, run=run)

    def invalidate(
        self,
        story_path: Path,
        output_dir: Path,
        speakers: tuple[str, ...],
    ) -> int:
        """Drop cache entries and audio for speakers, returning the removed count."""

        store = CacheStore.for_story(output_dir, story_path)
        manifest = store.load()
        if manifest is None:
            return 0
        updated = store.invalidate_by_speaker(manifest, speakers)
        removed = len(manifest.segments) - len(updated.segments)
        if removed:
            store.save(updated)
        return removed

    def cache_info(self, story_path: Path, output_dir: Path) -> CacheInfo:
        """Return cache statistics for a story."""

        store = CacheStore.for_story(output_dir, story_path)
        manifest = store.load()
        return CacheInfo(
            cache_dir=store.cache_dir,
            manifest=manifest,
            stats=store.stats(manifest),
            directory_size=store.directory_size(),
        )

    def clean(
        self,
        story_path: Path,
        output_dir: Path,
        *,
        cache: bool = True,
        outputs: bool = True,
    ) -> list[Path]:
        """Delete the story cache and/or assembled outputs, returning removed paths."""

        removed: list[Path] = []
        if cache:
            store = CacheStore.for_story(output_dir, story_path)
            if store.clear():
                removed.append(store.cache_dir)
        if outputs and output_dir.is_dir():
            stem = story_path.stem
            for pattern in (f"{stem}*_audiobook.wav", f"{stem}*_manifest.json"):
                for path in sorted(output_dir.glob(pattern)):
                    path.unlink(missing_ok=True)
                    removed.append(path)
        return removed

    def _validate_config(self, config: StoryvoiceConfig) -> list[str]:
        """Validate config values and map failures to stage errors."""

        try:
            warnings = config.validate()
        except ValueError as exc:
            raise PipelineStageError(
                stage="config",
                detail=f"Invalid configuration: {exc}",
                hint="Fix config schema/values and rerun.",
            ) from exc

        provider_format = ProviderFactory.output_format(config.provider)
        requested = WavFormat(
            channels=config.audio.channels,
            sample_rate=config.audio.sample_rate,
            bits_per_sample=config.audio.bit_depth,
        )
        if requested != provider_format:
            raise PipelineStageError(
                stage="config",
                detail=(
                    f"Audio settings {requested.channels}ch/{requested.sample_rate}Hz/"
                    f"{requested.bits_per_sample}bit do not match provider "
                    f"`{config.provider.name}` output {provider_format.channels}ch/"
                    f"{provider_format.sample_rate}Hz/{provider_format.bits_per_sample}bit."
                ),
                hint=(
                    f"Set `audio.channels` to {provider_format.channels}, "
                    f"`audio.sampleRate` to {provider_format.sample_rate} and "
                    f"`audio.bitDepth` to {provider_format.bits_per_sample}."
                ),
            )
        return warnings

    def _plan(
        self,
        story: ParsedStory,
        story_path: Path,
        config: StoryvoiceConfig,
        store: CacheStore,
        options: GenerateOptions,
    ) -> _RunPlan:
        """Load cache state and split the selected segments into misses and hits."""

        warnings: list[str] = []
        selected = tuple(
            segment_window(
                filter_by_speakers(story.segments, options.speakers),
                options.start_from,
                options.max_segments,
            )
        )
        if not selected:
            raise PipelineStageError(
                stage="plan",
                detail="No segments match the requested speakers/range.",
                hint="Check `--speakers`, `--start-from`, and `--max-segments`.",
            )

        story_hash = story.story_hash
        config_hash = config.config_hash()
        manifest = store.load()
        if manifest is None:
            manifest = store.create(story_path, story_hash, config_hash)
        else:
            if manifest.story_hash != story_hash or manifest.config_hash != config_hash:
                self._debug("Story or config changed since last run; checking segments.")
            manifest = store.with_fingerprints(manifest, story_hash, config_hash)

        if len(manifest.segments) < len(story.segments):
            recovered = store.recover(story.segments, config)
            before = len(manifest.segments)
            manifest = store.merge_recovered(manifest, recovered)
            if len(manifest.segments) > before:
                self._debug(
                    f"Recovered {len(manifest.segments) - before} segment(s) from disk."
                )

        # Pruning unlinks audio, so a dry run must not touch disk.
        if options.selects_whole_story and not options.dry_run:
            manifest = store.prune_stale(manifest, (segment.id for segment in story.segments))

        if options.force:
            return _RunPlan(
                manifest=manifest,
                selected=selected,
                to_generate=selected,
                from_cache=(),
                warnings=tuple(warnings),
            )

        partition = IncrementalPlanner(config).partition(manifest, selected)
        from_cache: list[CacheHit] = []
        missing_files: list[Segment] = []
        for hit in partition.from_cache:
            if store.verify_file_exists(hit.cached):
                from_cache.append(hit)
            else:
                missing_files.append(hit.segment)
        if missing_files:
            warnings.append(
                f"{len(missing_files)} cached segment file(s) missing on disk; regenerating."
            )
        to_generate = tuple(
            sorted((*partition.to_generate, *missing_files), key=lambda item: item.index)
        )
        return _RunPlan(
            manifest=manifest,
            selected=selected,
            to_generate=to_generate,
            from_cache=tuple(from_cache),
            warnings=tuple(warnings),
        )

    def _generate(
        self,
        manifest: CacheManifest,
        segments: tuple[Segment, ...],
        config: StoryvoiceConfig,
        store: CacheStore,
        options: GenerateOptions,
    ) -> GenerationRun:
        """Generate pending segments, or just persist the manifest when none are pending."""

        if not segments:
            return GenerationRun(manifest=store.save(manifest), results=())
        orchestrator = GenerationOrchestrator(
            self._create_synthesizer(config),
            store,
            config,
            concurrency=options.concurrency,
            save_every=options.save_every,
            run_logger=self._run_logger,
            sleeper=self._sleeper,
            progress_callback=self._segment_progress_callback,
        )
        try:
            return orchestrator.run(manifest, segments)
        except OSError as exc:
            raise PipelineStageError(
                stage="generate",
                detail=f"Failed to write generation artifacts: {exc}",
                hint="Verify the output directory is writable and has free space.",
            ) from exc

    def _create_synthesizer(self, config: StoryvoiceConfig) -> SpeechSynthesizer:
        """Build the configured synthesizer, requiring an API key for the default factory."""

        if self._synthesizer_factory is not None:
            return self._synthesizer_factory(config)
        api_key = config.resolved_api_key(self._runtime_sources)
        if api_key is None:
            raise PipelineStageError(
                stage="generate",
                detail="Missing Gemini API key.",
                hint="Set `GEMINI_API_KEY` or pass `--api-key`.",
            )
        try:
            return ProviderFactory.create_synthesizer(config.provider, api_key=api_key)
        except ValueError as exc:
            raise PipelineStageError(
                stage="generate",
                detail=str(exc),
                hint="Use provider `gemini` in the config file.",
            ) from exc

    @staticmethod
    def _assembly_inputs(
        store: CacheStore,
        from_cache: tuple[CacheHit, ...],
        generated: tuple[SegmentGenerationResult, ...],
    ) -> list[AssemblyInput]:
        """Collect usable segment audio for assembly."""

        inputs = [
            AssemblyInput(
                path=store.segments_dir / Path(hit.cached.audio_path).name,
                index=hit.segment.index,
                speaker=hit.segment.speaker,
                text=hit.segment.text,
                duration_ms=hit.cached.duration_ms or None,
            )
            for hit in from_cache
        ]
        inputs.extend(
            AssemblyInput(
                path=result.audio_path,
                index=result.segment.index,
                speaker=result.segment.speaker,
                text=result.segment.text,
                duration_ms=result.duration_ms or None,
            )
            for result in generated
        )
        return inputs

    def _assemble(
        self,
        inputs: list[AssemblyInput],
        output_path: Path,
        config: StoryvoiceConfig,
        story_path: Path,
    ) -> AssemblyResult:
        """Assemble segment audio into the final audiobook."""

        options = AssemblyOptions(
            silence_ms=config.audio.silence_padding_ms,
            sample_rate=config.audio.sample_rate,
            channels=config.audio.channels,
            bits_per_sample=config.audio.bit_depth,
            title=story_path.stem,
            source_file=str(story_path),
            provider=config.provider.name,
        )
        try:
            return self._assembler.assemble(inputs, output_path, options)
        except AssemblyError as exc:
            raise PipelineStageError(
                stage="assemble",
                detail=str(exc),
                hint="Run `storyvoice clean --cache-only` and regenerate the story.",
            ) from exc
        except OSError as exc:
            raise PipelineStageError(
                stage="assemble",
                detail=f"Failed to write audiobook `{output_path}`: {exc}",
                hint="Verify the output directory is writable and has free space.",
            ) from exc

    def _write_timing_manifest(self, assembly: AssemblyResult, path: Path) -> Path:
        """Write the timing manifest next to the audiobook."""

        try:
            return self._assembler.write_manifest(assembly.timing_manifest, path)
        except OSError as exc:
            raise PipelineStageError(
                stage="manifest",
                detail=f"Failed to write manifest `{path}`: {exc}",
                hint="Verify the output directory is writable.",
            ) from exc

    def _debug(self, message: str) -> None:
        """Write a diagnostic line to the run logger when configured."""

        if self._run_logger is not None:
            self._run_logger.debug(message)
