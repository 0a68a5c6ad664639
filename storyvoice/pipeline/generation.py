"""Concurrent segment generation with seed-perturbation retries.

Responsibilities:
- Run one segment's synthesis attempts under the seed retry policy.
- Detect duration anomalies and keep the best-effort audio when retries run out.
- Drive a bounded worker pool while the calling thread is the only manifest writer.
- Persist the manifest periodically and once more when the run ends.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
import time

from ..cache.store import CacheStore, SegmentOutcome
from ..config import DEFAULT_CONCURRENCY, StoryvoiceConfig
from ..errors import (
    FAILURE_INCOMPLETE_OTHER,
    FAILURE_TRANSIENT,
    FAILURE_UNKNOWN,
    SynthesisError,
)
from ..models.datatypes import CacheManifest, Segment
from ..telemetry.logger import RunLogger
from ..tts.duration import DurationPolicy, DurationVerdict, check_duration
from ..tts.synthesizer import SpeechSynthesizer, SynthesizedAudio
from ..tts.voices import resolve_voice

SEED_RETRY_LIMIT = 3
TRANSIENT_COOLDOWN_SECONDS = 2.0
DEFAULT_SAVE_EVERY = 10
FAILURE_DURATION_ANOMALY = "duration_anomaly"

RETRY_IMMEDIATELY = "retry"
RETRY_AFTER_COOLDOWN = "cooldown"
STOP_RETRYING = "stop"


@dataclass(frozen=True, slots=True)
class AttemptOutcome:
    """Outcome of running all synthesis attempts for one segment.

    Attributes:
        audio: Accepted audio, `None` when every attempt failed.
        seeds: Seeds used, one per attempt, in order.
        error: Last observed error message for failures.
        failure_kind: Failure kind of the last observed error.
        warning: Warning attached to accepted best-effort audio.
    """

    audio: SynthesizedAudio | None
    seeds: tuple[int, ...]
    error: str | None = None
    failure_kind: str | None = None
    warning: str | None = None

    @property
    def success(self) -> bool:
        """Return whether usable audio was accepted."""

        return self.audio is not None


@dataclass(frozen=True, slots=True)
class SeedRetryPolicy:
    """Outer synthesis policy retrying with perturbed seeds.

    Attributes:
        max_seed_retries: Retries after the first attempt.
        transient_cooldown_seconds: Wait before retrying a transient failure.
    """

    max_seed_retries: int = SEED_RETRY_LIMIT
    transient_cooldown_seconds: float = TRANSIENT_COOLDOWN_SECONDS

    @property
    def max_attempts(self) -> int:
        """Return the total attempt budget."""

        return self.max_seed_retries + 1

    @staticmethod
    def decision(failure_kind: str) -> str:
        """Map a failure kind to an immediate retry, a cooldown retry, or a stop."""

        if failure_kind in {FAILURE_INCOMPLETE_OTHER, FAILURE_DURATION_ANOMALY}:
            return RETRY_IMMEDIATELY
        if failure_kind == FAILURE_TRANSIENT:
            return RETRY_AFTER_COOLDOWN
        return STOP_RETRYING

    def run(
        self,
        synthesize: Callable[[int], SynthesizedAudio],
        text: str,
        base_seed: int,
        *,
        duration_policy: DurationPolicy | None = None,
        sleeper: Callable[[float], None] = time.sleep,
        on_retry: Callable[[int, int, str, str], None] | None = None,
    ) -> AttemptOutcome:
        """Attempt synthesis with seeds `base_seed + attempt` until accepted or exhausted.

        `on_retry` receives `(attempt, next_seed, failure_kind, message)` before
        each retry.
        """

        seeds: list[int] = []
        best_effort: SynthesizedAudio | None = None
        best_effort_verdict: DurationVerdict | None = None
        last_error = "Synthesis was not attempted."
        last_kind = FAILURE_UNKNOWN

        for attempt in range(self.max_attempts):
            seed = base_seed + attempt
            seeds.append(seed)
            try:
                audio = synthesize(seed)
            except SynthesisError as exc:
                last_error, last_kind = str(exc), exc.failure_kind
            else:
                verdict = check_duration(text, audio.duration_ms, duration_policy)
                if not verdict.excessive:
                    return AttemptOutcome(audio=audio, seeds=tuple(seeds))
                best_effort, best_effort_verdict = audio, verdict
                last_error, last_kind = verdict.describe(), FAILURE_DURATION_ANOMALY

            decision = self.decision(last_kind)
            if decision == STOP_RETRYING or attempt + 1 >= self.max_attempts:
                break
            if on_retry is not None:
                on_retry(attempt + 1, seed + 1, last_kind, last_error)
            if decision == RETRY_AFTER_COOLDOWN and self.transient_cooldown_seconds > 0:
                sleeper(self.transient_cooldown_seconds)

        if best_effort is not None and best_effort_verdict is not None:
            return AttemptOutcome(
                audio=best_effort,
                seeds=tuple(seeds),
                warning=f"Kept best-effort audio: {best_effort_verdict.describe()}",
            )
        return AttemptOutcome(
            audio=None,
            seeds=tuple(seeds),
            error=last_error,
            failure_kind=last_kind,
        )


@dataclass(frozen=True, slots=True)
class SegmentGenerationResult:
    """Per-segment result of a run, generated or served from cache.

    Attributes:
        segment: Segment the result belongs to.
        success: Whether usable audio exists.
        audio_path: Segment audio file path.
        duration_ms: Audio duration, `0` when unknown or failed.
        file_size: Audio file size in bytes.
        from_cache: Whether the audio was reused from cache.
        error: Terminal error message for failures.
        warning: Non-fatal diagnostic for accepted audio.
        seeds: Seeds used for generation attempts.
        time_taken_ms: Wall-clock generation time.
    """

    segment: Segment
    success: bool
    audio_path: Path
    duration_ms: float = 0.0
    file_size: int = 0
    from_cache: bool = False
    error: str | None = None
    warning: str | None = None
    seeds: tuple[int, ...] = field(default_factory=tuple)
    time_taken_ms: float = 0.0


@dataclass(frozen=True, slots=True)
class GenerationRun:
    """Results of one generation pass.

    Attributes:
        manifest: Manifest after all upserts and the final save.
        results: Per-segment results ordered by segment index.
        elapsed_ms: Wall-clock duration of the pass.
    """

    manifest: CacheManifest
    results: tuple[SegmentGenerationResult, ...]
    elapsed_ms: float = 0.0

    @property
    def failed(self) -> tuple[SegmentGenerationResult, ...]:
        """Return results that ended in terminal failure."""

        return tuple(result for result in self.results if not result.success)

    @property
    def succeeded(self) -> tuple[SegmentGenerationResult, ...]:
        """Return results with usable audio."""

        return tuple(result for result in self.results if result.success)


class GenerationOrchestrator:
    """Generate pending segments concurrently and write outcomes through the cache."""

    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        store: CacheStore,
        config: StoryvoiceConfig,
        *,
        concurrency: int | None = None,
        save_every: int = DEFAULT_SAVE_EVERY,
        retry_policy: SeedRetryPolicy | None = None,
        duration_policy: DurationPolicy | None = None,
        run_logger: RunLogger | None = None,
        sleeper: Callable[[float], None] = time.sleep,
        progress_callback: Callable[[int, int, SegmentGenerationResult], None] | None = None,
    ) -> None:
        """Initialize the orchestrator with its collaborators and run policies."""

        self.synthesizer = synthesizer
        self.store = store
        self.config = config
        self.concurrency = max(1, concurrency or config.concurrency or DEFAULT_CONCURRENCY)
        self.save_every = max(1, save_every)
        self.retry_policy = retry_policy if retry_policy is not None else SeedRetryPolicy()
        self.duration_policy = duration_policy if duration_policy is not None else DurationPolicy()
        self._run_logger = run_logger
        self._sleeper = sleeper
        self._progress_callback = progress_callback

    def _log(self, level: str, event: str, **context: object) -> None:
        """Emit a generation-stage event when a run logger is configured."""

        if self._run_logger is not None:
            self._run_logger.log_event(level, event, "generate", **context)

    def base_seed(self, segment: Segment) -> int:
        """Return the first-attempt seed for a segment."""

        voice = resolve_voice(self.config, segment.speaker)
        if voice.seed is not None:
            return voice.seed
        return self.config.global_seed or 0

    def generate_segment(self, segment: Segment) -> SegmentGenerationResult:
        """Run all synthesis attempts for one segment and write accepted audio.

        Synthesis failures are returned as failed results. File write errors
        propagate.
        """

        started = time.monotonic()
        voice = resolve_voice(self.config, segment.speaker)

        def _on_retry(attempt: int, next_seed: int, failure_kind: str, message: str) -> None:
            """Log one retry decision."""

            self._log(
                "WARNING",
                "segment_retry",
                segment_id=segment.id,
                attempt=attempt,
                seed=next_seed,
                failure_kind=failure_kind,
            )
            if self._run_logger is not None:
                self._run_logger.debug(f"{segment.id} attempt {attempt} failed: {message}")

        outcome = self.retry_policy.run(
            lambda seed: self.synthesizer.synthesize(segment.text, voice, seed),
            segment.text,
            self.base_seed(segment),
            duration_policy=self.duration_policy,
            sleeper=self._sleeper,
            on_retry=_on_retry,
        )
        audio_path = self.store.segment_audio_path(segment.id)
        elapsed_ms = (time.monotonic() - started) * 1000.0

        if outcome.audio is None:
            return SegmentGenerationResult(
                segment=segment,
                success=False,
                audio_path=audio_path,
                error=outcome.error,
                seeds=outcome.seeds,
                time_taken_ms=elapsed_ms,
            )

        written = self.store.write_segment_audio(segment.id, outcome.audio.wav_bytes)
        if outcome.warning:
            self._log("WARNING", "duration_anomaly", segment_id=segment.id, seed=outcome.seeds[-1])
        return SegmentGenerationResult(
            segment=segment,
            success=True,
            audio_path=written,
            duration_ms=outcome.audio.duration_ms,
            file_size=len(outcome.audio.wav_bytes),
            warning=outcome.warning,
            seeds=outcome.seeds,
            time_taken_ms=elapsed_ms,
        )

    def run(self, manifest: CacheManifest, segments: Iterable[Segment]) -> GenerationRun:
        """Generate segments with at most `concurrency` in flight.

        Workers only synthesize and write their own segment file. Every
        manifest upsert and save happens on the calling thread as futures
        complete, so upserts always observe the latest manifest.
        """

        pending = list(segments)
        started = time.monotonic()
        results: list[SegmentGenerationResult] = []
        current = manifest
        try:
            with ThreadPoolExecutor(
                max_workers=self.concurrency, thread_name_prefix="storyvoice-tts"
            ) as executor:
                futures: dict[Future[SegmentGenerationResult], Segment] = {
                    executor.submit(self.generate_segment, segment): segment
                    for segment in pending
                }
                try:
                    for completed, future in enumerate(as_completed(futures), start=1):
                        result = future.result()
                        results.append(result)
                        current = self._record(current, result)
                        if self._progress_callback is not None:
                            self._progress_callback(completed, len(pending), result)
                        if completed % self.save_every == 0:
                            current = self.store.save(current)
                            self._log("INFO", "manifest_saved", completed=completed)
                except BaseException:
                    for future in futures:
                        future.cancel()
                    raise
        finally:
            current = self.store.save(current)

        results.sort(key=lambda item: item.segment.index)
        return GenerationRun(
            manifest=current,
            results=tuple(results),
            elapsed_ms=(time.monotonic() - started) * 1000.0,
        )

    def _record(
        self, manifest: CacheManifest, result: SegmentGenerationResult
    ) -> CacheManifest:
        """Upsert one result into the manifest and log it."""

        if result.success:
            self._log(
                "INFO",
                "segment_generated",
                segment_id=result.segment.id,
                attempts=len(result.seeds),
                seed=result.seeds[-1] if result.seeds else "none",
            )
        else:
            self._log(
                "WARNING",
                "segment_failed",
                segment_id=result.segment.id,
                attempts=len(result.seeds),
            )
            if self._run_logger is not None:
                self._run_logger.debug(f"{result.segment.id} failed: {result.error}")
        return self.store.upsert(
            manifest,
            result.segment,
            self.config,
            SegmentOutcome(
                audio_path=result.audio_path,
                duration_ms=result.duration_ms,
                file_size=result.file_size,
                provider=self.synthesizer.provider_id,
                success=result.success,
                error=result.error,
            ),
        )
