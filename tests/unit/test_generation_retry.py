"""Unit tests for seed retries, duration anomaly checks, and concurrent generation."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
import threading

import pytest

from storyvoice.cache.store import CacheStore, is_cached
from storyvoice.config import StoryvoiceConfig
from storyvoice.errors import (
    FAILURE_CONTENT_BLOCKED,
    FAILURE_INCOMPLETE_OTHER,
    FAILURE_TRANSIENT,
    SynthesisError,
)
from storyvoice.pipeline.generation import GenerationOrchestrator, SeedRetryPolicy
from storyvoice.text.story_parser import StoryParser
from storyvoice.tts.duration import check_duration, strip_style_directives
from storyvoice.tts.synthesizer import SynthesizedAudio
from storyvoice.tts.voices import VoiceConfig


class _ScriptedSynthesize:
    """Callable returning scripted outcomes per attempt and recording seeds."""

    def __init__(self, outcomes: list[object]) -> None:
        """Store outcomes; exceptions are raised, audio is returned."""

        self.outcomes = outcomes
        self.seeds: list[int] = []

    def __call__(self, seed: int) -> SynthesizedAudio:
        """Return or raise the next scripted outcome."""

        self.seeds.append(seed)
        outcome = self.outcomes[min(len(self.seeds), len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        assert isinstance(outcome, SynthesizedAudio)
        return outcome


class _FakeSynthesizer:
    """Thread-safe synthesizer double returning fixed WAV audio."""

    provider_id = "fake"

    def __init__(self, wav_bytes: bytes, duration_ms: float, blocked_speakers=()) -> None:
        """Initialize with audio to return and speakers whose content is blocked."""

        self.wav_bytes = wav_bytes
        self.duration_ms = duration_ms
        self.blocked_speakers = set(blocked_speakers)
        self.calls: list[tuple[str, str, int]] = []
        self._lock = threading.Lock()

    def synthesize(self, text: str, voice: VoiceConfig, seed: int) -> SynthesizedAudio:
        """Record the call and return audio or raise a terminal failure."""

        with self._lock:
            self.calls.append((voice.name, text, seed))
        if voice.name in self.blocked_speakers:
            raise SynthesisError("Content blocked: SAFETY", failure_kind=FAILURE_CONTENT_BLOCKED)
        return SynthesizedAudio(wav_bytes=self.wav_bytes, duration_ms=self.duration_ms)


def _audio(duration_ms: float) -> SynthesizedAudio:
    """Return placeholder audio with a declared duration."""

    return SynthesizedAudio(wav_bytes=b"RIFF", duration_ms=duration_ms)


def _other() -> SynthesisError:
    """Return the retryable incomplete-generation failure."""

    return SynthesisError("Generation incomplete: OTHER", failure_kind=FAILURE_INCOMPLETE_OTHER)


def test_seed_retry_exhaustion_uses_consecutive_seeds() -> None:
    """Persistent OTHER failures stop after four attempts with seeds N..N+3."""

    synthesize = _ScriptedSynthesize([_other()])

    outcome = SeedRetryPolicy().run(synthesize, "Hello there, friend.", 100)

    assert synthesize.seeds == [100, 101, 102, 103]
    assert not outcome.success
    assert outcome.failure_kind == FAILURE_INCOMPLETE_OTHER
    assert outcome.seeds == (100, 101, 102, 103)


def test_seed_retry_recovers_on_third_attempt() -> None:
    """A success after two OTHER failures ends the loop with three calls."""

    synthesize = _ScriptedSynthesize([_other(), _other(), _audio(1500)])

    outcome = SeedRetryPolicy().run(synthesize, "Hello there, friend.", 5)

    assert synthesize.seeds == [5, 6, 7]
    assert outcome.success
    assert outcome.warning is None


def test_terminal_failures_are_not_retried() -> None:
    """Blocked content fails after a single attempt."""

    synthesize = _ScriptedSynthesize(
        [SynthesisError("Content blocked: SAFETY", failure_kind=FAILURE_CONTENT_BLOCKED)]
    )

    outcome = SeedRetryPolicy().run(synthesize, "Hello there, friend.", 0)

    assert synthesize.seeds == [0]
    assert outcome.failure_kind == FAILURE_CONTENT_BLOCKED


def test_transient_failures_retry_after_cooldown() -> None:
    """Transient failures wait for the cooldown before the next seed."""

    sleeps: list[float] = []
    synthesize = _ScriptedSynthesize(
        [SynthesisError("HTTP 503", failure_kind=FAILURE_TRANSIENT), _audio(1500)]
    )

    outcome = SeedRetryPolicy().run(synthesize, "Hello there, friend.", 0, sleeper=sleeps.append)

    assert outcome.success
    assert synthesize.seeds == [0, 1]
    assert sleeps == [2.0]


def test_duration_anomaly_retries_with_next_seed() -> None:
    """Audio far longer than its text allows triggers an immediate retry."""

    synthesize = _ScriptedSynthesize([_audio(6000), _audio(800)])

    outcome = SeedRetryPolicy().run(synthesize, "<whispering>", 10)

    assert synthesize.seeds == [10, 11]
    assert outcome.success
    assert outcome.audio is not None and outcome.audio.duration_ms == 800


def test_persistent_duration_anomaly_keeps_best_effort_audio() -> None:
    """When every attempt is anomalous the last audio is accepted with a warning."""

    synthesize = _ScriptedSynthesize([_audio(6000)])

    outcome = SeedRetryPolicy().run(synthesize, "<whispering>", 0)

    assert len(synthesize.seeds) == 4
    assert outcome.success
    assert outcome.warning is not None and "exceeds" in outcome.warning


def test_check_duration_limits() -> None:
    """Near-empty text has a strict cap; longer text scales with a floor and ceiling."""

    text = "x" * 100

    assert strip_style_directives("<whispering> [softly] Hi") == "Hi"
    assert check_duration("<whispering>", 6000).excessive
    assert not check_duration("<whispering>", 4000).excessive
    assert check_duration("<whispering>", 6000).limit_seconds == 5.0
    assert not check_duration(text, 30_000).excessive
    assert check_duration(text, 40_000).excessive
    assert not check_duration("Hi there, friend.", 9_000).excessive
    assert check_duration("x" * 5000, 121_000).excessive


def _orchestrator(
    tmp_path: Path,
    story_file: Path,
    synthesizer: _FakeSynthesizer,
    config: StoryvoiceConfig,
    **kwargs: object,
):
    """Build an orchestrator over the shared story with a fresh cache store."""

    store = CacheStore(tmp_path / "out", "story")
    story = StoryParser().parse_file(story_file)
    manifest = store.create(story_file, story.story_hash, config.config_hash())
    orchestrator = GenerationOrchestrator(synthesizer, store, config, **kwargs)
    return orchestrator, store, manifest, story.segments


def test_orchestrator_generates_all_segments_and_persists_manifest(
    tmp_path: Path, story_file: Path, make_wav: Callable[..., bytes]
) -> None:
    """Concurrent generation writes every file and a complete manifest."""

    config = StoryvoiceConfig()
    synthesizer = _FakeSynthesizer(make_wav(250), 250.0)
    progress: list[int] = []
    orchestrator, store, manifest, segments = _orchestrator(
        tmp_path,
        story_file,
        synthesizer,
        config,
        concurrency=2,
        save_every=2,
        progress_callback=lambda completed, total, result: progress.append(completed),
    )

    run = orchestrator.run(manifest, segments)
    persisted = store.load()

    assert [result.segment.index for result in run.results] == [0, 1, 2, 3]
    assert all(result.success for result in run.results)
    assert sorted(progress) == [1, 2, 3, 4]
    assert len(synthesizer.calls) == 4
    assert persisted is not None
    assert len(persisted.segments) == 4
    for segment in segments:
        assert is_cached(persisted, segment, config) is not None
        assert store.segment_audio_path(segment.id).read_bytes() == make_wav(250)


def _record_saves(monkeypatch: pytest.MonkeyPatch) -> list[int]:
    """Patch `CacheStore.save` to record the entry count of every saved manifest."""

    saved_counts: list[int] = []
    original_save = CacheStore.save

    def _recording_save(self: CacheStore, manifest):
        """Record the entry count, then persist as usual."""

        saved_counts.append(len(manifest.segments))
        return original_save(self, manifest)

    monkeypatch.setattr(CacheStore, "save", _recording_save)
    return saved_counts


def test_orchestrator_saves_manifest_at_fixed_cadence_and_at_end(
    tmp_path: Path,
    story_file: Path,
    make_wav: Callable[..., bytes],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Manifests are flushed every `save_every` completions plus once at run end."""

    saved_counts = _record_saves(monkeypatch)
    config = StoryvoiceConfig()
    orchestrator, _, manifest, segments = _orchestrator(
        tmp_path,
        story_file,
        _FakeSynthesizer(make_wav(250), 250.0),
        config,
        concurrency=1,
        save_every=2,
    )

    orchestrator.run(manifest, segments)

    assert saved_counts == [2, 4, 4]


def test_orchestrator_persists_completed_segments_when_run_aborts(
    tmp_path: Path,
    story_file: Path,
    make_wav: Callable[..., bytes],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """An error mid-run still leaves every recorded completion on disk."""

    saved_counts = _record_saves(monkeypatch)

    def _abort_on_third(completed: int, total: int, result: object) -> None:
        """Interrupt the run after the third completion has been recorded."""

        if completed == 3:
            raise RuntimeError("interrupted")

    config = StoryvoiceConfig()
    orchestrator, store, manifest, segments = _orchestrator(
        tmp_path,
        story_file,
        _FakeSynthesizer(make_wav(250), 250.0),
        config,
        concurrency=1,
        save_every=2,
        progress_callback=_abort_on_third,
    )

    with pytest.raises(RuntimeError, match="interrupted"):
        orchestrator.run(manifest, segments)

    persisted = store.load()
    assert saved_counts == [2, 3]
    assert persisted is not None
    assert len(persisted.segments) == 3
    assert all(entry.success for entry in persisted.segments)


def test_orchestrator_records_failures_without_stopping_other_segments(
    tmp_path: Path, story_file: Path, make_wav: Callable[..., bytes]
) -> None:
    """A terminal failure for one speaker is recorded while others succeed."""

    config = StoryvoiceConfig()
    synthesizer = _FakeSynthesizer(make_wav(250), 250.0, blocked_speakers={"ALICE"})
    orchestrator, store, manifest, segments = _orchestrator(
        tmp_path, story_file, synthesizer, config, concurrency=3
    )

    run = orchestrator.run(manifest, segments)

    assert [result.segment.speaker for result in run.failed] == ["ALICE"]
    assert len(run.succeeded) == 3
    failed_entry = run.manifest.entry_for(segments[1].id)
    assert failed_entry is not None
    assert not failed_entry.success
    assert failed_entry.error == "Content blocked: SAFETY"
    assert not store.segment_audio_path(segments[1].id).exists()


@pytest.mark.parametrize(
    ("voice_seed", "global_seed", "expected"),
    [(7, 12345, 7), (None, 12345, 12345), (None, None, 0)],
)
def test_base_seed_prefers_voice_seed_then_global_seed(
    tmp_path: Path,
    story_file: Path,
    make_wav: Callable[..., bytes],
    voice_seed: int | None,
    global_seed: int | None,
    expected: int,
) -> None:
    """First-attempt seeds fall back from voice seed to global seed to zero."""

    config = StoryvoiceConfig(
        voices=(VoiceConfig(name="ALICE", voice_name="Kore", seed=voice_seed),),
        global_seed=global_seed,
    )
    orchestrator, _, _, segments = _orchestrator(
        tmp_path, story_file, _FakeSynthesizer(make_wav(100), 100.0), config
    )

    assert orchestrator.base_seed(segments[1]) == expected
