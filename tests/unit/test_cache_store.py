"""Unit tests for cache manifest persistence, upserts, recovery, and invalidation."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone
import json
from pathlib import Path
import re

from storyvoice.cache.store import (
    CACHE_DIR_NAME,
    CACHE_SCHEMA_VERSION,
    CacheStore,
    SegmentOutcome,
    format_bytes,
    is_cached,
    story_cache_key,
)
from storyvoice.config import StoryvoiceConfig
from storyvoice.models.datatypes import CacheManifest, GenerationStats, Segment
from storyvoice.text.story_parser import StoryParser


def _fixed_clock() -> datetime:
    """Return a constant timestamp for deterministic manifests."""

    return datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _store(tmp_path: Path) -> CacheStore:
    """Create a cache store with a fixed clock under a temp output directory."""

    return CacheStore(tmp_path / "out", "story-abc12345", clock=_fixed_clock)


def _segments(story_file: Path) -> tuple[Segment, ...]:
    """Parse the shared test story."""

    return StoryParser().parse_file(story_file).segments


def _outcome(store: CacheStore, segment: Segment, *, success: bool = True) -> SegmentOutcome:
    """Build a generation outcome for a segment."""

    return SegmentOutcome(
        audio_path=store.segment_audio_path(segment.id),
        duration_ms=1200.0 if success else 0.0,
        file_size=57644 if success else 0,
        provider="gemini",
        success=success,
        error=None if success else "Generation incomplete: SAFETY",
    )


def _populated(
    store: CacheStore,
    segments: tuple[Segment, ...],
    config: StoryvoiceConfig,
    wav_bytes: bytes,
) -> CacheManifest:
    """Write audio files and matching entries for every segment."""

    manifest = store.create(Path("story.txt"), "story-hash", config.config_hash())
    for segment in segments:
        store.write_segment_audio(segment.id, wav_bytes)
        manifest = store.upsert(manifest, segment, config, _outcome(store, segment))
    return manifest


def test_story_cache_key_combines_slug_and_path_digest(tmp_path: Path) -> None:
    """Cache keys are readable and distinct per story path."""

    first = story_cache_key(tmp_path / "My Story.txt")
    second = story_cache_key(tmp_path / "other" / "My Story.txt")

    assert re.fullmatch(r"my-story-[0-9a-f]{8}", first)
    assert first != second
    assert CacheStore.for_story(tmp_path, tmp_path / "My Story.txt").cache_dir == (
        tmp_path / CACHE_DIR_NAME / first
    )


def test_story_cache_key_folds_accents_and_falls_back(tmp_path: Path) -> None:
    """Stems reduce to ASCII slugs and unnamed stems use `story`."""

    assert story_cache_key(tmp_path / "Příběh Noci!.txt").startswith("pribeh-noci-")
    assert re.fullmatch(r"story-[0-9a-f]{8}", story_cache_key(tmp_path / "???.txt"))


def test_save_and_load_preserve_entries_with_camel_case_keys(
    story_file: Path, tmp_path: Path, make_wav: Callable[..., bytes]
) -> None:
    """Saved manifests reload with the same entries and persisted key names."""

    store = _store(tmp_path)
    config = StoryvoiceConfig()
    manifest = _populated(store, _segments(story_file), config, make_wav(100))
    manifest = store.with_stats(manifest, GenerationStats(total_segments=4, generated_segments=4))

    saved = store.save(manifest)
    loaded = store.load()
    raw = json.loads(store.manifest_path.read_text(encoding="utf-8"))

    assert loaded is not None
    assert loaded.segments == saved.segments
    assert loaded.stats == saved.stats
    assert loaded.last_updated == _fixed_clock().isoformat()
    assert raw["version"] == CACHE_SCHEMA_VERSION
    assert set(raw["segments"][0]) >= {"segmentId", "audioPath", "durationMs", "hash"}
    assert set(raw["segments"][0]["hash"]) == {"textHash", "voiceHash", "combinedHash"}


def test_load_treats_missing_corrupt_and_outdated_manifests_as_absent(tmp_path: Path) -> None:
    """Unreadable or version-mismatched manifests never raise during load."""

    store = _store(tmp_path)
    assert store.load() is None

    store.manifest_path.parent.mkdir(parents=True)
    store.manifest_path.write_text("{not json", encoding="utf-8")
    assert store.load() is None

    store.manifest_path.write_text(json.dumps({"segments": []}), encoding="utf-8")
    assert store.load() is None

    outdated = replace(
        store.create(Path("story.txt"), "story-hash", "config-hash"), version="0.9.0"
    )
    store.manifest_path.write_text(json.dumps(outdated.to_payload()), encoding="utf-8")
    assert store.load() is None


def test_upsert_is_idempotent_and_keeps_index_order(story_file: Path, tmp_path: Path) -> None:
    """Repeated upserts keep one entry per id, sorted by index."""

    store = _store(tmp_path)
    config = StoryvoiceConfig()
    segments = _segments(story_file)
    manifest = store.create(Path("story.txt"), "story-hash", config.config_hash())

    for segment in (segments[2], segments[0], segments[2]):
        manifest = store.upsert(manifest, segment, config, _outcome(store, segment))
    once = manifest
    twice = store.upsert(once, segments[0], config, _outcome(store, segments[0]))

    assert [entry.index for entry in once.segments] == [0, 2]
    assert twice.segments == once.segments


def test_upsert_replaces_failed_entry_with_success(story_file: Path, tmp_path: Path) -> None:
    """A later successful outcome supersedes a recorded failure."""

    store = _store(tmp_path)
    config = StoryvoiceConfig()
    segment = _segments(story_file)[1]
    manifest = store.create(Path("story.txt"), "story-hash", config.config_hash())

    failed = store.upsert(manifest, segment, config, _outcome(store, segment, success=False))
    recovered = store.upsert(failed, segment, config, _outcome(store, segment))

    assert is_cached(failed, segment, config) is None
    assert failed.segments[0].error == "Generation incomplete: SAFETY"
    assert len(recovered.segments) == 1
    assert is_cached(recovered, segment, config) is not None


def test_recover_rebuilds_entries_from_audio_on_disk(
    story_file: Path, tmp_path: Path, make_wav: Callable[..., bytes]
) -> None:
    """Audio files named by segment id become valid entries with unknown duration."""

    store = _store(tmp_path)
    config = StoryvoiceConfig()
    segments = _segments(story_file)
    store.write_segment_audio(segments[0].id, make_wav(100))
    store.write_segment_audio(segments[3].id, make_wav(100))

    recovered = store.recover(segments, config)
    manifest = store.merge_recovered(
        store.create(Path("story.txt"), "story-hash", config.config_hash()), recovered
    )

    assert [entry.segment_id for entry in recovered] == [segments[0].id, segments[3].id]
    assert all(entry.duration_ms == 0 for entry in recovered)
    assert all(entry.success for entry in recovered)
    assert is_cached(manifest, segments[0], config) is not None
    assert is_cached(manifest, segments[1], config) is None


def test_merge_recovered_keeps_existing_entries(
    story_file: Path, tmp_path: Path, make_wav: Callable[..., bytes]
) -> None:
    """Recovered entries never overwrite entries the manifest already has."""

    store = _store(tmp_path)
    config = StoryvoiceConfig()
    segments = _segments(story_file)
    manifest = _populated(store, segments[:1], config, make_wav(100))

    merged = store.merge_recovered(manifest, store.recover(segments, config))

    assert merged.segments == manifest.segments


def test_invalidate_by_speaker_drops_entries_and_audio(
    story_file: Path, tmp_path: Path, make_wav: Callable[..., bytes]
) -> None:
    """Invalidation is case-insensitive and prevents recovery of dropped audio."""

    store = _store(tmp_path)
    config = StoryvoiceConfig()
    segments = _segments(story_file)
    manifest = _populated(store, segments, config, make_wav(100))

    updated = store.invalidate_by_speaker(manifest, ["narrator"])

    assert [entry.speaker for entry in updated.segments] == ["ALICE", "BOB"]
    assert not store.segment_audio_path(segments[0].id).exists()
    assert store.segment_audio_path(segments[1].id).exists()
    assert [entry.segment_id for entry in store.recover(segments, config)] == [
        segments[1].id,
        segments[2].id,
    ]


def test_prune_stale_and_remove_entry(
    story_file: Path, tmp_path: Path, make_wav: Callable[..., bytes]
) -> None:
    """Entries for ids outside the live story, or removed explicitly, disappear."""

    store = _store(tmp_path)
    config = StoryvoiceConfig()
    segments = _segments(story_file)
    manifest = _populated(store, segments, config, make_wav(100))

    pruned = store.prune_stale(manifest, [segments[0].id, segments[1].id])
    removed = store.remove_entry(pruned, segments[0].id)

    assert [entry.segment_id for entry in pruned.segments] == [segments[0].id, segments[1].id]
    assert [entry.segment_id for entry in removed.segments] == [segments[1].id]
    assert store.prune_stale(removed, [segments[1].id]) is removed


def test_verify_file_exists_stats_and_clear(
    story_file: Path, tmp_path: Path, make_wav: Callable[..., bytes]
) -> None:
    """File checks, statistics, and cache removal reflect disk state."""

    store = _store(tmp_path)
    config = StoryvoiceConfig()
    segments = _segments(story_file)
    manifest = _populated(store, segments[:2], config, make_wav(100))
    store.segment_audio_path(segments[1].id).unlink()

    stats = store.stats(manifest)

    assert store.verify_file_exists(manifest.segments[0])
    assert not store.verify_file_exists(manifest.segments[1])
    assert stats.cached_count == 2
    assert stats.total_duration_ms == 2400.0
    assert store.directory_size() > 0
    assert store.clear() is True
    assert not store.cache_dir.exists()
    assert store.clear() is False
    assert format_bytes(512) == "512 B"
    assert format_bytes(2048) == "2.0 KB"
