"""Per-story segment cache persisted as a JSON manifest plus WAV files.

Responsibilities:
- Load and save the cache manifest, treating unreadable or outdated files as absent.
- Decide cache hits from per-segment fingerprints only.
- Apply manifest changes as pure transformations returning new manifest values.
- Recover entries from segment audio on disk when the manifest is lost or short.

Layout under the output directory:
- `.storyvoice-cache/<story key>/manifest.json`
- `.storyvoice-cache/<story key>/segments/<segment id>.wav`
- `.storyvoice-cache/<story key>/debug.log`
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
import re
import shutil
import unicodedata

from loguru import logger

from ..config import StoryvoiceConfig
from ..hashing import content_hash
from ..io.storage import ArtifactStore
from ..models.datatypes import CachedSegment, CacheManifest, GenerationStats, Segment
from .fingerprint import fingerprint

CACHE_SCHEMA_VERSION = "1.0.0"
CACHE_DIR_NAME = ".storyvoice-cache"
MANIFEST_FILE_NAME = "manifest.json"
SEGMENTS_DIR_NAME = "segments"
DEBUG_LOG_FILE_NAME = "debug.log"
SEGMENT_AUDIO_SUFFIX = ".wav"
_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def _utc_now() -> datetime:
    """Return the current UTC time."""

    return datetime.now(timezone.utc)


def story_cache_key(story_path: Path) -> str:
    """Return the cache directory name for a story file.

    The file stem is folded to lowercase ASCII words joined by `-` and
    suffixed with a digest of the resolved path, so equally named stories in
    different folders never share a cache.
    """

    ascii_stem = (
        unicodedata.normalize("NFKD", story_path.stem).encode("ascii", "ignore").decode("ascii")
    )
    slug = _NON_SLUG_CHARS.sub("-", ascii_stem.lower()).strip("-") or "story"
    return f"{slug}-{content_hash(str(story_path.resolve()))[:8]}"


def is_cached(
    manifest: CacheManifest | None,
    segment: Segment,
    config: StoryvoiceConfig,
) -> CachedSegment | None:
    """Return the valid cache entry for a segment, or `None` on a miss.

    An entry is valid when it exists for the segment id, records a success,
    and its stored combined hash equals a freshly computed fingerprint.
    """

    if manifest is None:
        return None
    entry = manifest.entry_for(segment.id)
    if entry is None or not entry.success:
        return None
    if entry.hash.combined_hash != fingerprint(segment, config).combined_hash:
        return None
    return entry


@dataclass(frozen=True, slots=True)
class SegmentOutcome:
    """Result of one segment's generation attempts, ready to be cached.

    Attributes:
        audio_path: Path of the segment audio file.
        duration_ms: Audio duration, `0` for failures.
        file_size: Audio file size in bytes, `0` for failures.
        provider: Provider name that produced the outcome.
        success: Whether usable audio was produced.
        error: Terminal error message for failures.
    """

    audio_path: Path
    duration_ms: float
    file_size: int
    provider: str
    success: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Aggregate statistics of one cache manifest.

    Attributes:
        cached_count: Successful entries.
        failed_count: Failed entries.
        total_duration_ms: Summed duration of successful entries.
        total_size_bytes: Summed audio size of successful entries.
        oldest_entry: Earliest generation timestamp, if any.
        newest_entry: Latest generation timestamp, if any.
    """

    cached_count: int = 0
    failed_count: int = 0
    total_duration_ms: float = 0.0
    total_size_bytes: int = 0
    oldest_entry: str | None = None
    newest_entry: str | None = None


def format_bytes(size: int) -> str:
    """Format a byte count with binary units."""

    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


class CacheStore:
    """Filesystem cache scoped to one story under one output directory."""

    def __init__(
        self,
        output_dir: Path,
        story_key: str,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize cache paths for an output directory and story key."""

        self.output_dir = output_dir
        self.story_key = story_key
        self._clock = clock
        self._artifacts = ArtifactStore(output_dir / CACHE_DIR_NAME / story_key)

    @classmethod
    def for_story(
        cls,
        output_dir: Path,
        story_path: Path,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> CacheStore:
        """Create a store for a story file under an output directory."""

        return cls(output_dir, story_cache_key(story_path), clock=clock)

    @property
    def cache_dir(self) -> Path:
        """Return the per-story cache root."""

        return self._artifacts.root

    @property
    def manifest_path(self) -> Path:
        """Return the manifest file location."""

        return self._artifacts.path_for(Path(MANIFEST_FILE_NAME))

    @property
    def segments_dir(self) -> Path:
        """Return the directory holding per-segment audio."""

        return self._artifacts.path_for(Path(SEGMENTS_DIR_NAME))

    @property
    def debug_log_path(self) -> Path:
        """Return the debug log file location."""

        return self._artifacts.path_for(Path(DEBUG_LOG_FILE_NAME))

    def segment_audio_path(self, segment_id: str) -> Path:
        """Return the audio file location owned by one segment id."""

        return self.segments_dir / f"{segment_id}{SEGMENT_AUDIO_SUFFIX}"

    def _timestamp(self) -> str:
        """Return the current clock value as an ISO-8601 string."""

        return self._clock().isoformat()

    def create(self, story_path: Path, story_hash: str, config_hash: str) -> CacheManifest:
        """Return a new empty manifest for a story."""

        return CacheManifest(
            version=CACHE_SCHEMA_VERSION,
            story_path=str(story_path),
            story_hash=story_hash,
            config_hash=config_hash,
            last_updated=self._timestamp(),
        )

    def load(self) -> CacheManifest | None:
        """Load the manifest, returning `None` when missing, unreadable, or outdated."""

        if not self.manifest_path.exists():
            return None
        try:
            payload = self._artifacts.load_json(Path(MANIFEST_FILE_NAME))
            if not isinstance(payload, dict):
                raise TypeError("Manifest root must be a JSON object.")
            manifest = CacheManifest.from_payload(payload)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning(
                f"Ignoring unreadable cache manifest `{self.manifest_path}`: "
                f"{type(exc).__name__}: {exc}"
            )
            return None
        if manifest.version != CACHE_SCHEMA_VERSION:
            logger.info(
                f"Cache manifest version {manifest.version} does not match "
                f"{CACHE_SCHEMA_VERSION}; rebuilding cache."
            )
            return None
        return manifest

    def save(self, manifest: CacheManifest) -> CacheManifest:
        """Persist a manifest and return it with a refreshed `last_updated`.

        Raises:
            OSError: If the manifest cannot be written.
        """

        saved = replace(manifest, last_updated=self._timestamp())
        self._artifacts.save_json(Path(MANIFEST_FILE_NAME), saved.to_payload(), sort_keys=False)
        return saved

    def write_segment_audio(self, segment_id: str, data: bytes) -> Path:
        """Write a segment's audio file and return its path."""

        return self._artifacts.save_audio(
            Path(SEGMENTS_DIR_NAME) / f"{segment_id}{SEGMENT_AUDIO_SUFFIX}", data
        )

    @staticmethod
    def is_cached(
        manifest: CacheManifest | None,
        segment: Segment,
        config: StoryvoiceConfig,
    ) -> CachedSegment | None:
        """Return the valid cache entry for a segment, or `None` on a miss."""

        return is_cached(manifest, segment, config)

    def upsert(
        self,
        manifest: CacheManifest,
        segment: Segment,
        config: StoryvoiceConfig,
        outcome: SegmentOutcome,
    ) -> CacheManifest:
        """Return a manifest with the segment's entry replaced by a new outcome."""

        entry = CachedSegment(
            segment_id=segment.id,
            index=segment.index,
            speaker=segment.speaker,
            audio_path=str(outcome.audio_path),
            duration_ms=outcome.duration_ms,
            file_size=outcome.file_size,
            hash=fingerprint(segment, config),
            generated_at=self._timestamp(),
            provider=outcome.provider,
            success=outcome.success,
            error=outcome.error,
        )
        kept = [item for item in manifest.segments if item.segment_id != segment.id]
        kept.append(entry)
        return replace(
            manifest,
            segments=tuple(sorted(kept, key=lambda item: item.index)),
            last_updated=self._timestamp(),
        )

    def verify_file_exists(self, entry: CachedSegment) -> bool:
        """Return whether the audio file referenced by an entry is on disk."""

        return (self.segments_dir / Path(entry.audio_path).name).is_file()

    def recover(
        self,
        segments: Iterable[Segment],
        config: StoryvoiceConfig,
    ) -> list[CachedSegment]:
        """Rebuild cache entries from segment audio files found on disk.

        Recovered entries carry `duration_ms=0` because duration is not read
        back from the audio here.
        """

        if not self.segments_dir.is_dir():
            return []
        recovered: list[CachedSegment] = []
        for segment in segments:
            path = self.segment_audio_path(segment.id)
            if not path.is_file():
                continue
            stat = path.stat()
            recovered.append(
                CachedSegment(
                    segment_id=segment.id,
                    index=segment.index,
                    speaker=segment.speaker,
                    audio_path=str(path),
                    duration_ms=0,
                    file_size=stat.st_size,
                    hash=fingerprint(segment, config),
                    generated_at=datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
                    provider=config.provider.name,
                    success=True,
                )
            )
        return recovered

    def merge_recovered(
        self, manifest: CacheManifest, recovered: Iterable[CachedSegment]
    ) -> CacheManifest:
        """Return a manifest extended with recovered entries for unknown ids."""

        known = {entry.segment_id for entry in manifest.segments}
        added = [entry for entry in recovered if entry.segment_id not in known]
        if not added:
            return manifest
        return replace(
            manifest,
            segments=tuple(sorted((*manifest.segments, *added), key=lambda item: item.index)),
            last_updated=self._timestamp(),
        )

    def remove_entry(self, manifest: CacheManifest, segment_id: str) -> CacheManifest:
        """Return a manifest without one entry and delete its audio file."""

        return self._drop_entries(manifest, lambda item: item.segment_id == segment_id)

    def invalidate_by_speaker(
        self, manifest: CacheManifest, speakers: Iterable[str]
    ) -> CacheManifest:
        """Return a manifest without entries for the given speakers (case-insensitive).

        Backing audio files are deleted so disk recovery cannot resurrect them.
        """

        wanted = {speaker.upper() for speaker in speakers}
        return self._drop_entries(
            manifest, lambda item: item.speaker.upper() in wanted
        )

    def prune_stale(self, manifest: CacheManifest, live_segment_ids: Iterable[str]) -> CacheManifest:
        """Return a manifest without entries whose ids are not in the current story."""

        live = set(live_segment_ids)
        return self._drop_entries(manifest, lambda item: item.segment_id not in live)

    def _drop_entries(
        self,
        manifest: CacheManifest,
        predicate: Callable[[CachedSegment], bool],
    ) -> CacheManifest:
        """Return a manifest without matching entries and delete their audio files."""

        dropped = [item for item in manifest.segments if predicate(item)]
        if not dropped:
            return manifest
        for item in dropped:
            (self.segments_dir / Path(item.audio_path).name).unlink(missing_ok=True)
        return replace(
            manifest,
            segments=tuple(item for item in manifest.segments if not predicate(item)),
            last_updated=self._timestamp(),
        )

    @staticmethod
    def with_fingerprints(
        manifest: CacheManifest, story_hash: str, config_hash: str
    ) -> CacheManifest:
        """Return a manifest recording new advisory story and config digests."""

        return replace(manifest, story_hash=story_hash, config_hash=config_hash)

    @staticmethod
    def with_stats(manifest: CacheManifest, stats: GenerationStats) -> CacheManifest:
        """Return a manifest carrying new aggregate statistics."""

        return replace(manifest, stats=stats)

    @staticmethod
    def stats(manifest: CacheManifest | None) -> CacheStats:
        """Summarize successful and failed entries of a manifest."""

        if manifest is None or not manifest.segments:
            return CacheStats()
        successful = [entry for entry in manifest.segments if entry.success]
        timestamps = sorted(entry.generated_at for entry in successful if entry.generated_at)
        return CacheStats(
            cached_count=len(successful),
            failed_count=len(manifest.segments) - len(successful),
            total_duration_ms=sum(entry.duration_ms for entry in successful),
            total_size_bytes=sum(entry.file_size for entry in successful),
            oldest_entry=timestamps[0] if timestamps else None,
            newest_entry=timestamps[-1] if timestamps else None,
        )

    def directory_size(self) -> int:
        """Return the total size of all files under the cache root."""

        if not self.cache_dir.is_dir():
            return 0
        return sum(path.stat().st_size for path in self.cache_dir.rglob("*") if path.is_file())

    def clear(self) -> bool:
        """Delete the whole per-story cache, returning whether anything existed."""

        if not self.cache_dir.exists():
            return False
        shutil.rmtree(self.cache_dir)
        return True
