"""Incremental planning of which segments need synthesis.

Responsibilities:
- Partition segments into cache misses and cache hits using `is_cached`.
- Find segments whose voice changed while their text stayed the same.
- Preserve input segment order in every result.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from ..config import StoryvoiceConfig
from ..models.datatypes import CachedSegment, CacheManifest, Segment
from .fingerprint import fingerprint
from .store import is_cached


@dataclass(frozen=True, slots=True)
class CacheHit:
    """A segment servable from cache, paired with its entry.

    Attributes:
        segment: Segment from the current story parse.
        cached: Valid cache entry for the segment.
    """

    segment: Segment
    cached: CachedSegment


@dataclass(frozen=True, slots=True)
class CachePlan:
    """Partition of selected segments for one run.

    Attributes:
        to_generate: Segments needing synthesis, in input order.
        from_cache: Segments servable from cache, in input order.
    """

    to_generate: tuple[Segment, ...] = field(default_factory=tuple)
    from_cache: tuple[CacheHit, ...] = field(default_factory=tuple)


class IncrementalPlanner:
    """Compute cache partitions and style-change queries for story segments."""

    def __init__(self, config: StoryvoiceConfig) -> None:
        """Initialize the planner for one active config."""

        self.config = config

    def segments_to_generate(
        self, manifest: CacheManifest | None, segments: Iterable[Segment]
    ) -> list[Segment]:
        """Return every segment without a valid cache entry."""

        if manifest is None:
            return list(segments)
        return [
            segment for segment in segments if is_cached(manifest, segment, self.config) is None
        ]

    def segments_from_cache(
        self, manifest: CacheManifest | None, segments: Iterable[Segment]
    ) -> list[CacheHit]:
        """Return every segment with a valid cache entry, paired with the entry."""

        if manifest is None:
            return []
        hits: list[CacheHit] = []
        for segment in segments:
            cached = is_cached(manifest, segment, self.config)
            if cached is not None:
                hits.append(CacheHit(segment=segment, cached=cached))
        return hits

    def partition(
        self, manifest: CacheManifest | None, segments: Iterable[Segment]
    ) -> CachePlan:
        """Split segments into misses and hits in a single pass."""

        to_generate: list[Segment] = []
        from_cache: list[CacheHit] = []
        for segment in segments:
            cached = is_cached(manifest, segment, self.config)
            if cached is None:
                to_generate.append(segment)
            else:
                from_cache.append(CacheHit(segment=segment, cached=cached))
        return CachePlan(to_generate=tuple(to_generate), from_cache=tuple(from_cache))

    def segments_with_style_change(
        self,
        manifest: CacheManifest | None,
        segments: Iterable[Segment],
        speakers: Iterable[str] | None = None,
    ) -> list[Segment]:
        """Return segments whose recorded voice hash differs from the current one.

        Segments without an entry are not style changes. With no manifest,
        every (speaker-filtered) segment is returned.
        """

        wanted = {speaker.upper() for speaker in speakers} if speakers else set()
        selected = [
            segment
            for segment in segments
            if not wanted or segment.speaker.upper() in wanted
        ]
        if manifest is None:
            return selected

        changed: list[Segment] = []
        for segment in selected:
            entry = manifest.entry_for(segment.id)
            if entry is None:
                continue
            if entry.hash.voice_hash != fingerprint(segment, self.config).voice_hash:
                changed.append(segment)
        return changed
