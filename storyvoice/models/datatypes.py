"""Core datatypes shared across Storyvoice modules.

Responsibilities:
- Represent immutable records exchanged between parser, cache, and assembly.
- Provide explicit JSON payload mapping for persisted cache and timing manifests.

Key types:
- `Segment`, `SegmentHash`, `CachedSegment`, `GenerationStats`,
  `CacheManifest`, `ManifestSegment`, and `AudiobookManifest`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass(frozen=True, slots=True)
class Segment:
    """One speaker-attributed utterance parsed from a story script.

    Attributes:
        id: Stable identifier derived from position, speaker, and text.
        index: 0-based position in the story.
        speaker: Upper-case speaker key used for voice lookup.
        text: Utterance text sent to synthesis.
        line_number: 1-based source line where the segment starts.
    """

    id: str
    index: int
    speaker: str
    text: str
    line_number: int = 0


@dataclass(frozen=True, slots=True)
class SegmentHash:
    """Content fingerprint of one segment's text and resolved voice.

    Attributes:
        text_hash: Digest of the segment text only.
        voice_hash: Digest of synthesis-relevant voice fields only.
        combined_hash: Digest of both, the sole cache-validity key.
    """

    text_hash: str
    voice_hash: str
    combined_hash: str

    def to_payload(self) -> dict[str, str]:
        """Serialize hash fields using persisted manifest key names."""

        return {
            "textHash": self.text_hash,
            "voiceHash": self.voice_hash,
            "combinedHash": self.combined_hash,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> SegmentHash:
        """Build a hash record from a persisted manifest mapping."""

        return cls(
            text_hash=str(payload["textHash"]),
            voice_hash=str(payload["voiceHash"]),
            combined_hash=str(payload["combinedHash"]),
        )


@dataclass(frozen=True, slots=True)
class CachedSegment:
    """Cache entry describing the latest generation outcome of one segment.

    Attributes:
        segment_id: Identifier of the segment this entry belongs to.
        index: Segment position used for manifest ordering.
        speaker: Speaker key at generation time.
        audio_path: Path of the generated per-segment WAV file.
        duration_ms: Audio duration, `0` when unknown (recovered entries).
        file_size: Audio file size in bytes.
        hash: Fingerprint computed when the entry was written.
        generated_at: ISO-8601 timestamp of the generation attempt.
        provider: Provider name that produced the audio.
        success: Whether the entry holds usable audio.
        error: Terminal error message for failed entries.
    """

    segment_id: str
    index: int
    speaker: str
    audio_path: str
    duration_ms: float
    file_size: int
    hash: SegmentHash
    generated_at: str
    provider: str
    success: bool
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Serialize entry fields using persisted manifest key names."""

        payload: dict[str, Any] = {
            "segmentId": self.segment_id,
            "index": self.index,
            "speaker": self.speaker,
            "audioPath": self.audio_path,
            "durationMs": self.duration_ms,
            "fileSize": self.file_size,
            "hash": self.hash.to_payload(),
            "generatedAt": self.generated_at,
            "provider": self.provider,
            "success": self.success,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> CachedSegment:
        """Build a cache entry from a persisted manifest mapping."""

        error = payload.get("error")
        return cls(
            segment_id=str(payload["segmentId"]),
            index=int(payload["index"]),
            speaker=str(payload["speaker"]),
            audio_path=str(payload["audioPath"]),
            duration_ms=float(payload.get("durationMs", 0) or 0),
            file_size=int(payload.get("fileSize", 0) or 0),
            hash=SegmentHash.from_payload(payload["hash"]),
            generated_at=str(payload.get("generatedAt", "")),
            provider=str(payload.get("provider", "")),
            success=bool(payload["success"]),
            error=None if error is None else str(error),
        )


@dataclass(frozen=True, slots=True)
class GenerationStats:
    """Aggregate counters for the latest generation run.

    Attributes:
        total_segments: Number of segments selected for the run.
        generated_segments: Segments synthesized successfully during the run.
        cached_segments: Segments served from cache.
        failed_segments: Segments that ended in terminal failure.
        total_time_ms: Wall-clock time spent in generation.
        total_audio_duration_ms: Summed duration of usable segment audio.
    """

    total_segments: int = 0
    generated_segments: int = 0
    cached_segments: int = 0
    failed_segments: int = 0
    total_time_ms: float = 0.0
    total_audio_duration_ms: float = 0.0

    def to_payload(self) -> dict[str, Any]:
        """Serialize counters using persisted manifest key names."""

        return {
            "totalSegments": self.total_segments,
            "generatedSegments": self.generated_segments,
            "cachedSegments": self.cached_segments,
            "failedSegments": self.failed_segments,
            "totalTimeMs": self.total_time_ms,
            "totalAudioDurationMs": self.total_audio_duration_ms,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> GenerationStats:
        """Build counters from a persisted mapping, tolerating missing fields."""

        if not payload:
            return cls()
        return cls(
            total_segments=int(payload.get("totalSegments", 0)),
            generated_segments=int(payload.get("generatedSegments", 0)),
            cached_segments=int(payload.get("cachedSegments", 0)),
            failed_segments=int(payload.get("failedSegments", 0)),
            total_time_ms=float(payload.get("totalTimeMs", 0.0)),
            total_audio_duration_ms=float(payload.get("totalAudioDurationMs", 0.0)),
        )


@dataclass(frozen=True, slots=True)
class CacheManifest:
    """Persisted cache root for one story.

    Manifest values are immutable. Every cache operation that changes a
    manifest returns a new value, and callers must continue with that value.

    Attributes:
        version: Cache schema version used to gate trust in persisted files.
        story_path: Story file path recorded for diagnostics.
        story_hash: Digest of the story file content (advisory only).
        config_hash: Digest of the full resolved config (advisory only).
        segments: Cache entries sorted by index, at most one per segment id.
        last_updated: ISO-8601 timestamp of the latest mutation or save.
        stats: Aggregate counters of the latest run.
    """

    version: str
    story_path: str
    story_hash: str
    config_hash: str
    segments: tuple[CachedSegment, ...] = field(default_factory=tuple)
    last_updated: str = ""
    stats: GenerationStats = field(default_factory=GenerationStats)

    def entry_for(self, segment_id: str) -> CachedSegment | None:
        """Return the cache entry for one segment id, if present."""

        for entry in self.segments:
            if entry.segment_id == segment_id:
                return entry
        return None

    def to_payload(self) -> dict[str, Any]:
        """Serialize manifest using persisted top-level key names."""

        return {
            "version": self.version,
            "storyPath": self.story_path,
            "storyHash": self.story_hash,
            "configHash": self.config_hash,
            "segments": [entry.to_payload() for entry in self.segments],
            "lastUpdated": self.last_updated,
            "stats": self.stats.to_payload(),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> CacheManifest:
        """Build a manifest from a persisted mapping.

        Raises:
            KeyError: If a required field is missing.
            TypeError: If a field has an incompatible shape.
            ValueError: If a numeric field cannot be parsed.
        """

        raw_segments = payload.get("segments") or []
        if not isinstance(raw_segments, list):
            raise TypeError("Manifest field `segments` must be a list.")
        entries = tuple(
            sorted(
                (CachedSegment.from_payload(item) for item in raw_segments),
                key=lambda entry: entry.index,
            )
        )
        return cls(
            version=str(payload["version"]),
            story_path=str(payload.get("storyPath", "")),
            story_hash=str(payload.get("storyHash", "")),
            config_hash=str(payload.get("configHash", "")),
            segments=entries,
            last_updated=str(payload.get("lastUpdated", "")),
            stats=GenerationStats.from_payload(payload.get("stats")),
        )


@dataclass(frozen=True, slots=True)
class ManifestSegment:
    """Timeline placement of one segment inside the assembled audiobook.

    Attributes:
        index: Segment position in the story.
        speaker: Speaker key.
        text: Segment text.
        start_ms: Start offset in the assembled timeline.
        end_ms: End offset in the assembled timeline.
        duration_ms: Segment audio duration.
        audio_file: Basename of the source segment audio file.
    """

    index: int
    speaker: str
    text: str
    start_ms: float
    end_ms: float
    duration_ms: float
    audio_file: str

    def to_payload(self) -> dict[str, Any]:
        """Serialize timeline placement using deliverable key names."""

        return {
            "index": self.index,
            "speaker": self.speaker,
            "text": self.text,
            "startMs": self.start_ms,
            "endMs": self.end_ms,
            "durationMs": self.duration_ms,
            "audioFile": self.audio_file,
        }


@dataclass(frozen=True, slots=True)
class AudiobookManifest:
    """Write-once timing manifest for one assembled audiobook.

    Attributes:
        version: Manifest format version.
        title: Audiobook title.
        source_file: Story file the audiobook was generated from.
        output_file: Basename of the assembled audio file.
        total_duration_ms: Duration of the assembled timeline.
        format: Audio container format (`wav`).
        sample_rate: Output sample rate in Hz.
        speakers: Unique speakers in first-appearance order.
        segments: Timeline placements ordered by index.
        generated_at: ISO-8601 timestamp of assembly.
        provider: Provider name recorded for the deliverable.
    """

    version: str
    title: str
    source_file: str
    output_file: str
    total_duration_ms: float
    format: str
    sample_rate: int
    speakers: tuple[str, ...]
    segments: tuple[ManifestSegment, ...]
    generated_at: str
    provider: str

    def to_payload(self) -> dict[str, Any]:
        """Serialize manifest using deliverable top-level key names."""

        return {
            "version": self.version,
            "title": self.title,
            "sourceFile": self.source_file,
            "outputFile": self.output_file,
            "totalDurationMs": self.total_duration_ms,
            "format": self.format,
            "sampleRate": self.sample_rate,
            "speakers": list(self.speakers),
            "segments": [segment.to_payload() for segment in self.segments],
            "generatedAt": self.generated_at,
            "provider": self.provider,
        }
