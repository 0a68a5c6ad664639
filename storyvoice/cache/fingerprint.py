"""Segment fingerprinting for cache validity.

Responsibilities:
- Hash segment text and resolved voice synthesis fields independently.
- Combine both digests into the single cache-validity key.
"""

from __future__ import annotations

from ..config import StoryvoiceConfig
from ..hashing import content_hash, mapping_hash
from ..models.datatypes import Segment, SegmentHash
from ..tts.voices import VoiceConfig, resolve_voice


def text_hash(text: str) -> str:
    """Return the digest of segment text."""

    return content_hash(text)


def voice_hash(voice: VoiceConfig) -> str:
    """Return the digest of a voice's synthesis-relevant fields."""

    return mapping_hash(voice.synthesis_fields())


def combine_hashes(text_digest: str, voice_digest: str) -> str:
    """Return the combined digest of a text hash and a voice hash."""

    return content_hash(f"{text_digest}-{voice_digest}")


def fingerprint(segment: Segment, config: StoryvoiceConfig) -> SegmentHash:
    """Compute the fingerprint of a segment under a config."""

    text_digest = text_hash(segment.text)
    voice_digest = voice_hash(resolve_voice(config, segment.speaker))
    return SegmentHash(
        text_hash=text_digest,
        voice_hash=voice_digest,
        combined_hash=combine_hashes(text_digest, voice_digest),
    )
