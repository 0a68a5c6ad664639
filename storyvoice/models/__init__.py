"""Shared typed data models for Storyvoice.

This package contains dataclasses used across parser, cache, generation, and
assembly modules to avoid cross-module coupling and circular imports.
"""

from .datatypes import (
    AudiobookManifest,
    CachedSegment,
    CacheManifest,
    GenerationStats,
    ManifestSegment,
    Segment,
    SegmentHash,
)

__all__ = [
    "AudiobookManifest",
    "CachedSegment",
    "CacheManifest",
    "GenerationStats",
    "ManifestSegment",
    "Segment",
    "SegmentHash",
]
