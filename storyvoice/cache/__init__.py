"""Segment cache modules: fingerprinting, persistent store, and planner."""

from .fingerprint import fingerprint
from .planner import CacheHit, CachePlan, IncrementalPlanner
from .store import CacheStats, CacheStore, SegmentOutcome, is_cached

__all__ = [
    "CacheHit",
    "CachePlan",
    "CacheStats",
    "CacheStore",
    "IncrementalPlanner",
    "SegmentOutcome",
    "fingerprint",
    "is_cached",
]
