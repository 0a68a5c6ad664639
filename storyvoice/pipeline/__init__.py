"""Storyvoice pipeline package.

This package contains the run facade, the concurrent generation orchestrator,
stage telemetry, and run-summary estimates.
"""

from .generation import GenerationOrchestrator, SeedRetryPolicy
from .orchestrator import AudiobookResult, GenerateOptions, StoryvoicePipeline

__all__ = [
    "AudiobookResult",
    "GenerateOptions",
    "GenerationOrchestrator",
    "SeedRetryPolicy",
    "StoryvoicePipeline",
]
