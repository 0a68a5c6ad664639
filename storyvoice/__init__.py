"""Top-level package for Storyvoice.

This package converts speaker-tagged story scripts into stitched audiobooks by
synthesizing each segment with a remote TTS provider, caching segment audio,
and assembling the final WAV with a timing manifest. The main orchestration
entry point is `StoryvoicePipeline`.
"""

from .pipeline import StoryvoicePipeline

__all__ = ["StoryvoicePipeline", "__version__"]

__version__ = "0.1.0"
