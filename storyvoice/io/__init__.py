"""Filesystem input/output helpers for Storyvoice artifacts."""

from .storage import ArtifactStore

__all__ = ["ArtifactStore"]
