"""Runtime telemetry helpers for Storyvoice runs."""

from .logger import RunLogger

__all__ = ["RunLogger"]
