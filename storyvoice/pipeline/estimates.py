"""Cost, duration, and size estimates for run summaries."""

from __future__ import annotations

COST_PER_MILLION_CHARS_USD = 15.0
WORDS_PER_MINUTE = 150
CHARS_PER_WORD = 5


def estimate_cost_usd(character_count: int) -> float:
    """Return the estimated synthesis cost for a character count."""

    return character_count / 1_000_000 * COST_PER_MILLION_CHARS_USD


def estimate_audio_duration_ms(text: str) -> float:
    """Return the estimated spoken duration of text."""

    words = len(text) / CHARS_PER_WORD
    return words / WORDS_PER_MINUTE * 60_000


def format_duration(duration_ms: float) -> str:
    """Format milliseconds as `H:MM:SS` or `M:SS`."""

    total_seconds = int(duration_ms // 1000)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"
