"""Duration anomaly detection for synthesized segment audio.

Responsibilities:
- Estimate an expected spoken duration band from segment text length.
- Flag pathological long outputs (silence, repeated content) by duration alone.
"""

from __future__ import annotations

from dataclasses import dataclass
import re

_STYLE_DIRECTIVE = re.compile(r"<[^>]*>|\[[^\]]*\]")


@dataclass(frozen=True, slots=True)
class DurationPolicy:
    """Thresholds for excessive-duration detection.

    Attributes:
        min_chars_per_second: Slowest plausible speaking rate.
        max_chars_per_second: Fastest plausible speaking rate.
        excess_multiplier: Multiple of the expected maximum considered excessive.
        absolute_floor_seconds: Durations at or below this are never excessive
            under the multiplicative rule.
        strict_limit_seconds: Cap applied to empty or near-empty text.
        strict_text_max_chars: Counted characters below which the strict cap applies.
        absolute_ceiling_seconds: Cap applied regardless of text length.
    """

    min_chars_per_second: float = 8.0
    max_chars_per_second: float = 20.0
    excess_multiplier: float = 3.0
    absolute_floor_seconds: float = 10.0
    strict_limit_seconds: float = 5.0
    strict_text_max_chars: int = 5
    absolute_ceiling_seconds: float = 120.0


@dataclass(frozen=True, slots=True)
class DurationVerdict:
    """Result of one duration check.

    Attributes:
        excessive: Whether the audio should be treated as anomalous.
        actual_seconds: Measured audio duration.
        limit_seconds: Threshold the duration was compared against.
        counted_chars: Text length after stripping style directives.
    """

    excessive: bool
    actual_seconds: float
    limit_seconds: float
    counted_chars: int

    def describe(self) -> str:
        """Return a short diagnostic message."""

        return (
            f"Audio duration {self.actual_seconds:.1f}s exceeds {self.limit_seconds:.1f}s "
            f"for {self.counted_chars} chars"
        )


def strip_style_directives(text: str) -> str:
    """Remove bracketed style directives and collapse whitespace."""

    return " ".join(_STYLE_DIRECTIVE.sub(" ", text).split())


def expected_duration_range(text: str, policy: DurationPolicy | None = None) -> tuple[float, float]:
    """Return the plausible `(min, max)` spoken duration in seconds for text."""

    resolved = policy if policy is not None else DurationPolicy()
    chars = len(strip_style_directives(text))
    return chars / resolved.max_chars_per_second, chars / resolved.min_chars_per_second


def check_duration(
    text: str,
    duration_ms: float,
    policy: DurationPolicy | None = None,
) -> DurationVerdict:
    """Decide whether a synthesized duration is excessive for its text."""

    resolved = policy if policy is not None else DurationPolicy()
    actual_seconds = duration_ms / 1000.0
    counted_chars = len(strip_style_directives(text))

    if counted_chars < resolved.strict_text_max_chars:
        limit = resolved.strict_limit_seconds
        excessive = actual_seconds > limit
    else:
        _, expected_max = expected_duration_range(text, resolved)
        limit = max(resolved.excess_multiplier * expected_max, resolved.absolute_floor_seconds)
        excessive = actual_seconds > limit

    if actual_seconds > resolved.absolute_ceiling_seconds:
        limit = min(limit, resolved.absolute_ceiling_seconds)
        excessive = True

    return DurationVerdict(
        excessive=excessive,
        actual_seconds=actual_seconds,
        limit_seconds=limit,
        counted_chars=counted_chars,
    )
