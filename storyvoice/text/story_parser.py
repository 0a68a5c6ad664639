"""Story script parser for speaker-tagged text.

Responsibilities:
- Classify script lines into speaker lines, continuations, and comments.
- Build immutable `Segment` records with stable position-and-content ids.
- Validate parsed stories and provide selection helpers for CLI commands.

Supported line forms:
- `[SPEAKER] text`
- `SPEAKER: text`
- indented continuation lines (two or more leading spaces)
- `#` and `//` comment lines
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import re

from ..hashing import content_hash
from ..models.datatypes import Segment

_BRACKET_LINE = re.compile(r"^\[([A-Za-z][A-Za-z0-9_]*)\]\s*(.+)$")
_COLON_LINE = re.compile(r"^([A-Za-z][A-Za-z0-9_]*)\s*:\s*(.+)$")
_CONTINUATION_LINE = re.compile(r"^\s{2,}(\S.*)$")
_COMMENT_LINE = re.compile(r"^\s*(#|//)")

FALLBACK_SPEAKER = "NARRATOR"
MIN_SEGMENT_CHARS = 5
MAX_SEGMENT_CHARS = 5000
MAX_SPEAKER_NAME_CHARS = 20


@dataclass(frozen=True, slots=True)
class ParsedStory:
    """Parsed story script.

    Attributes:
        segments: Segments in story order.
        speakers: Unique speakers in first-appearance order.
        source_path: Story file path when parsed from disk.
        content: Raw story text used for the story digest.
    """

    segments: tuple[Segment, ...]
    speakers: tuple[str, ...]
    source_path: Path | None = None
    content: str = ""

    @property
    def story_hash(self) -> str:
        """Return the digest of the raw story content."""

        return content_hash(self.content)


@dataclass(frozen=True, slots=True)
class StoryValidation:
    """Validation outcome for a parsed story.

    Attributes:
        errors: Problems that prevent generation.
        warnings: Suspicious but usable content.
    """

    errors: tuple[str, ...] = field(default_factory=tuple)
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_valid(self) -> bool:
        """Return whether the story has no blocking errors."""

        return not self.errors


def make_segment_id(index: int, speaker: str, text: str) -> str:
    """Return the stable id for a segment at one story position."""

    digest = content_hash(f"{index}-{speaker}-{text}")[:8]
    return f"seg_{index:04d}_{digest}"


class StoryParser:
    """Line-oriented parser turning story scripts into segments."""

    def __init__(self, *, merge_consecutive: bool = False) -> None:
        """Initialize parser options.

        Args:
            merge_consecutive: Join adjacent lines spoken by the same speaker.
        """

        self.merge_consecutive = merge_consecutive

    def parse_file(self, path: Path) -> ParsedStory:
        """Read and parse a UTF-8 story file."""

        content = path.read_text(encoding="utf-8")
        return self.parse_content(content, source_path=path)

    def parse_content(self, content: str, source_path: Path | None = None) -> ParsedStory:
        """Parse story text into segments with stable ids."""

        drafts: list[tuple[str, list[str], int]] = []
        for line_number, raw_line in enumerate(content.splitlines(), start=1):
            if not raw_line.strip() or _COMMENT_LINE.match(raw_line):
                continue

            tagged = self._match_speaker_line(raw_line.strip())
            if tagged is not None:
                speaker, text = tagged
                if self.merge_consecutive and drafts and drafts[-1][0] == speaker:
                    drafts[-1][1].append(text)
                else:
                    drafts.append((speaker, [text], line_number))
                continue

            continuation = _CONTINUATION_LINE.match(raw_line)
            text = continuation.group(1).strip() if continuation else raw_line.strip()
            if drafts:
                drafts[-1][1].append(text)
            else:
                drafts.append((FALLBACK_SPEAKER, [text], line_number))

        segments: list[Segment] = []
        speakers: list[str] = []
        for index, (speaker, parts, line_number) in enumerate(drafts):
            text = " ".join(parts)
            segments.append(
                Segment(
                    id=make_segment_id(index, speaker, text),
                    index=index,
                    speaker=speaker,
                    text=text,
                    line_number=line_number,
                )
            )
            if speaker not in speakers:
                speakers.append(speaker)

        return ParsedStory(
            segments=tuple(segments),
            speakers=tuple(speakers),
            source_path=source_path,
            content=content,
        )

    @staticmethod
    def _match_speaker_line(line: str) -> tuple[str, str] | None:
        """Return `(speaker, text)` for tagged lines, otherwise `None`."""

        for pattern in (_BRACKET_LINE, _COLON_LINE):
            match = pattern.match(line)
            if match:
                return match.group(1).upper(), match.group(2).strip()
        return None

    @staticmethod
    def validate(story: ParsedStory) -> StoryValidation:
        """Check a parsed story for blocking errors and suspicious content."""

        errors: list[str] = []
        warnings: list[str] = []
        if not story.segments:
            errors.append("No speaker segments found in story.")

        for segment in story.segments:
            if len(segment.text) < MIN_SEGMENT_CHARS:
                warnings.append(
                    f"Line {segment.line_number}: very short segment ({len(segment.text)} chars)."
                )
            if len(segment.text) > MAX_SEGMENT_CHARS:
                warnings.append(
                    f"Line {segment.line_number}: very long segment ({len(segment.text)} chars)."
                )

        for speaker in story.speakers:
            if len(speaker) > MAX_SPEAKER_NAME_CHARS:
                warnings.append(f"Suspicious speaker name: {speaker}.")

        return StoryValidation(errors=tuple(errors), warnings=tuple(warnings))


def filter_by_speakers(
    segments: tuple[Segment, ...] | list[Segment],
    speakers: tuple[str, ...],
) -> list[Segment]:
    """Keep segments whose speaker is in `speakers` (case-insensitive)."""

    wanted = {speaker.upper() for speaker in speakers}
    if not wanted:
        return list(segments)
    return [segment for segment in segments if segment.speaker.upper() in wanted]


def segment_window(
    segments: tuple[Segment, ...] | list[Segment],
    start_from: int = 0,
    max_segments: int | None = None,
) -> list[Segment]:
    """Return segments starting at story index `start_from`, capped at `max_segments`."""

    selected = [segment for segment in segments if segment.index >= start_from]
    if max_segments is not None:
        selected = selected[:max_segments]
    return selected


def story_summary(story: ParsedStory) -> dict[str, int | tuple[str, ...]]:
    """Return segment, speaker, word, and character counts for a story."""

    return {
        "segments": len(story.segments),
        "speakers": story.speakers,
        "words": sum(len(segment.text.split()) for segment in story.segments),
        "characters": sum(len(segment.text) for segment in story.segments),
    }
