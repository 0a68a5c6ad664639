"""Audiobook assembly from per-segment WAV files.

Responsibilities:
- Concatenate segment PCM payloads in index order with inter-segment silence.
- Emit one canonical WAV container and a timing manifest of segment offsets.
- Abort the whole assembly on any missing or malformed input.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
import wave

from ..io.storage import ArtifactStore
from ..models.datatypes import AudiobookManifest, ManifestSegment
from .wav import AudioFormatError, WavFormat, parse_wav, payload_duration_ms, silence_payload

AUDIOBOOK_MANIFEST_VERSION = "1.0.0"


class AssemblyError(RuntimeError):
    """Raised when segment audio cannot be assembled into an audiobook."""


@dataclass(frozen=True, slots=True)
class AssemblyInput:
    """One segment audio file to place on the timeline.

    Attributes:
        path: Segment WAV file.
        index: Segment position in the story.
        speaker: Speaker key.
        text: Segment text.
        duration_ms: Known duration, computed from the payload when unset or zero.
    """

    path: Path
    index: int
    speaker: str
    text: str
    duration_ms: float | None = None


@dataclass(frozen=True, slots=True)
class AssemblyOptions:
    """Output format and manifest metadata for one assembly.

    Attributes:
        silence_ms: Silence between consecutive segments.
        sample_rate: Output sample rate.
        channels: Output channel count.
        bits_per_sample: Output sample width in bits.
        title: Audiobook title for the timing manifest.
        source_file: Story file recorded in the timing manifest.
        provider: Provider name recorded in the timing manifest.
    """

    silence_ms: float = 500
    sample_rate: int = 24000
    channels: int = 1
    bits_per_sample: int = 16
    title: str = ""
    source_file: str = ""
    provider: str = ""

    @property
    def wav_format(self) -> WavFormat:
        """Return the output PCM format."""

        return WavFormat(
            channels=self.channels,
            sample_rate=self.sample_rate,
            bits_per_sample=self.bits_per_sample,
        )


@dataclass(frozen=True, slots=True)
class AssemblyResult:
    """Outcome of a successful assembly.

    Attributes:
        output_path: Written audiobook file.
        total_duration_ms: Duration of the assembled timeline.
        segment_count: Number of assembled segments.
        file_size: Size of the written file in bytes.
        timing_manifest: Per-segment timeline placements.
    """

    output_path: Path
    total_duration_ms: float
    segment_count: int
    file_size: int
    timing_manifest: AudiobookManifest


def _utc_now() -> datetime:
    """Return the current UTC time."""

    return datetime.now(timezone.utc)


class AudioAssembler:
    """Concatenate segment WAV files into one audiobook with timing metadata."""

    def __init__(self, clock: Callable[[], datetime] = _utc_now) -> None:
        """Initialize assembler with an injectable clock for manifest timestamps."""

        self._clock = clock

    def assemble(
        self,
        inputs: Iterable[AssemblyInput],
        output_path: Path,
        options: AssemblyOptions | None = None,
    ) -> AssemblyResult:
        """Assemble segment audio into `output_path` ordered by segment index.

        Raises:
            AssemblyError: If an input file is missing, malformed, or uses a
                sample format different from the output format.
        """

        resolved = options if options is not None else AssemblyOptions()
        output_format = resolved.wav_format
        ordered = sorted(inputs, key=lambda item: item.index)
        silence = silence_payload(resolved.silence_ms, output_format)
        # Whole frames only, so the gap can be shorter than `silence_ms`.
        silence_ms = payload_duration_ms(len(silence), output_format)

        output_path.parent.mkdir(parents=True, exist_ok=True)
        partial_path = output_path.with_name(f"{output_path.name}.partial")
        placements: list[ManifestSegment] = []
        speakers: list[str] = []
        offset_ms = 0.0
        try:
            with wave.open(str(partial_path), "wb") as merged:
                merged.setnchannels(output_format.channels)
                merged.setsampwidth(output_format.bits_per_sample // 8)
                merged.setframerate(output_format.sample_rate)

                for position, item in enumerate(ordered):
                    payload, payload_duration = self._read_payload(item, output_format)
                    duration_ms = item.duration_ms if item.duration_ms else payload_duration
                    if position > 0:
                        merged.writeframes(silence)
                        offset_ms += silence_ms
                    merged.writeframes(payload)
                    placements.append(
                        ManifestSegment(
                            index=item.index,
                            speaker=item.speaker,
                            text=item.text,
                            start_ms=offset_ms,
                            end_ms=offset_ms + duration_ms,
                            duration_ms=duration_ms,
                            audio_file=item.path.name,
                        )
                    )
                    offset_ms += duration_ms
                    if item.speaker not in speakers:
                        speakers.append(item.speaker)
            partial_path.replace(output_path)
        except BaseException:
            partial_path.unlink(missing_ok=True)
            raise

        manifest = AudiobookManifest(
            version=AUDIOBOOK_MANIFEST_VERSION,
            title=resolved.title or output_path.stem,
            source_file=resolved.source_file,
            output_file=output_path.name,
            total_duration_ms=offset_ms,
            format="wav",
            sample_rate=output_format.sample_rate,
            speakers=tuple(speakers),
            segments=tuple(placements),
            generated_at=self._clock().isoformat(),
            provider=resolved.provider,
        )
        return AssemblyResult(
            output_path=output_path,
            total_duration_ms=offset_ms,
            segment_count=len(placements),
            file_size=output_path.stat().st_size,
            timing_manifest=manifest,
        )

    @staticmethod
    def _read_payload(item: AssemblyInput, output_format: WavFormat) -> tuple[bytes, float]:
        """Read and validate one segment file, returning payload and its duration."""

        if not item.path.is_file():
            raise AssemblyError(f"Audio file not found: {item.path}")
        try:
            parsed = parse_wav(item.path.read_bytes(), source=str(item.path))
        except AudioFormatError as exc:
            raise AssemblyError(str(exc)) from exc
        if parsed.format != output_format:
            raise AssemblyError(
                f"Incompatible WAV parameters in `{item.path}`: "
                f"{parsed.format.channels}ch/{parsed.format.sample_rate}Hz/"
                f"{parsed.format.bits_per_sample}bit, expected "
                f"{output_format.channels}ch/{output_format.sample_rate}Hz/"
                f"{output_format.bits_per_sample}bit."
            )
        return parsed.payload, parsed.duration_ms

    @staticmethod
    def write_manifest(manifest: AudiobookManifest, path: Path) -> Path:
        """Write a timing manifest as JSON and return its path."""

        return ArtifactStore(path.parent).save_json(
            Path(path.name), manifest.to_payload(), sort_keys=False
        )
