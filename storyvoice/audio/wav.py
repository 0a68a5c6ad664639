"""PCM WAV container parsing and building.

Responsibilities:
- Validate RIFF/WAVE containers and locate `fmt ` and `data` chunks by id.
- Build canonical 44-byte-header PCM WAV files.
- Compute PCM durations and silence payloads for a sample format.
"""

from __future__ import annotations

from dataclasses import dataclass
import io
import math
import wave

PCM_FORMAT_CODE = 1
EXTENSIBLE_FORMAT_CODE = 0xFFFE


class AudioFormatError(ValueError):
    """Raised when audio bytes are not a well-formed PCM WAV container."""


@dataclass(frozen=True, slots=True)
class WavFormat:
    """PCM sample format.

    Attributes:
        channels: Channel count.
        sample_rate: Samples per second per channel.
        bits_per_sample: Bits per sample.
    """

    channels: int = 1
    sample_rate: int = 24000
    bits_per_sample: int = 16

    @property
    def block_align(self) -> int:
        """Return bytes per frame across all channels."""

        return self.channels * (self.bits_per_sample // 8)

    @property
    def byte_rate(self) -> int:
        """Return payload bytes per second."""

        return self.sample_rate * self.block_align


@dataclass(frozen=True, slots=True)
class ParsedWav:
    """Decoded WAV container.

    Attributes:
        format: Sample format declared by the `fmt ` chunk.
        payload: Raw PCM bytes of the `data` chunk.
    """

    format: WavFormat
    payload: bytes

    @property
    def duration_ms(self) -> float:
        """Return the exact payload duration in milliseconds."""

        return payload_duration_ms(len(self.payload), self.format)


def payload_duration_ms(payload_size: int, wav_format: WavFormat) -> float:
    """Return the exact duration of a PCM payload size in milliseconds."""

    if wav_format.byte_rate <= 0:
        return 0.0
    return payload_size / wav_format.byte_rate * 1000.0


def silence_payload(duration_ms: float, wav_format: WavFormat) -> bytes:
    """Return a silent PCM payload of whole frames for a duration."""

    frames = math.floor(duration_ms / 1000.0 * wav_format.sample_rate)
    if frames <= 0:
        return b""
    fill = b"\x80" if wav_format.bits_per_sample == 8 else b"\x00"
    return fill * (frames * wav_format.block_align)


def parse_wav(data: bytes, source: str = "<memory>") -> ParsedWav:
    """Parse a RIFF/WAVE container, scanning sub-chunks by id and size.

    Raises:
        AudioFormatError: If magic markers, the `fmt ` chunk, or the `data`
            chunk are missing or malformed.
    """

    if len(data) < 12 or data[0:4] != b"RIFF" or data[8:12] != b"WAVE":
        raise AudioFormatError(f"Invalid WAV file `{source}`: missing RIFF/WAVE header.")

    wav_format: WavFormat | None = None
    payload: bytes | None = None
    offset = 12
    while offset + 8 <= len(data):
        chunk_id = data[offset : offset + 4]
        chunk_size = int.from_bytes(data[offset + 4 : offset + 8], "little")
        content_start = offset + 8
        content_end = content_start + chunk_size

        if chunk_id == b"fmt ":
            if chunk_size < 16 or content_end > len(data):
                raise AudioFormatError(f"Invalid WAV file `{source}`: truncated `fmt ` chunk.")
            format_code = int.from_bytes(data[content_start : content_start + 2], "little")
            if format_code not in {PCM_FORMAT_CODE, EXTENSIBLE_FORMAT_CODE}:
                raise AudioFormatError(
                    f"Invalid WAV file `{source}`: unsupported format code {format_code}."
                )
            wav_format = WavFormat(
                channels=int.from_bytes(data[content_start + 2 : content_start + 4], "little"),
                sample_rate=int.from_bytes(data[content_start + 4 : content_start + 8], "little"),
                bits_per_sample=int.from_bytes(
                    data[content_start + 14 : content_start + 16], "little"
                ),
            )
        elif chunk_id == b"data":
            # Streaming encoders may declare a size larger than what was written.
            payload = data[content_start : min(content_end, len(data))]
            break
        elif content_end > len(data):
            raise AudioFormatError(
                f"Invalid WAV file `{source}`: truncated `{chunk_id!r}` chunk."
            )
        offset = content_end + (chunk_size % 2)

    if wav_format is None:
        raise AudioFormatError(f"Invalid WAV file `{source}`: missing `fmt ` chunk.")
    if payload is None:
        raise AudioFormatError(f"Invalid WAV file `{source}`: missing `data` chunk.")
    if wav_format.channels <= 0 or wav_format.sample_rate <= 0 or wav_format.bits_per_sample <= 0:
        raise AudioFormatError(f"Invalid WAV file `{source}`: invalid sample format.")
    return ParsedWav(format=wav_format, payload=payload)


def build_wav(payload: bytes, wav_format: WavFormat) -> bytes:
    """Wrap a PCM payload in a canonical 44-byte-header WAV container."""

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(wav_format.channels)
        wav_file.setsampwidth(wav_format.bits_per_sample // 8)
        wav_file.setframerate(wav_format.sample_rate)
        wav_file.writeframes(payload)
    return buffer.getvalue()


def pcm_format_from_mime(mime_type: str, default: WavFormat | None = None) -> WavFormat:
    """Derive a PCM format from a mime type such as `audio/L16;rate=24000`.

    Unknown parts fall back to `default` (mono, 16-bit, 24000 Hz).
    """

    fallback = default if default is not None else WavFormat()
    bits = fallback.bits_per_sample
    rate = fallback.sample_rate
    channels = fallback.channels
    parts = [part.strip() for part in mime_type.split(";") if part.strip()]
    for part in parts:
        lowered = part.lower()
        if lowered.startswith("audio/l") and lowered[len("audio/l") :].isdigit():
            bits = int(lowered[len("audio/l") :])
        elif lowered.startswith("rate="):
            value = lowered.split("=", 1)[1]
            if value.isdigit():
                rate = int(value)
        elif lowered.startswith("channels="):
            value = lowered.split("=", 1)[1]
            if value.isdigit():
                channels = int(value)
    return WavFormat(channels=channels, sample_rate=rate, bits_per_sample=bits)
