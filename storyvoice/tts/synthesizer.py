"""TTS synthesizer interfaces and Gemini-backed implementation.

Responsibilities:
- Define the single synchronous synthesis contract used by generation.
- Provide a Gemini-backed synthesizer returning validated WAV audio.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..audio.wav import AudioFormatError, parse_wav
from ..errors import SynthesisError
from .gemini_client import GeminiSpeechClient
from .voices import MINIMAL_VOICE_NAME, VoiceConfig


@dataclass(frozen=True, slots=True)
class SynthesizedAudio:
    """Audio produced by one successful synthesis call.

    Attributes:
        wav_bytes: Complete WAV container bytes.
        duration_ms: Exact payload duration in milliseconds.
        mime_type: Format hint of the stored bytes.
    """

    wav_bytes: bytes
    duration_ms: float
    mime_type: str = "audio/wav"


class SpeechSynthesizer(Protocol):
    """Protocol for TTS provider implementations."""

    provider_id: str

    def synthesize(self, text: str, voice: VoiceConfig, seed: int) -> SynthesizedAudio:
        """Synthesize text with a voice and seed, raising `SynthesisError` on failure."""


class GeminiTTSSynthesizer:
    """Gemini-backed synthesizer producing validated WAV audio."""

    def __init__(
        self,
        client: GeminiSpeechClient,
        model: str,
        provider_id: str = "gemini",
    ) -> None:
        """Initialize synthesizer with an HTTP client and model identifier."""

        self.client = client
        self.model = model
        self.provider_id = provider_id

    @property
    def retry_attempt_count(self) -> int:
        """Return transient retry attempts performed by the underlying client."""

        return self.client.retry_attempt_count

    def synthesize(self, text: str, voice: VoiceConfig, seed: int) -> SynthesizedAudio:
        """Synthesize one segment and return WAV bytes with their duration."""

        wav_bytes = self.client.synthesize_speech(
            model=self.model,
            text=text,
            voice_name=voice.voice_name or MINIMAL_VOICE_NAME,
            seed=seed,
            style_prompt=voice.style_prompt,
        )
        try:
            parsed = parse_wav(wav_bytes, source="Gemini response")
        except AudioFormatError as exc:
            raise SynthesisError(f"Gemini speech response is not a readable WAV: {exc}") from exc
        return SynthesizedAudio(wav_bytes=wav_bytes, duration_ms=parsed.duration_ms)
