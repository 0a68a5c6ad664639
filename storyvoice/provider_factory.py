"""Provider factory helpers for the synthesis stage.

Responsibilities:
- Resolve provider identifiers to concrete synthesizer implementations.
- Report the PCM format each provider emits so assembly settings can be checked early.
- Keep orchestration independent from concrete provider class construction.

Notes:
- Only Gemini (`gemini`, alias `google`) is implemented at the moment.
"""

from __future__ import annotations

from .audio.wav import WavFormat
from .config import ProviderConfig
from .tts.gemini_client import GEMINI_OUTPUT_FORMAT, GeminiSpeechClient
from .tts.rate_limiter import RateLimiter
from .tts.synthesizer import GeminiTTSSynthesizer, SpeechSynthesizer


class ProviderFactory:
    """Factory for provider-backed synthesizers used by the pipeline."""

    @staticmethod
    def create_synthesizer(
        provider: ProviderConfig,
        api_key: str | None = None,
    ) -> SpeechSynthesizer:
        """Create a synthesizer for configured provider settings."""

        provider_id = provider.name.lower()
        if provider_id in {"gemini", "google"}:
            client = GeminiSpeechClient(
                api_key=api_key,
                base_url=provider.base_url,
                timeout_seconds=provider.timeout_ms / 1000.0,
                max_retries=provider.max_retries,
                rate_limiter=RateLimiter.per_minute(provider.rate_limit),
                provider_id="gemini",
            )
            return GeminiTTSSynthesizer(client=client, model=provider.model, provider_id="gemini")
        raise ValueError(f"Unsupported TTS provider `{provider.name}`.")

    @staticmethod
    def output_format(provider: ProviderConfig) -> WavFormat:
        """Return the PCM format the configured provider synthesizes."""

        provider_id = provider.name.lower()
        if provider_id in {"gemini", "google"}:
            return GEMINI_OUTPUT_FORMAT
        raise ValueError(f"Unsupported TTS provider `{provider.name}`.")
