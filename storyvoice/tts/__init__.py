"""Text-to-speech provider abstractions.

This package contains voice configuration, the synthesis contract, the Gemini
client, rate limiting, and duration anomaly detection used by generation.
"""

from .duration import DurationPolicy, check_duration
from .synthesizer import GeminiTTSSynthesizer, SpeechSynthesizer, SynthesizedAudio
from .voices import VoiceConfig, resolve_voice

__all__ = [
    "DurationPolicy",
    "GeminiTTSSynthesizer",
    "SpeechSynthesizer",
    "SynthesizedAudio",
    "VoiceConfig",
    "check_duration",
    "resolve_voice",
]
