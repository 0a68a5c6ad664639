"""Voice configuration models and speaker voice resolution.

Responsibilities:
- Represent synthesis parameters for one speaker.
- Provide built-in voices and the Gemini prebuilt voice catalogue.
- Resolve a speaker to a voice as a pure function of name and config.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from ..config import StoryvoiceConfig


@dataclass(frozen=True, slots=True)
class VoiceConfig:
    """Declarative synthesis parameters for one speaker.

    Attributes:
        name: Speaker key the voice belongs to.
        voice_name: Provider-native prebuilt voice identifier.
        style_prompt: Free-text performance direction prepended to the text.
        speed: Relative speaking rate multiplier.
        pitch: Relative pitch adjustment.
        seed: Base synthesis seed, falling back to the global seed when unset.
        extra_params: Provider-specific additional parameters.
    """

    name: str
    voice_name: str | None = None
    style_prompt: str | None = None
    speed: float | None = None
    pitch: float | None = None
    seed: int | None = None
    extra_params: Mapping[str, Any] = field(default_factory=dict)

    def synthesis_fields(self) -> dict[str, Any]:
        """Return only the fields that influence synthesized audio."""

        return {
            "name": self.name,
            "seed": self.seed,
            "stylePrompt": self.style_prompt,
            "voiceName": self.voice_name,
            "speed": self.speed,
            "pitch": self.pitch,
            "extraParams": dict(self.extra_params) if self.extra_params else None,
        }

    def to_payload(self) -> dict[str, Any]:
        """Serialize the voice using config file key names, omitting unset fields."""

        return {
            key: value for key, value in self.synthesis_fields().items() if value is not None
        }


GEMINI_VOICES: tuple[str, ...] = (
    "Zephyr",
    "Puck",
    "Charon",
    "Kore",
    "Fenrir",
    "Leda",
    "Orus",
    "Aoede",
    "Callirrhoe",
    "Autonoe",
    "Enceladus",
    "Iapetus",
    "Umbriel",
    "Algenib",
)

DEFAULT_VOICES: tuple[VoiceConfig, ...] = (
    VoiceConfig(
        name="NARRATOR",
        voice_name="Zephyr",
        style_prompt="Calm, measured storytelling voice with clear enunciation",
        speed=1.0,
    ),
    VoiceConfig(
        name="CHARACTER1",
        voice_name="Kore",
        style_prompt="Warm, friendly voice",
        speed=1.0,
    ),
    VoiceConfig(
        name="CHARACTER2",
        voice_name="Charon",
        style_prompt="Deep, authoritative voice",
        speed=1.0,
    ),
)

MINIMAL_VOICE_NAME = "Zephyr"
MINIMAL_STYLE_PROMPT = "Natural speaking voice"


def builtin_voice(speaker: str) -> VoiceConfig | None:
    """Return the built-in voice registered for a speaker name, if any."""

    wanted = speaker.upper()
    for voice in DEFAULT_VOICES:
        if voice.name == wanted:
            return voice
    return None


def resolve_voice(config: StoryvoiceConfig, speaker: str) -> VoiceConfig:
    """Resolve the effective voice for a speaker.

    Resolution order is: case-insensitive exact match in `config.voices`
    (with seed falling back to `config.global_seed`), then the configured
    default voice renamed to the speaker, then the built-in voice for the
    speaker name, then a minimal generic voice.
    """

    wanted = speaker.upper()
    for voice in config.voices:
        if voice.name.upper() == wanted:
            if voice.seed is None and config.global_seed is not None:
                return replace(voice, seed=config.global_seed)
            return voice

    if config.default_voice is not None:
        return replace(config.default_voice, name=speaker)

    builtin = builtin_voice(speaker)
    if builtin is not None:
        return builtin

    return VoiceConfig(
        name=speaker,
        voice_name=MINIMAL_VOICE_NAME,
        style_prompt=MINIMAL_STYLE_PROMPT,
        speed=1.0,
    )
