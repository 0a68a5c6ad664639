"""Configuration model and loaders for Storyvoice.

Responsibilities:
- Define provider, audio, and voice configuration as typed dataclasses.
- Load and save YAML or JSON config files with strict key validation.
- Resolve runtime secrets with deterministic source precedence.

Key types:
- `StoryvoiceConfig`: normalized settings for a generation run.
- `ProviderConfig`: TTS provider connection settings.
- `AudioConfig`: PCM output format and inter-segment silence.
- `RuntimeConfigSources`: optional value sources for precedence resolution.
- `ConfigLoader`: static construction helpers for `StoryvoiceConfig`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from loguru import logger

from .hashing import mapping_hash
from .parsing import normalize_optional_string, resolve_env_references
from .tts.voices import DEFAULT_VOICES, GEMINI_VOICES, VoiceConfig

CONFIG_VERSION = "1.0.0"
DEFAULT_CONCURRENCY = 4

_DEFAULT_PROVIDER = "gemini"
_DEFAULT_API_KEY = "${GEMINI_API_KEY}"
_DEFAULT_MODEL = "gemini-2.5-pro-preview-tts"
_DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
_DEFAULT_GLOBAL_SEED = 12345
_SUPPORTED_PROVIDER_IDS = frozenset({"gemini", "google"})
_SUPPORTED_FORMATS = frozenset({"wav"})
_SUPPORTED_BIT_DEPTHS = frozenset({8, 16, 24, 32})
_API_KEY_ENV_KEYS = ("STORYVOICE_API_KEY", "GEMINI_API_KEY")


@dataclass(frozen=True, slots=True)
class RuntimeConfigSources:
    """Source mappings used for deterministic runtime value precedence.

    Attributes:
        cli: Values explicitly provided by CLI arguments.
        env: Values loaded from environment variables.
    """

    cli: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """TTS provider connection settings.

    Attributes:
        name: Provider identifier (`gemini`).
        api_key: API key or `${VAR}` environment reference.
        model: Provider model identifier.
        base_url: REST API base URL.
        rate_limit: Maximum requests per minute.
        max_retries: Transient-error retries per synthesis call.
        timeout_ms: Request-level timeout in milliseconds.
    """

    name: str = _DEFAULT_PROVIDER
    api_key: str = _DEFAULT_API_KEY
    model: str = _DEFAULT_MODEL
    base_url: str = _DEFAULT_BASE_URL
    rate_limit: int = 60
    max_retries: int = 3
    timeout_ms: int = 60000

    def to_payload(self) -> dict[str, Any]:
        """Serialize provider settings using config file key names."""

        return {
            "name": self.name,
            "apiKey": self.api_key,
            "model": self.model,
            "baseUrl": self.base_url,
            "rateLimit": self.rate_limit,
            "maxRetries": self.max_retries,
            "timeout": self.timeout_ms,
        }


@dataclass(frozen=True, slots=True)
class AudioConfig:
    """PCM output settings shared by segment files and the final audiobook.

    Attributes:
        format: Container format, only `wav` is supported.
        sample_rate: Samples per second.
        bit_depth: Bits per sample.
        channels: Channel count.
        silence_padding_ms: Silence inserted between consecutive segments.
    """

    format: str = "wav"
    sample_rate: int = 24000
    bit_depth: int = 16
    channels: int = 1
    silence_padding_ms: int = 500

    def to_payload(self) -> dict[str, Any]:
        """Serialize audio settings using config file key names."""

        return {
            "format": self.format,
            "sampleRate": self.sample_rate,
            "bitDepth": self.bit_depth,
            "channels": self.channels,
            "silencePadding": self.silence_padding_ms,
        }


@dataclass(frozen=True, slots=True)
class StoryvoiceConfig:
    """Settings for one audiobook generation run.

    Attributes:
        version: Config format version.
        provider: TTS provider settings.
        audio: Output audio settings.
        voices: Per-speaker voice configurations.
        default_voice: Voice used for speakers without an explicit entry.
        global_seed: Seed applied to configured voices that do not set one.
        concurrency: Maximum in-flight synthesis requests.
    """

    version: str = CONFIG_VERSION
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    voices: tuple[VoiceConfig, ...] = DEFAULT_VOICES
    default_voice: VoiceConfig | None = None
    global_seed: int | None = _DEFAULT_GLOBAL_SEED
    concurrency: int = DEFAULT_CONCURRENCY

    def to_payload(self) -> dict[str, Any]:
        """Serialize the full config using config file key names."""

        payload: dict[str, Any] = {
            "version": self.version,
            "provider": self.provider.to_payload(),
            "audio": self.audio.to_payload(),
            "voices": [voice.to_payload() for voice in self.voices],
            "globalSeed": self.global_seed,
            "concurrency": self.concurrency,
        }
        if self.default_voice is not None:
            payload["defaultVoice"] = self.default_voice.to_payload()
        return payload

    def config_hash(self) -> str:
        """Return the digest of the entire config (advisory in cache manifests)."""

        return mapping_hash(self.to_payload())

    def validate(self) -> list[str]:
        """Validate configuration values and return non-blocking warnings.

        Raises:
            ValueError: If a value prevents generation.
        """

        if self.provider.name not in _SUPPORTED_PROVIDER_IDS:
            supported = ", ".join(sorted(_SUPPORTED_PROVIDER_IDS))
            raise ValueError(
                f"Unsupported provider `{self.provider.name}`; supported: {supported}."
            )
        if normalize_optional_string(self.provider.model) is None:
            raise ValueError("`provider.model` must be a non-empty string.")
        if self.provider.rate_limit <= 0:
            raise ValueError("`provider.rateLimit` must be a positive integer.")
        if self.provider.max_retries < 0:
            raise ValueError("`provider.maxRetries` must be a non-negative integer.")
        if self.provider.timeout_ms <= 0:
            raise ValueError("`provider.timeout` must be a positive integer.")
        if self.audio.format not in _SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported audio format `{self.audio.format}`; supported: wav.")
        if self.audio.bit_depth not in _SUPPORTED_BIT_DEPTHS:
            raise ValueError("`audio.bitDepth` must be one of 8, 16, 24, 32.")
        if self.audio.channels not in {1, 2}:
            raise ValueError("`audio.channels` must be 1 or 2.")
        if self.audio.silence_padding_ms < 0:
            raise ValueError("`audio.silencePadding` must be non-negative.")
        if self.concurrency <= 0:
            raise ValueError("`concurrency` must be a positive integer.")

        seen: set[str] = set()
        for voice in self.voices:
            key = voice.name.upper()
            if key in seen:
                raise ValueError(f"Duplicate voice configuration for speaker `{voice.name}`.")
            seen.add(key)

        warnings: list[str] = []
        if not 8000 <= self.audio.sample_rate <= 48000:
            warnings.append(
                f"Unusual sample rate {self.audio.sample_rate} Hz (expected 8000-48000)."
            )
        candidates = list(self.voices)
        if self.default_voice is not None:
            candidates.append(self.default_voice)
        for voice in candidates:
            if voice.speed is not None and not 0.25 <= voice.speed <= 4.0:
                warnings.append(f"Voice `{voice.name}` speed {voice.speed} is outside 0.25-4.0.")
            if voice.pitch is not None and not -1.0 <= voice.pitch <= 1.0:
                warnings.append(f"Voice `{voice.name}` pitch {voice.pitch} is outside -1.0-1.0.")
            if voice.voice_name is not None and voice.voice_name not in GEMINI_VOICES:
                warnings.append(
                    f"Voice `{voice.name}` uses unknown prebuilt voice `{voice.voice_name}`."
                )
        return warnings

    def resolved_api_key(self, sources: RuntimeConfigSources | None = None) -> str | None:
        """Resolve the provider API key.

        Precedence is `cli` > `env` (`STORYVOICE_API_KEY`, `GEMINI_API_KEY`)
        > config value with environment references expanded.
        """

        resolved_sources = sources if sources is not None else RuntimeConfigSources(
            env=dict(os.environ)
        )
        cli_value = normalize_optional_string(resolved_sources.cli.get("api_key"))
        if cli_value is not None:
            return cli_value
        for env_key in _API_KEY_ENV_KEYS:
            env_value = normalize_optional_string(resolved_sources.env.get(env_key))
            if env_value is not None:
                return env_value
        return normalize_optional_string(
            resolve_env_references(self.provider.api_key, resolved_sources.env)
        )


class ConfigLoader:
    """Factory methods for creating and persisting `StoryvoiceConfig`."""

    _SUPPORTED_TOP_LEVEL_KEYS = frozenset(
        {
            "version",
            "provider",
            "audio",
            "voices",
            "defaultVoice",
            "globalSeed",
            "concurrency",
        }
    )
    _SUPPORTED_PROVIDER_KEYS = frozenset(
        {"name", "apiKey", "model", "baseUrl", "rateLimit", "maxRetries", "timeout"}
    )
    _SUPPORTED_AUDIO_KEYS = frozenset(
        {"format", "sampleRate", "bitDepth", "channels", "silencePadding", "normalize"}
    )
    _SUPPORTED_VOICE_KEYS = frozenset(
        {"name", "voiceName", "stylePrompt", "speed", "pitch", "seed", "extraParams"}
    )

    @staticmethod
    def default() -> StoryvoiceConfig:
        """Return the built-in default configuration."""

        return StoryvoiceConfig()

    @staticmethod
    def from_file(path: Path) -> StoryvoiceConfig:
        """Create a validated config from a YAML or JSON file."""

        raw_text = path.read_text(encoding="utf-8")
        try:
            payload = yaml.safe_load(raw_text)
        except yaml.YAMLError as exc:
            raise ValueError(f"Config `{path}` is not valid YAML/JSON: {exc}") from exc
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValueError(f"Config `{path}` must contain a top-level mapping/object.")
        return ConfigLoader.from_mapping(payload, source_label=f"Config `{path}`")

    @staticmethod
    def from_mapping(payload: Mapping[str, Any], source_label: str = "Config") -> StoryvoiceConfig:
        """Build a validated config from a parsed mapping, filling defaults."""

        ConfigLoader._validate_keys(payload, ConfigLoader._SUPPORTED_TOP_LEVEL_KEYS, source_label)
        defaults = StoryvoiceConfig()

        provider_payload = ConfigLoader._optional_mapping(payload, "provider", source_label)
        ConfigLoader._validate_keys(
            provider_payload, ConfigLoader._SUPPORTED_PROVIDER_KEYS, f"{source_label} `provider`"
        )
        provider = ProviderConfig(
            name=(
                ConfigLoader._optional_string(provider_payload, "name") or defaults.provider.name
            ).lower(),
            api_key=(
                ConfigLoader._optional_string(provider_payload, "apiKey")
                or defaults.provider.api_key
            ),
            model=ConfigLoader._optional_string(provider_payload, "model")
            or defaults.provider.model,
            base_url=ConfigLoader._optional_string(provider_payload, "baseUrl")
            or defaults.provider.base_url,
            rate_limit=ConfigLoader._optional_int(
                provider_payload, "rateLimit", source_label, defaults.provider.rate_limit
            ),
            max_retries=ConfigLoader._optional_int(
                provider_payload, "maxRetries", source_label, defaults.provider.max_retries
            ),
            timeout_ms=ConfigLoader._optional_int(
                provider_payload, "timeout", source_label, defaults.provider.timeout_ms
            ),
        )

        audio_payload = ConfigLoader._optional_mapping(payload, "audio", source_label)
        ConfigLoader._validate_keys(
            audio_payload, ConfigLoader._SUPPORTED_AUDIO_KEYS, f"{source_label} `audio`"
        )
        audio = AudioConfig(
            format=(
                ConfigLoader._optional_string(audio_payload, "format") or defaults.audio.format
            ).lower(),
            sample_rate=ConfigLoader._optional_int(
                audio_payload, "sampleRate", source_label, defaults.audio.sample_rate
            ),
            bit_depth=ConfigLoader._optional_int(
                audio_payload, "bitDepth", source_label, defaults.audio.bit_depth
            ),
            channels=ConfigLoader._optional_int(
                audio_payload, "channels", source_label, defaults.audio.channels
            ),
            silence_padding_ms=ConfigLoader._optional_int(
                audio_payload, "silencePadding", source_label, defaults.audio.silence_padding_ms
            ),
        )

        voices = defaults.voices
        if "voices" in payload:
            raw_voices = payload["voices"]
            if not isinstance(raw_voices, list):
                raise ValueError(f"{source_label} field `voices` must be a list.")
            voices = tuple(
                ConfigLoader._voice_from_mapping(item, f"{source_label} `voices[{position}]`")
                for position, item in enumerate(raw_voices)
            )

        default_voice = None
        if payload.get("defaultVoice") is not None:
            default_voice = ConfigLoader._voice_from_mapping(
                payload["defaultVoice"], f"{source_label} `defaultVoice`", name_required=False
            )

        global_seed: int | None = defaults.global_seed
        if "globalSeed" in payload:
            global_seed = (
                None
                if payload["globalSeed"] is None
                else ConfigLoader._optional_int(payload, "globalSeed", source_label, 0)
            )

        config = StoryvoiceConfig(
            version=ConfigLoader._optional_string(payload, "version") or CONFIG_VERSION,
            provider=provider,
            audio=audio,
            voices=voices,
            default_voice=default_voice,
            global_seed=global_seed,
            concurrency=ConfigLoader._optional_int(
                payload, "concurrency", source_label, defaults.concurrency
            ),
        )
        for warning in config.validate():
            logger.warning(f"{source_label}: {warning}")
        return config

    @staticmethod
    def for_speakers(speakers: tuple[str, ...] | list[str]) -> StoryvoiceConfig:
        """Build a starter config with one voice per speaker."""

        voices: list[VoiceConfig] = []
        rotation = [name for name in GEMINI_VOICES if name != "Zephyr"]
        assigned = 0
        for speaker in speakers:
            builtin = next((voice for voice in DEFAULT_VOICES if voice.name == speaker.upper()), None)
            if builtin is not None:
                voices.append(builtin)
                continue
            voices.append(
                VoiceConfig(
                    name=speaker.upper(),
                    voice_name=rotation[assigned % len(rotation)],
                    style_prompt=f"Voice of {speaker.title()}",
                    speed=1.0,
                )
            )
            assigned += 1
        if not any(voice.name == "NARRATOR" for voice in voices):
            voices.insert(0, DEFAULT_VOICES[0])
        return StoryvoiceConfig(voices=tuple(voices))

    @staticmethod
    def save(config: StoryvoiceConfig, path: Path) -> Path:
        """Write a config file as YAML (`.yaml`/`.yml`) or JSON (any other suffix)."""

        path.parent.mkdir(parents=True, exist_ok=True)
        payload = config.to_payload()
        if path.suffix.lower() in {".yaml", ".yml"}:
            text = yaml.safe_dump(payload, sort_keys=False, allow_unicode=True)
        else:
            text = json.dumps(payload, ensure_ascii=False, indent=2) + "\n"
        path.write_text(text, encoding="utf-8")
        return path

    @staticmethod
    def _voice_from_mapping(
        raw: object, source_label: str, name_required: bool = True
    ) -> VoiceConfig:
        """Build one voice from a config mapping."""

        if not isinstance(raw, Mapping):
            raise ValueError(f"{source_label} must be a mapping/object.")
        ConfigLoader._validate_keys(raw, ConfigLoader._SUPPORTED_VOICE_KEYS, source_label)
        name = ConfigLoader._optional_string(raw, "name")
        if name is None:
            if name_required:
                raise ValueError(f"{source_label} requires non-empty `name`.")
            name = "DEFAULT"
        extra = raw.get("extraParams") or {}
        if not isinstance(extra, Mapping):
            raise ValueError(f"{source_label} field `extraParams` must be a mapping/object.")
        seed = None
        if raw.get("seed") is not None:
            seed = ConfigLoader._optional_int(raw, "seed", source_label, 0)
        return VoiceConfig(
            name=name,
            voice_name=ConfigLoader._optional_string(raw, "voiceName"),
            style_prompt=ConfigLoader._optional_string(raw, "stylePrompt"),
            speed=ConfigLoader._optional_float(raw, "speed", source_label),
            pitch=ConfigLoader._optional_float(raw, "pitch", source_label),
            seed=seed,
            extra_params=dict(extra),
        )

    @staticmethod
    def _validate_keys(
        payload: Mapping[str, Any], supported: frozenset[str], source_label: str
    ) -> None:
        """Reject unsupported keys in one config mapping."""

        unknown = sorted(set(payload).difference(supported))
        if unknown:
            key_list = ", ".join(str(key) for key in unknown)
            raise ValueError(f"{source_label} includes unsupported key(s): {key_list}.")

    @staticmethod
    def _optional_mapping(
        payload: Mapping[str, Any], key: str, source_label: str
    ) -> Mapping[str, Any]:
        """Read an optional nested mapping, defaulting to an empty mapping."""

        value = payload.get(key)
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise ValueError(f"{source_label} field `{key}` must be a mapping/object.")
        return value

    @staticmethod
    def _optional_string(payload: Mapping[str, Any], key: str) -> str | None:
        """Read an optional string field and normalize blank values to `None`."""

        if key not in payload:
            return None
        return normalize_optional_string(payload[key])

    @staticmethod
    def _optional_int(
        payload: Mapping[str, Any], key: str, source_label: str, default: int
    ) -> int:
        """Read and validate an integer payload field."""

        if key not in payload or payload[key] is None:
            return default
        raw_value = payload[key]
        if isinstance(raw_value, bool):
            raise ValueError(f"{source_label} field `{key}` must be an integer.")
        if isinstance(raw_value, int):
            return raw_value
        normalized = normalize_optional_string(raw_value)
        if normalized is None:
            return default
        try:
            return int(normalized)
        except ValueError as exc:
            raise ValueError(f"{source_label} field `{key}` must be an integer.") from exc

    @staticmethod
    def _optional_float(payload: Mapping[str, Any], key: str, source_label: str) -> float | None:
        """Read and validate an optional numeric payload field."""

        if key not in payload or payload[key] is None:
            return None
        raw_value = payload[key]
        if isinstance(raw_value, bool):
            raise ValueError(f"{source_label} field `{key}` must be a number.")
        try:
            return float(raw_value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{source_label} field `{key}` must be a number.") from exc
