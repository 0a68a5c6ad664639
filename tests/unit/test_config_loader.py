"""Unit tests for config loading, validation, voice resolution, and key precedence."""

from __future__ import annotations

from pathlib import Path

import pytest

from storyvoice.config import (
    ConfigLoader,
    RuntimeConfigSources,
    StoryvoiceConfig,
)
from storyvoice.tts.voices import (
    MINIMAL_STYLE_PROMPT,
    MINIMAL_VOICE_NAME,
    VoiceConfig,
    resolve_voice,
)


def test_config_loader_from_yaml_reads_nested_sections_and_fills_defaults(
    tmp_path: Path,
) -> None:
    """YAML configs map camelCase keys onto typed settings with defaults."""

    config_path = tmp_path / "storyvoice.yaml"
    config_path.write_text(
        """
provider:
  name: " Gemini "
  apiKey: "${MY_KEY}"
  rateLimit: 30
audio:
  silencePadding: 250
voices:
  - name: ALICE
    voiceName: Kore
    stylePrompt: Bright
    speed: 1.1
    seed: 9
globalSeed: 77
concurrency: 2
""".strip(),
        encoding="utf-8",
    )

    config = ConfigLoader.from_file(config_path)

    assert config.provider.name == "gemini"
    assert config.provider.rate_limit == 30
    assert config.provider.model == "gemini-2.5-pro-preview-tts"
    assert config.audio.silence_padding_ms == 250
    assert config.audio.sample_rate == 24000
    assert config.voices == (
        VoiceConfig(name="ALICE", voice_name="Kore", style_prompt="Bright", speed=1.1, seed=9),
    )
    assert config.global_seed == 77
    assert config.concurrency == 2


def test_config_loader_accepts_json_and_rejects_unknown_keys(tmp_path: Path) -> None:
    """JSON is accepted through the YAML loader and unknown keys fail fast."""

    valid = tmp_path / "storyvoice.json"
    valid.write_text('{"concurrency": 3, "defaultVoice": {"voiceName": "Puck"}}', encoding="utf-8")
    invalid = tmp_path / "invalid.json"
    invalid.write_text('{"provider": {"apiKey": "k", "colour": "blue"}}', encoding="utf-8")

    config = ConfigLoader.from_file(valid)

    assert config.concurrency == 3
    assert config.default_voice is not None
    assert config.default_voice.voice_name == "Puck"
    with pytest.raises(ValueError, match="unsupported key\\(s\\): colour"):
        ConfigLoader.from_file(invalid)


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({"provider": {"name": "elevenlabs"}}, "Unsupported provider"),
        ({"audio": {"bitDepth": 12}}, "bitDepth"),
        ({"concurrency": 0}, "concurrency"),
        ({"voices": [{"name": "A"}, {"name": "a"}]}, "Duplicate voice"),
        ({"voices": [{"voiceName": "Kore"}]}, "requires non-empty `name`"),
        ({"globalSeed": "abc"}, "must be an integer"),
    ],
)
def test_config_loader_rejects_invalid_values(payload: dict, message: str) -> None:
    """Blocking config problems raise `ValueError` with a specific message."""

    with pytest.raises(ValueError, match=message):
        ConfigLoader.from_mapping(payload)


def test_config_validate_returns_warnings_for_suspicious_values() -> None:
    """Unusual but usable values produce warnings instead of errors."""

    config = ConfigLoader.from_mapping(
        {
            "audio": {"sampleRate": 96000},
            "voices": [{"name": "ALICE", "voiceName": "Nobody", "speed": 9}],
        }
    )

    warnings = config.validate()

    assert any("sample rate" in warning for warning in warnings)
    assert any("speed" in warning for warning in warnings)
    assert any("unknown prebuilt voice" in warning for warning in warnings)


def test_resolve_voice_follows_configured_default_builtin_minimal_order() -> None:
    """Voice resolution is exact match, then default voice, then built-ins, then minimal."""

    configured = StoryvoiceConfig(
        voices=(VoiceConfig(name="Alice", voice_name="Kore"),), global_seed=5
    )
    with_default = StoryvoiceConfig(
        voices=(), default_voice=VoiceConfig(name="DEFAULT", voice_name="Puck")
    )
    bare = StoryvoiceConfig(voices=())

    assert resolve_voice(configured, "ALICE").voice_name == "Kore"
    assert resolve_voice(configured, "ALICE").seed == 5
    assert resolve_voice(with_default, "BOB") == VoiceConfig(name="BOB", voice_name="Puck")
    assert resolve_voice(bare, "narrator").voice_name == "Zephyr"
    assert resolve_voice(bare, "STRANGER") == VoiceConfig(
        name="STRANGER",
        voice_name=MINIMAL_VOICE_NAME,
        style_prompt=MINIMAL_STYLE_PROMPT,
        speed=1.0,
    )


def test_resolved_api_key_precedence_is_cli_then_env_then_config() -> None:
    """CLI values win over environment values, which win over config references."""

    config = ConfigLoader.from_mapping({"provider": {"apiKey": "${CUSTOM_KEY}"}})

    assert (
        config.resolved_api_key(
            RuntimeConfigSources(cli={"api_key": "cli"}, env={"GEMINI_API_KEY": "env"})
        )
        == "cli"
    )
    assert config.resolved_api_key(RuntimeConfigSources(env={"GEMINI_API_KEY": "env"})) == "env"
    assert config.resolved_api_key(RuntimeConfigSources(env={"CUSTOM_KEY": "custom"})) == "custom"
    assert config.resolved_api_key(RuntimeConfigSources()) is None


def test_for_speakers_and_save_round_trip_through_loader(tmp_path: Path) -> None:
    """Starter configs cover every speaker and reload unchanged."""

    config = ConfigLoader.for_speakers(("ALICE", "NARRATOR", "bob"))

    yaml_path = ConfigLoader.save(config, tmp_path / "starter.yaml")
    json_path = ConfigLoader.save(config, tmp_path / "starter.json")

    assert [voice.name for voice in config.voices] == ["ALICE", "NARRATOR", "BOB"]
    assert config.voices[0].voice_name != config.voices[2].voice_name
    assert ConfigLoader.from_file(yaml_path) == config
    assert ConfigLoader.from_file(json_path) == config
    assert config.config_hash() == ConfigLoader.from_file(json_path).config_hash()
