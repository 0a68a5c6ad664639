"""Integration tests for cache maintenance, preview, and config commands."""

from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from storyvoice.cache.store import CacheStore
from storyvoice.cli import app


def _invoke(*args: str):
    """Invoke the CLI with string arguments."""

    return CliRunner().invoke(app, list(args))


def _generate(story_file: Path, out_dir: Path, *extra: str):
    """Run `generate` and require success."""

    result = _invoke("generate", str(story_file), "--out", str(out_dir), *extra)
    assert result.exit_code == 0, result.output
    return result


def test_info_reports_cache_statistics(story_file: Path, tmp_path: Path) -> None:
    """`info` summarizes cached entries for a story."""

    out_dir = tmp_path / "out"
    empty = _invoke("info", str(story_file), "--out", str(out_dir))
    _generate(story_file, out_dir)

    result = _invoke("info", str(story_file), "--out", str(out_dir))

    assert empty.exit_code == 0
    assert "Cache manifest: none" in empty.output
    assert result.exit_code == 0, result.output
    assert "Cached segments: 4" in result.output
    assert "Failed segments: 0" in result.output


def test_invalidate_forces_regeneration_of_speaker(
    story_file: Path, tmp_path: Path, synthesis_calls: list[dict[str, object]]
) -> None:
    """Invalidated speakers are regenerated on the next run, others stay cached."""

    out_dir = tmp_path / "out"
    _generate(story_file, out_dir)
    synthesis_calls.clear()

    invalidated = _invoke(
        "invalidate", str(story_file), "--out", str(out_dir), "--speakers", "narrator"
    )
    rerun = _generate(story_file, out_dir)

    assert invalidated.exit_code == 0, invalidated.output
    assert "Invalidated segments: 2" in invalidated.output
    assert "Generated: 2" in rerun.output
    assert "Cached: 2" in rerun.output
    assert len(synthesis_calls) == 2


def test_clean_removes_cache_and_outputs(story_file: Path, tmp_path: Path) -> None:
    """`clean` deletes the story cache and its assembled deliverables."""

    out_dir = tmp_path / "out"
    _generate(story_file, out_dir)
    cache_dir = CacheStore.for_story(out_dir, story_file).cache_dir

    cache_only = _invoke("clean", str(story_file), "--out", str(out_dir), "--cache-only")
    assert cache_only.exit_code == 0, cache_only.output
    assert not cache_dir.exists()
    assert (out_dir / "story_audiobook.wav").exists()

    result = _invoke("clean", str(story_file), "--out", str(out_dir))
    again = _invoke("clean", str(story_file), "--out", str(out_dir))

    assert result.exit_code == 0, result.output
    assert not (out_dir / "story_audiobook.wav").exists()
    assert not (out_dir / "story_manifest.json").exists()
    assert "Nothing to clean." in again.output


def test_update_styles_regenerates_changed_voices_only(
    story_file: Path, tmp_path: Path, synthesis_calls: list[dict[str, object]]
) -> None:
    """Style refresh writes through the cache so the next generate is fully cached."""

    out_dir = tmp_path / "out"
    config_path = tmp_path / "storyvoice.json"
    config_path.write_text(
        json.dumps({"voices": [{"name": "BOB", "voiceName": "Puck", "stylePrompt": "Gruff"}]}),
        encoding="utf-8",
    )
    _generate(story_file, out_dir, "--config", str(config_path))
    config_path.write_text(
        json.dumps({"voices": [{"name": "BOB", "voiceName": "Orus", "stylePrompt": "Gruff"}]}),
        encoding="utf-8",
    )
    synthesis_calls.clear()

    refreshed = _invoke(
        "update-styles", str(story_file), "--out", str(out_dir), "--config", str(config_path)
    )
    unchanged = _invoke(
        "update-styles", str(story_file), "--out", str(out_dir), "--config", str(config_path)
    )
    rerun = _generate(story_file, out_dir, "--config", str(config_path))

    assert refreshed.exit_code == 0, refreshed.output
    assert "Regenerated: 1" in refreshed.output
    assert [call["voice_name"] for call in synthesis_calls] == ["Orus"]
    assert "No style changes detected." in unchanged.output
    assert "Generated: 0" in rerun.output


def test_init_writes_starter_config_and_refuses_overwrite(
    story_file: Path, tmp_path: Path
) -> None:
    """`init` creates one voice per speaker and protects existing files."""

    config_path = tmp_path / "storyvoice.yaml"

    created = _invoke("init", str(story_file), "--config", str(config_path))
    refused = _invoke("init", str(story_file), "--config", str(config_path))

    assert created.exit_code == 0, created.output
    assert "Speakers: NARRATOR, ALICE, BOB" in created.output
    assert "name: ALICE" in config_path.read_text(encoding="utf-8")
    assert refused.exit_code == 1
    assert "init failed at stage `config`" in refused.output
    assert "Hint: Pass `--overwrite` to replace it." in refused.output


def test_preview_lists_segments_with_resolved_voices(story_file: Path) -> None:
    """`preview` shows speakers, voices, and a window of segments."""

    result = _invoke("preview", str(story_file), "--segments", "2", "--speaker", "narrator")

    assert result.exit_code == 0, result.output
    assert "Segments: 4" in result.output
    assert "0. [NARRATOR] (Zephyr) Once upon a time" in result.output
    assert "3. [NARRATOR] (Zephyr) And so the story began" in result.output
    assert "[ALICE]" not in result.output
