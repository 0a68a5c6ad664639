"""Shared pytest fixtures for the full Storyvoice test suite."""

from __future__ import annotations

from collections.abc import Callable, Iterator
import io
import wave

from loguru import logger
import pytest

SAMPLE_RATE = 24000


def build_test_wav(
    duration_ms: float,
    *,
    sample_rate: int = SAMPLE_RATE,
    channels: int = 1,
    sample_width: int = 2,
) -> bytes:
    """Return a silent PCM WAV container of the requested duration."""

    frame_count = int(round(duration_ms / 1000.0 * sample_rate))
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(sample_width)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(b"\x00" * (frame_count * channels * sample_width))
    return buffer.getvalue()


@pytest.fixture
def make_wav() -> Callable[..., bytes]:
    """Provide a factory for silent WAV payloads of a given duration."""

    return build_test_wav


@pytest.fixture
def story_file(tmp_path):
    """Write a small three-speaker story script and return its path."""

    path = tmp_path / "story.txt"
    path.write_text(
        "\n".join(
            [
                "# A short test story",
                "[NARRATOR] Once upon a time, in a quiet village.",
                "[ALICE] Hello there, is anyone home today?",
                "BOB: I am here, come inside please.",
                "  The door creaked as it opened.",
                "[NARRATOR] And so the story began in earnest.",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture(autouse=True)
def _reset_loguru_sinks() -> Iterator[None]:
    """Detach loguru sinks added during a test so streams closed later are not reused."""

    yield
    logger.remove()
