"""Integration-test fixtures for deterministic provider behavior."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from storyvoice.tts.gemini_client import GeminiSpeechClient


@pytest.fixture
def synthesis_calls() -> list[dict[str, object]]:
    """Collect keyword arguments of every mocked speech request."""

    return []


@pytest.fixture(autouse=True)
def _mock_gemini_speech(
    monkeypatch: pytest.MonkeyPatch,
    make_wav: Callable[..., bytes],
    synthesis_calls: list[dict[str, object]],
) -> None:
    """Mock Gemini speech calls in integration tests to avoid network/key requirements."""

    def _mock_synthesize_speech(self, **kwargs: object) -> bytes:
        """Record the request and return a deterministic 100 ms WAV payload."""

        _ = self
        synthesis_calls.append(kwargs)
        return make_wav(100)

    monkeypatch.setenv("GEMINI_API_KEY", "integration-test-key")
    monkeypatch.delenv("STORYVOICE_API_KEY", raising=False)
    monkeypatch.setattr(GeminiSpeechClient, "synthesize_speech", _mock_synthesize_speech)
