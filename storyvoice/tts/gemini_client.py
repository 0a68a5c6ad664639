"""Gemini HTTP client for speech synthesis.

Responsibilities:
- Send `generateContent` speech requests to the Gemini REST API.
- Retry transient network and server failures with exponential backoff.
- Classify provider responses into synthesis failure kinds.
- Wrap returned raw PCM in a WAV container.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
import threading
import time
from typing import Any

import requests

from ..audio.wav import WavFormat, build_wav, pcm_format_from_mime
from ..errors import (
    FAILURE_CONTENT_BLOCKED,
    FAILURE_INCOMPLETE_OTHER,
    FAILURE_INCOMPLETE_TERMINAL,
    FAILURE_INVALID_API_KEY,
    FAILURE_TRANSIENT,
    FAILURE_UNKNOWN,
    SynthesisError,
)
from .rate_limiter import RateLimiter

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
# Gemini speech models emit mono 16-bit L16 PCM at 24 kHz.
GEMINI_OUTPUT_FORMAT = WavFormat(channels=1, sample_rate=24000, bits_per_sample=16)


class GeminiSpeechClient:
    """Minimal requests-based Gemini speech client with transient retries."""

    _MAX_PROVIDER_MESSAGE_CHARS = 180
    _TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 60.0,
        max_retries: int = 3,
        retry_backoff_base_seconds: float = 1.0,
        retry_backoff_max_seconds: float = 30.0,
        rate_limiter: RateLimiter | None = None,
        provider_id: str = "gemini",
    ) -> None:
        """Initialize Gemini HTTP client settings."""

        self.api_key = api_key.strip() if isinstance(api_key, str) else ""
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(0, max_retries)
        self.retry_backoff_base_seconds = retry_backoff_base_seconds
        self.retry_backoff_max_seconds = retry_backoff_max_seconds
        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter(0.0)
        self.provider_id = provider_id
        self._retry_attempts = 0
        self._counter_lock = threading.Lock()

    @property
    def retry_attempt_count(self) -> int:
        """Return how many transient retries this client has performed."""

        return self._retry_attempts

    def synthesize_speech(
        self,
        *,
        model: str,
        text: str,
        voice_name: str,
        seed: int | None = None,
        style_prompt: str | None = None,
    ) -> bytes:
        """Return WAV bytes synthesized for text with a prebuilt voice.

        Raises:
            SynthesisError: With a failure kind describing why no audio was produced.
        """

        self._require_api_key()
        prompt = f"{style_prompt}: {text}" if style_prompt else text
        generation_config: dict[str, Any] = {
            "responseModalities": ["AUDIO"],
            "speechConfig": {
                "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice_name}},
            },
        }
        if seed is not None:
            generation_config["seed"] = seed
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }
        response_payload = self._post_json_with_retries(
            endpoint_path=f"/models/{model}:generateContent",
            payload=payload,
            rate_key=f"{self.provider_id}:tts:{model}",
        )
        return self._extract_audio(response_payload)

    def _require_api_key(self) -> None:
        """Require API key presence before issuing Gemini requests."""

        if not self.api_key:
            raise SynthesisError(
                "Missing Gemini API key. Set `GEMINI_API_KEY` or use `--api-key`.",
                failure_kind=FAILURE_INVALID_API_KEY,
            )

    def _post_json_with_retries(
        self,
        *,
        endpoint_path: str,
        payload: dict[str, Any],
        rate_key: str,
    ) -> dict[str, Any]:
        """POST JSON with rate limiting and bounded exponential backoff on transient errors."""

        attempt = 0
        while True:
            self.rate_limiter.acquire(rate_key)
            try:
                return self._execute_json_post(endpoint_path=endpoint_path, payload=payload)
            except SynthesisError as exc:
                if exc.failure_kind != FAILURE_TRANSIENT or attempt >= self.max_retries:
                    raise
                delay = min(
                    self.retry_backoff_max_seconds,
                    self.retry_backoff_base_seconds * (2**attempt),
                )
                with self._counter_lock:
                    self._retry_attempts += 1
                attempt += 1
                time.sleep(delay)

    def _execute_json_post(
        self,
        *,
        endpoint_path: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """Execute one Gemini JSON POST and map failures consistently."""

        endpoint = f"{self.base_url}{endpoint_path}"
        headers = {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }
        try:
            response = requests.post(
                endpoint,
                headers=headers,
                json=payload,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            response_bytes = bytes(response.content)
        except requests.HTTPError as exc:
            raise self._http_error_to_synthesis_error(exc) from exc
        except requests.Timeout as exc:
            raise SynthesisError(
                "Gemini request timed out.", failure_kind=FAILURE_TRANSIENT
            ) from exc
        except requests.RequestException as exc:
            raise SynthesisError(
                f"Gemini request transport error: {self._short_message(str(exc))}",
                failure_kind=FAILURE_TRANSIENT,
            ) from exc

        try:
            decoded = json.loads(response_bytes.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SynthesisError("Gemini returned invalid JSON payload.") from exc
        if not isinstance(decoded, dict):
            raise SynthesisError("Gemini response root is not a JSON object.")
        return decoded

    @staticmethod
    def _extract_audio(payload: dict[str, Any]) -> bytes:
        """Extract WAV audio from a `generateContent` response payload."""

        feedback = payload.get("promptFeedback")
        if isinstance(feedback, dict) and feedback.get("blockReason"):
            raise SynthesisError(
                f"Content blocked: {feedback['blockReason']}",
                failure_kind=FAILURE_CONTENT_BLOCKED,
                provider_code=str(feedback["blockReason"]),
            )

        candidates = payload.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            raise SynthesisError("Gemini response has no candidates.")
        candidate = candidates[0]
        if not isinstance(candidate, dict):
            raise SynthesisError("Gemini response `candidates[0]` is malformed.")

        finish_reason = candidate.get("finishReason")
        if finish_reason and finish_reason != "STOP":
            failure_kind = (
                FAILURE_INCOMPLETE_OTHER
                if finish_reason == "OTHER"
                else FAILURE_INCOMPLETE_TERMINAL
            )
            raise SynthesisError(
                f"Generation incomplete: {finish_reason}",
                failure_kind=failure_kind,
                finish_reason=str(finish_reason),
            )

        content = candidate.get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        for part in parts if isinstance(parts, list) else []:
            inline = part.get("inlineData") if isinstance(part, dict) else None
            if not isinstance(inline, dict) or not inline.get("data"):
                continue
            try:
                raw_audio = base64.b64decode(inline["data"], validate=True)
            except (binascii.Error, ValueError) as exc:
                raise SynthesisError("Gemini audio payload is not valid base64.") from exc
            mime_type = str(inline.get("mimeType", "audio/L16;rate=24000"))
            if raw_audio[:4] == b"RIFF" or "wav" in mime_type.lower():
                return raw_audio
            return build_wav(raw_audio, pcm_format_from_mime(mime_type, GEMINI_OUTPUT_FORMAT))

        raise SynthesisError("No audio data received.", failure_kind=FAILURE_UNKNOWN)

    @classmethod
    def _redact_sensitive_tokens(cls, text: str) -> str:
        """Redact API-key-like tokens from provider error content."""

        return re.sub(r"\bAIza[0-9A-Za-z_-]{20,}\b", "[redacted-key]", text)

    @classmethod
    def _short_message(cls, text: str) -> str:
        """Normalize and cap user-facing provider message length."""

        compact = " ".join(cls._redact_sensitive_tokens(text).split())
        if len(compact) <= cls._MAX_PROVIDER_MESSAGE_CHARS:
            return compact
        return f"{compact[: cls._MAX_PROVIDER_MESSAGE_CHARS - 1]}..."

    @classmethod
    def _extract_provider_message(cls, body: str) -> tuple[str, str | None]:
        """Extract a concise provider message and optional provider status code."""

        if not body:
            return "", None
        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            return cls._short_message(body), None

        provider_code: str | None = None
        message: str | None = None
        if isinstance(payload, dict):
            error_payload = payload.get("error")
            if isinstance(error_payload, dict):
                status_value = error_payload.get("status")
                if isinstance(status_value, str) and status_value.strip():
                    provider_code = status_value.strip()
                message_value = error_payload.get("message")
                if isinstance(message_value, str) and message_value.strip():
                    message = message_value.strip()
        return cls._short_message(message if message is not None else body), provider_code

    @classmethod
    def _classify_http_failure(cls, status_code: int, provider_message: str) -> str:
        """Classify Gemini HTTP errors into synthesis failure kinds."""

        message_lower = provider_message.lower()
        if status_code in {401, 403} or "api key" in message_lower:
            return FAILURE_INVALID_API_KEY
        if status_code in cls._TRANSIENT_STATUS_CODES:
            return FAILURE_TRANSIENT
        if "rate limit" in message_lower or "timeout" in message_lower:
            return FAILURE_TRANSIENT
        return FAILURE_UNKNOWN

    @classmethod
    def _http_error_to_synthesis_error(cls, exc: requests.HTTPError) -> SynthesisError:
        """Convert HTTP errors into normalized synthesis exceptions with metadata."""

        response = exc.response
        status_code = response.status_code if response is not None else 0
        body = ""
        if response is not None:
            body = bytes(response.content).decode("utf-8", errors="replace").strip()
        provider_message, provider_code = cls._extract_provider_message(body)
        failure_kind = cls._classify_http_failure(status_code, provider_message)

        headline = {
            FAILURE_INVALID_API_KEY: "Gemini authentication failed",
            FAILURE_TRANSIENT: "Gemini service temporarily unavailable",
        }.get(failure_kind, "Gemini request failed")
        if provider_message:
            detail = f"{headline} (HTTP {status_code}): {provider_message}"
        else:
            detail = f"{headline} (HTTP {status_code})."
        return SynthesisError(
            detail,
            failure_kind=failure_kind,
            status_code=status_code,
            provider_code=provider_code,
        )
