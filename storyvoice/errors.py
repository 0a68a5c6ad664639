"""Domain exceptions for pipeline, synthesis, and CLI diagnostics."""

from __future__ import annotations

FAILURE_CONTENT_BLOCKED = "content_blocked"
FAILURE_INCOMPLETE_OTHER = "incomplete_other"
FAILURE_INCOMPLETE_TERMINAL = "incomplete_terminal"
FAILURE_TRANSIENT = "transient"
FAILURE_INVALID_API_KEY = "invalid_api_key"
FAILURE_UNKNOWN = "unknown"


class PipelineStageError(RuntimeError):
    """Raised when a specific pipeline stage fails."""

    def __init__(
        self,
        *,
        stage: str,
        detail: str,
        hint: str | None = None,
    ) -> None:
        """Initialize a stage-scoped pipeline error."""

        super().__init__(detail)
        self.stage = stage
        self.detail = detail
        self.hint = hint


class SynthesisError(RuntimeError):
    """Raised when one speech synthesis call produces no usable audio.

    `failure_kind` is one of the `FAILURE_*` constants and drives retry policy.
    """

    def __init__(
        self,
        message: str,
        *,
        failure_kind: str = FAILURE_UNKNOWN,
        status_code: int | None = None,
        provider_code: str | None = None,
        finish_reason: str | None = None,
    ) -> None:
        """Initialize synthesis error metadata for retry decisions and diagnostics."""

        super().__init__(message)
        self.failure_kind = failure_kind
        self.status_code = status_code
        self.provider_code = provider_code
        self.finish_reason = finish_reason
