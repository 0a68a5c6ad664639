"""Structured run logging utilities.

Responsibilities:
- Emit concise, deterministic phase-level and segment-level runtime logs.
- Own the `loguru` sinks for a run: console output and an optional debug file.
"""

from __future__ import annotations

from pathlib import Path
import sys
from typing import TextIO

from loguru import logger as _loguru_logger


def _sanitize_context_value(value: object) -> str:
    """Convert context values into stable, shell-safe tokens."""

    raw = str(value).strip()
    if not raw:
        return "none"
    return "".join(
        character if character.isalnum() or character in {"-", "_", ".", ":", "/"} else "_"
        for character in raw
    )


def _format_context(context: dict[str, object]) -> str:
    """Serialize context key/value pairs in deterministic key order."""

    if not context:
        return ""
    tokens = [
        f"{key}={_sanitize_context_value(context[key])}"
        for key in sorted(context.keys())
    ]
    return " " + " ".join(tokens)


class RunLogger:
    """Emit deterministic phase logs for CLI-observable pipeline activity."""

    def __init__(
        self,
        sink: TextIO | None = None,
        *,
        level: str = "INFO",
        debug_log_path: Path | None = None,
    ) -> None:
        """Configure the console sink and an optional debug log file sink."""

        self._sink = sink or sys.stdout
        self._debug_handler_id: int | None = None
        _loguru_logger.remove()
        _loguru_logger.add(self._sink, format="{message}", level=level, colorize=False)
        if debug_log_path is not None:
            self.attach_debug_log(debug_log_path)

    def attach_debug_log(self, path: Path) -> None:
        """Route `DEBUG` and higher records to a log file as well."""

        if self._debug_handler_id is not None:
            _loguru_logger.remove(self._debug_handler_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._debug_handler_id = _loguru_logger.add(
            str(path),
            format="{time:YYYY-MM-DDTHH:mm:ss.SSSZ} {level} {message}",
            level="DEBUG",
        )

    def close(self) -> None:
        """Flush and detach the debug log file sink, if any."""

        if self._debug_handler_id is not None:
            _loguru_logger.remove(self._debug_handler_id)
            self._debug_handler_id = None

    def _emit(self, level: str, event: str, stage: str, **context: object) -> None:
        """Emit one structured runtime log line."""

        line = f"[phase] level={level} stage={stage} event={event}{_format_context(context)}"
        _loguru_logger.log(level, line)

    def log_stage_start(self, stage: str) -> None:
        """Emit a stage-start runtime event."""

        self._emit("INFO", "start", stage)

    def log_stage_complete(self, stage: str) -> None:
        """Emit a stage-complete runtime event."""

        self._emit("INFO", "complete", stage)

    def log_stage_failure(self, stage: str, error_type: str) -> None:
        """Emit a stage-failure runtime event without sensitive payload details."""

        self._emit("ERROR", "failure", stage, error_type=error_type)

    def log_event(self, level: str, event: str, stage: str, **context: object) -> None:
        """Emit a named event with sanitized context for a stage."""

        self._emit(level, event, stage, **context)

    def debug(self, message: str) -> None:
        """Write a free-form diagnostic line at `DEBUG` level."""

        _loguru_logger.debug(message)
