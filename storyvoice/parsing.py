"""Shared parsing helpers for CLI, config, and environment value normalization."""

from __future__ import annotations

import os
import re
from typing import Mapping


_ENV_REFERENCE_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def normalize_optional_string(value: object) -> str | None:
    """Normalize an optional value to a stripped non-empty string.

    Args:
        value: Arbitrary input value.

    Returns:
        Stripped string value, or `None` when the value is empty after trimming.
    """

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text


def parse_speaker_list(value: object) -> tuple[str, ...]:
    """Parse a comma-separated speaker list into unique upper-case names.

    Order of first appearance is preserved. Blank items are ignored.
    """

    normalized = normalize_optional_string(value)
    if normalized is None:
        return ()
    speakers: list[str] = []
    for item in normalized.split(","):
        name = item.strip().upper()
        if name and name not in speakers:
            speakers.append(name)
    return tuple(speakers)


def resolve_env_references(value: str, env: Mapping[str, str] | None = None) -> str:
    """Replace `${VAR}` and `$VAR` references with environment values.

    Unset variables resolve to an empty string.
    """

    env_map: Mapping[str, str] = os.environ if env is None else env

    def _replace(match: re.Match[str]) -> str:
        """Return the environment value for one matched reference."""

        name = match.group(1) or match.group(2)
        return env_map.get(name, "")

    return _ENV_REFERENCE_PATTERN.sub(_replace, value)
