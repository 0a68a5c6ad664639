"""Deterministic content hashing helpers.

Responsibilities:
- Produce fixed-width hex digests that are stable across process runs.
- Serialize mappings canonically so key order never changes a digest.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping


def content_hash(text: str) -> str:
    """Return the SHA-256 hex digest of UTF-8 encoded text."""

    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def canonical_json(payload: Mapping[str, Any]) -> str:
    """Serialize a mapping with sorted keys and compact separators.

    Keys whose value is `None` are dropped so absent and unset fields hash alike.
    """

    compact = {key: value for key, value in payload.items() if value is not None}
    return json.dumps(compact, sort_keys=True, ensure_ascii=True, separators=(",", ":"))


def mapping_hash(payload: Mapping[str, Any]) -> str:
    """Return the content hash of a canonically serialized mapping."""

    return content_hash(canonical_json(payload))
