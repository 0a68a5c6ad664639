"""Artifact storage abstraction.

Responsibilities:
- Provide deterministic filesystem storage for JSON manifests and audio files.
- Resolve artifact locations under one root directory.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any


class ArtifactStore:
    """Filesystem-backed artifact store rooted at one directory."""

    def __init__(self, root: Path) -> None:
        """Initialize the store with a root directory."""

        self.root = root

    def path_for(self, relative_path: Path) -> Path:
        """Return the absolute location of a stored artifact."""

        return self.root / relative_path

    def save_json(
        self,
        relative_path: Path,
        payload: dict[str, Any],
        *,
        sort_keys: bool = True,
    ) -> Path:
        """Save JSON-serializable payload and return final path."""

        path = self.path_for(relative_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=sort_keys),
            encoding="utf-8",
        )
        return path

    def save_audio(self, relative_path: Path, data: bytes) -> Path:
        """Save audio bytes and return final path."""

        path = self.path_for(relative_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    def load_json(self, relative_path: Path) -> Any:
        """Load and decode a JSON artifact.

        Raises:
            OSError: If the file cannot be read.
            ValueError: If the content is not valid JSON.
        """

        return json.loads(self.path_for(relative_path).read_text(encoding="utf-8"))
