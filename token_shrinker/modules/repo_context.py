"""
TokenShrinker - Repository context

Concatenates every stored summary into one text blob describing what is
already known about the repository. Used as background for compression
calls and by status/query consumers.
"""

from __future__ import annotations

import json
from typing import Dict, List

from loguru import logger

from .cache import SummaryCache

NO_SUMMARIES = "No repository summaries available yet."


class RepoContextAggregator:
    """Read-only view over the artifact store."""

    def __init__(self, cache: SummaryCache) -> None:
        self.cache = cache

    def aggregate(self) -> str:
        """All summaries as `<artifact-key>: <summary>` blocks, sorted by key."""
        parts: List[str] = []
        for path in self.cache.iter_artifact_files():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.warning(f"Could not read summary file {path.name}: {e}")
                continue

            summary = data.get("summary") if isinstance(data, dict) else None
            if isinstance(summary, str) and summary:
                parts.append(f"{self.cache.artifact_key(path)}: {summary}")

        return "\n\n".join(parts) if parts else NO_SUMMARIES

    def status(self) -> Dict[str, int]:
        artifacts = 0
        errors = 0
        for path in self.cache.iter_artifact_files():
            artifacts += 1
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError, UnicodeDecodeError):
                errors += 1
                continue
            if not isinstance(data, dict) or data.get("error"):
                errors += 1

        return {
            "artifacts": artifacts,
            "error_artifacts": errors,
            "cached_entries": len(self.cache.store),
        }
