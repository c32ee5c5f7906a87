"""
TokenShrinker - Summary Cache

Owns the `summaries` directory:
- `_cache.json`: repo-relative path -> {hash, updated}
- `<artifact-key>.summary.json`: one SummaryArtifact per summarized file

The store is loaded once per SummaryCache and passed around by reference;
every mutation of it happens inside `transaction()` so that watcher batches
and HTTP-triggered summarizations in the same process never interleave.
"""

from __future__ import annotations

import json
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from loguru import logger
from pydantic import ValidationError

from .schemas import CacheEntry, CacheStore, SummaryArtifact

CACHE_FILENAME = "_cache.json"
ARTIFACT_SUFFIX = ".summary.json"
TMP_SUFFIX = ".tmp"

# Reserved characters and their escapes. "%" goes first so decoding is exact.
_ESCAPES = (
    ("%", "%25"),
    ("/", "%2F"),
    ("\\", "%5C"),
    (":", "%3A"),
)


class TokenShrinkerError(Exception):
    """Base error for the summarization pipeline."""


class ArtifactWriteError(TokenShrinkerError):
    """A summary artifact could not be persisted; cache and artifacts may disagree."""


# =============================================================================
# ARTIFACT KEYS
# =============================================================================


def encode_artifact_key(file_path: str) -> str:
    """Flat, file-safe name for a repo-relative path.

    Percent-encodes path separators, drive colons and the escape character
    itself, so distinct paths always produce distinct keys.
    """
    key = file_path
    for char, escaped in _ESCAPES:
        key = key.replace(char, escaped)
    return key


def decode_artifact_key(key: str) -> str:
    """Inverse of encode_artifact_key."""
    out: List[str] = []
    i = 0
    reverse = {escaped: char for char, escaped in _ESCAPES}
    while i < len(key):
        chunk = key[i:i + 3]
        if chunk.upper() in reverse:
            out.append(reverse[chunk.upper()])
            i += 3
        else:
            out.append(key[i])
            i += 1
    return "".join(out)


def _atomic_write_json(target: Path, payload: object) -> None:
    tmp = target.with_name(target.name + TMP_SUFFIX)
    try:
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        os.replace(tmp, target)
    except OSError:
        if tmp.exists():
            tmp.unlink(missing_ok=True)
        raise


# =============================================================================
# SUMMARY CACHE
# =============================================================================


class SummaryCache:
    """
    Persistent fingerprint cache plus the artifact store next to it.

    Load failures reset the cache to empty and are logged; cache write
    failures are logged and swallowed. Artifact write failures raise
    ArtifactWriteError because they break the cache/artifact pairing.
    """

    def __init__(self, summaries_dir: Path | str = "summaries") -> None:
        self.summaries_dir = Path(summaries_dir).resolve()
        self.cache_file = self.summaries_dir / CACHE_FILENAME
        self._lock = threading.RLock()
        self._store: Optional[CacheStore] = None

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[CacheStore]:
        """Hold the cache lock and yield the live store."""
        with self._lock:
            yield self.store

    @property
    def store(self) -> CacheStore:
        with self._lock:
            if self._store is None:
                self._store = self.load()
            return self._store

    # -------------------------------------------------------------------------
    # Cache index
    # -------------------------------------------------------------------------

    def _reset(self) -> CacheStore:
        self.save({})
        return {}

    def load(self) -> CacheStore:
        """Read the persisted cache, creating an empty one on first use."""
        with self._lock:
            try:
                self.summaries_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error(f"Cannot create summaries directory {self.summaries_dir}: {e}")
                return {}

            if not self.cache_file.exists():
                return self._reset()

            try:
                raw = json.loads(self.cache_file.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to read cache {self.cache_file}, resetting: {e}")
                return self._reset()

            if not isinstance(raw, dict):
                logger.warning(f"Cache {self.cache_file} is not a JSON object, resetting")
                return self._reset()

            store: CacheStore = {}
            for file_path, entry in raw.items():
                try:
                    store[file_path] = CacheEntry.model_validate(entry)
                except ValidationError:
                    logger.warning(f"Dropping malformed cache entry for {file_path}")
            return store

    def save(self, store: Optional[CacheStore] = None) -> None:
        """Persist the store (temp file + replace). Failures are logged only."""
        with self._lock:
            if store is None:
                store = self.store
            payload = {path: entry.model_dump(exclude_none=True) for path, entry in store.items()}
            try:
                self.summaries_dir.mkdir(parents=True, exist_ok=True)
                _atomic_write_json(self.cache_file, payload)
            except OSError as e:
                logger.error(f"Failed to save cache {self.cache_file}: {e}")

    def get(self, file_path: str) -> Optional[CacheEntry]:
        with self._lock:
            return self.store.get(file_path)

    # -------------------------------------------------------------------------
    # Artifacts
    # -------------------------------------------------------------------------

    def artifact_path(self, file_path: str) -> Path:
        return self.summaries_dir / f"{encode_artifact_key(file_path)}{ARTIFACT_SUFFIX}"

    def write_artifact(self, artifact: SummaryArtifact) -> Path:
        target = self.artifact_path(artifact.file)
        try:
            self.summaries_dir.mkdir(parents=True, exist_ok=True)
            _atomic_write_json(target, artifact.model_dump())
        except OSError as e:
            raise ArtifactWriteError(f"Could not write summary for {artifact.file}: {e}") from e
        return target

    def read_artifact(self, file_path: str) -> Optional[SummaryArtifact]:
        path = self.artifact_path(file_path)
        if not path.exists():
            return None
        try:
            return SummaryArtifact.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning(f"Could not read summary file {path.name}: {e}")
            return None

    def remove_artifact(self, file_path: str) -> bool:
        path = self.artifact_path(file_path)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Failed to remove stale summary {path.name}: {e}")
            return False
        return True

    def iter_artifact_files(self) -> List[Path]:
        """Artifact files sorted by key; the cache index and temp files are excluded."""
        if not self.summaries_dir.is_dir():
            return []
        return sorted(
            p
            for p in self.summaries_dir.iterdir()
            if p.is_file() and p.name.endswith(ARTIFACT_SUFFIX) and p.name != CACHE_FILENAME
        )

    @staticmethod
    def artifact_key(path: Path) -> str:
        return path.name[: -len(ARTIFACT_SUFFIX)]

    def stats(self) -> dict:
        return {"cached_entries": len(self.store), "artifacts": len(self.iter_artifact_files())}
