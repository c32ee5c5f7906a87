"""
TokenShrinker - File Summarizer

Per-file state machine deciding what happens to one repo-relative path:

    missing      -> drop artifact + cache entry           {removed: true}
    unchanged    -> nothing                              {changed: false}
    small        -> drop stale artifact + cache entry    {changed: false}
    large        -> compress, write artifact, record hash {changed: true}

A failed compression is still written (as an error artifact) and its
fingerprint recorded, so a file that keeps failing is not resent until its
content changes. Set `retry_on_error` to resend it on every invocation.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from loguru import logger

from .cache import SummaryCache
from .compressor import Compressor
from .hashing import estimate_tokens, fingerprint
from .repo_context import RepoContextAggregator
from .schemas import CacheEntry, SummarizeResult, SummaryArtifact

DEFAULT_TOKEN_LIMIT = 2000


class FileSummarizer:
    """Keeps the cache and artifact store in step with one file at a time."""

    def __init__(
        self,
        root: Path | str,
        cache: SummaryCache,
        compressor: Compressor,
        aggregator: Optional[RepoContextAggregator] = None,
        token_limit: int = DEFAULT_TOKEN_LIMIT,
        include_repo_context: bool = True,
        retry_on_error: bool = False,
    ) -> None:
        self.root = Path(root).resolve()
        self.cache = cache
        self.compressor = compressor
        self.aggregator = aggregator
        self.token_limit = token_limit
        self.include_repo_context = include_repo_context
        self.retry_on_error = retry_on_error

    def relative_path(self, file_path: str | os.PathLike) -> str:
        """Repo-relative POSIX path; raises ValueError for paths outside the root."""
        path = Path(file_path)
        full = Path(os.path.normpath(path if path.is_absolute() else self.root / path))
        try:
            rel = full.relative_to(self.root)
        except ValueError:
            # Absolute paths given through a symlinked prefix (e.g. /tmp on macOS)
            try:
                rel = full.resolve().relative_to(self.root)
            except ValueError:
                raise ValueError(f"Path is outside the project root: {file_path}") from None
        if not rel.parts:
            raise ValueError(f"Not a file path: {file_path}")
        return rel.as_posix()

    def _forget(self, rel: str) -> bool:
        """Drop artifact and entry for `rel`; returns True if anything existed."""
        with self.cache.transaction() as store:
            removed_artifact = self.cache.remove_artifact(rel)
            removed_entry = store.pop(rel, None) is not None
            if removed_artifact or removed_entry:
                self.cache.save(store)
            return removed_artifact or removed_entry

    def _is_current(self, rel: str, digest: str) -> bool:
        entry = self.cache.get(rel)
        if entry is None or entry.hash != digest:
            return False
        return not (self.retry_on_error and entry.failed)

    def summarize(self, file_path: str | os.PathLike) -> SummarizeResult:
        rel = self.relative_path(file_path)
        full = self.root / rel

        if not full.is_file():
            if self._forget(rel):
                logger.info(f"Removed summary for deleted file: {rel}")
            return SummarizeResult(changed=False, removed=True)

        try:
            text = full.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            self._forget(rel)
            return SummarizeResult(changed=False, removed=True)
        except OSError as e:
            logger.error(f"Could not read {rel}: {e}")
            return SummarizeResult(changed=False, error=str(e))

        digest = fingerprint(text)
        if self._is_current(rel, digest):
            return SummarizeResult(changed=False)

        tokens = estimate_tokens(text)
        if tokens < self.token_limit:
            if self._forget(rel):
                logger.info(f"{rel} shrank below {self.token_limit} tokens; dropped its summary")
            return SummarizeResult(changed=False)

        context = None
        if self.include_repo_context and self.aggregator is not None:
            context = self.aggregator.aggregate()

        logger.info(f"Summarizing {rel} (~{tokens} tokens)")
        result = self.compressor.compress(text, context=context)
        artifact = SummaryArtifact.from_compression(rel, tokens, result)

        with self.cache.transaction() as store:
            self.cache.write_artifact(artifact)
            store[rel] = CacheEntry(hash=digest, failed=True if not result.ok else None)
            self.cache.save(store)

        if result.ok:
            logger.debug(f"{rel}: {result.original_length} -> {result.compressed_length} chars ({result.compression_ratio})")
        else:
            logger.warning(f"Compression failed for {rel}: {result.error}")
        return SummarizeResult(changed=True, error=result.error)
