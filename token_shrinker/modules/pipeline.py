"""
TokenShrinker - Pipeline wiring

Builds the cache, compressor, aggregator, summarizer and watcher for one
project root from Settings. One Pipeline per process: its SummaryCache is
the single owner of the `summaries` directory.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .cache import SummaryCache
from .compressor import Compressor
from .config import Settings
from .repo_context import RepoContextAggregator
from .summarizer import FileSummarizer
from .watcher import ChangeWatcher


class Pipeline:
    """The wired-up components for one project root."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        root: Path | str = ".",
        compressor: Optional[Compressor] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.root = Path(root).resolve()
        summaries_dir = Path(self.settings.summaries_dir)
        if not summaries_dir.is_absolute():
            summaries_dir = self.root / summaries_dir

        self.cache = SummaryCache(summaries_dir)
        self.compressor = compressor or Compressor(self.settings.provider)
        self.aggregator = RepoContextAggregator(self.cache)
        self.summarizer = FileSummarizer(
            self.root,
            self.cache,
            self.compressor,
            aggregator=self.aggregator,
            token_limit=self.settings.token_limit,
            include_repo_context=self.settings.include_repo_context,
            retry_on_error=self.settings.retry_on_error,
        )

    def watcher(self) -> ChangeWatcher:
        return ChangeWatcher(self.root, self.summarizer, self.settings.watcher)
