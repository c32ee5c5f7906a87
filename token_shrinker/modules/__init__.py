# TokenShrinker Modules
# Incremental file summarization: cache, compressor, summarizer, aggregator, watcher

from .hashing import estimate_tokens, fingerprint, target_tokens
from .cache import (
    ArtifactWriteError,
    SummaryCache,
    TokenShrinkerError,
    decode_artifact_key,
    encode_artifact_key,
)
from .compressor import Compressor
from .config import ProviderSettings, ServerSettings, Settings, WatcherSettings, load_settings
from .repo_context import NO_SUMMARIES, RepoContextAggregator
from .summarizer import FileSummarizer
from .watcher import ChangeEventHandler, ChangeWatcher
from .pipeline import Pipeline

# Pydantic schemas
from .schemas import (
    BatchReport,
    CacheEntry,
    CacheStore,
    CompressionResult,
    SummarizeResult,
    SummaryArtifact,
)

# FastAPI app (import separately so the CLI does not need the web stack)
# from .api import create_app
# MCP stdio server (same reason)
# from .mcp_server import create_server, serve_stdio

__all__ = [
    # Hashing
    "fingerprint",
    "estimate_tokens",
    "target_tokens",
    # Cache
    "SummaryCache",
    "encode_artifact_key",
    "decode_artifact_key",
    "TokenShrinkerError",
    "ArtifactWriteError",
    # Pipeline
    "Compressor",
    "FileSummarizer",
    "RepoContextAggregator",
    "NO_SUMMARIES",
    "ChangeWatcher",
    "ChangeEventHandler",
    "Pipeline",
    # Config
    "Settings",
    "ProviderSettings",
    "WatcherSettings",
    "ServerSettings",
    "load_settings",
    # Schemas
    "BatchReport",
    "CacheEntry",
    "CacheStore",
    "CompressionResult",
    "SummarizeResult",
    "SummaryArtifact",
]
