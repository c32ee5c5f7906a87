"""
TokenShrinker - Core Data Structures (Pydantic Schemas)

Defines the data models used throughout the summarization pipeline:
- CacheEntry: fingerprint + timestamp recorded for one summarized file
- SummaryArtifact: persisted compressed summary (or error) for one file
- CompressionResult: outcome of a single Compressor call
- SummarizeResult: outcome of one FileSummarizer invocation
- BatchReport: per-tick counters reported by the ChangeWatcher
"""

from __future__ import annotations

import time
from typing import Dict, Optional

from pydantic import BaseModel, Field


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


# =============================================================================
# CACHE
# =============================================================================


class CacheEntry(BaseModel):
    """Fingerprint of the content that was last summarized for a file."""

    hash: str = Field(..., description="Content fingerprint (SHA-1 hex)")
    updated: int = Field(default_factory=now_ms, description="Epoch ms of last update")
    failed: Optional[bool] = Field(default=None, description="Set when the last compression failed")


CacheStore = Dict[str, CacheEntry]


# =============================================================================
# COMPRESSION
# =============================================================================


class CompressionResult(BaseModel):
    """
    Result of one compression call.

    Exactly one of `summary` / `error` is set. Provider failures never
    escape the Compressor; they arrive here as `error`.
    """

    summary: Optional[str] = Field(default=None, description="Compressed text")
    error: Optional[str] = Field(default=None, description="Failure description")
    original_length: Optional[int] = Field(default=None, ge=0)
    compressed_length: Optional[int] = Field(default=None, ge=0)
    compression_ratio: Optional[str] = Field(default=None, description='e.g. "62.5%"')
    provider: Optional[str] = None
    model: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.summary is not None and self.error is None

    @classmethod
    def failure(cls, message: str, provider: Optional[str] = None, model: Optional[str] = None) -> "CompressionResult":
        return cls(error=message, provider=provider, model=model)


class SummaryArtifact(BaseModel):
    """On-disk record `<artifact-key>.summary.json` for one source file."""

    file: str = Field(..., description="Repo-relative POSIX path")
    size_tokens: int = Field(..., ge=0, description="Estimated tokens of the source")
    summary: Optional[str] = None
    error: Optional[str] = None
    original_length: Optional[int] = None
    compressed_length: Optional[int] = None
    compression_ratio: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    timestamp: int = Field(default_factory=now_ms)

    @classmethod
    def from_compression(cls, file: str, size_tokens: int, result: CompressionResult) -> "SummaryArtifact":
        return cls(file=file, size_tokens=size_tokens, **result.model_dump())


# =============================================================================
# PIPELINE RESULTS
# =============================================================================


class SummarizeResult(BaseModel):
    """Outcome of summarizing one file."""

    changed: bool = False
    removed: bool = False
    error: Optional[str] = None


class BatchReport(BaseModel):
    """Counters for one watcher tick."""

    checked: int = 0
    updated: int = 0
    removed: int = 0
    skipped: int = 0
    failed: int = 0
    duration_ms: int = 0

    def summary_line(self) -> str:
        line = f"{self.checked} checked | {self.updated} summaries updated"
        if self.removed:
            line += f" | {self.removed} removed"
        if self.skipped:
            line += f" | {self.skipped} skipped"
        if self.failed:
            line += f" | {self.failed} failed"
        return line


# =============================================================================
# API MODELS
# =============================================================================


class TextRequest(BaseModel):
    text: Optional[str] = None


class FileRequest(BaseModel):
    file: Optional[str] = None


class ContextResponse(BaseModel):
    summaries: str
    status: Dict[str, int]
    cache_status: str
