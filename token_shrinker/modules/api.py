"""
TokenShrinker - FastAPI Backend

HTTP surface over the summarization pipeline:
- GET  /health
- POST /summarize-text, /optimize   compress arbitrary text
- POST /summarize-file              run the per-file pipeline for one path
- GET  /summaries/{file_path}       stored artifact for a file
- GET  /context                     aggregated repository context

All handlers share the process-wide SummaryCache, so HTTP-triggered
summarizations and watcher batches go through the same cache lock.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from .cache import ArtifactWriteError
from .pipeline import Pipeline
from .repo_context import NO_SUMMARIES
from .schemas import (
    CompressionResult,
    ContextResponse,
    FileRequest,
    SummarizeResult,
    SummaryArtifact,
    TextRequest,
    now_ms,
)
from .watcher import ChangeWatcher


def create_app(pipeline: Pipeline, watch: bool = False, initial_scan: bool = True) -> FastAPI:
    """Build the FastAPI app; with `watch` the ChangeWatcher runs alongside it."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        watcher: Optional[ChangeWatcher] = None
        logger.info(f"TokenShrinker API starting (root: {pipeline.root})")
        if watch:
            watcher = pipeline.watcher()
            watcher.start(initial_scan=initial_scan)
        try:
            yield
        finally:
            if watcher is not None:
                watcher.stop()
            logger.info("TokenShrinker API shutting down...")

    app = FastAPI(title="TokenShrinker", lifespan=lifespan)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.state.pipeline = pipeline

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"ok": True, "time": now_ms()}

    def _compress(request: TextRequest) -> CompressionResult:
        if not request.text:
            raise HTTPException(status_code=400, detail="Missing text parameter")
        return pipeline.compressor.compress(request.text)

    @app.post("/summarize-text", response_model=CompressionResult, response_model_exclude_none=True)
    def summarize_text(request: TextRequest) -> CompressionResult:
        return _compress(request)

    @app.post("/optimize", response_model=CompressionResult, response_model_exclude_none=True)
    def optimize(request: TextRequest) -> CompressionResult:
        return _compress(request)

    @app.post("/summarize-file", response_model=SummarizeResult)
    def summarize_file(request: FileRequest) -> SummarizeResult:
        if not request.file:
            raise HTTPException(status_code=400, detail="Missing file parameter")
        try:
            return pipeline.summarizer.summarize(request.file)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ArtifactWriteError as e:
            logger.error(str(e))
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/summaries/{file_path:path}", response_model=SummaryArtifact)
    def get_summary(file_path: str) -> SummaryArtifact:
        artifact = pipeline.cache.read_artifact(file_path)
        if artifact is None:
            raise HTTPException(status_code=404, detail="not found")
        return artifact

    @app.get("/context", response_model=ContextResponse)
    def context() -> ContextResponse:
        summaries = pipeline.aggregator.aggregate()
        return ContextResponse(
            summaries=summaries,
            status=pipeline.aggregator.status(),
            cache_status="empty" if summaries == NO_SUMMARIES else "available",
        )

    return app
