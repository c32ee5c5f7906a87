"""
TokenShrinker - MCP Server

Model Context Protocol tools served over stdio, for editors and agents
that query the pipeline directly:
- shrink          compress a piece of text
- summarize       text, one project file, or the whole repository
- fetch-summary   aggregated repository context
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import anyio
import mcp.types as types
from loguru import logger
from mcp.server import Server
from mcp.server.stdio import stdio_server

from .pipeline import Pipeline
from .repo_context import NO_SUMMARIES
from .schemas import CompressionResult

SERVER_NAME = "token-shrinker"

TOOLS: List[types.Tool] = [
    types.Tool(
        name="shrink",
        description="Compress text content to reduce token usage",
        inputSchema={
            "type": "object",
            "properties": {
                "text": {"type": "string", "description": "Text content to compress"},
            },
            "required": ["text"],
        },
    ),
    types.Tool(
        name="summarize",
        description="Generate a summary of text, a project file, or the repository",
        inputSchema={
            "type": "object",
            "properties": {
                "content": {
                    "type": "string",
                    "description": "Text to summarize, or a file path for type=file",
                },
                "type": {
                    "type": "string",
                    "enum": ["text", "file", "repo"],
                    "description": "Type of content being summarized",
                },
            },
            "required": ["content", "type"],
        },
    ),
    types.Tool(
        name="fetch-summary",
        description="Retrieve repository summaries from cache",
        inputSchema={
            "type": "object",
            "properties": {
                "repoPath": {
                    "type": "string",
                    "description": "Ignored; summaries always come from the served project root",
                },
            },
        },
    ),
]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _compression_payload(result: CompressionResult, text_key: str) -> Dict[str, Any]:
    return {
        text_key: result.summary or result.error,
        "originalLength": result.original_length,
        "compressedLength": result.compressed_length,
        "compressionRatio": result.compression_ratio,
        "success": result.ok,
    }


class ToolHandler:
    """Runs MCP tool calls against one Pipeline. Bad arguments raise ValueError."""

    def __init__(self, pipeline: Pipeline) -> None:
        self.pipeline = pipeline

    def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        args = arguments or {}
        if name == "shrink":
            return self.shrink(args)
        elif name == "summarize":
            return self.summarize(args)
        elif name == "fetch-summary":
            return self.fetch_summary(args)
        else:
            raise ValueError(f"Unknown tool: {name}")

    def shrink(self, args: Dict[str, Any]) -> Dict[str, Any]:
        text = args.get("text")
        if not text:
            raise ValueError("Missing required parameter: text")
        return _compression_payload(self.pipeline.compressor.compress(text), "compressedText")

    def summarize(self, args: Dict[str, Any]) -> Dict[str, Any]:
        content, kind = args.get("content"), args.get("type")
        if not content or not kind:
            raise ValueError("Missing required parameters: content and type")

        if kind == "repo":
            return {
                "summary": self.pipeline.aggregator.aggregate(),
                "type": "repository",
                "timestamp": _now_iso(),
                "cached": True,
            }
        if kind == "file":
            return self._summarize_file(content)
        if kind == "text":
            return _compression_payload(self.pipeline.compressor.compress(content), "summary")
        raise ValueError(f"Unsupported summarize type: {kind}")

    def _summarize_file(self, file_path: str) -> Dict[str, Any]:
        summarizer = self.pipeline.summarizer
        rel = summarizer.relative_path(file_path)
        result = summarizer.summarize(rel)
        artifact = self.pipeline.cache.read_artifact(rel)

        # Files below the token limit have no artifact; they are sent as-is.
        return {
            "summary": (artifact.summary or artifact.error) if artifact else None,
            "filePath": rel,
            "changed": result.changed,
            "removed": result.removed,
            "timestamp": artifact.timestamp if artifact else None,
            "success": result.error is None and (artifact is None or artifact.error is None),
        }

    def fetch_summary(self, args: Dict[str, Any]) -> Dict[str, Any]:
        summaries = self.pipeline.aggregator.aggregate()
        return {
            "summaries": summaries,
            "repoPath": str(self.pipeline.root),
            "timestamp": _now_iso(),
            "cacheStatus": "empty" if summaries == NO_SUMMARIES else "available",
        }


def create_server(pipeline: Pipeline) -> Server:
    """Build the MCP server exposing TOOLS for `pipeline`."""
    server = Server(SERVER_NAME)
    handler = ToolHandler(pipeline)

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: Dict[str, Any]) -> List[types.TextContent]:
        logger.info(f"MCP tool call: {name}")
        # Compression blocks on the provider; keep the event loop responsive.
        payload = await anyio.to_thread.run_sync(handler.call, name, arguments)
        return [types.TextContent(type="text", text=json.dumps(payload))]

    return server


async def serve_stdio(pipeline: Pipeline) -> None:
    """Serve MCP over stdin/stdout until the client disconnects."""
    server = create_server(pipeline)
    logger.info(f"TokenShrinker MCP server listening on stdio (root: {pipeline.root})")
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())
