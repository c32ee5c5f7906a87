#!/usr/bin/env python3
"""
TokenShrinker

Local proxy helper that keeps compressed summaries of large source files
so AI coding tools can send less context upstream.

Usage:
    token-shrinker watch                     # Summarize changed files continuously
    token-shrinker serve                     # HTTP API + watcher on :4343
    token-shrinker summarize src/big.js      # Run the pipeline for specific files
    token-shrinker shrink "some long text"   # Compress text (use - for stdin)
    token-shrinker context                   # Print aggregated repository context
    token-shrinker status                    # Provider and cache status
    token-shrinker mcp                       # MCP tool server on stdio
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv
from loguru import logger

from token_shrinker import __version__
from token_shrinker.modules.cache import ArtifactWriteError
from token_shrinker.modules.config import (
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG_PATH,
    PROVIDERS,
    Settings,
    load_settings,
)
from token_shrinker.modules.pipeline import Pipeline


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Configure logging with loguru."""
    logger.remove()  # Remove default handler

    level = "DEBUG" if verbose else "INFO"
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=level,
        colorize=True,
    )

    if log_file:
        logger.add(
            log_file,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            level="DEBUG",
            rotation="10 MB",
            retention="7 days",
        )


def load_env_file(root: Path) -> bool:
    """Load `.env` from the project root. Returns True if one was found."""
    env_path = root / ".env"
    if not env_path.exists():
        logger.warning(f"No .env file found in {root}; API keys must come from the environment")
        return False
    load_dotenv(env_path)
    logger.debug(f"Loaded .env from {env_path}")
    return True


def check_environment(settings: Settings) -> Dict[str, bool]:
    """Report which provider is selected and whether it has credentials.

    Only presence is logged, never key material.
    """
    provider = settings.provider
    has_key = bool(provider.api_key)
    if provider.requires_api_key and not has_key:
        logger.warning(f"No API key configured for {provider.name}; compression requests will fail")
    else:
        logger.debug(f"Provider {provider.name} configured (model: {provider.model})")
    return {"provider_configured": provider.name in PROVIDERS, "api_key_present": has_key}


def _default_config(root: Path) -> Optional[str]:
    if os.environ.get(CONFIG_ENV_VAR):
        return os.environ[CONFIG_ENV_VAR]
    candidate = root / DEFAULT_CONFIG_PATH
    return str(candidate) if candidate.exists() else None


# =============================================================================
# COMMANDS
# =============================================================================


def cmd_watch(pipeline: Pipeline, args: argparse.Namespace) -> int:
    logger.info("=" * 60)
    logger.info("TOKENSHRINKER - WATCH MODE")
    logger.info("=" * 60)
    pipeline.watcher().run_forever(initial_scan=not args.no_initial_scan)
    return 0


def cmd_serve(pipeline: Pipeline, args: argparse.Namespace) -> int:
    import uvicorn

    from token_shrinker.modules.api import create_app

    host = args.host or pipeline.settings.server.host
    port = args.port or pipeline.settings.server.port
    app = create_app(pipeline, watch=not args.no_watch)
    logger.info(f"TokenShrinker server running at http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="info")
    return 0


def cmd_summarize(pipeline: Pipeline, args: argparse.Namespace) -> int:
    exit_code = 0
    for file_path in args.files:
        try:
            result = pipeline.summarizer.summarize(file_path)
        except (ValueError, ArtifactWriteError) as e:
            logger.error(f"{file_path}: {e}")
            exit_code = 1
            continue
        print(json.dumps({"file": file_path, **result.model_dump()}))
        if result.error:
            exit_code = 1
    return exit_code


def cmd_shrink(pipeline: Pipeline, args: argparse.Namespace) -> int:
    text = sys.stdin.read() if args.text == "-" else args.text
    result = pipeline.compressor.compress(text)
    print(json.dumps(result.model_dump(exclude_none=True), indent=2))
    return 0 if result.ok else 1


def cmd_mcp(pipeline: Pipeline, args: argparse.Namespace) -> int:
    from token_shrinker.modules.mcp_server import serve_stdio

    asyncio.run(serve_stdio(pipeline))
    return 0


def cmd_context(pipeline: Pipeline, args: argparse.Namespace) -> int:
    print(pipeline.aggregator.aggregate())
    return 0


def cmd_status(pipeline: Pipeline, args: argparse.Namespace) -> int:
    provider = pipeline.settings.provider
    env_status = check_environment(pipeline.settings)
    status = {
        "root": str(pipeline.root),
        "summaries_dir": str(pipeline.cache.summaries_dir),
        "provider": provider.name,
        "model": provider.model,
        "api_key_present": env_status["api_key_present"],
        "token_limit": pipeline.settings.token_limit,
        **pipeline.aggregator.status(),
    }
    print(json.dumps(status, indent=2))
    return 0


COMMANDS = {
    "watch": cmd_watch,
    "serve": cmd_serve,
    "summarize": cmd_summarize,
    "shrink": cmd_shrink,
    "context": cmd_context,
    "status": cmd_status,
    "mcp": cmd_mcp,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="token-shrinker",
        description="Incremental file summarization for token-efficient AI tooling",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  AI_PROVIDER / USER_PREFERRED_PROVIDER  - openrouter (default), openai, anthropic, ollama
  USER_API_KEY / AI_API_KEY              - API key for the selected provider
  OPENROUTER_API_KEY, OPENAI_API_KEY, ANTHROPIC_API_KEY
  AI_MODEL (or OPENROUTER_MODEL, OPENAI_MODEL, ANTHROPIC_MODEL, OLLAMA_MODEL)
  WATCH_PATTERNS / WATCH_IGNORE          - comma-separated globs
  PORT                                   - HTTP port (default: 4343)
""",
    )
    parser.add_argument("--dir", "-d", type=str, default=".", help="Project root (default: current directory)")
    parser.add_argument("--config", "-c", type=str, default=None, help="Path to configuration file (default: config.yaml)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose/debug output")
    parser.add_argument("--log-file", type=str, help="Path to log file (optional)")
    parser.add_argument("--version", action="version", version=f"TokenShrinker v{__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    watch_parser = subparsers.add_parser("watch", help="Watch the project and keep summaries current")
    watch_parser.add_argument(
        "--no-initial-scan", action="store_true", help="Only react to new changes, skip existing files"
    )

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API (and the watcher)")
    serve_parser.add_argument("--host", type=str, default=None, help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument("--port", "-p", type=int, default=None, help="Port (default: 4343 or $PORT)")
    serve_parser.add_argument("--no-watch", action="store_true", help="Do not start the file watcher")

    summarize_parser = subparsers.add_parser("summarize", help="Summarize specific files now")
    summarize_parser.add_argument("files", nargs="+", help="Paths relative to the project root")

    shrink_parser = subparsers.add_parser("shrink", help="Compress a piece of text")
    shrink_parser.add_argument("text", help="Text to compress, or - to read stdin")

    subparsers.add_parser("context", help="Print aggregated repository context")
    subparsers.add_parser("status", help="Show provider and cache status")
    subparsers.add_parser("mcp", help="Serve MCP tools (shrink, summarize, fetch-summary) over stdio")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.log_file)

    command = args.command or "watch"
    if args.command is None:
        args.no_initial_scan = False

    root = Path(args.dir).resolve()
    if not root.is_dir():
        logger.error(f"Directory not found: {args.dir}")
        return 2

    load_env_file(root)
    settings = load_settings(args.config or _default_config(root))
    check_environment(settings)

    try:
        pipeline = Pipeline(settings, root)
        return COMMANDS[command](pipeline, args)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 2
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
