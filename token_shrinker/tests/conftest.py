# Pytest configuration for the TokenShrinker test suite
#
# Timeout strategy:
# - FAST tests: 10s (pure unit tests, no I/O)
# - MEDIUM tests: 30s (file I/O, TestClient)
# - SLOW tests: 60s (threads, real watchdog observer)

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import pytest

from token_shrinker.modules.cache import SummaryCache
from token_shrinker.modules.compressor import Compressor
from token_shrinker.modules.config import ProviderSettings, Settings
from token_shrinker.modules.pipeline import Pipeline

# ---------------------------------------------------------------------------
# Timeout configuration by test file
# ---------------------------------------------------------------------------

TIMEOUT_MAP = {
    "test_watcher": 60,
    "test_api": 30,
    "test_cli": 30,
    "test_summarizer": 30,
    "test_cache": 30,
    "test_repo_context": 10,
    "test_compressor": 10,
    "test_mcp_server": 30,
    "test_config": 10,
    "test_hashing": 5,
}


def pytest_collection_modifyitems(config, items):
    """Apply timeout markers based on test file names."""
    for item in items:
        test_name = Path(str(item.fspath)).stem

        timeout = 30  # default
        for pattern, t in TIMEOUT_MAP.items():
            if pattern in test_name:
                timeout = t
                break

        if item.get_closest_marker("timeout") is None:
            item.add_marker(pytest.mark.timeout(timeout))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


class FakeCompletion:
    """Stands in for litellm.completion and records every call."""

    def __init__(self, reply: str = "compressed summary") -> None:
        self.reply = reply
        self.calls: List[Dict[str, Any]] = []
        self.error: Exception | None = None

    def __call__(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return {"choices": [{"message": {"content": self.reply}}]}


@pytest.fixture
def fake_completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def provider() -> ProviderSettings:
    return ProviderSettings(name="openrouter", api_key="test-key", model="test/model")


@pytest.fixture
def compressor(provider: ProviderSettings, fake_completion: FakeCompletion) -> Compressor:
    return Compressor(provider, completion_fn=fake_completion)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def cache(project: Path) -> SummaryCache:
    return SummaryCache(project / "summaries")


@pytest.fixture
def pipeline(project: Path, provider: ProviderSettings, compressor: Compressor) -> Pipeline:
    settings = Settings(provider=provider)
    return Pipeline(settings, project, compressor=compressor)
