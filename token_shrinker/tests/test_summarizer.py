"""
Tests for the FileSummarizer state machine.
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from token_shrinker.modules.cache import ArtifactWriteError, SummaryCache
from token_shrinker.modules.compressor import Compressor
from token_shrinker.modules.hashing import fingerprint
from token_shrinker.modules.repo_context import RepoContextAggregator
from token_shrinker.modules.summarizer import FileSummarizer


def text_of_tokens(tokens: int, char: str = "x") -> str:
    return char * (tokens * 4)


@pytest.fixture
def summarizer(project: Path, cache: SummaryCache, compressor: Compressor) -> FileSummarizer:
    return FileSummarizer(project, cache, compressor, aggregator=RepoContextAggregator(cache))


def write(project: Path, rel: str, content: str) -> Path:
    path = project / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


class TestEndToEnd:
    def test_large_file_produces_artifact_and_cache_entry(self, project, cache, summarizer):
        content = text_of_tokens(2500) + "!"
        write(project, "src/big.js", content)

        result = summarizer.summarize("src/big.js")

        assert result.changed is True
        artifact = json.loads(cache.artifact_path("src/big.js").read_text())
        assert artifact["file"] == "src/big.js"
        assert artifact["size_tokens"] == 2501  # ceil((10000 + 1) / 4)
        assert artifact["summary"] == "compressed summary"
        assert cache.load()["src/big.js"].hash == fingerprint(content)

        assert summarizer.summarize("src/big.js").changed is False

    def test_absolute_path_is_made_relative(self, project, cache, summarizer):
        path = write(project, "lib/a.ts", text_of_tokens(2100))
        summarizer.summarize(str(path))
        assert "lib/a.ts" in cache.load()

    def test_path_outside_root_is_rejected(self, summarizer, tmp_path):
        with pytest.raises(ValueError):
            summarizer.summarize(str(tmp_path / "elsewhere.js"))
        with pytest.raises(ValueError):
            summarizer.summarize("../escape.js")


class TestIdempotence:
    def test_unchanged_content_is_not_recompressed(self, project, cache, summarizer, fake_completion):
        write(project, "big.js", text_of_tokens(3000))
        summarizer.summarize("big.js")
        artifact_path = cache.artifact_path("big.js")
        mtime = artifact_path.stat().st_mtime_ns

        with patch.object(cache, "write_artifact") as write_artifact, patch.object(cache, "save") as save:
            result = summarizer.summarize("big.js")

        assert result.changed is False
        assert len(fake_completion.calls) == 1
        write_artifact.assert_not_called()
        save.assert_not_called()
        assert artifact_path.stat().st_mtime_ns == mtime

    def test_single_byte_change_triggers_recompression(self, project, summarizer, fake_completion):
        content = text_of_tokens(3000)
        write(project, "big.js", content)
        summarizer.summarize("big.js")

        write(project, "big.js", content[:-1] + "y")
        assert summarizer.summarize("big.js").changed is True
        assert len(fake_completion.calls) == 2


class TestThreshold:
    def test_just_below_limit_is_small(self, project, cache, summarizer, fake_completion):
        write(project, "edge.js", "x" * 7996)  # 1999 tokens

        assert summarizer.summarize("edge.js").changed is False
        assert fake_completion.calls == []
        assert cache.read_artifact("edge.js") is None

    def test_exactly_at_limit_is_large(self, project, summarizer, fake_completion):
        write(project, "edge.js", "x" * 7997)  # ceil(7997 / 4) == 2000

        assert summarizer.summarize("edge.js").changed is True
        assert len(fake_completion.calls) == 1

    def test_shrinking_file_drops_stale_artifact(self, project, cache, summarizer):
        write(project, "big.js", text_of_tokens(3000))
        summarizer.summarize("big.js")
        assert cache.artifact_path("big.js").exists()

        write(project, "big.js", "export const tiny = 1;\n")
        result = summarizer.summarize("big.js")

        assert result.changed is False
        assert not cache.artifact_path("big.js").exists()
        assert "big.js" not in cache.load()

    def test_custom_token_limit(self, project, cache, compressor):
        summarizer = FileSummarizer(project, cache, compressor, token_limit=10)
        write(project, "short.md", "y" * 40)
        assert summarizer.summarize("short.md").changed is True


class TestDeletion:
    def test_deleted_file_is_cleaned_up(self, project, cache, summarizer):
        path = write(project, "gone.js", text_of_tokens(2500))
        summarizer.summarize("gone.js")
        path.unlink()

        result = summarizer.summarize("gone.js")

        assert result.removed is True
        assert result.changed is False
        assert not cache.artifact_path("gone.js").exists()
        assert "gone.js" not in cache.load()

    def test_never_seen_missing_file(self, summarizer):
        assert summarizer.summarize("never.js").removed is True


class TestErrorPolicy:
    def test_failure_is_persisted_and_not_retried(self, project, cache, summarizer, fake_completion):
        fake_completion.error = RuntimeError("provider down")
        write(project, "big.js", text_of_tokens(2500))

        first = summarizer.summarize("big.js")
        second = summarizer.summarize("big.js")

        assert first.changed is True
        assert first.error == "provider down"
        assert cache.read_artifact("big.js").error == "provider down"
        assert second.changed is False
        assert len(fake_completion.calls) == 1

    def test_retry_on_error_resends(self, project, cache, compressor, fake_completion):
        summarizer = FileSummarizer(project, cache, compressor, retry_on_error=True)
        fake_completion.error = RuntimeError("provider down")
        write(project, "big.js", text_of_tokens(2500))

        summarizer.summarize("big.js")
        fake_completion.error = None
        result = summarizer.summarize("big.js")

        assert result.changed is True
        assert result.error is None
        assert cache.read_artifact("big.js").summary == "compressed summary"
        assert cache.load()["big.js"].failed is None

    def test_artifact_write_failure_leaves_cache_untouched(self, project, cache, summarizer):
        write(project, "big.js", text_of_tokens(2500))

        with patch.object(cache, "write_artifact", side_effect=ArtifactWriteError("disk full")):
            with pytest.raises(ArtifactWriteError):
                summarizer.summarize("big.js")

        assert "big.js" not in cache.load()


class TestRepoContext:
    def test_existing_summaries_are_sent_as_context(self, project, summarizer, fake_completion):
        write(project, "a.js", text_of_tokens(2500, "a"))
        summarizer.summarize("a.js")

        write(project, "b.js", text_of_tokens(2500, "b"))
        summarizer.summarize("b.js")

        system_prompt = fake_completion.calls[1]["messages"][0]["content"]
        assert "a.js: compressed summary" in system_prompt

    def test_context_can_be_disabled(self, project, cache, compressor, fake_completion):
        summarizer = FileSummarizer(
            project, cache, compressor, aggregator=RepoContextAggregator(cache), include_repo_context=False
        )
        write(project, "a.js", text_of_tokens(2500, "a"))
        summarizer.summarize("a.js")
        write(project, "b.js", text_of_tokens(2500, "b"))
        summarizer.summarize("b.js")

        assert "a.js" not in fake_completion.calls[1]["messages"][0]["content"]
