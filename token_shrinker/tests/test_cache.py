"""
Tests for the SummaryCache (cache index, artifact keys, artifact store).
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from token_shrinker.modules.cache import (
    ArtifactWriteError,
    SummaryCache,
    decode_artifact_key,
    encode_artifact_key,
)
from token_shrinker.modules.schemas import CacheEntry, SummaryArtifact


class TestArtifactKeys:
    def test_separators_are_escaped(self):
        key = encode_artifact_key("src/lib/util.js")
        assert "/" not in key
        assert key == "src%2Flib%2Futil.js"

    def test_windows_paths_are_escaped(self):
        key = encode_artifact_key("C:\\repo\\main.ts")
        assert "\\" not in key and ":" not in key

    def test_decode_is_inverse(self):
        for path in ["a/b.js", "a__b.js", "a%2Fb.js", "C:\\x\\y.ts", "100%/done.md", "plain.py"]:
            assert decode_artifact_key(encode_artifact_key(path)) == path

    def test_no_collisions_for_lookalike_paths(self):
        paths = ["a/b.js", "a__b.js", "a%2Fb.js", "a\\b.js", "a:b.js"]
        keys = {encode_artifact_key(p) for p in paths}
        assert len(keys) == len(paths)


class TestLoadSave:
    def test_load_creates_empty_cache(self, cache: SummaryCache):
        assert cache.load() == {}
        assert cache.cache_file.exists()
        assert json.loads(cache.cache_file.read_text()) == {}

    def test_save_then_load_round_trip(self, cache: SummaryCache):
        cache.save({"src/app.js": CacheEntry(hash="abc", updated=123)})
        loaded = cache.load()
        assert loaded["src/app.js"].hash == "abc"
        assert loaded["src/app.js"].updated == 123

    def test_persisted_format(self, cache: SummaryCache):
        cache.save({"src/app.js": CacheEntry(hash="abc", updated=123)})
        assert json.loads(cache.cache_file.read_text()) == {"src/app.js": {"hash": "abc", "updated": 123}}

    def test_corrupt_cache_resets_to_empty(self, cache: SummaryCache):
        cache.summaries_dir.mkdir(parents=True)
        cache.cache_file.write_text("{not json")

        assert cache.load() == {}
        assert json.loads(cache.cache_file.read_text()) == {}

    def test_non_object_cache_resets(self, cache: SummaryCache):
        cache.summaries_dir.mkdir(parents=True)
        cache.cache_file.write_text("[1, 2, 3]")
        assert cache.load() == {}

    def test_malformed_entry_is_dropped(self, cache: SummaryCache):
        cache.summaries_dir.mkdir(parents=True)
        cache.cache_file.write_text(json.dumps({
            "good.js": {"hash": "h", "updated": 1},
            "bad.js": {"nope": True},
        }))
        loaded = cache.load()
        assert list(loaded) == ["good.js"]

    def test_deleted_cache_file_is_recreated(self, cache: SummaryCache):
        cache.save({"a.js": CacheEntry(hash="h")})
        cache.cache_file.unlink()
        assert cache.load() == {}
        assert cache.cache_file.exists()

    def test_save_leaves_no_temp_file(self, cache: SummaryCache):
        cache.save({"a.js": CacheEntry(hash="h")})
        leftovers = [p.name for p in cache.summaries_dir.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_failed_replace_keeps_previous_cache(self, cache: SummaryCache):
        cache.save({"a.js": CacheEntry(hash="old")})

        with patch("token_shrinker.modules.cache.os.replace", side_effect=OSError("disk full")):
            cache.save({"a.js": CacheEntry(hash="new")})

        assert cache.load()["a.js"].hash == "old"

    def test_store_is_loaded_once(self, cache: SummaryCache):
        first = cache.store
        first["x.js"] = CacheEntry(hash="h")
        assert cache.store is first


class TestArtifacts:
    def _artifact(self, file: str = "src/app.js") -> SummaryArtifact:
        return SummaryArtifact(file=file, size_tokens=2500, summary="short", provider="openrouter", model="m")

    def test_write_and_read(self, cache: SummaryCache):
        path = cache.write_artifact(self._artifact())
        assert path.name == "src%2Fapp.js.summary.json"
        assert cache.read_artifact("src/app.js").summary == "short"

    def test_artifact_json_fields(self, cache: SummaryCache):
        path = cache.write_artifact(self._artifact())
        data = json.loads(path.read_text())
        for field in ("file", "size_tokens", "summary", "error", "original_length",
                      "compressed_length", "compression_ratio", "provider", "model", "timestamp"):
            assert field in data

    def test_remove_artifact(self, cache: SummaryCache):
        cache.write_artifact(self._artifact())
        assert cache.remove_artifact("src/app.js") is True
        assert cache.remove_artifact("src/app.js") is False
        assert cache.read_artifact("src/app.js") is None

    def test_write_failure_raises(self, cache: SummaryCache):
        with patch("token_shrinker.modules.cache.os.replace", side_effect=OSError("read-only")):
            with pytest.raises(ArtifactWriteError):
                cache.write_artifact(self._artifact())

    def test_iter_excludes_cache_index(self, cache: SummaryCache):
        cache.save({})
        cache.write_artifact(self._artifact("b.js"))
        cache.write_artifact(self._artifact("a.js"))
        (cache.summaries_dir / "notes.txt").write_text("ignored")

        names = [p.name for p in cache.iter_artifact_files()]
        assert names == ["a.js.summary.json", "b.js.summary.json"]

    def test_iter_on_missing_directory(self, tmp_path: Path):
        assert SummaryCache(tmp_path / "missing").iter_artifact_files() == []


class TestTransaction:
    def test_transaction_serializes_writers(self, cache: SummaryCache):
        def writer(prefix: str) -> None:
            for i in range(50):
                with cache.transaction() as store:
                    store[f"{prefix}{i}.js"] = CacheEntry(hash=str(i))
                    cache.save(store)

        threads = [threading.Thread(target=writer, args=(p,)) for p in "abc"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache.load()) == 150
        assert os.path.exists(cache.cache_file)
