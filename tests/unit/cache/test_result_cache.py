from __future__ import annotations

import json
from pathlib import Path

from photobatch.cache.result_cache import INDEX_FILE, ResultCache, make_cache_key


class StepClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


def test_cache_key_is_deterministic_and_param_sensitive() -> None:
    params = {"strength": 0.8, "resolution": "1024x1024"}
    reordered = {"resolution": "1024x1024", "strength": 0.8}

    key = make_cache_key("abc", "ecommerce-white-bg", params)

    assert key == make_cache_key("abc", "ecommerce-white-bg", reordered)
    assert len(key) == 64
    assert key != make_cache_key("abc", "ecommerce-white-bg", {**params, "strength": 0.5})
    assert key != make_cache_key("abc", "portrait-beautify", params)
    assert key != make_cache_key("abd", "ecommerce-white-bg", params)


def test_put_then_get_returns_payload_and_tracks_access(tmp_path: Path) -> None:
    cache = ResultCache(tmp_path, clock=StepClock())
    cache.put("k1", b"payload", template_id="ecommerce-white-bg", content_hash="abc")

    assert cache.get("k1") == b"payload"
    entry = cache.entry("k1")
    assert entry is not None
    assert entry.access_count == 2
    assert entry.last_accessed > entry.created_at
    assert cache.get("missing") is None

    stats = cache.stats()
    assert stats.entries == 1
    assert stats.hits == 1
    assert stats.misses == 1
    assert stats.hit_rate == 0.5


def test_last_write_wins(tmp_path: Path) -> None:
    cache = ResultCache(tmp_path)
    cache.put("k1", b"first")
    cache.put("k1", b"second!")

    assert cache.get("k1") == b"second!"
    assert len(cache) == 1
    assert cache.total_bytes() == len(b"second!")


def test_entry_count_limit_evicts_least_recently_used(tmp_path: Path) -> None:
    cache = ResultCache(tmp_path, max_entries=5, evict_fraction=0.2, clock=StepClock())
    for index in range(5):
        cache.put(f"k{index}", b"x")
    cache.get("k0")

    cache.put("k5", b"x")

    assert len(cache) <= 5
    assert "k0" in cache
    assert "k1" not in cache
    assert not (tmp_path / "k1.cache").exists()


def test_byte_limit_holds_after_put(tmp_path: Path) -> None:
    cache = ResultCache(tmp_path, max_bytes=100, clock=StepClock())
    for index in range(10):
        cache.put(f"k{index}", b"y" * 30)
        assert cache.total_bytes() <= 100

    assert "k9" in cache


def test_index_survives_reopen(tmp_path: Path) -> None:
    cache = ResultCache(tmp_path)
    cache.put("k1", b"abc", template_id="t")

    reopened = ResultCache(tmp_path)

    assert reopened.get("k1") == b"abc"
    assert reopened.entry("k1").template_id == "t"
    document = json.loads((tmp_path / INDEX_FILE).read_text(encoding="utf-8"))
    assert document["version"] == "1.0"
    assert document["entries"][0]["key"] == "k1"


def test_reopen_drops_entries_without_payload_and_orphans(tmp_path: Path) -> None:
    cache = ResultCache(tmp_path)
    cache.put("kept", b"1")
    cache.put("lost", b"2")
    (tmp_path / "lost.cache").unlink()
    (tmp_path / "orphan.cache").write_bytes(b"stray")

    reopened = ResultCache(tmp_path)

    assert "kept" in reopened
    assert "lost" not in reopened
    assert not (tmp_path / "orphan.cache").exists()


def test_missing_payload_on_get_is_a_miss(tmp_path: Path) -> None:
    cache = ResultCache(tmp_path)
    cache.put("k1", b"1")
    (tmp_path / "k1.cache").unlink()

    assert cache.get("k1") is None
    assert "k1" not in cache


def test_corrupt_index_resets_cache(tmp_path: Path) -> None:
    (tmp_path / INDEX_FILE).write_text("{not json", encoding="utf-8")
    (tmp_path / "stale.cache").write_bytes(b"old")

    cache = ResultCache(tmp_path)

    assert len(cache) == 0
    assert not (tmp_path / "stale.cache").exists()
    assert json.loads((tmp_path / INDEX_FILE).read_text(encoding="utf-8"))["entries"] == []


def test_sweep_removes_entries_idle_beyond_max_age(tmp_path: Path) -> None:
    clock = StepClock(start=0.0)
    cache = ResultCache(tmp_path, max_age_seconds=100, clock=clock)
    cache.put("old", b"1")
    clock.now = 500.0
    cache.put("fresh", b"2")

    assert cache.expired_keys(now=550.0) == ["old"]
    assert cache.sweep_expired(now=550.0) == 1
    assert "old" not in cache
    assert "fresh" in cache
    assert not (tmp_path / "old.cache").exists()


def test_delete_and_clear(tmp_path: Path) -> None:
    cache = ResultCache(tmp_path)
    cache.put("a", b"1")
    cache.put("b", b"2")

    assert cache.delete("a") is True
    assert cache.delete("a") is False
    assert cache.clear() == 1
    assert len(cache) == 0
    assert list(tmp_path.glob("*.cache")) == []
