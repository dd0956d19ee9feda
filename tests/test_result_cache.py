from __future__ import annotations

import allure
import pytest
from conftest import FakeClock

from layer_bridge.cache.result_cache import ResultCache, jaccard_similarity

pytestmark = [
    allure.epic("Caching"),
    allure.feature("Query Result Cache"),
]


def _cache(clock: FakeClock, **kwargs: object) -> ResultCache:
    return ResultCache(clock=clock, **kwargs)  # type: ignore[arg-type]


def test_exact_hit_ignores_case_and_whitespace(clock: FakeClock) -> None:
    cache = _cache(clock)
    cache.set("What is  Python?", "claude", "a language", sources=("https://python.org",))

    lookup = cache.get("what is python?", "claude")

    assert lookup is not None
    assert lookup.exact is True
    assert lookup.soft_hit is False
    assert lookup.similarity == 1.0
    assert lookup.entry.content == "a language"
    assert lookup.entry.sources == ("https://python.org",)


def test_soft_hit_at_threshold_and_miss_below(clock: FakeClock) -> None:
    cache = _cache(clock, similarity_threshold=0.8)
    cache.set("a b c d e", "gemini", "answer")

    soft = cache.get("a b c d", "gemini")
    assert soft is not None
    assert soft.soft_hit is True
    assert soft.similarity == pytest.approx(0.8)

    assert cache.get("a b c", "gemini") is None
    assert cache.get("a b c d e", "claude") is None


def test_soft_hit_prefers_most_similar_entry(clock: FakeClock) -> None:
    cache = _cache(clock, similarity_threshold=0.5)
    cache.set("alpha beta gamma delta", "claude", "far")
    cache.set("alpha beta gamma epsilon", "claude", "near")

    lookup = cache.get("alpha beta gamma epsilon zeta", "claude")

    assert lookup is not None
    assert lookup.entry.content == "near"


def test_ttl_boundary(clock: FakeClock) -> None:
    cache = _cache(clock, ttl_seconds=10)
    cache.set("query", "claude", "value")

    clock.now = 9.999
    assert cache.get("query", "claude") is not None
    clock.now = 10.0
    assert cache.get("query", "claude") is not None
    clock.now = 10.001
    assert cache.get("query", "claude") is None
    assert cache.get("querie", "claude") is None
    assert cache.cleanup() == 1
    assert len(cache) == 0


def test_lookups_do_not_modify_entries(clock: FakeClock) -> None:
    cache = _cache(clock)
    cache.set("stable query", "claude", {"answer": 42})

    first = cache.get("stable query", "claude")
    second = cache.get("stable query", "claude")

    assert first is not None
    assert second is not None
    assert first.entry == second.entry
    assert first.entry.timestamp == 0.0
    assert len(cache) == 1


def test_full_cache_evicts_oldest_fifth(clock: FakeClock) -> None:
    cache = _cache(clock, max_entries=5)
    for index in range(5):
        clock.now = float(index)
        cache.set(f"question {index}", "claude", index)

    clock.now = 5.0
    cache.set("question 0", "claude", "overwrite")
    assert len(cache) == 5

    cache.set("question 5", "claude", 5)

    assert len(cache) == 5
    assert cache.get("question 1", "claude") is None
    assert cache.get("question 0", "claude") is not None
    assert cache.get("question 5", "claude") is not None


def test_stats_track_lookups_only_when_enabled(clock: FakeClock) -> None:
    cache = _cache(clock, enable_metrics=True)
    cache.set("a b c d e", "claude", "x")
    cache.get("a b c d e", "claude")
    cache.get("a b c d", "claude")
    cache.get("unrelated", "claude")

    stats = cache.stats()
    assert stats["entries"] == 1
    assert stats["hits"] == 1
    assert stats["soft_hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == pytest.approx(2 / 3)

    cache.clear()
    assert cache.stats()["hits"] == 0

    silent = _cache(clock)
    silent.get("anything", "claude")
    assert silent.stats()["misses"] == 0


def test_constructor_and_similarity_helpers() -> None:
    with pytest.raises(ValueError, match="max_entries"):
        ResultCache(max_entries=0)
    assert jaccard_similarity(set(), set()) == 0.0
    assert ResultCache.make_key("A  b", "x") == ResultCache.make_key("a b", "x")
    assert len(ResultCache.make_key("a", "x")) == 16
