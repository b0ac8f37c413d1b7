"""
Unit tests for ResultCache.

Covers key derivation, TTL staleness at read time, size-bounded eviction of
the globally oldest entries, and the explicit eviction/clear operations.
"""

from __future__ import annotations

from query_runtime.services.cache_service import ResultCache
from query_runtime.utils import make_cache_key
from tests.conftest import FakeClock, make_result


def _assert_consistent(cache: ResultCache) -> None:
    total = sum(len(entries) for entries in cache.by_query_id.values())
    assert cache.current_size == total
    assert cache.current_size <= cache.max_size


class TestCacheKey:
    """Tests for make_cache_key()."""

    def test_key_ignores_parameter_insertion_order(self) -> None:
        first = make_cache_key("q1", {"a": 1, "b": 2, "c": {"y": 1, "x": 2}})
        second = make_cache_key("q1", {"c": {"x": 2, "y": 1}, "b": 2, "a": 1})
        assert first == second

    def test_key_distinguishes_values_and_queries(self) -> None:
        assert make_cache_key("q1", {"a": 1}) != make_cache_key("q1", {"a": 2})
        assert make_cache_key("q1", {"a": 1}) != make_cache_key("q2", {"a": 1})

    def test_missing_parameters_match_empty_map(self) -> None:
        assert make_cache_key("q1", None) == make_cache_key("q1", {})
        assert make_cache_key("q1", {}).startswith("q1:")


class TestLookup:
    """Tests for put() followed by lookup()."""

    def test_immediate_lookup_hits(self, clock: FakeClock) -> None:
        cache = ResultCache(clock=clock)
        result = make_result("q1")

        cache.put("q1", {"a": 1}, result, ttl_seconds=300)

        assert cache.lookup("q1", {"a": 1}) is result
        assert cache.hits == 1

    def test_lookup_misses_after_ttl(self, clock: FakeClock) -> None:
        cache = ResultCache(clock=clock)
        cache.put("q1", {"a": 1}, make_result("q1"), ttl_seconds=300)

        clock.advance(301)

        assert cache.lookup("q1", {"a": 1}) is None
        # Stale entries stay in place until removed explicitly
        assert cache.current_size == 1
        assert len(cache.entries("q1")) == 1

    def test_entry_exactly_at_ttl_still_hits(self, clock: FakeClock) -> None:
        cache = ResultCache(clock=clock)
        cache.put("q1", {}, make_result("q1"), ttl_seconds=300)

        clock.advance(300)

        assert cache.lookup("q1", {}) is not None

    def test_lookup_with_reordered_parameters_hits(self, clock: FakeClock) -> None:
        cache = ResultCache(clock=clock)
        cache.put("q1", {"a": 1, "b": 2}, make_result("q1"))

        assert cache.lookup("q1", {"b": 2, "a": 1}) is not None

    def test_lookup_does_not_refresh_entry(self, clock: FakeClock) -> None:
        cache = ResultCache(clock=clock)
        cache.put("q1", {}, make_result("q1"), ttl_seconds=10)

        clock.advance(8)
        assert cache.lookup("q1", {}) is not None
        clock.advance(3)
        assert cache.lookup("q1", {}) is None

    def test_unknown_query_misses(self, clock: FakeClock) -> None:
        cache = ResultCache(clock=clock)
        assert cache.lookup("nope", {"a": 1}) is None
        assert cache.misses == 1

    def test_put_same_signature_replaces_entry(self, clock: FakeClock) -> None:
        cache = ResultCache(clock=clock)
        old, new = make_result("q1", [{"v": 1}]), make_result("q1", [{"v": 2}])

        cache.put("q1", {"a": 1}, old)
        clock.advance(1)
        cache.put("q1", {"a": 1}, new)

        assert cache.lookup("q1", {"a": 1}) is new
        assert cache.current_size == 1
        _assert_consistent(cache)

    def test_default_ttl_applies(self, clock: FakeClock) -> None:
        cache = ResultCache(default_ttl_seconds=60, clock=clock)
        entry = cache.put("q1", {}, make_result("q1"))

        assert entry.ttl_seconds == 60


class TestSizeBudget:
    """Tests for eviction when the cache exceeds max_size."""

    def test_oldest_entry_across_queries_is_evicted(self, clock: FakeClock) -> None:
        cache = ResultCache(max_size=2, clock=clock)

        cache.put("q1", {}, make_result("q1"))
        clock.advance(1)
        cache.put("q2", {}, make_result("q2"))
        clock.advance(1)
        cache.put("q3", {}, make_result("q3"))

        assert cache.current_size == 2
        assert cache.lookup("q1", {}) is None
        assert cache.lookup("q2", {}) is not None
        assert cache.lookup("q3", {}) is not None
        assert "q1" not in cache.by_query_id
        _assert_consistent(cache)

    def test_survivors_are_the_newest_entries(self, clock: FakeClock) -> None:
        cache = ResultCache(max_size=5, clock=clock)

        for i in range(12):
            cache.put(f"q{i % 3}", {"i": i}, make_result(f"q{i % 3}"))
            clock.advance(1)
            _assert_consistent(cache)

        assert cache.current_size == 5
        surviving = sorted(
            entry.parameters["i"]
            for entries in cache.by_query_id.values()
            for entry in entries
        )
        assert surviving == [7, 8, 9, 10, 11]

    def test_ties_on_timestamp_evict_first_inserted(self, clock: FakeClock) -> None:
        cache = ResultCache(max_size=2, clock=clock)

        cache.put("q1", {"n": 1}, make_result("q1"))
        cache.put("q1", {"n": 2}, make_result("q1"))
        cache.put("q2", {"n": 3}, make_result("q2"))

        assert cache.lookup("q1", {"n": 1}) is None
        assert cache.lookup("q1", {"n": 2}) is not None
        assert cache.lookup("q2", {"n": 3}) is not None

    def test_cache_keys_follow_evictions(self, clock: FakeClock) -> None:
        cache = ResultCache(max_size=1, clock=clock)

        cache.put("q1", {}, make_result("q1"))
        clock.advance(1)
        cache.put("q2", {}, make_result("q2"))

        assert cache.cache_keys == [make_cache_key("q2", {})]


class TestEvictAndClear:
    """Tests for evict(), clear() and prune_stale()."""

    def test_evict_removes_single_entry(self, clock: FakeClock) -> None:
        cache = ResultCache(clock=clock)
        cache.put("q1", {"a": 1}, make_result("q1"))
        cache.put("q1", {"a": 2}, make_result("q1"))

        assert cache.evict("q1", make_cache_key("q1", {"a": 1})) is True

        assert cache.current_size == 1
        assert cache.lookup("q1", {"a": 2}) is not None
        _assert_consistent(cache)

    def test_evict_absent_entry_is_noop(self, clock: FakeClock) -> None:
        cache = ResultCache(clock=clock)
        cache.put("q1", {"a": 1}, make_result("q1"))

        assert cache.evict("q1", make_cache_key("q1", {"a": 99})) is False
        assert cache.evict("other", "other:{}") is False
        assert cache.current_size == 1

    def test_clear_one_query_leaves_others(self, clock: FakeClock) -> None:
        cache = ResultCache(clock=clock)
        for i in range(3):
            cache.put("q1", {"i": i}, make_result("q1"))
        cache.put("q10", {}, make_result("q10"))
        cache.put("q2", {}, make_result("q2"))

        removed = cache.clear("q1")

        assert removed == 3
        assert cache.current_size == 2
        assert cache.lookup("q10", {}) is not None
        assert cache.lookup("q2", {}) is not None
        assert all(not key.startswith("q1:") for key in cache.cache_keys)
        _assert_consistent(cache)

    def test_clear_all_zeroes_everything(self, clock: FakeClock) -> None:
        cache = ResultCache(clock=clock)
        cache.put("q1", {}, make_result("q1"))
        cache.put("q2", {}, make_result("q2"))

        assert cache.clear() == 2
        assert cache.current_size == 0
        assert cache.by_query_id == {}
        assert cache.cache_keys == []

    def test_clear_unknown_query_removes_nothing(self, clock: FakeClock) -> None:
        cache = ResultCache(clock=clock)
        cache.put("q1", {}, make_result("q1"))

        assert cache.clear("missing") == 0
        assert cache.current_size == 1

    def test_prune_stale_removes_only_expired(self, clock: FakeClock) -> None:
        cache = ResultCache(clock=clock)
        cache.put("q1", {}, make_result("q1"), ttl_seconds=10)
        cache.put("q2", {}, make_result("q2"), ttl_seconds=100)

        clock.advance(50)

        assert cache.prune_stale() == 1
        assert cache.current_size == 1
        assert "q1" not in cache.by_query_id
        _assert_consistent(cache)

    def test_stats_report_hit_rate_and_stale_entries(self, clock: FakeClock) -> None:
        cache = ResultCache(clock=clock)
        cache.put("q1", {}, make_result("q1"), ttl_seconds=10)
        cache.lookup("q1", {})
        cache.lookup("q1", {"x": 1})
        clock.advance(11)

        stats = cache.get_stats()

        assert stats["size"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["queries"] == [{"query_id": "q1", "entries": 1, "stale_entries": 1}]
