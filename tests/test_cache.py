"""
Tests for the in-process TTL cache.
"""

from unittest.mock import MagicMock, patch

from irb_portal.core.cache import (
    DASHBOARD_PREFIX, STUDIES_PREFIX, TTLCache, get_cache, invalidate_study_caches, invalidate_user_caches,
    study_list_key,
)


class TestTTLCache:
    """Basic cache behaviour."""

    def test_set_and_get(self):
        cache = TTLCache()
        cache.set("k", {"v": 1})
        assert cache.get("k") == {"v": 1}
        assert cache.has("k")

    def test_missing_key_returns_default(self):
        assert TTLCache().get("missing", "fallback") == "fallback"

    def test_entries_expire(self):
        cache = TTLCache(default_ttl=10)
        with patch("irb_portal.core.cache.time.monotonic", return_value=1000.0):
            cache.set("k", "v")
        with patch("irb_portal.core.cache.time.monotonic", return_value=1011.0):
            assert cache.get("k") is None
            assert not cache.has("k")

    def test_oldest_entry_evicted_at_capacity(self):
        cache = TTLCache(max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        assert cache.get("a") is None
        assert cache.get("c") == 3
        assert cache.stats()["evictions"] == 1

    def test_get_or_set_calls_factory_once(self):
        cache = TTLCache()
        factory = MagicMock(return_value=42)
        assert cache.get_or_set("k", factory) == 42
        assert cache.get_or_set("k", factory) == 42
        factory.assert_called_once()

    def test_get_or_set_caches_falsy_values(self):
        cache = TTLCache()
        factory = MagicMock(return_value=0)
        cache.get_or_set("k", factory)
        cache.get_or_set("k", factory)
        factory.assert_called_once()

    def test_delete_prefix(self):
        cache = TTLCache()
        cache.set("studies:1", 1)
        cache.set("studies:2", 2)
        cache.set("other", 3)
        assert cache.delete_prefix("studies:") == 2
        assert cache.get("other") == 3

    def test_stats_hit_rate(self):
        cache = TTLCache()
        cache.set("k", 1)
        cache.get("k")
        cache.get("nope")
        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5


class TestStudyInvalidation:
    def test_invalidate_drops_study_and_dashboard_keys(self):
        cache = get_cache()
        cache.clear()
        cache.set(f"{STUDIES_PREFIX}u1:list", "x")
        cache.set(f"{DASHBOARD_PREFIX}u1", "y")
        cache.set("unrelated", "z")

        invalidate_study_caches()

        assert not cache.has(f"{STUDIES_PREFIX}u1:list")
        assert not cache.has(f"{DASHBOARD_PREFIX}u1")
        assert cache.get("unrelated") == "z"
        cache.clear()


class TestStudyListKey:
    """Study list cache keys."""

    def test_separator_in_filters_does_not_collide(self):
        assert study_list_key("u1", None, None, "x", "y:1", 1, 50) != study_list_key("u1", None, None, "x:y", "1", 1, 50)

    def test_none_and_empty_differ(self):
        assert study_list_key("u1", None, "") != study_list_key("u1", "", None)

    def test_key_is_scoped_to_user(self):
        key = study_list_key("u1", "ACTIVE", None, None, None, 1, 50)
        assert key.startswith(f"{STUDIES_PREFIX}u1:")
        assert key == study_list_key("u1", "ACTIVE", None, None, None, 1, 50)

    def test_invalidate_user_caches_is_per_user(self):
        cache = get_cache()
        cache.clear()
        cache.set(study_list_key("u1", 1), "mine")
        cache.set(study_list_key("u10", 1), "theirs")
        cache.set(f"{DASHBOARD_PREFIX}u1", "stats")
        cache.set(f"{DASHBOARD_PREFIX}u10", "other stats")

        invalidate_user_caches("u1")

        assert not cache.has(study_list_key("u1", 1))
        assert not cache.has(f"{DASHBOARD_PREFIX}u1")
        assert cache.get(study_list_key("u10", 1)) == "theirs"
        assert cache.get(f"{DASHBOARD_PREFIX}u10") == "other stats"
        cache.clear()
