"""
Unit tests for BoundedTTLCache.
"""

import pytest

from casenotify.services.fallback_cache import BoundedTTLCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


class TestBoundedTTLCache:
    """Tests for expiry and size bounds."""

    def test_entries_expire(self, clock):
        """Verify an entry is gone once its TTL has passed."""
        cache = BoundedTTLCache(max_size=4, ttl_seconds=10, clock=clock)
        cache.set("Singapore", "rules")

        clock.now = 9.9
        assert cache.get("Singapore") == "rules"

        clock.now = 10
        assert cache.get("Singapore") is None
        assert len(cache) == 0

    def test_least_recently_used_is_evicted(self, clock):
        """Verify the size bound evicts the entry read longest ago."""
        cache = BoundedTTLCache(max_size=2, ttl_seconds=60, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache

    def test_expired_entries_purged_before_eviction(self, clock):
        """Verify a full cache drops expired entries before live ones."""
        cache = BoundedTTLCache(max_size=2, ttl_seconds=10, clock=clock)
        cache.set("old", 1)
        clock.now = 5
        cache.set("live", 2)
        clock.now = 12
        cache.set("new", 3)

        assert "live" in cache
        assert "new" in cache

    def test_pop(self, clock):
        """Verify pop removes live entries and treats expired ones as missing."""
        cache = BoundedTTLCache(max_size=2, ttl_seconds=10, clock=clock)
        cache.set("state-1", "pending")
        assert cache.pop("state-1") == "pending"
        assert cache.pop("state-1", "gone") == "gone"

        cache.set("state-2", "pending")
        clock.now = 11
        assert cache.pop("state-2") is None

    def test_falsy_values_are_cached(self, clock):
        """Verify an empty value is distinguishable from a miss."""
        cache = BoundedTTLCache(max_size=2, ttl_seconds=10, clock=clock)
        cache.set("rules", [])
        assert "rules" in cache
        assert cache.get("rules", "miss") == []

    @pytest.mark.parametrize("max_size,ttl", [(0, 10), (1, 0)])
    def test_rejects_invalid_bounds(self, max_size, ttl):
        """Verify nonsensical bounds are refused at construction."""
        with pytest.raises(ValueError):
            BoundedTTLCache(max_size=max_size, ttl_seconds=ttl)
