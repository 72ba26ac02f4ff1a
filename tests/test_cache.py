"""Tests for the TTL cache used by profile lookups."""

import pytest

from shared.cache import AsyncTTLCache, cached


class ProfileSource:
    def __init__(self):
        self.calls = 0
        self.fail = False

    async def lookup(self, user_id):
        self.calls += 1
        if self.fail:
            raise ConnectionResetError("db gone")
        return f"name-{user_id}"


class TestCachedLookup:
    async def test_second_call_hits_cache(self):
        source = ProfileSource()
        lookup = cached(AsyncTTLCache(ttl=60), lambda user_id: f"p:{user_id}", retry=1)(
            source.lookup
        )

        assert await lookup("u1") == "name-u1"
        assert await lookup("u1") == "name-u1"
        assert source.calls == 1

    async def test_stale_value_served_when_source_fails(self):
        source = ProfileSource()
        cache = AsyncTTLCache(ttl=60)
        lookup = cached(cache, lambda user_id: f"p:{user_id}", retry=1)(source.lookup)

        await lookup("u1")
        cache.invalidate("p:u1")
        source.fail = True

        assert await lookup("u1") == "name-u1"

    async def test_error_propagates_without_stale_value(self):
        source = ProfileSource()
        source.fail = True
        lookup = cached(AsyncTTLCache(ttl=60), lambda user_id: f"p:{user_id}", retry=1)(
            source.lookup
        )

        with pytest.raises(ConnectionResetError):
            await lookup("u1")

    def test_none_is_cacheable(self):
        cache = AsyncTTLCache()
        cache.set("k", None)

        assert cache.get("k") is None
        assert cache.get_stale("k") is None
