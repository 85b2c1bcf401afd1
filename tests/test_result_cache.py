"""Tests for the time-bucketed result cache"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from arbsentry.cache.result_cache import ResultCache
from arbsentry.config.models import CacheConfig
from arbsentry.monitoring import metrics

PARAMS = {"token": "WBNB", "capital": Decimal("40000")}


@pytest.fixture
def cache():
    return ResultCache(CacheConfig(ttl_seconds=30, bucket_seconds=30, capacity=3), clock=lambda: 0.0)


class TestResultCache:
    """Test TTL, bucketing and eviction"""

    def test_hit_before_ttl(self, cache):
        cache.put(PARAMS, "result", now=0.0)

        assert cache.get(PARAMS, now=29.0) == "result"

    def test_miss_after_ttl(self, cache):
        cache.put(PARAMS, "result", now=0.0)

        assert cache.get(PARAMS, now=31.0) is None

    def test_expired_entry_removed_on_lookup(self):
        cache = ResultCache(CacheConfig(ttl_seconds=10, bucket_seconds=60))
        cache.put(PARAMS, "result", now=0.0)

        assert cache.get(PARAMS, now=15.0) is None
        assert len(cache) == 0

    def test_parameter_order_irrelevant(self, cache):
        cache.put({"a": 1, "b": 2}, "result", now=0.0)

        assert cache.get({"b": 2, "a": 1}, now=1.0) == "result"

    def test_different_parameters_miss(self, cache):
        cache.put(PARAMS, "result", now=0.0)

        assert cache.get({**PARAMS, "token": "WMATIC"}, now=1.0) is None

    def test_new_bucket_misses(self, cache):
        """Test identical requests in different buckets do not coalesce"""
        cache.put(PARAMS, "result", now=25.0)

        assert cache.get(PARAMS, now=31.0) is None

    def test_insertion_order_eviction(self, cache):
        """Test the oldest inserted entry goes first even if recently read"""
        for i in range(3):
            cache.put({"i": i}, i, now=0.0)

        assert cache.get({"i": 0}, now=1.0) == 0

        cache.put({"i": 3}, 3, now=1.0)

        assert cache.get({"i": 0}, now=2.0) is None
        assert cache.get({"i": 1}, now=2.0) == 1
        assert len(cache) == 3

    def test_default_clock(self, cache):
        cache.put(PARAMS, "result")

        assert cache.get(PARAMS) == "result"

    def test_metrics_counted(self, cache):
        hits = metrics.result_cache_hits._value.get()
        misses = metrics.result_cache_misses._value.get()

        cache.get(PARAMS, now=0.0)
        cache.put(PARAMS, "result", now=0.0)
        cache.get(PARAMS, now=1.0)

        assert metrics.result_cache_hits._value.get() == hits + 1
        assert metrics.result_cache_misses._value.get() == misses + 1


class TestGetOrCompute:
    """Test the async read-through helper"""

    @pytest.mark.asyncio
    async def test_factory_called_once(self, cache):
        factory = AsyncMock(return_value="computed")

        first = await cache.get_or_compute(PARAMS, factory, now=0.0)
        second = await cache.get_or_compute(PARAMS, factory, now=5.0)

        assert first == second == "computed"
        factory.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_none_results_are_cached(self, cache):
        factory = AsyncMock(return_value=None)

        await cache.get_or_compute(PARAMS, factory, now=0.0)
        await cache.get_or_compute(PARAMS, factory, now=1.0)

        factory.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_factory_error_not_cached(self, cache):
        factory = AsyncMock(side_effect=[RuntimeError("boom"), "ok"])

        with pytest.raises(RuntimeError):
            await cache.get_or_compute(PARAMS, factory, now=0.0)

        assert await cache.get_or_compute(PARAMS, factory, now=1.0) == "ok"
