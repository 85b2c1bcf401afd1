"""Redis publisher for live opportunities"""

import json
import math
from dataclasses import asdict
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import redis.asyncio as redis
import structlog

from arbsentry.models import ArbitrageOpportunity

logger = structlog.get_logger()

RECENT_KEY = "opportunities:recent"


class CacheManager:
    """
    Publishes opportunities to Redis so other processes can read them.

    Each opportunity is stored under its own key with a TTL equal to its
    remaining lifetime, so Redis never serves an expired opportunity. A
    sorted set scored by creation time indexes the most recent ones.
    """

    def __init__(self, redis_url: str, max_recent: int = 1000):
        """
        Initialize cache manager.

        Args:
            redis_url: Redis connection URL (e.g., redis://localhost:6379)
            max_recent: Size of the recent-opportunity index
        """
        self.redis_url = redis_url
        self.max_recent = max_recent
        self.client: Optional[redis.Redis] = None
        self._logger = logger.bind(component="cache_manager")

    async def connect(self) -> None:
        """Establish connection to Redis"""
        try:
            self.client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            await self.client.ping()
            self._logger.info("redis_connected", url=self.redis_url)
        except Exception as e:
            self._logger.error("redis_connection_failed", error=str(e), error_type=type(e).__name__)
            raise

    async def disconnect(self) -> None:
        """Close Redis connection"""
        if self.client:
            await self.client.aclose()
            self.client = None
            self._logger.info("redis_disconnected")

    def _serialize_value(self, value: Any) -> str:
        def default(obj):
            if isinstance(obj, Decimal):
                return str(obj)
            if isinstance(obj, Enum):
                return obj.value
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

        return json.dumps(value, default=default)

    def _deserialize_value(self, value: str) -> Any:
        return json.loads(value)

    @staticmethod
    def opportunity_key(opportunity: ArbitrageOpportunity) -> str:
        return f"opportunities:{opportunity.token}:{opportunity.id}"

    async def cache_opportunity(self, opportunity: ArbitrageOpportunity, now: float) -> bool:
        """
        Publish an opportunity for the rest of its lifetime.

        Args:
            opportunity: Opportunity to publish
            now: Current time, used to compute the remaining lifetime

        Returns:
            True if the opportunity was written
        """
        if not self.client:
            self._logger.warning("cache_opportunity_skipped", reason="redis_not_connected")
            return False

        remaining = opportunity.expires_at - now
        if remaining <= 0:
            self._logger.debug("cache_opportunity_skipped", reason="expired", opportunity_id=opportunity.id)
            return False

        ttl = max(1, math.floor(remaining))
        key = self.opportunity_key(opportunity)

        try:
            payload = asdict(opportunity)
            payload["kind"] = type(opportunity).__name__
            await self.client.setex(key, ttl, self._serialize_value(payload))

            await self.client.zadd(RECENT_KEY, {key: opportunity.created_at})
            await self.client.zremrangebyrank(RECENT_KEY, 0, -(self.max_recent + 1))

            self._logger.debug(
                "opportunity_cached",
                opportunity_id=opportunity.id,
                token=opportunity.token,
                ttl=ttl,
            )
            return True

        except Exception as e:
            self._logger.error(
                "cache_opportunity_failed",
                opportunity_id=opportunity.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def cache_opportunities(self, opportunities: Sequence[ArbitrageOpportunity], now: float) -> int:
        """Publish a batch; returns how many were written"""
        written = 0
        for opportunity in opportunities:
            if await self.cache_opportunity(opportunity, now):
                written += 1
        return written

    async def get_cached_opportunities(self, limit: int = 100) -> List[Dict[str, Any]]:
        """
        Most recent published opportunities that have not yet expired.

        Args:
            limit: Maximum number of opportunities to return
        """
        if not self.client or limit <= 0:
            return []

        try:
            keys = await self.client.zrevrange(RECENT_KEY, 0, limit - 1)
            if not keys:
                return []

            pipeline = self.client.pipeline()
            for key in keys:
                pipeline.get(key)
            values = await pipeline.execute()

            # expired keys come back as None
            opportunities = [self._deserialize_value(v) for v in values if v]

            self._logger.debug("opportunities_cache_hit", count=len(opportunities))
            return opportunities

        except Exception as e:
            self._logger.error(
                "get_cached_opportunities_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return []

    async def invalidate_cache(self, pattern: str) -> int:
        """
        Delete cache entries matching a pattern.

        Args:
            pattern: Redis key pattern (e.g., "opportunities:WBNB:*")

        Returns:
            Number of keys deleted
        """
        if not self.client:
            self._logger.warning("invalidate_cache_skipped", reason="redis_not_connected")
            return 0

        try:
            keys = [key async for key in self.client.scan_iter(match=pattern)]
            if not keys:
                return 0

            deleted = await self.client.delete(*keys)
            self._logger.info("cache_invalidated", pattern=pattern, deleted_count=deleted)
            return deleted

        except Exception as e:
            self._logger.error(
                "invalidate_cache_failed",
                pattern=pattern,
                error=str(e),
                error_type=type(e).__name__,
            )
            return 0
