"""Time-bucketed in-memory cache for scoring results"""

import json
import math
import time
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import structlog
from web3 import Web3

from arbsentry.config.models import CacheConfig
from arbsentry.monitoring import metrics

logger = structlog.get_logger()

_MISSING = object()


def _json_default(obj):
    if isinstance(obj, Decimal):
        return str(obj)
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


class ResultCache:
    """
    Deduplicates identical requests made close together.

    The key is a hash of the request parameters and the current time bucket,
    so identical requests within one bucket share a result. An entry hits
    only while younger than the TTL. When full, the oldest inserted entry is
    evicted regardless of how recently it was read.
    """

    def __init__(self, config: Optional[CacheConfig] = None, clock: Optional[Callable[[], float]] = None):
        self.config = config or CacheConfig()
        self._clock = clock or time.time
        self._entries: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._logger = logger.bind(component="result_cache")

    def __len__(self) -> int:
        return len(self._entries)

    def make_key(self, params: Dict[str, Any], now: float) -> str:
        """Hash of the canonical parameters and the time bucket"""
        bucket = math.floor(now / self.config.bucket_seconds)
        canonical = json.dumps(params, sort_keys=True, separators=(",", ":"), default=_json_default)
        return Web3.to_hex(Web3.keccak(text=f"{canonical}|{bucket}"))

    def get(self, params: Dict[str, Any], now: Optional[float] = None) -> Optional[Any]:
        """
        Look up a cached result.

        Args:
            params: Request parameters
            now: Lookup time (defaults to the clock)

        Returns:
            Cached value, or None on a miss
        """
        value = self._lookup(params, self._clock() if now is None else now)
        return None if value is _MISSING else value

    def _lookup(self, params: Dict[str, Any], now: float) -> Any:
        key = self.make_key(params, now)
        entry = self._entries.get(key)

        if entry is not None:
            inserted_at, value = entry
            if now - inserted_at < self.config.ttl_seconds:
                metrics.result_cache_hits.inc()
                return value
            del self._entries[key]

        metrics.result_cache_misses.inc()
        return _MISSING

    def put(self, params: Dict[str, Any], value: Any, now: Optional[float] = None) -> None:
        now = self._clock() if now is None else now
        key = self.make_key(params, now)

        # a re-put counts as a fresh insertion
        self._entries.pop(key, None)
        self._entries[key] = (now, value)

        while len(self._entries) > self.config.capacity:
            evicted, _ = self._entries.popitem(last=False)
            self._logger.debug("result_cache_evicted", key=evicted)

    async def get_or_compute(
        self,
        params: Dict[str, Any],
        factory: Callable[[], Awaitable[Any]],
        now: Optional[float] = None,
    ) -> Any:
        """
        Return the cached result or await the factory and cache its result.

        Args:
            params: Request parameters
            factory: Coroutine function producing the result on a miss
            now: Request time (defaults to the clock)
        """
        now = self._clock() if now is None else now
        value = self._lookup(params, now)
        if value is not _MISSING:
            return value

        value = await factory()
        self.put(params, value, now=now)
        return value

    def clear(self) -> None:
        self._entries.clear()
