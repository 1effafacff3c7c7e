# cache.py
"""In-memory TTL cache for API responses."""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class TTLCache:
    """
    Key/value store where each entry expires ``ttl`` seconds after it was set.

    A TTL of 0 keeps the entry until it is deleted or the cache is flushed.
    Expired entries are dropped when read, and a full sweep runs whenever
    ``check_period`` seconds have passed since the previous one.
    """

    def __init__(self, std_ttl: int = 0, check_period: int = 120, clock: Callable[[], float] = time.monotonic):
        self.std_ttl = std_ttl
        self.check_period = check_period
        self._clock = clock
        self._data: Dict[str, Dict[str, Any]] = {}
        self._hits = 0
        self._misses = 0
        self._last_sweep = clock()
        self._inflight: Dict[str, asyncio.Future] = {}

    def _expired(self, entry: Dict[str, Any], now: float) -> bool:
        return entry['expires_at'] is not None and entry['expires_at'] <= now

    def _maybe_sweep(self) -> None:
        now = self._clock()
        if self.check_period and now - self._last_sweep < self.check_period:
            return
        self._last_sweep = now
        for key in [k for k, entry in self._data.items() if self._expired(entry, now)]:
            del self._data[key]

    def get(self, key: str) -> Optional[Any]:
        self._maybe_sweep()
        entry = self._data.get(key)
        if entry is None:
            self._misses += 1
            return None
        if self._expired(entry, self._clock()):
            del self._data[key]
            self._misses += 1
            return None
        self._hits += 1
        return entry['value']

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = self.std_ttl if ttl is None else ttl
        expires_at = self._clock() + ttl if ttl and ttl > 0 else None
        self._data[key] = {'value': value, 'expires_at': expires_at}

    def keys(self) -> List[str]:
        now = self._clock()
        return [k for k, entry in self._data.items() if not self._expired(entry, now)]

    def stats(self) -> Dict[str, int]:
        return {'hits': self._hits, 'misses': self._misses, 'keys': len(self.keys())}

    def flush_all(self) -> None:
        self._data.clear()
        self._hits = 0
        self._misses = 0

    def _release(self, key: str, task: asyncio.Future) -> None:
        self._inflight.pop(key, None)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Abandoned request for {key} failed: {task.exception()}")

    async def get_or_compute(
        self,
        key: str,
        ttl: int,
        producer: Callable[[], Awaitable[Dict[str, Any]]],
    ) -> Dict[str, Any]:
        """
        Return the cached response for ``key`` or build it with ``producer``.

        Concurrent misses for the same key share one producer run. Only
        responses flagged ``success`` are stored.
        """
        cached = self.get(key)
        if cached is not None:
            logger.info(f"Cache hit for: {key}")
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            logger.info(f"Joining in-flight request for: {key}")
            return await asyncio.shield(pending)

        logger.info(f"Cache miss for: {key}")
        task = asyncio.ensure_future(producer())
        self._inflight[key] = task
        try:
            result = await asyncio.shield(task)
        finally:
            if task.done():
                self._inflight.pop(key, None)
            else:
                task.add_done_callback(lambda t: self._release(key, t))

        if isinstance(result, dict) and result.get('success'):
            self.set(key, result, ttl)
            logger.info(f"Cached result for: {key}")
        return result
