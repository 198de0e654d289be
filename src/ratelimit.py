"""Fixed-window rate limiting over an expiring keyed counter store."""

import asyncio
import heapq
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from redis.asyncio import Redis

from src.models import CounterEntry, RateLimitDecision

logger = logging.getLogger(__name__)

_KEY_PREFIX = "rate_limit:"


class CounterStore(ABC):
    """Expiring keyed counter."""

    @abstractmethod
    async def get(self, key: str) -> CounterEntry | None:
        """Return the live entry for key, or None if absent or expired."""
        ...

    @abstractmethod
    async def set_with_ttl(self, key: str, count: int, ttl_seconds: int) -> None:
        """Store count under key, expiring after ttl_seconds."""
        ...

    @abstractmethod
    async def increment_below(self, key: str, limit: int, ttl_seconds: int) -> int | None:
        """Atomically add one to key unless it already holds limit.

        A missing or expired key starts at 1 with a fresh TTL. An existing key
        keeps its original expiry.

        Returns:
            The new count, or None when the key is at limit (nothing changes).
        """
        ...

    def backend(self) -> str:
        return type(self).__name__


class MemoryCounterStore(CounterStore):
    """In-process store. Good for a single worker and for tests.

    Expiries are kept in a min-heap so every increment can drop the windows
    that have closed, not only the one being touched.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, CounterEntry] = {}
        self._expiries: list[tuple[float, str]] = []
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> CounterEntry | None:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _evict_expired(self) -> None:
        now = self._clock()
        while self._expiries and self._expiries[0][0] <= now:
            expires_at, key = heapq.heappop(self._expiries)
            entry = self._entries.get(key)
            # a later set_with_ttl pushed its own heap item; leave that entry alone
            if entry is not None and entry.expires_at == expires_at:
                del self._entries[key]

    async def get(self, key: str) -> CounterEntry | None:
        return self._live(key)

    async def set_with_ttl(self, key: str, count: int, ttl_seconds: int) -> None:
        expires_at = self._clock() + ttl_seconds
        self._entries[key] = CounterEntry(count=count, expires_at=expires_at)
        heapq.heappush(self._expiries, (expires_at, key))

    async def increment_below(self, key: str, limit: int, ttl_seconds: int) -> int | None:
        async with self._lock:
            self._evict_expired()
            entry = self._live(key)
            if entry is None:
                await self.set_with_ttl(key, 1, ttl_seconds)
                return 1
            if entry.count >= limit:
                return None
            self._entries[key] = CounterEntry(count=entry.count + 1, expires_at=entry.expires_at)
            return entry.count + 1

    def backend(self) -> str:
        return "memory"


# KEYS[1] = counter key, ARGV[1] = limit, ARGV[2] = ttl seconds.
# INCR preserves the TTL set by the first hit, so the window never slides.
_INCREMENT_BELOW_LUA = """
local current = redis.call('GET', KEYS[1])
if not current then
  redis.call('SET', KEYS[1], 1, 'EX', tonumber(ARGV[2]))
  return 1
end
if tonumber(current) >= tonumber(ARGV[1]) then
  return -1
end
return redis.call('INCR', KEYS[1])
"""


class RedisCounterStore(CounterStore):
    """Redis-backed store; increment_below runs server-side as one script."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis
        self._increment_below = redis.register_script(_INCREMENT_BELOW_LUA)

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        return cls(Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> CounterEntry | None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.get(key)
            pipe.pttl(key)
            value, pttl = await pipe.execute()
        if value is None or pttl is None or pttl == -2:
            return None
        # -1 means no expiry; report it as expiring now so callers treat it as stale
        expires_at = time.time() + (pttl / 1000 if pttl > 0 else 0)
        return CounterEntry(count=int(value), expires_at=expires_at)

    async def set_with_ttl(self, key: str, count: int, ttl_seconds: int) -> None:
        await self._redis.set(key, count, ex=ttl_seconds)

    async def increment_below(self, key: str, limit: int, ttl_seconds: int) -> int | None:
        result = int(await self._increment_below(keys=[key], args=[limit, ttl_seconds]))
        return None if result < 0 else result

    def backend(self) -> str:
        return "redis"


class RateLimiter:
    """Fixed-window limiter: each key's window starts at its first request.

    With no store the limiter always allows. When the store fails,
    fail_open decides between allowing and raising.
    """

    def __init__(
        self,
        store: CounterStore | None,
        limit: int,
        window_sec: int,
        fail_open: bool = True,
    ) -> None:
        self._store = store
        self.limit = limit
        self.window_sec = window_sec
        self._fail_open = fail_open

    @property
    def backend(self) -> str:
        return self._store.backend() if self._store is not None else "disabled"

    async def check(self, client_key: str) -> RateLimitDecision:
        if self._store is None:
            return RateLimitDecision(allowed=True, remaining=self.limit, limit=self.limit)

        key = f"{_KEY_PREFIX}{client_key}"
        try:
            count = await self._store.increment_below(key, self.limit, self.window_sec)
        except Exception as exc:
            if not self._fail_open:
                raise
            logger.warning("Rate limit store unavailable, allowing %s: %s", client_key, exc)
            return RateLimitDecision(allowed=True, remaining=self.limit, limit=self.limit)

        if count is None:
            logger.warning("Rate limit exceeded for %s (%d/%ds)", client_key, self.limit, self.window_sec)
            return RateLimitDecision(allowed=False, remaining=0, limit=self.limit)

        return RateLimitDecision(allowed=True, remaining=max(self.limit - count, 0), limit=self.limit)


def build_rate_limiter(
    limit: int,
    window_sec: int,
    redis_url: str | None = None,
    memory_fallback: bool = True,
    fail_open: bool = True,
) -> RateLimiter:
    """Pick the store from configuration: redis, then memory, then none."""
    store: CounterStore | None
    if redis_url:
        store = RedisCounterStore.from_url(redis_url)
    elif memory_fallback:
        store = MemoryCounterStore()
    else:
        store = None
    return RateLimiter(store, limit=limit, window_sec=window_sec, fail_open=fail_open)
