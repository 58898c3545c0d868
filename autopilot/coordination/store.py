"""Redis-backed coordination primitives: leases and keyed counters."""

import uuid
from functools import lru_cache

import redis
from loguru import logger

from autopilot.config.settings import get_settings


@lru_cache
def get_redis() -> redis.Redis:
    """Get the shared Redis client."""
    settings = get_settings()
    return redis.from_url(str(settings.redis_url), decode_responses=True)


class Lease:
    """
    Exclusive time-bounded lease on a key.

    acquire() publishes the holder token with SET NX EX. release() deletes the
    key only while the caller's token is still the one stored, so a holder whose
    lease expired can never release somebody else's.
    """

    def __init__(self, client: redis.Redis):
        self._client = client

    def acquire(self, key: str, ttl_seconds: float) -> str | None:
        """Return a holder token, or None when the key is already held."""
        token = uuid.uuid4().hex
        ttl = max(1, int(ttl_seconds))
        if self._client.set(key, token, nx=True, ex=ttl):
            return token
        return None

    def release(self, key: str, token: str | None) -> bool:
        """Release the lease if still held by token. Safe to call twice."""
        if not token:
            return False
        with self._client.pipeline() as pipe:
            try:
                pipe.watch(key)
                if pipe.get(key) != token:
                    pipe.unwatch()
                    return False
                pipe.multi()
                pipe.delete(key)
                pipe.execute()
                return True
            except redis.WatchError:
                logger.debug(f"Lease {key} changed hands during release")
                return False

    def is_held(self, key: str) -> bool:
        return bool(self._client.exists(key))

    def delete(self, key: str) -> None:
        """Unconditionally drop a key (operator reset)."""
        self._client.delete(key)


class KeyedCounter:
    """Cross-process counter with expiry, incremented atomically."""

    def __init__(self, client: redis.Redis):
        self._client = client

    def incr(self, key: str, ttl_seconds: int) -> int:
        """Increment and return the new value.

        The TTL is set only when the key has none, so the window starts at
        the first increment and is not extended by later ones.
        """
        with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, ttl_seconds, nx=True)
            value, _ = pipe.execute()
        return int(value)

    def decr(self, key: str, ttl_seconds: int) -> int:
        """Give back one unit. Never leaves the counter below zero."""
        with self._client.pipeline(transaction=True) as pipe:
            pipe.decr(key)
            pipe.expire(key, ttl_seconds, nx=True)
            value, _ = pipe.execute()
        value = int(value)
        if value < 0:
            # Key expired while a unit was held
            value = int(self._client.incrby(key, -value))
        return value

    def reserve(self, key: str, ttl_seconds: int, limit: int) -> bool:
        """Take one unit if that keeps the counter at or under limit.

        Increment-then-compare: concurrent callers each see a distinct value,
        so at most limit of them succeed. A caller over the limit gives its
        unit back.
        """
        if self.incr(key, ttl_seconds) <= limit:
            return True
        self.decr(key, ttl_seconds)
        return False

    def get(self, key: str) -> int:
        raw = self._client.get(key)
        return int(raw) if raw else 0

    def reset(self, key: str) -> None:
        self._client.delete(key)
