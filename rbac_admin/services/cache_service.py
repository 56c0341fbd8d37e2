"""Redis cache service for effective-permission lookups."""

import json
from typing import Optional, Any
import redis

from rbac_admin.core.config import settings


class CacheService:
    """Redis-backed caching service. Every failure degrades to a cache miss."""

    def __init__(self, client: Optional[redis.Redis] = None):
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                max_connections=100,
            )
        return self._client

    def get(self, key: str) -> Optional[str]:
        """Get a cached value by key."""
        try:
            return self.client.get(key)
        except redis.RedisError:
            return None

    def get_json(self, key: str) -> Optional[Any]:
        """Get and parse a JSON cached value. Unparseable entries read as a miss."""
        raw = self.get(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def set_json_if_unchanged(
        self, guard_key: str, expected: str, key: str, value: Any, ttl_seconds: int = 600,
    ) -> bool:
        """Cache a JSON value only while ``guard_key`` still holds ``expected``.

        Uses WATCH/MULTI, so a concurrent change to the guard key aborts the
        write. Returns True when the value was stored.
        """
        try:
            with self.client.pipeline() as pipe:
                pipe.watch(guard_key)
                if pipe.get(guard_key) != expected:
                    return False
                pipe.multi()
                pipe.setex(key, ttl_seconds, json.dumps(value, default=str))
                pipe.execute()
                return True
        except redis.RedisError:
            # WatchError included
            return False

    def set_if_absent(self, key: str, value: str) -> bool:
        """SET NX without expiry. Returns False if the key existed or Redis failed."""
        try:
            return bool(self.client.set(key, value, nx=True))
        except redis.RedisError:
            return False

    def incr(self, key: str) -> Optional[int]:
        """Atomically increment a counter. Returns None when Redis is unreachable."""
        try:
            return self.client.incr(key)
        except redis.RedisError:
            return None

    def health_check(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False


cache_service = CacheService()
