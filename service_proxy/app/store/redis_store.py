"""
Redis-backed coordination store shared by every proxy process.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import StoreError
from shared.logging import get_logger
from .base import CoordinationStore


class RedisCoordinationStore(CoordinationStore):
    """Coordination store on Redis.

    Every backend failure (connection, timeout, protocol) is raised as
    StoreError so callers can fall back to local state.
    """

    name = "redis"

    def __init__(self, redis_url: Optional[str] = None, timeout_seconds: float = 2.0,
                 client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.timeout_seconds = timeout_seconds
        self.logger = get_logger("proxy.store.redis")
        self._redis: Optional[redis.Redis] = client

    def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.timeout_seconds,
                socket_timeout=self.timeout_seconds,
            )
        return self._redis

    async def _call(self, operation: str, fn: Callable[[redis.Redis], Awaitable[Any]]) -> Any:
        try:
            return await asyncio.wait_for(fn(self._get_redis()), timeout=self.timeout_seconds)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise StoreError(operation, e) from e

    async def get(self, key: str) -> Optional[str]:
        value = await self._call("get", lambda r: r.get(key))
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl_ms: Optional[int] = None) -> None:
        px = int(ttl_ms) if ttl_ms is not None else None
        await self._call("set", lambda r: r.set(key, value, px=px))

    async def set_if_absent(self, key: str, value: str, ttl_ms: Optional[int] = None) -> bool:
        px = int(ttl_ms) if ttl_ms is not None else None
        created = await self._call("set_if_absent", lambda r: r.set(key, value, px=px, nx=True))
        return bool(created)

    async def increment_by(self, key: str, delta: int) -> int:
        return int(await self._call("increment_by", lambda r: r.incrby(key, int(delta))))

    async def expire(self, key: str, ttl_ms: int) -> None:
        await self._call("expire", lambda r: r.pexpire(key, int(ttl_ms)))

    async def add_to_ordered_set(self, key: str, score: float, member: str) -> None:
        await self._call("add_to_ordered_set", lambda r: r.zadd(key, {member: score}))

    async def remove_range_by_score(self, key: str, min_score: float, max_score: float) -> int:
        removed = await self._call("remove_range_by_score",
                                   lambda r: r.zremrangebyscore(key, min_score, max_score))
        return int(removed or 0)

    async def count_ordered_set(self, key: str) -> int:
        return int(await self._call("count_ordered_set", lambda r: r.zcard(key)) or 0)

    async def ping(self) -> bool:
        try:
            return bool(await self._call("ping", lambda r: r.ping()))
        except StoreError as e:
            self.logger.warning("redis_ping_failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
