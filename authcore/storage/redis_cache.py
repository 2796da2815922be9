from __future__ import annotations

import functools
from typing import Any, Awaitable, Callable, Optional, TypeVar

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from authcore.logging import get_logger
from authcore.storage.errors import StoreUnavailableError

logger = get_logger(__name__)

T = TypeVar("T")


def _fail_closed(method: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Turn Redis connectivity errors into StoreUnavailableError.

    No inline retries: a failed command aborts the request.
    """

    @functools.wraps(method)
    async def wrapper(self, *args: Any, **kwargs: Any) -> T:
        try:
            return await method(self, *args, **kwargs)
        except RedisError as exc:
            logger.error(
                "redis_command_failed",
                operation=method.__name__,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise StoreUnavailableError("redis", method.__name__) from exc

    return wrapper


class RedisCache:
    """Thin Redis wrapper implementing the ephemeral store contract."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        # Short-lived sync client so the async client is not bound to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    @_fail_closed
    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        await self.client.aclose()

    @_fail_closed
    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    @_fail_closed
    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        if ttl is not None:
            await self.client.set(key, value, ex=max(1, int(ttl)))
        else:
            await self.client.set(key, value)

    @_fail_closed
    async def delete(self, key: str) -> int:
        return int(await self.client.delete(key))

    @_fail_closed
    async def exists(self, key: str) -> bool:
        return bool(await self.client.exists(key))

    @_fail_closed
    async def sadd(self, key: str, member: str) -> int:
        return int(await self.client.sadd(key, member))

    @_fail_closed
    async def srem(self, key: str, member: str) -> int:
        return int(await self.client.srem(key, member))

    @_fail_closed
    async def smembers(self, key: str) -> set[str]:
        return set(await self.client.smembers(key))

    @_fail_closed
    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self.client.expire(key, max(1, int(ttl))))

    @_fail_closed
    async def ttl(self, key: str) -> int:
        return int(await self.client.ttl(key))


class SyncRedisCache:
    """Synchronous Redis wrapper for use in tests.

    Uses a synchronous client internally to avoid event loop binding issues
    under pytest, while exposing the same awaitable methods as RedisCache.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        self.client.ping()

    @_fail_closed
    async def ping(self) -> bool:
        return bool(self.client.ping())

    async def close(self) -> None:
        self.client.close()

    @_fail_closed
    async def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    @_fail_closed
    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        if ttl is not None:
            self.client.set(key, value, ex=max(1, int(ttl)))
        else:
            self.client.set(key, value)

    @_fail_closed
    async def delete(self, key: str) -> int:
        return int(self.client.delete(key))

    @_fail_closed
    async def exists(self, key: str) -> bool:
        return bool(self.client.exists(key))

    @_fail_closed
    async def sadd(self, key: str, member: str) -> int:
        return int(self.client.sadd(key, member))

    @_fail_closed
    async def srem(self, key: str, member: str) -> int:
        return int(self.client.srem(key, member))

    @_fail_closed
    async def smembers(self, key: str) -> set[str]:
        return set(self.client.smembers(key))

    @_fail_closed
    async def expire(self, key: str, ttl: int) -> bool:
        return bool(self.client.expire(key, max(1, int(ttl))))

    @_fail_closed
    async def ttl(self, key: str) -> int:
        return int(self.client.ttl(key))
