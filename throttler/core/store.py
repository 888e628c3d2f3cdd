"""Key-value store abstraction for bucket persistence.

Provides the hash-oriented store contract the limiter relies on, with an
in-memory implementation for single-process use and a Redis implementation
for buckets shared between processes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping
import asyncio
import time

import redis
import redis.asyncio as aioredis

from throttler.core.logging import get_logger
from throttler.exceptions import StoreUnavailableError

logger = get_logger(__name__)


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


@dataclass
class _HashEntry:
    """Internal hash entry with absolute expiry tracking."""

    fields: dict[str, str] = field(default_factory=dict)
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        """Check if the entry has expired."""
        if self.expires_at is None:
            return False
        return now >= self.expires_at


class KeyValueStore(ABC):
    """Abstract base class for bucket stores.

    All store implementations must inherit from this class and implement
    the abstract methods. Values are returned as strings, the way a Redis
    hash hands them back.
    """

    @abstractmethod
    async def exists_field(self, key: str, field: str) -> bool:
        """Check whether a hash field exists.

        Args:
            key: The hash key.
            field: The field name inside the hash.

        Returns:
            True if the key exists and holds the field, False otherwise.
        """

    @abstractmethod
    async def read_all_fields(self, key: str) -> dict[str, str]:
        """Read every field of a hash.

        Args:
            key: The hash key.

        Returns:
            Mapping of field to value, empty if the key is missing.
        """

    @abstractmethod
    async def write_fields(self, key: str, mapping: Mapping[str, Any]) -> None:
        """Write several fields of a hash, creating it if needed.

        Args:
            key: The hash key.
            mapping: Field to value mapping to store.
        """

    @abstractmethod
    async def set_expiry_at(self, key: str, timestamp: int) -> bool:
        """Set an absolute expiry on a key.

        Args:
            key: The hash key.
            timestamp: Unix timestamp (seconds) at which the key expires.

        Returns:
            True if the expiry was set, False if the key does not exist.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key and all its fields."""

    async def close(self) -> None:
        """Release any resources held by the store."""


class InMemoryStore(KeyValueStore):
    """In-memory hash store with absolute expiry support.

    Data lives in a Python dictionary and is lost when the process exits,
    so buckets are not shared between processes.

    Args:
        clock: Callable returning the current Unix time, used to evaluate
            expiries. Defaults to ``time.time``.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._data: dict[str, _HashEntry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _get_live(self, key: str) -> _HashEntry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._data[key]
            return None
        return entry

    async def exists_field(self, key: str, field: str) -> bool:
        async with self._lock:
            entry = self._get_live(key)
            return entry is not None and field in entry.fields

    async def read_all_fields(self, key: str) -> dict[str, str]:
        async with self._lock:
            entry = self._get_live(key)
            if entry is None:
                return {}
            return dict(entry.fields)

    async def write_fields(self, key: str, mapping: Mapping[str, Any]) -> None:
        async with self._lock:
            entry = self._get_live(key)
            if entry is None:
                entry = _HashEntry()
                self._data[key] = entry
            entry.fields.update({k: _decode(v) for k, v in mapping.items()})

    async def set_expiry_at(self, key: str, timestamp: int) -> bool:
        async with self._lock:
            entry = self._get_live(key)
            if entry is None:
                return False
            entry.expires_at = float(timestamp)
            # Redis drops keys whose expiry is already in the past
            if entry.is_expired(self._clock()):
                del self._data[key]
            return True

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def clear(self) -> None:
        """Clear all entries from the store."""
        async with self._lock:
            self._data.clear()

    async def cleanup_expired(self) -> int:
        """Remove all expired entries from the store.

        Returns:
            Number of entries removed.
        """
        async with self._lock:
            now = self._clock()
            expired_keys = [
                key for key, entry in self._data.items() if entry.is_expired(now)
            ]
            for key in expired_keys:
                del self._data[key]
            return len(expired_keys)


class RedisStore(KeyValueStore):
    """Redis-backed hash store shared by every limiter process.

    Every Redis failure surfaces as StoreUnavailableError; nothing is
    retried here.

    Example:
        >>> store = RedisStore(redis_url="redis://localhost:6379/0")
        >>> await store.write_fields("rate_limiter:user-1", {"value": 20})
    """

    def __init__(
        self,
        redis_client: Any | None = None,
        redis_url: str | None = None,
    ) -> None:
        """Initialize the Redis store.

        Args:
            redis_client: Optional ready-made ``redis.asyncio`` client.
            redis_url: Redis connection URL used when no client is given.
        """
        from throttler.core.config import settings

        self._redis = redis_client
        self._redis_url = redis_url or settings.redis_url

    async def _get_client(self) -> Any:
        """Get or create the Redis client connection."""
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    def _unavailable(self, operation: str, key: str, error: Exception) -> StoreUnavailableError:
        logger.error(f"Redis {operation} failed for {key}: {error}", extra={"key": key})
        return StoreUnavailableError(operation, key, detail=f"Redis {operation} failed for {key}: {error}")

    async def exists_field(self, key: str, field: str) -> bool:
        client = await self._get_client()
        try:
            return bool(await client.hexists(key, field))
        except redis.RedisError as e:
            raise self._unavailable("hexists", key, e) from e

    async def read_all_fields(self, key: str) -> dict[str, str]:
        client = await self._get_client()
        try:
            raw = await client.hgetall(key)
        except redis.RedisError as e:
            raise self._unavailable("hgetall", key, e) from e
        return {_decode(k): _decode(v) for k, v in (raw or {}).items()}

    async def write_fields(self, key: str, mapping: Mapping[str, Any]) -> None:
        client = await self._get_client()
        try:
            await client.hset(key, mapping=dict(mapping))
        except redis.RedisError as e:
            raise self._unavailable("hset", key, e) from e

    async def set_expiry_at(self, key: str, timestamp: int) -> bool:
        client = await self._get_client()
        try:
            return bool(await client.expireat(key, int(timestamp)))
        except redis.RedisError as e:
            raise self._unavailable("expireat", key, e) from e

    async def delete(self, key: str) -> None:
        client = await self._get_client()
        try:
            await client.delete(key)
        except redis.RedisError as e:
            raise self._unavailable("delete", key, e) from e

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


# Global store instance (singleton pattern)
_store_instance: KeyValueStore | None = None


def get_store(
    backend: str | None = None,
    redis_url: str | None = None,
    force_new: bool = False,
) -> KeyValueStore:
    """Get or create the global store instance.

    Args:
        backend: Store backend to use ('memory', 'redis', or None for auto).
            When None, checks settings.redis_enabled.
        redis_url: Redis connection URL. If not provided, uses settings.redis_url.
        force_new: If True, create a new instance even if one exists.

    Returns:
        A KeyValueStore instance (InMemoryStore or RedisStore).
    """
    global _store_instance

    if _store_instance is not None and not force_new:
        return _store_instance

    from throttler.core.config import settings

    if backend == "redis":
        use_redis = True
    elif backend == "memory":
        use_redis = False
    else:
        use_redis = settings.redis_enabled

    if use_redis:
        _store_instance = RedisStore(redis_url=redis_url or settings.redis_url)
        logger.info("Using Redis bucket store")
    else:
        _store_instance = InMemoryStore()
        logger.debug("Using in-memory bucket store")
    return _store_instance


def reset_store() -> None:
    """Reset the global store instance.

    This is primarily useful for testing.
    """
    global _store_instance
    _store_instance = None
