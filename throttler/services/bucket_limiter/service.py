"""Token bucket rate limiting backed by a shared key-value store.

Buckets are refilled lazily on every consume call from the time elapsed
since their last update, and idle buckets are reclaimed by the store's
expiry mechanism.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Mapping, Optional, Union

import redis
import redis.asyncio as aioredis

from throttler.core.config import ThrottleConfig, settings
from throttler.core.logging import get_log_context, get_logger
from throttler.core.store import KeyValueStore, get_store
from throttler.exceptions import InvalidArgumentError, StoreUnavailableError

from . import bucket as bucket_math
from .models import Bucket, RateLimit
from .redis_lua import CONSUME_SCRIPT

logger = get_logger(__name__)

ConfigLike = Union[ThrottleConfig, Mapping[str, Any], None]


def _resolve_config(config: ConfigLike) -> ThrottleConfig:
    if config is None:
        return ThrottleConfig.from_settings()
    if isinstance(config, ThrottleConfig):
        return config
    return ThrottleConfig.from_mapping(config)


class RateLimiter(ABC):
    """Abstract rate limiter capability.

    Implementations hold only immutable configuration; all bucket state
    lives in the backing store.
    """

    def __init__(
        self,
        config: ConfigLike = None,
        key_prefix: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = _resolve_config(config)
        self.key_prefix = key_prefix or settings.throttle_key_prefix
        self._clock = clock

    def make_key(self, meter_id: str) -> str:
        """Create the store key for a meter's bucket."""
        return f"{self.key_prefix}:{meter_id}"

    @staticmethod
    def _validate(meter_id: str, num_tokens: int) -> None:
        if not isinstance(meter_id, str) or not meter_id:
            raise InvalidArgumentError("meter_id", "meter_id must be a non-empty string")
        if isinstance(num_tokens, bool) or not isinstance(num_tokens, int) or num_tokens <= 0:
            raise InvalidArgumentError(
                "num_tokens", f"num_tokens must be a positive integer, got {num_tokens!r}"
            )

    def _now(self, now: Optional[int]) -> int:
        return int(self._clock()) if now is None else int(now)

    def _expires_at(self, now: int) -> int:
        # A pinned now older than the wall clock must not expire the bucket on write
        return bucket_math.expiry_at(self.config, max(now, int(self._clock())))

    @abstractmethod
    async def consume(
        self,
        meter_id: str,
        warn_threshold: int = 0,
        num_tokens: int = 1,
        now: Optional[int] = None,
    ) -> RateLimit:
        """Consume tokens from a meter's bucket.

        Args:
            meter_id: Identifier partitioning rate limit state
            warn_threshold: Reserved, currently ignored
            num_tokens: Tokens requested for this call
            now: Unix time override, defaults to the wall clock

        Returns:
            RateLimit describing the decision
        """

    @abstractmethod
    async def reset(self, meter_id: str) -> None:
        """Drop a meter's bucket so the next call starts full."""


class BucketLimiter(RateLimiter):
    """Store-backed token bucket limiter.

    Each call reads the bucket, computes the refill locally, then writes the
    new state and expiry as separate store operations. The sequence is not
    atomic: concurrent calls for the same meter may both spend the same
    token. Use AtomicBucketLimiter where that matters.

    Example:
        >>> limiter = BucketLimiter(InMemoryStore(), {"bucket_size": 2})
        >>> result = await limiter.consume("user-1")
        >>> result.remaining
        1
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        config: ConfigLike = None,
        key_prefix: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Bucket store, defaults to the global store
            config: ThrottleConfig or option mapping, defaults to settings
            clock: Wall clock used when no now is given and for expiries

        Raises:
            ConfigurationError: If the bucket configuration is invalid
        """
        super().__init__(config, key_prefix, clock)
        self._store = store if store is not None else get_store()

    @property
    def store(self) -> KeyValueStore:
        return self._store

    async def consume(
        self,
        meter_id: str,
        warn_threshold: int = 0,
        num_tokens: int = 1,
        now: Optional[int] = None,
    ) -> RateLimit:
        """Consume tokens from a meter's bucket.

        ``warn_threshold`` is accepted for interface compatibility and is not
        read; the warning threshold comes from ``config.warning_limit``.

        Raises:
            InvalidArgumentError: If meter_id is empty or num_tokens is not positive
            StoreUnavailableError: If the store fails at any step
        """
        self._validate(meter_id, num_tokens)
        now = self._now(now)
        key = self.make_key(meter_id)

        current = await self._retrieve_bucket(key, now)
        updated, result = bucket_math.consume(current, self.config, now, num_tokens)

        await self._store.write_fields(key, updated.to_mapping())
        await self._store.set_expiry_at(key, self._expires_at(now))

        context = get_log_context(
            meter_id=meter_id,
            key=key,
            limited=result.limited,
            warning=result.warning,
            remaining=result.remaining,
        )
        if result.limited:
            logger.info(f"Meter {meter_id} rate limited", extra=context)
        else:
            logger.debug(f"Meter {meter_id} consumed {num_tokens} token(s)", extra=context)
        return result

    async def _retrieve_bucket(self, key: str, now: int) -> Bucket:
        """Read the bucket, creating and persisting a full one if missing."""
        fields: dict[str, str] = {}
        if await self._store.exists_field(key, "value"):
            fields = await self._store.read_all_fields(key)

        # The key may also expire between the existence check and the read
        if not fields:
            fresh = bucket_math.new_bucket(self.config, now)
            await self._store.write_fields(key, fresh.to_mapping())
            logger.debug(f"Created bucket {key}", extra=get_log_context(key=key))
            return fresh

        try:
            return Bucket.from_mapping(fields)
        except (KeyError, ValueError) as e:
            logger.error(f"Malformed bucket {key}: {fields}", extra=get_log_context(key=key))
            raise StoreUnavailableError(
                "hgetall", key, detail=f"Malformed bucket stored at {key}: {e}"
            ) from e

    async def reset(self, meter_id: str) -> None:
        await self._store.delete(self.make_key(meter_id))


class AtomicBucketLimiter(RateLimiter):
    """Token bucket limiter that runs each consumption as one Redis script.

    Same arithmetic as BucketLimiter, but the read-modify-write happens
    inside Redis so concurrent callers never over-admit.
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        config: ConfigLike = None,
        key_prefix: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(config, key_prefix, clock)
        self._redis = redis_client
        self._redis_url = redis_url or settings.redis_url

    def _get_redis(self) -> Any:
        """Get or create Redis client."""
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    async def consume(
        self,
        meter_id: str,
        warn_threshold: int = 0,
        num_tokens: int = 1,
        now: Optional[int] = None,
    ) -> RateLimit:
        """Consume tokens atomically. ``warn_threshold`` is ignored.

        Raises:
            InvalidArgumentError: If meter_id is empty or num_tokens is not positive
            StoreUnavailableError: If the script cannot be executed
        """
        self._validate(meter_id, num_tokens)
        now = self._now(now)
        key = self.make_key(meter_id)
        client = self._get_redis()
        try:
            raw = await client.eval(
                CONSUME_SCRIPT,
                1,  # Number of keys
                key,  # KEYS[1]
                self.config.bucket_size,  # ARGV[1]
                self.config.refill_time,  # ARGV[2]
                self.config.refill_amount,  # ARGV[3]
                self.config.warning_limit,  # ARGV[4]
                num_tokens,  # ARGV[5]
                now,  # ARGV[6]
                self._expires_at(now),  # ARGV[7]
            )
        except redis.RedisError as e:
            logger.error(f"Lua script execution failed for {key}: {e}", extra=get_log_context(key=key))
            raise StoreUnavailableError(
                "eval", key, detail=f"Lua script execution failed for {key}: {e}"
            ) from e

        value = int(raw[0])
        result = bucket_math.build_result(
            self.config,
            value,
            num_tokens,
            limited=bool(int(raw[2])),
            warning=bool(int(raw[3])),
        )
        if result.limited:
            logger.info(
                f"Meter {meter_id} rate limited",
                extra=get_log_context(meter_id=meter_id, key=key, limited=True, remaining=0),
            )
        return result

    async def reset(self, meter_id: str) -> None:
        key = self.make_key(meter_id)
        client = self._get_redis()
        try:
            await client.delete(key)
        except redis.RedisError as e:
            raise StoreUnavailableError("delete", key, detail=f"Redis delete failed for {key}: {e}") from e

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter(
    store: Optional[KeyValueStore] = None,
    config: ConfigLike = None,
    force_new: bool = False,
) -> RateLimiter:
    """Get the global rate limiter instance.

    Uses AtomicBucketLimiter when both ``redis_enabled`` and
    ``throttle_atomic`` are set, otherwise a BucketLimiter over the global
    store.
    """
    global _rate_limiter
    if _rate_limiter is not None and not force_new:
        return _rate_limiter

    if settings.throttle_atomic and store is None:
        if settings.redis_enabled:
            _rate_limiter = AtomicBucketLimiter(config=config)
            logger.info("Using atomic Redis token bucket limiter")
            return _rate_limiter
        logger.warning("throttle_atomic requires redis_enabled. Using store-backed limiter.")

    _rate_limiter = BucketLimiter(store=store, config=config)
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Reset the global rate limiter instance."""
    global _rate_limiter
    _rate_limiter = None
