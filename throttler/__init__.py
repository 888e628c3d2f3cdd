"""Distributed token bucket rate limiter backed by a shared key-value store."""

from throttler.core.config import ThrottleConfig
from throttler.core.store import InMemoryStore, KeyValueStore, RedisStore
from throttler.exceptions import (
    ConfigurationError,
    InvalidArgumentError,
    StoreUnavailableError,
    ThrottlerException,
)
from throttler.services.bucket_limiter import (
    AtomicBucketLimiter,
    BucketLimiter,
    RateLimit,
    RateLimiter,
    get_rate_limiter,
    reset_rate_limiter,
)

__version__ = "0.1.0"

__all__ = [
    "ThrottleConfig",
    "KeyValueStore",
    "InMemoryStore",
    "RedisStore",
    "RateLimit",
    "RateLimiter",
    "BucketLimiter",
    "AtomicBucketLimiter",
    "get_rate_limiter",
    "reset_rate_limiter",
    "ThrottlerException",
    "ConfigurationError",
    "InvalidArgumentError",
    "StoreUnavailableError",
]
