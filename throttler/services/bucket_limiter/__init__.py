"""Distributed token bucket rate limiting.

This package computes lazy refill, applies consumption and persists bucket
state through a shared key-value store, with an optional Redis Lua path for
atomic consumption.
"""

from .bucket import build_result, consume, expiry_at, new_bucket, refill
from .models import Bucket, RateLimit
from .redis_lua import CONSUME_SCRIPT
from .service import (
    AtomicBucketLimiter,
    BucketLimiter,
    RateLimiter,
    get_rate_limiter,
    reset_rate_limiter,
)

__all__ = [
    "Bucket",
    "RateLimit",
    "CONSUME_SCRIPT",
    "RateLimiter",
    "BucketLimiter",
    "AtomicBucketLimiter",
    "get_rate_limiter",
    "reset_rate_limiter",
    # Bucket arithmetic
    "build_result",
    "consume",
    "expiry_at",
    "new_bucket",
    "refill",
]
