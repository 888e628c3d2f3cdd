"""Token bucket arithmetic.

Pure functions mapping a stored bucket snapshot, the current time and a
request onto the next snapshot and the decision. Refill is computed lazily
from elapsed whole periods, so no background timer is needed.
"""

import math

from throttler.core.config import ThrottleConfig

from .models import Bucket, RateLimit


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def new_bucket(config: ThrottleConfig, now: int) -> Bucket:
    """Create a full bucket stamped with the current time."""
    return Bucket(value=config.bucket_size, last_update=now)


def refill(bucket: Bucket, config: ThrottleConfig, now: int) -> tuple[int, int]:
    """Credit the whole refill periods elapsed since the last update.

    Returns:
        Tuple of (refilled value capped at bucket_size, number of periods credited)
    """
    refill_count = max(0, (now - bucket.last_update) // config.refill_time)
    value = min(config.bucket_size, bucket.value + refill_count * config.refill_amount)
    return value, refill_count


def expiry_at(config: ThrottleConfig, now: int) -> int:
    """Absolute time after which an untouched bucket is dropped from the store.

    Long enough for a drained bucket to refill completely, plus one period.
    """
    periods = 1 + _ceil_div(config.bucket_size, config.refill_amount)
    return now + periods * config.refill_time


def build_result(
    config: ThrottleConfig,
    value: int,
    num_tokens: int,
    limited: bool,
    warning: bool,
) -> RateLimit:
    """Express the post-consumption bucket value in units of the request size."""
    return RateLimit(
        hits=int((config.bucket_size - value) / num_tokens),
        remaining=max(0, _round_half_up(value / num_tokens)),
        period=config.refill_time,
        hits_per_period=_ceil_div(config.bucket_size, num_tokens),
        limited=limited,
        warning=warning,
    )


def consume(
    bucket: Bucket,
    config: ThrottleConfig,
    now: int,
    num_tokens: int = 1,
) -> tuple[Bucket, RateLimit]:
    """Apply one consumption to a bucket snapshot.

    An exhausted bucket (value at or below zero after refill) rejects the
    request without deducting. Otherwise the tokens are deducted even if that
    drives the value below zero.

    Args:
        bucket: Snapshot read from the store
        config: Limiter configuration
        now: Current Unix time in seconds
        num_tokens: Tokens requested

    Returns:
        Tuple of (bucket to persist, decision)
    """
    value, refill_count = refill(bucket, config, now)

    limited = False
    warning = False
    if value <= 0:
        limited = True
        warning = True
    else:
        value -= num_tokens

    if value <= config.warning_limit:
        warning = True

    # Only the credited periods advance the timestamp, never past now
    last_update = min(now, bucket.last_update + refill_count * config.refill_time)

    result = build_result(config, value, num_tokens, limited, warning)
    return Bucket(value=value, last_update=last_update), result
