"""Data models for the token bucket limiter."""

from dataclasses import dataclass
from typing import Mapping


@dataclass(frozen=True)
class Bucket:
    """Persisted token bucket state for one meter.

    Attributes:
        value: Tokens currently in the bucket
        last_update: Unix time (seconds) of the last credited refill
    """
    value: int
    last_update: int

    def to_mapping(self) -> dict:
        """Convert to the hash fields written to the store."""
        return {
            "value": self.value,
            "last_update": self.last_update,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, str]) -> "Bucket":
        """Create from the hash fields read back from the store.

        Raises:
            KeyError: If a field is missing.
            ValueError: If a field is not numeric.
        """
        return cls(
            value=int(float(data["value"])),
            last_update=int(float(data["last_update"])),
        )


@dataclass(frozen=True)
class RateLimit:
    """Outcome of a single consume call.

    Attributes:
        hits: Tokens consumed out of the capacity, in units of the request size
        remaining: Requests of the same size still available, floored at zero
        period: Seconds per refill period
        hits_per_period: Capacity in units of the request size
        limited: True if the consumption was rejected
        warning: True if the bucket is at or below the warning limit
    """
    hits: int
    remaining: int
    period: int
    hits_per_period: int
    limited: bool
    warning: bool

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "hits": self.hits,
            "remaining": self.remaining,
            "period": self.period,
            "hits_per_period": self.hits_per_period,
            "warning": self.warning,
            "limited": self.limited,
        }
