"""Core utilities for the throttler."""

from throttler.core.config import Settings, ThrottleConfig, settings
from throttler.core.logging import get_logger, setup_logging
from throttler.core.store import (
    InMemoryStore,
    KeyValueStore,
    RedisStore,
    get_store,
    reset_store,
)

__all__ = [
    "KeyValueStore",
    "InMemoryStore",
    "RedisStore",
    "get_store",
    "reset_store",
    "Settings",
    "ThrottleConfig",
    "settings",
    "get_logger",
    "setup_logging",
]
