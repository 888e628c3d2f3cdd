"""Tests for the key-value store abstraction."""

import time
from unittest.mock import AsyncMock, patch

import pytest
import redis

from throttler.core.store import (
    InMemoryStore,
    KeyValueStore,
    RedisStore,
    _HashEntry,
    get_store,
    reset_store,
)
from throttler.exceptions import StoreUnavailableError


@pytest.fixture(autouse=True)
def reset_globals():
    reset_store()
    yield
    reset_store()


class TestHashEntry:
    """Tests for the internal _HashEntry class."""

    def test_entry_no_expiry(self):
        entry = _HashEntry(fields={"value": "1"})
        assert not entry.is_expired(time.time() + 10**6)

    def test_entry_expired_at_deadline(self):
        entry = _HashEntry(expires_at=100.0)
        assert entry.is_expired(100.0)
        assert not entry.is_expired(99.9)


class TestInMemoryStore:
    """Tests for the InMemoryStore implementation."""

    @pytest.mark.asyncio
    async def test_write_and_read(self):
        store = InMemoryStore()
        await store.write_fields("k", {"value": 20, "last_update": 1700000000})
        assert await store.read_all_fields("k") == {"value": "20", "last_update": "1700000000"}

    @pytest.mark.asyncio
    async def test_write_merges_fields(self):
        store = InMemoryStore()
        await store.write_fields("k", {"value": 1, "last_update": 5})
        await store.write_fields("k", {"value": 2})
        assert await store.read_all_fields("k") == {"value": "2", "last_update": "5"}

    @pytest.mark.asyncio
    async def test_read_missing_key(self):
        store = InMemoryStore()
        assert await store.read_all_fields("missing") == {}

    @pytest.mark.asyncio
    async def test_exists_field(self):
        store = InMemoryStore()
        await store.write_fields("k", {"value": 1})
        assert await store.exists_field("k", "value") is True
        assert await store.exists_field("k", "last_update") is False
        assert await store.exists_field("other", "value") is False

    @pytest.mark.asyncio
    async def test_expiry_on_missing_key(self):
        store = InMemoryStore()
        assert await store.set_expiry_at("missing", int(time.time()) + 60) is False

    @pytest.mark.asyncio
    async def test_key_expires_at_absolute_time(self):
        now = [1000.0]
        store = InMemoryStore(clock=lambda: now[0])
        await store.write_fields("k", {"value": 1})
        assert await store.set_expiry_at("k", 1010) is True

        now[0] = 1009.0
        assert await store.exists_field("k", "value") is True
        now[0] = 1010.0
        assert await store.exists_field("k", "value") is False
        assert await store.read_all_fields("k") == {}

    @pytest.mark.asyncio
    async def test_past_expiry_drops_key(self):
        store = InMemoryStore(clock=lambda: 1000.0)
        await store.write_fields("k", {"value": 1})
        assert await store.set_expiry_at("k", 500) is True
        assert await store.read_all_fields("k") == {}

    @pytest.mark.asyncio
    async def test_write_after_expiry_starts_fresh(self):
        now = [1000.0]
        store = InMemoryStore(clock=lambda: now[0])
        await store.write_fields("k", {"value": 1, "last_update": 1})
        await store.set_expiry_at("k", 1001)
        now[0] = 2000.0
        await store.write_fields("k", {"value": 9})
        assert await store.read_all_fields("k") == {"value": "9"}

    @pytest.mark.asyncio
    async def test_delete_and_clear(self):
        store = InMemoryStore()
        await store.write_fields("a", {"value": 1})
        await store.write_fields("b", {"value": 1})
        await store.delete("a")
        assert await store.read_all_fields("a") == {}
        await store.clear()
        assert await store.read_all_fields("b") == {}

    @pytest.mark.asyncio
    async def test_cleanup_expired(self):
        now = [1000.0]
        store = InMemoryStore(clock=lambda: now[0])
        await store.write_fields("a", {"value": 1})
        await store.write_fields("b", {"value": 1})
        await store.set_expiry_at("a", 1005)
        now[0] = 1006.0
        assert await store.cleanup_expired() == 1
        assert await store.exists_field("b", "value") is True


class TestRedisStore:
    """Tests for the RedisStore implementation with a mocked client."""

    @pytest.mark.asyncio
    async def test_read_decodes_bytes(self):
        client = AsyncMock()
        client.hgetall.return_value = {b"value": b"5", b"last_update": b"100"}
        store = RedisStore(redis_client=client)

        assert await store.read_all_fields("k") == {"value": "5", "last_update": "100"}
        client.hgetall.assert_awaited_once_with("k")

    @pytest.mark.asyncio
    async def test_exists_field(self):
        client = AsyncMock()
        client.hexists.return_value = 1
        store = RedisStore(redis_client=client)

        assert await store.exists_field("k", "value") is True
        client.hexists.assert_awaited_once_with("k", "value")

    @pytest.mark.asyncio
    async def test_write_uses_mapping(self):
        client = AsyncMock()
        store = RedisStore(redis_client=client)

        await store.write_fields("k", {"value": 3, "last_update": 9})
        client.hset.assert_awaited_once_with("k", mapping={"value": 3, "last_update": 9})

    @pytest.mark.asyncio
    async def test_set_expiry_at(self):
        client = AsyncMock()
        client.expireat.return_value = True
        store = RedisStore(redis_client=client)

        assert await store.set_expiry_at("k", 1800) is True
        client.expireat.assert_awaited_once_with("k", 1800)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method,args",
        [
            ("hexists", ("k", "value")),
            ("hgetall", ("k",)),
            ("hset", ("k", {"value": 1})),
            ("expireat", ("k", 10)),
            ("delete", ("k",)),
        ],
    )
    async def test_redis_errors_become_store_unavailable(self, method, args):
        client = AsyncMock()
        getattr(client, method).side_effect = redis.ConnectionError("Connection refused")
        store = RedisStore(redis_client=client)
        operation = {
            "hexists": store.exists_field,
            "hgetall": store.read_all_fields,
            "hset": store.write_fields,
            "expireat": store.set_expiry_at,
            "delete": store.delete,
        }[method]

        with pytest.raises(StoreUnavailableError) as exc_info:
            await operation(*args)
        assert exc_info.value.operation == method
        assert exc_info.value.key == "k"

    @pytest.mark.asyncio
    async def test_creates_client_from_url(self):
        with patch("throttler.core.store.aioredis.from_url") as mock_from_url:
            mock_from_url.return_value = AsyncMock()
            store = RedisStore(redis_url="redis://cache:6379/1")
            await store.delete("k")
        mock_from_url.assert_called_once_with("redis://cache:6379/1")

    @pytest.mark.asyncio
    async def test_close(self):
        client = AsyncMock()
        store = RedisStore(redis_client=client)
        await store.close()
        client.aclose.assert_awaited_once()
        assert store._redis is None


class TestGetStore:
    """Tests for the global store accessor."""

    def test_memory_backend(self):
        store = get_store(backend="memory")
        assert isinstance(store, InMemoryStore)
        assert isinstance(store, KeyValueStore)

    def test_singleton(self):
        assert get_store(backend="memory") is get_store()

    def test_force_new(self):
        first = get_store(backend="memory")
        assert get_store(backend="memory", force_new=True) is not first

    def test_redis_backend(self):
        store = get_store(backend="redis", redis_url="redis://localhost:6379/0")
        assert isinstance(store, RedisStore)

    def test_auto_detects_from_settings(self):
        with patch("throttler.core.config.settings") as mock_settings:
            mock_settings.redis_enabled = True
            mock_settings.redis_url = "redis://localhost:6379/0"
            store = get_store()
        assert isinstance(store, RedisStore)
