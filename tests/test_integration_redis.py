"""
Integration tests for Redis-backed storage.
Uses testcontainers-python to spin up a real Redis instance for testing.
"""

import asyncio
import time

import pytest
import pytest_asyncio

try:
    import redis.asyncio
    from testcontainers.redis import RedisContainer

    HAS_REDIS = True
except ImportError:
    HAS_REDIS = False

from swr_cache import GZIP_MAGIC, CacheOrchestrator, CacheRecord, RedisStorage, SWRCache


@pytest.fixture(scope="module")
def redis_container():
    """Fixture to start a Redis container for the entire test module."""
    if not HAS_REDIS:
        pytest.skip("testcontainers[redis] not installed")

    container = RedisContainer(image="redis:7-alpine")
    container.start()
    yield container
    container.stop()


@pytest_asyncio.fixture
async def redis_client(redis_container):
    """Fixture to create an asyncio Redis client connected to the container."""
    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(6379)
    client = redis.asyncio.Redis(host=host, port=int(port))
    await client.ping()
    await client.flushdb()
    yield client
    await client.flushdb()
    await client.aclose()


def future_ttl(seconds=60):
    return int(time.time()) + seconds


class TestRedisStorage:
    """Test RedisStorage backend directly."""

    @pytest.mark.asyncio
    async def test_set_get(self, redis_client):
        storage = RedisStorage(redis_client, prefix="test:")
        record = CacheRecord("ns", "k1", '{"data": "value1"}', created_at=1, ttl=future_ttl())

        assert await storage.set(record) is True
        assert await storage.get("ns", "k1") == record

    @pytest.mark.asyncio
    async def test_missing(self, redis_client):
        storage = RedisStorage(redis_client, prefix="test:")
        assert await storage.get("ns", "nope") is None

    @pytest.mark.asyncio
    async def test_native_expiry(self, redis_client):
        """Test that the record ttl becomes a Redis expiry."""
        storage = RedisStorage(redis_client, prefix="test:")
        await storage.set(CacheRecord("ns", "expire_me", "v", ttl=future_ttl(1)))

        assert await redis_client.ttl("test:ns:expire_me") > 0

        await asyncio.sleep(2.1)
        assert await storage.get("ns", "expire_me") is None

    @pytest.mark.asyncio
    async def test_delete(self, redis_client):
        storage = RedisStorage(redis_client, prefix="test:")
        await storage.set(CacheRecord("ns", "k1", "v", ttl=future_ttl()))

        await storage.delete("ns", "k1")
        assert await storage.get("ns", "k1") is None

    @pytest.mark.asyncio
    async def test_clear_namespace_and_prefix(self, redis_client):
        storage = RedisStorage(redis_client, prefix="test:")
        for ns, id in [("ns", "user:1"), ("ns", "user:2"), ("ns", "order:1"), ("other", "user:1")]:
            await storage.set(CacheRecord(ns, id, "v", ttl=future_ttl()))

        assert await storage.clear("ns", "user:") == 2
        assert await storage.get("ns", "order:1") is not None

        assert await storage.clear("ns") == 1
        assert await storage.get("other", "user:1") is not None

    @pytest.mark.asyncio
    async def test_clear_escapes_glob(self, redis_client):
        storage = RedisStorage(redis_client, prefix="test:")
        await storage.set(CacheRecord("ns", "a*", "v", ttl=future_ttl()))
        await storage.set(CacheRecord("ns", "ab", "v", ttl=future_ttl()))

        assert await storage.clear("ns", "a*") == 1
        assert await storage.get("ns", "ab") is not None


class TestOrchestratorWithRedis:
    """End-to-end caching through Redis."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, redis_client):
        cache = CacheOrchestrator(RedisStorage(redis_client, prefix="e2e:"))
        calls = {"n": 0}

        async def source(args):
            calls["n"] += 1
            return {"id": args["id"]}

        args = {"namespace": "users", "id": "42"}
        assert await cache.get(args, source) == {"id": "42"}
        assert await cache.get(args, source) == {"id": "42"}
        assert calls["n"] == 1

    @pytest.mark.asyncio
    async def test_compressed_payload_survives_redis(self, redis_client):
        storage = RedisStorage(redis_client, prefix="e2e:")
        cache = CacheOrchestrator(storage, gzip=1)
        value = "x" * 5000

        async def source(args):
            return value

        args = {"namespace": "blobs", "id": "big"}
        await cache.get(args, source)

        record = await storage.get("blobs", "big")
        assert record.value[:3] == GZIP_MAGIC
        assert await cache.get(args, source) == value

    @pytest.mark.asyncio
    async def test_mark_to_refresh_and_clear(self, redis_client):
        storage = RedisStorage(redis_client, prefix="e2e:")
        cache = CacheOrchestrator(storage)
        calls = {"n": 0}

        @SWRCache.cached(cache, "data", "data:{}")
        async def get_data(key):
            calls["n"] += 1
            return f"data_{key}_{calls['n']}"

        assert await get_data("a") == "data_a_1"
        await cache.mark_to_refresh({"namespace": "data", "id": "data:a"})
        assert (await storage.get("data", "data:a")).created_at == 0

        # stale: served once more, refreshed in background
        assert await get_data("a") == "data_a_1"
        while cache.scheduler.pending:
            await asyncio.sleep(0.01)
        assert await get_data("a") == "data_a_2"

        await cache.clear({"namespace": "data"})
        assert await storage.get("data", "data:a") is None
