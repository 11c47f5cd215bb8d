"""
Tests for the SWRCache and BGCache decorators.
"""

import asyncio

import pytest
import pytest_asyncio

from swr_cache import BGCache, CacheOrchestrator, InMemoryStorage, SWRCache


async def eventually(predicate, timeout=2.0):
    """Poll until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest_asyncio.fixture
async def cache():
    cache = CacheOrchestrator(InMemoryStorage())
    yield cache
    cache.shutdown()


class TestSWRCache:
    """SWRCache decorator tests."""

    @pytest.mark.asyncio
    async def test_basic_caching(self, cache):
        """Test basic caching with function calls."""
        call_count = {"count": 0}

        @SWRCache.cached(cache, "users", "user:{}")
        async def get_user(user_id):
            call_count["count"] += 1
            return {"id": user_id, "name": f"User{user_id}"}

        # First call - cache miss
        assert await get_user(1) == {"id": 1, "name": "User1"}
        assert call_count["count"] == 1

        # Second call - cache hit
        assert await get_user(1) == {"id": 1, "name": "User1"}
        assert call_count["count"] == 1

        # Different key - cache miss
        assert await get_user(2) == {"id": 2, "name": "User2"}
        assert call_count["count"] == 2

    @pytest.mark.asyncio
    async def test_named_template(self, cache):
        @SWRCache.cached(cache, "products", "product:{product_id}")
        async def get_product(*, product_id):
            return {"id": product_id}

        assert await get_product(product_id=7) == {"id": 7}
        assert await cache.storage.get("products", "product:7") is not None

    @pytest.mark.asyncio
    async def test_callable_key_and_sync_function(self, cache):
        @SWRCache.cached(cache, "calc", key=lambda x: f"calc:{x}")
        def calculate(x):
            return x * 2

        assert await calculate(21) == 42
        assert calculate._cache is cache
        assert calculate.__name__ == "calculate"

    @pytest.mark.asyncio
    async def test_stale_refreshes_in_background(self, cache):
        """Test a stale entry is served while the function reruns in background."""
        call_count = {"count": 0}

        @SWRCache.cached(cache, "data", "data:{}", ttr=0)
        async def get_data(key):
            call_count["count"] += 1
            return {"count": call_count["count"]}

        assert await get_data("x") == {"count": 1}
        assert await get_data("x") == {"count": 1}

        await eventually(lambda: cache.scheduler.pending == 0 and call_count["count"] == 2)
        assert await get_data("x") == {"count": 2}
        await eventually(lambda: cache.scheduler.pending == 0)


class TestBGCache:
    """BGCache (periodic loader) tests."""

    @pytest.mark.asyncio
    async def test_loader_immediate(self, cache):
        """Test loader runs on registration and serves from cache afterwards."""
        call_count = {"count": 0}

        @BGCache.register_loader(cache, "catalog", "categories", interval_seconds=10)
        async def load_categories():
            call_count["count"] += 1
            return ["a", "b"]

        await eventually(lambda: call_count["count"] == 1)
        await eventually(lambda: len(cache.storage) == 1)

        assert await load_categories() == ["a", "b"]
        assert call_count["count"] == 1
        assert load_categories._cache_key == "catalog:categories"

    @pytest.mark.asyncio
    async def test_loader_no_immediate(self, cache):
        call_count = {"count": 0}

        @BGCache.register_loader(
            cache, "catalog", "config", interval_seconds=10, run_immediately=False
        )
        def load_config():
            call_count["count"] += 1
            return {"key": "value"}

        await asyncio.sleep(0.1)
        assert call_count["count"] == 0

        # Empty cache: first call runs the loader
        assert await load_config() == {"key": "value"}
        assert call_count["count"] == 1

    @pytest.mark.asyncio
    async def test_periodic_refresh(self, cache):
        """Test that data refreshes periodically."""
        call_count = {"count": 0}

        @BGCache.register_loader(cache, "catalog", "periodic", interval_seconds=0.1)
        async def load_data():
            call_count["count"] += 1
            return {"value": call_count["count"]}

        await eventually(lambda: call_count["count"] >= 3)
        assert (await load_data())["value"] >= 2

    @pytest.mark.asyncio
    async def test_error_handling(self, cache):
        """Test error handler is called on failure."""
        errors = []

        @BGCache.register_loader(
            cache, "catalog", "broken", interval_seconds=10, on_error=errors.append
        )
        async def load_data():
            raise ValueError("Test error")

        await eventually(lambda: len(errors) == 1)
        assert isinstance(errors[0], ValueError)
        assert str(errors[0]) == "Test error"

    @pytest.mark.asyncio
    async def test_loader_handler_wins_over_cache_handler(self):
        """Test a loader's on_error fires even when the cache has its own."""
        cache_errors = []
        errors = []
        cache = CacheOrchestrator(InMemoryStorage(), on_error=cache_errors.append)
        try:

            @BGCache.register_loader(
                cache, "catalog", "broken", interval_seconds=10, on_error=errors.append
            )
            async def load_data():
                raise ValueError("Test error")

            await eventually(lambda: len(errors) == 1)
            assert isinstance(errors[0], ValueError)
            assert cache_errors == []
        finally:
            cache.shutdown()
