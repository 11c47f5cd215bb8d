"""
Cache decorators on top of CacheOrchestrator.

Provides:
- SWRCache: Stale-while-revalidate caching of function results
- BGCache: Periodic background loading with APScheduler
"""

from __future__ import annotations

import inspect
import logging
import time
from typing import Any, Callable, TypeVar

from .errors import notify
from .orchestrator import CacheOrchestrator

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _make_id(key: str | Callable[..., str], args: tuple, kwargs: dict) -> str:
    if callable(key):
        return key(*args, **kwargs)
    if "{" not in key:
        return key
    if args:
        return key.format(args[0])
    return key.format(**kwargs)


async def _call(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


# ============================================================================
# SWRCache - Stale-While-Revalidate decorator
# ============================================================================


class StaleWhileRevalidateCache:
    """
    SWR decorator: the wrapped function becomes the cache source.
    Serves stale data while refreshing in background (non-blocking).

    Example:
        cache = CacheOrchestrator(InMemoryStorage())

        @SWRCache.cached(cache, "products", "product:{}", ttr=60_000)
        async def get_product(product_id: int):
            return await db.fetch_product(product_id)
    """

    @classmethod
    def cached(
        cls,
        cache: CacheOrchestrator,
        namespace: str,
        key: str | Callable[..., str],
        **options: Any,
    ) -> Callable[[Callable[..., T]], Callable[..., Any]]:
        """
        SWR cache decorator.

        Args:
            cache: Orchestrator to read and write through
            namespace: Namespace for every entry of this function
            key: Id template ("user:{}", "user:{user_id}") or generator function
            **options: Per-call CacheOptions overrides (ttr, ttl, gzip, ...)
        """

        def decorator(func: Callable[..., T]) -> Callable[..., Any]:
            async def wrapper(*args, **kwargs) -> Any:
                request = {"namespace": namespace, "id": _make_id(key, args, kwargs)}

                async def source(_request):
                    return await _call(func, *args, **kwargs)

                return await cache.get(request, source, **options)

            wrapper.__wrapped__ = func  # type: ignore
            wrapper.__name__ = func.__name__  # type: ignore
            wrapper.__doc__ = func.__doc__  # type: ignore
            wrapper._cache = cache  # type: ignore
            return wrapper

        return decorator


# Alias for shorter usage
SWRCache = StaleWhileRevalidateCache


# ============================================================================
# BGCache - Background loader decorator
# ============================================================================


class BackgroundCache:
    """
    Periodic loader: the scheduler refreshes the entry every interval and
    callers read it through the cache. Works with both sync and async loaders.

    Example:
        @BGCache.register_loader(cache, "catalog", "categories", interval_seconds=300)
        async def load_categories():
            return await db.query("SELECT * FROM categories")

        categories = await load_categories()
    """

    @classmethod
    def register_loader(
        cls,
        cache: CacheOrchestrator,
        namespace: str,
        key: str,
        interval_seconds: float,
        run_immediately: bool = True,
        on_error: Callable[[Exception], Any] | None = None,
        **options: Any,
    ) -> Callable[[Callable[[], T]], Callable[[], Any]]:
        """
        Decorator to register a background data loader.
        Must be applied while an event loop is running.

        Args:
            cache: Orchestrator holding the loaded data
            namespace: Namespace of the entry
            key: Id of the entry; also the scheduler job id
            interval_seconds: How often to refresh the data (in seconds)
            run_immediately: Whether to load data immediately on registration
            on_error: Optional error handler callback
            **options: Per-call CacheOptions overrides

        Returns:
            Coroutine function returning the cached data
        """
        request = {"namespace": namespace, "id": key}
        job_id = f"{namespace}:{key}"
        # refresh failures must raise here so they reach this loader's hook
        refresh_options = {**options, "refresh": True, "on_error": None}
        error_hook = on_error or options.get("on_error") or cache.options.on_error

        def decorator(loader_func: Callable[[], T]) -> Callable[[], Any]:
            async def source(_request):
                return await _call(loader_func)

            async def refresh_job():
                """Job that runs periodically to refresh the cache."""
                try:
                    logger.debug(f"Refreshing cache key: {job_id}")
                    start = time.time()
                    await cache.get(request, source, **refresh_options)
                    duration = time.time() - start
                    logger.info(f"Refreshed {job_id} successfully in {duration:.3f}s")
                except Exception as e:
                    logger.error(f"Failed to refresh {job_id}: {e}", exc_info=True)
                    await notify(error_hook, e)

            cache.scheduler.add_periodic(
                job_id,
                refresh_job,
                interval_seconds=interval_seconds,
                run_immediately=run_immediately,
            )

            async def wrapper() -> Any:
                """Get cached data or call loader if not available."""
                return await cache.get(request, source, **options)

            wrapper.__wrapped__ = loader_func  # type: ignore
            wrapper.__name__ = loader_func.__name__  # type: ignore
            wrapper.__doc__ = loader_func.__doc__  # type: ignore
            wrapper._cache = cache  # type: ignore
            wrapper._cache_key = job_id  # type: ignore
            return wrapper

        return decorator


# Alias for shorter usage
BGCache = BackgroundCache
