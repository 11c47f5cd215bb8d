"""
Stale-while-revalidate cache orchestration over a pluggable storage adapter.

CacheOrchestrator never stores anything itself. It sequences the adapter, the
freshness rule, the codec and the background scheduler:

    get -> storage.get -> fresh?  return cached value
                       -> stale?  return cached value, refresh in background
                       -> miss?   run source, write through, return value
"""

from __future__ import annotations

import dataclasses
import inspect
import logging
from typing import Any

from . import expiration
from .codec import CompressionCodec, get_serializer
from .config import CacheOptions, RequestArgs
from .errors import (
    CompressionError,
    RecordNotFoundError,
    StorageError,
    ValidationError,
    notify,
)
from .scheduler import RefreshScheduler
from .storage import CacheRecord, StorageAdapter, validate_storage_adapter

logger = logging.getLogger(__name__)


class CacheOrchestrator:
    """
    Public cache surface: ``get``, ``delete``, ``mark_to_refresh`` and ``clear``.

    Example:
        cache = CacheOrchestrator(InMemoryStorage(), ttr=60_000, gzip=1)

        async def load_user(args):
            return await db.fetch_user(args["id"])

        user = await cache.get({"namespace": "users", "id": "42"}, load_user)
    """

    def __init__(
        self,
        storage: StorageAdapter,
        options: CacheOptions | None = None,
        scheduler: RefreshScheduler | None = None,
        **defaults: Any,
    ):
        """
        Args:
            storage: Adapter implementing get/set/delete/clear
            options: Base options; keyword ``defaults`` are merged on top
            scheduler: Background scheduler, one is created when omitted
        """
        missing = validate_storage_adapter(storage)
        if missing:
            raise ValidationError(f"storage adapter is missing: {', '.join(missing)}")

        self.storage = storage
        self.options = (options or CacheOptions()).merge(**defaults)
        self.scheduler = scheduler if scheduler is not None else RefreshScheduler()

    # ------------------------------------------------------------------
    # get
    # ------------------------------------------------------------------

    async def get(self, args: Any, source: Any, **overrides: Any) -> Any:
        """
        Return the cached value for ``args``, falling back to ``source``.

        Args:
            args: Mapping (or RequestArgs) with ``namespace`` and ``id``
            source: Callable taking ``args`` and returning a value or awaitable,
                or an awaitable to use as the single fetch
            **overrides: Per-call CacheOptions fields

        Raises:
            ValidationError: on missing namespace/id or an unusable source
        """
        request = RequestArgs.coerce(args)
        self._check_source(source)
        options = self.options.merge(**overrides)

        if options.refresh:
            return await self._source_and_set(request, args, source, options)

        try:
            record = await self._get(request, options)
        except CompressionError as e:
            if options.on_error is None:
                raise
            logger.warning(f"Cache read failed for {request.key}: {e}")
            await notify(options.on_error, e)
            record = None

        if record is None or not record.value:
            logger.debug(f"Cache MISS: {request.key}")
            return await self._source_and_set(request, args, source, options)

        if expiration.is_stale(record.created_at, options.ttr):
            logger.debug(f"Cache HIT (stale): {request.key}, refreshing in background")
            self.scheduler.spawn(
                self._refresh(request, args, source, options),
                label=request.key,
                on_error=options.on_error,
            )
        else:
            logger.debug(f"Cache HIT (fresh): {request.key}")
            _discard(source)

        return record.value

    @staticmethod
    def _check_source(source: Any) -> None:
        if not callable(source) and not inspect.isawaitable(source):
            raise ValidationError(
                "Source must be a function which returns an awaitable."
            )

    @staticmethod
    async def _invoke(source: Any, args: Any) -> Any:
        result = source(args) if callable(source) else source
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _source_and_set(
        self, request: RequestArgs, args: Any, source: Any, options: CacheOptions
    ) -> Any:
        """Run the source in the foreground and write its value through."""
        try:
            value = await self._invoke(source, args)
        except Exception as e:
            if options.on_error is None:
                raise
            logger.warning(f"Source failed for {request.key}: {e}")
            await notify(options.on_error, e)
            return None

        if options.set_filter(value):
            try:
                await self._set(request, value, options)
            except StorageError as e:
                logger.error(f"Write-through failed for {request.key}: {e}")
            except ValidationError as e:
                logger.error(f"Could not encode value for {request.key}: {e}")
                await notify(options.on_error, e)

        return value

    async def _refresh(
        self, request: RequestArgs, args: Any, source: Any, options: CacheOptions
    ) -> None:
        """Background refresh body: one source call, at most one write."""
        value = await self._invoke(source, args)
        if options.set_filter(value):
            await self._set(request, value, options)

    # ------------------------------------------------------------------
    # Internal read / write
    # ------------------------------------------------------------------

    async def _get(self, request: RequestArgs, options: CacheOptions | None = None) -> CacheRecord | None:
        """
        Read and decode one record. Missing records and storage failures
        both come back as None.

        Raises:
            CompressionError: if the stored payload is corrupt
        """
        options = options or self.options
        try:
            raw = await self.storage.get(request.namespace, request.id)
            record = CacheRecord.coerce(raw, request.namespace, request.id)
        except Exception as e:
            logger.warning(f"Cache read failed for {request.key}: {e}")
            error = StorageError(f"Storage get failed: {e}", operation="get")
            error.__cause__ = e
            await notify(options.on_error, error)
            return None

        if record is None or record.value is None:
            return None

        serializer = get_serializer(options.serializer)
        value = CompressionCodec.decode(record.value, as_text=not serializer.binary)
        value = serializer.loads(value)
        return dataclasses.replace(record, value=value)

    async def _set(self, request: RequestArgs, value: Any, options: CacheOptions | None = None) -> Any:
        """
        Serialize, compress and persist ``value``. Empty values are not written.

        Raises:
            ValidationError: if the value cannot be encoded
            StorageError: if the adapter fails and no ``on_error`` is configured
        """
        options = options or self.options
        if request.id is None:
            raise ValidationError("No id provided.")
        if not value:
            return None

        payload = get_serializer(options.serializer).dumps(value)
        codec = CompressionCodec(options.gzip)
        if codec.enabled:
            payload = codec.encode(payload)

        now = expiration.now_ms()
        record = CacheRecord(
            namespace=request.namespace,
            id=request.id,
            value=payload,
            created_at=now,
            ttl=expiration.expires_at(now, options.ttl),
        )
        return await self._call_storage("set", options, record)

    async def _call_storage(self, operation: str, options: CacheOptions, *args: Any) -> Any:
        try:
            return await getattr(self.storage, operation)(*args)
        except Exception as e:
            error = StorageError(f"Storage {operation} failed: {e}", operation=operation)
            if options.on_error is None:
                raise error from e
            logger.error(str(error))
            await notify(options.on_error, error)
            return None

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    async def delete(self, args: Any) -> Any:
        """Remove one record."""
        request = RequestArgs.coerce(args)
        return await self._call_storage("delete", self.options, request.namespace, request.id)

    async def mark_to_refresh(self, args: Any, strict: bool = False) -> Any:
        """
        Make a record maximally stale without deleting it.

        The stored record is written back unchanged except for ``created_at = 0``,
        so the next ``get`` serves it once more and refreshes in the background.

        Args:
            args: Mapping (or RequestArgs) with ``namespace`` and ``id``
            strict: Raise RecordNotFoundError instead of doing nothing when absent
        """
        request = RequestArgs.coerce(args)
        raw = await self._call_storage("get", self.options, request.namespace, request.id)
        record = CacheRecord.coerce(raw, request.namespace, request.id)
        if record is None:
            if strict:
                raise RecordNotFoundError(f"No record for {request.key}")
            return None

        return await self._call_storage(
            "set", self.options, dataclasses.replace(record, created_at=0)
        )

    async def clear(self, args: Any) -> Any:
        """Remove every record in a namespace; an ``id`` is passed on as a scope."""
        request = RequestArgs.coerce(args, require_id=False)
        return await self._call_storage("clear", self.options, request.namespace, request.id)

    def shutdown(self, wait: bool = False) -> None:
        """Stop periodic loaders registered on this cache."""
        self.scheduler.shutdown(wait=wait)


def _discard(source: Any) -> None:
    """Close an unused coroutine passed as the source."""
    if inspect.iscoroutine(source):
        source.close()

