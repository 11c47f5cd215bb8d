"""
Storage contract and reference backends.

The orchestrator never persists anything itself; it talks to a StorageAdapter.
InMemoryStorage and RedisStorage implement the protocol and are ready to use.
"""

from __future__ import annotations

import json
import pickle
import re
import time
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

try:
    import redis
    import redis.asyncio
except ImportError:
    redis = None  # type: ignore


# ============================================================================
# CacheRecord - The persisted unit
# ============================================================================


@dataclass
class CacheRecord:
    """One stored entry. ``created_at`` is in ms, ``ttl`` an absolute expiry in s."""

    namespace: str
    id: str | None
    value: Any
    created_at: int = 0
    ttl: int | None = None

    def is_expired(self, now: float | None = None) -> bool:
        """Check the storage-level expiry hint."""
        if self.ttl is None:
            return False
        return (time.time() if now is None else now) >= self.ttl

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], namespace: str | None = None, id: str | None = None) -> "CacheRecord":
        created_at = data.get("createdAt", data.get("created_at", 0))
        return cls(
            namespace=data.get("namespace", namespace),
            id=data.get("id", data.get("key", id)),
            value=data.get("value"),
            created_at=int(created_at or 0),
            ttl=data.get("ttl"),
        )

    @classmethod
    def coerce(cls, raw: Any, namespace: str | None = None, id: str | None = None) -> "CacheRecord | None":
        """
        Normalize whatever an adapter returned into a CacheRecord.

        Accepts a CacheRecord, a mapping, or JSON text of a mapping.
        Falsy input means "no record".
        """
        if not raw:
            return None
        if isinstance(raw, CacheRecord):
            return raw
        if isinstance(raw, (str, bytes, bytearray)):
            raw = json.loads(raw)
        if isinstance(raw, Mapping):
            return cls.from_mapping(raw, namespace, id)
        raise TypeError(f"Unsupported record type: {type(raw).__name__}")


# ============================================================================
# Storage Protocol - Contract every backend honors
# ============================================================================


class StorageAdapter(Protocol):
    """
    Protocol for storage backends.

    All four coroutines are required; CacheOrchestrator refuses to start
    with an adapter missing any of them.

    Example:
        class MyStorage:
            async def get(self, namespace, id): ...
            async def set(self, record): ...
            async def delete(self, namespace, id): ...
            async def clear(self, namespace, id=None): ...
    """

    async def get(self, namespace: str, id: str | None) -> Any:
        """Return the stored record (CacheRecord, mapping or JSON text) or None."""
        ...

    async def set(self, record: CacheRecord) -> Any:
        """Persist a fully formed record. Must be idempotent under retries."""
        ...

    async def delete(self, namespace: str, id: str | None) -> Any:
        """Remove one record."""
        ...

    async def clear(self, namespace: str, id: str | None = None) -> Any:
        """Remove every record in the namespace, or those under the id scope."""
        ...


REQUIRED_METHODS = ("get", "set", "delete", "clear")


def validate_storage_adapter(storage: Any) -> list[str]:
    """
    Check that an object implements the StorageAdapter protocol.

    Returns:
        Names of the missing methods; empty when the adapter is valid
    """
    return [
        method
        for method in REQUIRED_METHODS
        if not callable(getattr(storage, method, None))
    ]


# ============================================================================
# InMemoryStorage - Dict-backed storage honoring the ttl hint
# ============================================================================


class InMemoryStorage:
    """
    In-memory storage for tests and single-process use.

    Records whose ``ttl`` has passed are dropped on read, mirroring the
    native expiry of a real backend. ``clear`` treats ``id`` as a prefix.
    """

    def __init__(self):
        self._data: dict[tuple[str, str | None], CacheRecord] = {}

    async def get(self, namespace: str, id: str | None) -> CacheRecord | None:
        record = self._data.get((namespace, id))
        if record is None:
            return None

        if record.is_expired():
            del self._data[(namespace, id)]
            return None

        return record

    async def set(self, record: CacheRecord) -> CacheRecord:
        self._data[(record.namespace, record.id)] = record
        return record

    async def delete(self, namespace: str, id: str | None) -> None:
        self._data.pop((namespace, id), None)

    async def clear(self, namespace: str, id: str | None = None) -> int:
        """Remove matching records. Returns how many were removed."""
        keys = [
            key
            for key in self._data
            if key[0] == namespace
            and (id is None or (key[1] is not None and key[1].startswith(id)))
        ]
        for key in keys:
            del self._data[key]
        return len(keys)

    def __len__(self) -> int:
        return len(self._data)


# ============================================================================
# RedisStorage - Redis-backed storage
# ============================================================================

_GLOB_CHARS = re.compile(r"([*?\[\]\\])")


class RedisStorage:
    """
    Redis-backed storage using the asyncio client.
    Records are pickled and expire natively at their ``ttl`` instant.

    Example:
        import redis.asyncio
        client = redis.asyncio.Redis(host='localhost', port=6379)
        storage = RedisStorage(client, prefix="app:")
        cache = CacheOrchestrator(storage)
    """

    def __init__(self, redis_client: Any, prefix: str = ""):
        """
        Initialize Redis storage.

        Args:
            redis_client: redis.asyncio.Redis instance
            prefix: Key prefix for namespacing
        """
        if redis is None:
            raise ImportError("redis package required. Install: pip install swr-cache[redis]")
        self.client = redis_client
        self.prefix = prefix

    def _make_key(self, namespace: str, id: str | None) -> str:
        return f"{self.prefix}{namespace}:{id if id is not None else ''}"

    async def get(self, namespace: str, id: str | None) -> CacheRecord | None:
        data = await self.client.get(self._make_key(namespace, id))
        if data is None:
            return None
        return pickle.loads(data)

    async def set(self, record: CacheRecord) -> bool:
        data = pickle.dumps(record)
        key = self._make_key(record.namespace, record.id)
        if record.ttl:
            return bool(await self.client.set(key, data, exat=int(record.ttl)))
        return bool(await self.client.set(key, data))

    async def delete(self, namespace: str, id: str | None) -> int:
        return await self.client.delete(self._make_key(namespace, id))

    async def clear(self, namespace: str, id: str | None = None) -> int:
        """Delete every key under the namespace (and id prefix). Returns the count."""
        scope = _GLOB_CHARS.sub(r"\\\1", f"{self.prefix}{namespace}:{id or ''}")
        removed = 0
        batch: list[Any] = []
        async for key in self.client.scan_iter(match=f"{scope}*"):
            batch.append(key)
            if len(batch) >= 500:
                removed += await self.client.delete(*batch)
                batch = []
        if batch:
            removed += await self.client.delete(*batch)
        return removed
