"""
Stale-while-revalidate cache orchestration over pluggable storage.

Expose the orchestrator, storage contract and backends, codec, and decorators under `swr_cache`.
"""

from .config import CacheOptions, RequestArgs
from .codec import CompressionCodec, GZIP_MAGIC
from .errors import (
    CacheError,
    CompressionError,
    RecordNotFoundError,
    SerializationError,
    StorageError,
    ValidationError,
)
from .storage import (
    CacheRecord,
    StorageAdapter,
    InMemoryStorage,
    RedisStorage,
    validate_storage_adapter,
)
from .scheduler import RefreshScheduler
from .orchestrator import CacheOrchestrator
from .decorators import (
    SWRCache,
    StaleWhileRevalidateCache,
    BackgroundCache,
    BGCache,
)

__all__ = [
    "CacheOptions",
    "RequestArgs",
    "CompressionCodec",
    "GZIP_MAGIC",
    "CacheError",
    "CompressionError",
    "RecordNotFoundError",
    "SerializationError",
    "StorageError",
    "ValidationError",
    "CacheRecord",
    "StorageAdapter",
    "InMemoryStorage",
    "RedisStorage",
    "validate_storage_adapter",
    "RefreshScheduler",
    "CacheOrchestrator",
    "SWRCache",
    "StaleWhileRevalidateCache",
    "BackgroundCache",
    "BGCache",
]
