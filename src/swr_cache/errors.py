"""
Error taxonomy for the cache orchestrator.

Validation errors always surface to the caller. Storage errors degrade to
cache misses on read and are reported (or raised) on write. Compression
errors surface on read unless an ``on_error`` hook asks for a fallback.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class CacheError(Exception):
    """Base class for every error raised by swr_cache."""


class ValidationError(CacheError, ValueError):
    """Malformed caller input: missing namespace/id, bad source, bad value type."""


class SerializationError(ValidationError):
    """Value could not be converted to its wire representation."""


class StorageError(CacheError):
    """A storage adapter operation failed."""

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class CompressionError(CacheError):
    """A payload carried the gzip header but could not be decompressed."""


class RecordNotFoundError(CacheError, KeyError):
    """Raised by strict ``mark_to_refresh`` when the record does not exist."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "record not found"


async def notify(on_error: Callable[[Exception], Any] | None, error: Exception) -> None:
    """Hand ``error`` to the configured hook. A failing hook is logged, never raised."""
    if on_error is None:
        return
    try:
        result = on_error(error)
        if inspect.isawaitable(result):
            await result
    except Exception as err:
        logger.error(f"Error handler failed: {err}")
