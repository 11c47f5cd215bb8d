"""
Payload codecs: the serialization strategy and the gzip compression layer.

Decoding never needs the write-time policy. Compressed payloads identify
themselves through the gzip magic header, so the compression setting can
change between deployments without migrating stored records.
"""

from __future__ import annotations

import gzip
import json
import logging
import zlib
from typing import Any

from .errors import CompressionError, SerializationError, ValidationError

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b\x08"

_BYTES_TYPES = (bytes, bytearray, memoryview)


class CompressionCodec:
    """
    Gzip codec with a size-based policy.

    Example:
        codec = CompressionCodec(gzip=1)  # compress payloads over 1000 bytes
        payload = codec.encode(text)
        text = CompressionCodec.decode(payload)
    """

    def __init__(self, gzip: Any = False):
        self.gzip = gzip

    @property
    def enabled(self) -> bool:
        """Whether this policy can ever compress."""
        if isinstance(self.gzip, bool):
            return self.gzip
        return isinstance(self.gzip, (int, float))

    def should_compress(self, size: int) -> bool:
        # bool is an int subclass, so it is checked first
        if isinstance(self.gzip, bool):
            return self.gzip
        if isinstance(self.gzip, (int, float)):
            return size > self.gzip * 1000
        return False

    def encode(self, value: str | bytes) -> str | bytes:
        """
        Compress ``value`` when the policy asks for it, else return it unchanged.

        Raises:
            ValidationError: if value is neither text nor bytes
        """
        if isinstance(value, str):
            data = value.encode("utf-8")
        elif isinstance(value, _BYTES_TYPES):
            data = bytes(value)
        else:
            raise ValidationError("value must be str or bytes.")

        if not self.should_compress(len(data)):
            return value
        return gzip.compress(data)

    @staticmethod
    def is_compressed(payload: Any) -> bool:
        return isinstance(payload, _BYTES_TYPES) and bytes(payload[:3]) == GZIP_MAGIC

    @staticmethod
    def decode(payload: Any, as_text: bool = True) -> Any:
        """
        Decompress gzip payloads; anything else passes through unchanged.

        Raises:
            CompressionError: if the payload has the gzip header but is malformed
        """
        if not CompressionCodec.is_compressed(payload):
            return payload
        try:
            data = gzip.decompress(bytes(payload))
            return data.decode("utf-8") if as_text else data
        except (OSError, EOFError, zlib.error, UnicodeDecodeError) as e:
            raise CompressionError(f"Malformed compressed payload: {e}") from e


class JsonSerializer:
    """Stores values as JSON text."""

    name = "json"
    binary = False

    def dumps(self, value: Any) -> str:
        try:
            return json.dumps(value)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Value is not JSON serializable: {e}") from e

    def loads(self, payload: Any) -> Any:
        if isinstance(payload, _BYTES_TYPES):
            try:
                payload = bytes(payload).decode("utf-8")
            except UnicodeDecodeError:
                return payload
        if not isinstance(payload, str):
            return payload
        try:
            return json.loads(payload)
        except ValueError:
            logger.debug("Stored payload is not JSON, returning it as is")
            return payload


class RawSerializer:
    """Hands values to storage untouched. Compressed payloads read back as bytes."""

    name = "raw"
    binary = True

    def dumps(self, value: Any) -> Any:
        return value

    def loads(self, payload: Any) -> Any:
        return payload


_SERIALIZERS = {"json": JsonSerializer(), "raw": RawSerializer()}


def get_serializer(name: str) -> JsonSerializer | RawSerializer:
    try:
        return _SERIALIZERS[name]
    except KeyError:
        raise ValidationError(f"Unknown serializer: {name!r}") from None
