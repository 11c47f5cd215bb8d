"""
Per-call configuration.

CacheOptions holds the instance defaults; every call layers its overrides on
top with ``merge`` and works on the resulting copy. RequestArgs is the
validated ``{namespace, id}`` pair every operation is keyed by.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from .errors import ValidationError

DEFAULT_TTR = 7200 * 1000  # 2 hours
DEFAULT_TTL = 60 * 24 * 60 * 60 * 1000  # 60 days

SERIALIZERS = ("json", "raw")


def _always(value: Any) -> bool:
    return True


@dataclass(frozen=True)
class RequestArgs:
    """Namespace plus optional id of the record an operation targets."""

    namespace: str
    id: str | None = None

    @property
    def key(self) -> str:
        return f"{self.namespace}:{self.id}" if self.id is not None else self.namespace

    @classmethod
    def coerce(cls, args: Any, require_id: bool = True) -> "RequestArgs":
        """
        Build RequestArgs from a mapping or an existing instance.

        Raises:
            ValidationError: if namespace (or id, when required) is missing
        """
        if isinstance(args, RequestArgs):
            namespace, id_ = args.namespace, args.id
        elif isinstance(args, Mapping):
            namespace = args.get("namespace")
            id_ = args.get("id", args.get("key"))
        else:
            raise ValidationError("No namespace provided.")

        if not namespace:
            raise ValidationError("No namespace provided.")
        if require_id and (id_ is None or id_ == ""):
            raise ValidationError("No id provided.")
        return cls(namespace=namespace, id=id_)


@dataclass(frozen=True)
class CacheOptions:
    """
    Caching policy.

    Attributes:
        ttr: milliseconds after which a cached value is stale and refreshed
        ttl: retention window in milliseconds handed to storage as an expiry hint
        refresh: skip the cache read and always run the source
        set_filter: predicate deciding whether a fetched value is persisted
        gzip: True to always compress, a number as a KB threshold, else never
        on_error: sink for errors that are caught instead of raised
        serializer: "json" to store JSON text, "raw" to store values unchanged
    """

    ttr: int = DEFAULT_TTR
    ttl: int = DEFAULT_TTL
    refresh: bool = False
    set_filter: Callable[[Any], bool] = _always
    gzip: Any = False
    on_error: Callable[[Exception], Any] | None = None
    serializer: str = "json"

    def __post_init__(self):
        if self.serializer not in SERIALIZERS:
            raise ValidationError(
                f"serializer must be one of {SERIALIZERS}, got {self.serializer!r}"
            )
        if self.set_filter is None:
            object.__setattr__(self, "set_filter", _always)

    def merge(self, **overrides: Any) -> "CacheOptions":
        """Return a new CacheOptions with ``overrides`` applied."""
        if not overrides:
            return self
        names = {f.name for f in dataclasses.fields(self)}
        unknown = sorted(set(overrides) - names)
        if unknown:
            raise ValidationError(f"Unknown option(s): {', '.join(unknown)}")
        return dataclasses.replace(self, **overrides)
