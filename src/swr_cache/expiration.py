"""Freshness rules. Timestamps are integer milliseconds since the epoch."""

from __future__ import annotations

import time


def now_ms() -> int:
    return int(time.time() * 1000)


def is_stale(created_at: int, ttr: int, now: int | None = None) -> bool:
    """A record is stale once ``now - created_at`` reaches ``ttr``."""
    if now is None:
        now = now_ms()
    return now - created_at >= ttr


def expires_at(created_at: int, ttl: int) -> int:
    """Absolute storage expiry in seconds for a record written at ``created_at``."""
    return (created_at + ttl) // 1000
