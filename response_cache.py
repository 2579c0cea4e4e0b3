"""
Short-lived in-process cache for API responses.

Owned by the ClickUp client, not by the metric code. The clock is injectable.
"""
from __future__ import annotations

import json
import time
from typing import Any, Callable


def cache_key(path, params=None) -> str:
    return path + "?" + json.dumps(params or {}, sort_keys=True, default=str)


class TTLCache:
    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key, default=None):
        entry = self._entries.get(key)
        if entry is None:
            return default
        stored_at, value = entry
        if self.clock() - stored_at >= self.ttl_seconds:
            del self._entries[key]
            return default
        return value

    def set(self, key, value):
        self._entries[key] = (self.clock(), value)
        return value

    def get_or_compute(self, key, compute):
        sentinel = object()
        value = self.get(key, sentinel)
        if value is sentinel:
            value = self.set(key, compute())
        return value

    def status(self):
        now = self.clock()
        live = [stored for stored, _ in self._entries.values() if now - stored < self.ttl_seconds]
        return {
            "cached": bool(live),
            "entries": len(live),
            "oldest_age_seconds": round(now - min(live), 1) if live else 0,
        }
