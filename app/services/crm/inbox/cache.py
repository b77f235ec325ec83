"""In-memory TTL cache for CRM inbox list pages.

NOTE: This is a per-process cache. Cross-worker invalidation relies on the
short TTL (3s by default); mutations in this process drop the list prefix
immediately.
"""

from __future__ import annotations

import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

INBOX_LIST_PREFIX = "inbox_list:"


@dataclass
class _CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """Bounded string-keyed cache with a fixed time-to-live per entry.

    When ``max_entries`` is reached the least recently written entry is
    evicted. ``clock`` is injectable so tests can move time forward.
    """

    def __init__(
        self,
        ttl_seconds: float = 3.0,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                self._entries.pop(key, None)
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = _CacheEntry(value=value, expires_at=self._clock() + ttl)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                self._entries.pop(key, None)
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def build_inbox_list_key(params: dict[str, Any]) -> str:
    encoded = json.dumps(params, sort_keys=True, default=str)
    return f"{INBOX_LIST_PREFIX}{encoded}"


def invalidate_inbox_list(cache: TTLCache | None) -> None:
    if cache is not None:
        cache.invalidate_prefix(INBOX_LIST_PREFIX)
