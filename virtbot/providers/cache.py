"""Small per-provider TTL cache."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict


def _now() -> float:
    return time.monotonic()


@dataclass
class _CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """Key/value store whose entries silently expire after ``ttl`` seconds.

    Expired entries are dropped lazily on read. ``get`` returns ``None`` for a miss,
    so ``None`` itself is not a cacheable value.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, _CacheEntry] = {}

    def get(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if _now() > entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl: float) -> None:
        self._entries[key] = _CacheEntry(value=value, expires_at=_now() + ttl)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def invalidate_prefix(self, prefix: str) -> None:
        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["TTLCache"]
