import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, Field

from repo_explainer_mcp.utilities.settings import get_cache_max_entries

logger = get_logger(__name__)

ONE_DAY_IN_SECONDS = 60 * 60 * 24

Clock = Callable[[], float]


def make_key(prefix: str, *parts: str) -> str:
    """Join a prefix and the key parts with colons.

    The parts are used verbatim: no normalization or hashing is applied, so inputs that differ by a single
    whitespace character produce different keys."""

    return f"{prefix}:{':'.join(parts)}"


class CacheEntry(BaseModel):
    """A cached value and the information needed to expire it."""

    key: str = Field(description="The key of the entry.")
    value: Any = Field(description="The cached value.")
    created_at: float = Field(description="When the entry was stored, in seconds since the epoch.")
    ttl: float = Field(description="How long the entry lives, in seconds.")

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


class CacheStats(BaseModel):
    size: int = Field(description="The number of stored entries, including expired entries that have not been read yet.")
    keys: list[str] = Field(description="The keys of the stored entries, least recently used first.")


class CacheManager:
    """An in-memory key-value store with per-entry TTL, lazy expiry and an LRU capacity bound."""

    default_ttl: float
    max_entries: int

    def __init__(self, default_ttl: float = ONE_DAY_IN_SECONDS, max_entries: int | None = None, clock: Clock | None = None):
        self.default_ttl = default_ttl
        self.max_entries = max_entries if max_entries is not None else get_cache_max_entries()
        self._clock: Clock = clock or time.time
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:  # pyright: ignore[reportAny]
        entry = CacheEntry(key=key, value=value, created_at=self._clock(), ttl=self.default_ttl if ttl is None else ttl)

        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)

            while len(self._entries) > self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted least recently used cache entry {evicted_key}")

    def get(self, key: str) -> Any | None:  # pyright: ignore[reportAny]
        """Return the cached value, or None if the key is missing or its entry has expired."""

        with self._lock:
            entry: CacheEntry | None = self._entries.get(key)

            if entry is None:
                return None

            if entry.is_expired(now=self._clock()):
                del self._entries[key]
                return None

            self._entries.move_to_end(key)

            return entry.value

    def has(self, key: str) -> bool:
        """Whether the key has an unexpired entry, even one holding None. Does not mark the entry as used."""

        with self._lock:
            entry: CacheEntry | None = self._entries.get(key)

            if entry is None:
                return False

            if entry.is_expired(now=self._clock()):
                del self._entries[key]
                return False

            return True

    def delete(self, key: str) -> None:
        with self._lock:
            _ = self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(size=len(self._entries), keys=list(self._entries.keys()))
