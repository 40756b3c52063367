"""Fingerprint-keyed response cache with per-entry expiry."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from hashlib import sha256

from consult_agent.config import CacheConfig
from consult_agent.types import CacheEntry

logger = logging.getLogger(__name__)

_SEPARATOR = "\0"


@dataclass(frozen=True, slots=True)
class CacheStats:
    hits: int
    misses: int
    item_count: int
    hit_rate: float


def _escape(part: str) -> str:
    return part.replace("\\", "\\\\").replace(_SEPARATOR, "\\0")


class ResponseCache:
    """In-memory store of serialized consultation results.

    Key derivation (stable across processes):

        sha256(escape(tool) NUL escape(model) NUL escape(prompt) NUL escape(context))

    where `escape` doubles backslashes and turns a literal NUL into the two
    characters ``\\0``, so no field content can forge a separator.

    Expired entries read as misses and are evicted on that read. The entry
    count is bounded; the least recently used entry goes first.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or CacheConfig()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def config(self) -> CacheConfig:
        return self._config

    @staticmethod
    def generate_key(tool_name: str, model: str, prompt: str, context: str = "") -> str:
        material = _SEPARATOR.join(_escape(part) for part in (tool_name, model, prompt, context))
        return sha256(material.encode("utf-8")).hexdigest()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._clock() >= entry.expires_at:
                del self._entries[key]
                entry = None

            if entry is None:
                self._misses += 1
                hit = False
            else:
                self._entries.move_to_end(key)
                self._hits += 1
                hit = True

        if self._config.debug:
            logger.debug("Cache %s", "hit" if hit else "miss", extra={"key": key})
        return entry.value if entry is not None else None

    def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._config.consultation_ttl_seconds
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)
            self._entries.move_to_end(key)
            while len(self._entries) > self._config.max_entries:
                self._entries.popitem(last=False)
            size = len(self._entries)

        if self._config.debug:
            logger.debug(
                "Cached response",
                extra={"key": key, "value_size": len(value), "ttl_seconds": ttl, "cache_size": size},
            )

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._clock() < entry.expires_at

    def prune(self) -> int:
        """Evict every expired entry; returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            item_count = len(self._entries)
            self._entries.clear()
            self._hits = 0
            self._misses = 0
        logger.info("Cache cleared", extra={"item_count": item_count})

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                item_count=len(self._entries),
                hit_rate=0.0 if total == 0 else self._hits / total,
            )
