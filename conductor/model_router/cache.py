"""Response cache - deduplicates identical provider requests.

Keys are SHA-256 digests of the whitespace-normalised prompt, so the raw
prompt text never appears in the key space or on disk as a key.

Semantics:
- An entry is expired iff ``now >= created_at + ttl_seconds``. Expired
  entries are never returned and are purged lazily when looked up.
- The cache holds at most ``max_entries`` keys. Inserting a new key into a
  full cache evicts the oldest *inserted* key. This is insertion-order
  eviction, not LRU: reads do not refresh an entry's position.
- All mutations happen under one asyncio.Lock.

The clock is injectable so expiry can be tested without sleeping.
"""

from __future__ import annotations

import asyncio
import hashlib
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from conductor.persistence.documents import CacheEntryDocument, ResponseCacheDocument

if TYPE_CHECKING:
    from conductor.persistence.state_store import StateStore

log = structlog.get_logger(__name__)


def normalize_prompt(prompt: str) -> str:
    return " ".join(prompt.split())


def hash_prompt(prompt: str) -> str:
    """Stable cache key for a prompt."""
    return hashlib.sha256(normalize_prompt(prompt).encode("utf-8")).hexdigest()


class CacheEntry:
    """Single cached provider response."""

    __slots__ = ("prompt_hash", "response", "created_at", "ttl_seconds")

    def __init__(
        self,
        prompt_hash: str,
        response: dict[str, Any],
        created_at: float,
        ttl_seconds: float,
    ) -> None:
        self.prompt_hash = prompt_hash
        self.response = response
        self.created_at = created_at
        self.ttl_seconds = ttl_seconds

    def is_expired(self, now: float) -> bool:
        return now >= self.created_at + self.ttl_seconds

    def to_document(self) -> CacheEntryDocument:
        return CacheEntryDocument(
            prompt_hash=self.prompt_hash,
            response=self.response,
            created_at=self.created_at,
            ttl_seconds=self.ttl_seconds,
        )


class ResponseCache:
    """Bounded, TTL-aware, insertion-ordered response cache.

    Args:
        max_entries: Capacity; the oldest inserted key is evicted beyond it
        default_ttl_seconds: TTL applied when ``set`` is called without one
        clock: Wall-clock source in epoch seconds (``time.time`` by default)
        store: Optional state store for JSON persistence
    """

    def __init__(
        self,
        max_entries: int = 1000,
        default_ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.time,
        store: StateStore | None = None,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be positive")
        self._max_entries = max_entries
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._store = store
        self._entries: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def default_ttl_seconds(self) -> float:
        return self._default_ttl

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> list[str]:
        """Keys in insertion order (oldest first)."""
        return list(self._entries)

    # ------------------------------------------------------------------ #
    # Core operations
    # ------------------------------------------------------------------ #

    async def get(self, prompt_hash: str, *, count_miss: bool = True) -> dict[str, Any] | None:
        """Return the live cached response for ``prompt_hash``, if any.

        With ``count_miss=False`` a miss is not recorded in the stats, for
        callers that follow up with a second lookup of the same request.
        """
        async with self._lock:
            entry = self._entries.get(prompt_hash)
            if entry is None:
                self._misses += count_miss
                return None
            if entry.is_expired(self._clock()):
                del self._entries[prompt_hash]
                self._misses += count_miss
                log.debug("cache.expired_purged", prompt_hash=prompt_hash[:12])
                return None
            self._hits += 1
            return dict(entry.response)

    async def set(
        self,
        prompt_hash: str,
        response: dict[str, Any],
        ttl_seconds: float | None = None,
    ) -> None:
        """Store ``response`` under ``prompt_hash``.

        Overwriting an existing key keeps its original insertion position.
        """
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")
        async with self._lock:
            if prompt_hash not in self._entries:
                while len(self._entries) >= self._max_entries:
                    oldest = next(iter(self._entries))
                    del self._entries[oldest]
                    self._evictions += 1
                    log.debug("cache.evicted", prompt_hash=oldest[:12])
            self._entries[prompt_hash] = CacheEntry(
                prompt_hash=prompt_hash,
                response=dict(response),
                created_at=self._clock(),
                ttl_seconds=ttl,
            )

    async def invalidate(self, prompt_hash: str) -> bool:
        async with self._lock:
            return self._entries.pop(prompt_hash, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
        log.info("cache.cleared")

    async def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        async with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "size": len(self._entries),
            "max_entries": self._max_entries,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": round(self._hits / total, 4) if total else 0.0,
        }

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    async def load(self) -> int:
        """Load persisted entries, skipping expired ones.

        A missing or corrupt document leaves the cache empty.

        Returns:
            Number of entries loaded
        """
        if self._store is None:
            return 0
        raw = await self._store.aread_json(self._store.cache_path)
        if raw is None:
            return 0
        try:
            document = ResponseCacheDocument.model_validate(raw)
        except ValidationError as exc:
            log.warning("cache.persisted_cache_invalid", error_count=exc.error_count())
            return 0

        now = self._clock()
        async with self._lock:
            self._entries.clear()
            for item in document.entries:
                entry = CacheEntry(
                    prompt_hash=item.prompt_hash,
                    response=item.response,
                    created_at=item.created_at,
                    ttl_seconds=item.ttl_seconds,
                )
                if entry.is_expired(now):
                    continue
                self._entries[entry.prompt_hash] = entry
            # Honour capacity if the persisted file came from a larger cache
            while len(self._entries) > self._max_entries:
                del self._entries[next(iter(self._entries))]
            loaded = len(self._entries)
        log.info("cache.loaded", entries=loaded)
        return loaded

    async def save(self) -> None:
        if self._store is None:
            return
        await self.purge_expired()
        async with self._lock:
            document = ResponseCacheDocument(
                entries=[entry.to_document() for entry in self._entries.values()]
            )
        await self._store.awrite_json(self._store.cache_path, document.model_dump(mode="json"))
