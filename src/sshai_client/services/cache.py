"""Suggestion cache keyed by normalized query text and terminal context."""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import logging
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

from sshai_client.storage.database import Database
from sshai_client.storage.models import CacheEntry, Suggestion, TerminalContext

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """asyncio readers-writer lock. Writers wait for active readers to drain."""

    def __init__(self) -> None:
        self._readers = 0
        self._writer = False
        self._cond = asyncio.Condition()

    @contextlib.asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextlib.asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(frozen=True)
class CacheStats:
    total: int
    accepted: int

    @property
    def acceptance_rate(self) -> float:
        return self.accepted / self.total if self.total else 0.0


def normalize_query(query: str) -> str:
    return " ".join(query.casefold().split())


def fingerprint_text(context: TerminalContext) -> str:
    return "\x1f".join(context.fingerprint())


def derive_key(query: str, context: TerminalContext) -> str:
    """SHA-256 hex digest of the normalized query plus the context fingerprint."""
    material = f"{normalize_query(query)}\x1e{fingerprint_text(context)}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class SuggestionCache:
    """TTL and capacity bounded cache of generated suggestions."""

    def __init__(
        self,
        db: Database,
        ttl_seconds: float = 86400,
        max_rows: int = 500,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db = db
        self.ttl_seconds = ttl_seconds
        self.max_rows = max_rows
        self._clock = clock
        self._lock = ReadWriteLock()

    derive_key = staticmethod(derive_key)

    async def get(self, key: str) -> CacheEntry | None:
        """Most recent entry for key; expired rows are never returned."""
        async with self._lock.read():
            return await self.db.get_cache_entry(key, self._clock())

    async def put(self, entry: CacheEntry) -> CacheEntry:
        """Upsert by (key, model, provider), refreshing created/expires times."""
        now = self._clock()
        entry.created_at = now
        entry.expires_at = now + self.ttl_seconds
        async with self._lock.write():
            entry.id = await self.db.upsert_cache_entry(entry)
        return entry

    async def mark_accepted(self, entry_id: int) -> bool:
        async with self._lock.write():
            return await self.db.mark_cache_accepted(entry_id)

    async def prune_expired(self, now: float | None = None) -> int:
        cutoff = self._clock() if now is None else now
        async with self._lock.write():
            removed = await self.db.delete_expired_cache(cutoff)
        if removed:
            logger.info("Pruned %d expired cache entries", removed)
        return removed

    async def prune_by_capacity(self, max_rows: int | None = None) -> int:
        limit = self.max_rows if max_rows is None else max_rows
        async with self._lock.write():
            removed = await self.db.prune_cache_to(limit)
        if removed:
            logger.info("Evicted %d cache entries over capacity %d", removed, limit)
        return removed

    async def lookup(self, query: str, context: TerminalContext) -> CacheEntry | None:
        key = derive_key(query, context)
        entry = await self.get(key)
        if entry is None:
            logger.debug("Cache miss for %r", query)
        else:
            logger.debug("Cache hit for %r (entry %s)", query, entry.id)
        return entry

    async def store(
        self,
        query: str,
        context: TerminalContext,
        suggestion: Suggestion,
        model_id: str,
        provider_id: str,
    ) -> CacheEntry:
        entry = CacheEntry(
            key=derive_key(query, context),
            query=query,
            fingerprint=fingerprint_text(context),
            suggestion=suggestion,
            model_id=model_id,
            provider_id=provider_id,
        )
        entry = await self.put(entry)
        await self.prune_by_capacity()
        return entry

    async def stats(self) -> CacheStats:
        async with self._lock.read():
            total, accepted = await self.db.cache_acceptance_counts()
        return CacheStats(total=total, accepted=accepted)
