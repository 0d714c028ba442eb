"""Tests for the suggestion cache."""

from __future__ import annotations

import asyncio

import pytest

from sshai_client.services.cache import ReadWriteLock, SuggestionCache, derive_key, normalize_query
from sshai_client.storage.models import CacheEntry, RiskAssessment, RiskLevel, Suggestion, TerminalContext


def make_suggestion(command: str = "df -h", level: RiskLevel = RiskLevel.SAFE) -> Suggestion:
    return Suggestion(
        command=command,
        confidence=0.9,
        risk=RiskAssessment(level=level, score=0.1),
        explanation="Show disk usage",
    )


def make_entry(key: str, model: str = "m1", provider: str = "p1", command: str = "df -h") -> CacheEntry:
    return CacheEntry(
        key=key,
        query=f"query for {key}",
        fingerprint="Linux|bash|~",
        suggestion=make_suggestion(command),
        model_id=model,
        provider_id=provider,
    )


class TestKeyDerivation:
    def test_case_and_whitespace_folding(self, context):
        assert derive_key("LS -LA", context) == derive_key("ls -la", context)
        assert derive_key("  how   do I\tfree  disk ", context) == derive_key("how do i free disk", context)

    def test_working_directory_changes_key(self):
        ctx1 = TerminalContext(working_directory="/home/alice")
        ctx2 = TerminalContext(working_directory="/tmp")
        assert derive_key("list files", ctx1) != derive_key("list files", ctx2)

    def test_volatile_fields_ignored(self):
        ctx1 = TerminalContext(session_id="a", recent_commands=["ls"], username="alice")
        ctx2 = TerminalContext(session_id="b", recent_commands=[], username="bob")
        assert derive_key("list files", ctx1) == derive_key("list files", ctx2)

    def test_shell_and_os_change_key(self):
        base = TerminalContext()
        assert derive_key("q", base) != derive_key("q", TerminalContext(shell="zsh"))
        assert derive_key("q", base) != derive_key("q", TerminalContext(os_name="Darwin"))

    def test_hex_digest(self, context):
        key = derive_key("q", context)
        assert len(key) == 64
        int(key, 16)

    def test_normalize_query(self):
        assert normalize_query("  Straße  LS ") == "strasse ls"


class TestSuggestionCache:
    @pytest.mark.asyncio
    async def test_put_and_get(self, db, clock):
        cache = SuggestionCache(db, ttl_seconds=60, clock=clock)
        stored = await cache.put(make_entry("k1"))
        assert stored.id is not None
        assert stored.created_at == clock.now
        assert stored.expires_at == clock.now + 60

        fetched = await cache.get("k1")
        assert fetched is not None
        assert fetched.suggestion == stored.suggestion
        assert fetched.accepted is False

    @pytest.mark.asyncio
    async def test_get_missing(self, db, clock):
        cache = SuggestionCache(db, clock=clock)
        assert await cache.get("nope") is None

    @pytest.mark.asyncio
    async def test_expired_entry_never_returned(self, db, clock):
        cache = SuggestionCache(db, ttl_seconds=10, clock=clock)
        await cache.put(make_entry("k1"))
        clock.advance(10)
        assert await cache.get("k1") is None
        clock.advance(100)
        assert await cache.get("k1") is None

    @pytest.mark.asyncio
    async def test_upsert_keeps_id_and_refreshes_created_at(self, db, clock):
        cache = SuggestionCache(db, ttl_seconds=60, clock=clock)
        first = await cache.put(make_entry("k1"))
        clock.advance(30)
        second = await cache.put(make_entry("k1", command="du -sh ."))
        assert second.id == first.id
        assert await db.count_cache_entries() == 1

        fetched = await cache.get("k1")
        assert fetched.created_at == clock.now
        assert fetched.suggestion.command == "du -sh ."

    @pytest.mark.asyncio
    async def test_different_model_is_separate_row(self, db, clock):
        cache = SuggestionCache(db, clock=clock)
        await cache.put(make_entry("k1", model="m1"))
        clock.advance(1)
        await cache.put(make_entry("k1", model="m2", command="df -hT"))
        assert await db.count_cache_entries() == 2
        # Most recently created wins.
        assert (await cache.get("k1")).suggestion.command == "df -hT"

    @pytest.mark.asyncio
    async def test_mark_accepted_idempotent(self, db, clock):
        cache = SuggestionCache(db, clock=clock)
        entry = await cache.put(make_entry("k1"))
        assert await cache.mark_accepted(entry.id) is True
        assert await cache.mark_accepted(entry.id) is True
        fetched = await cache.get("k1")
        assert fetched.accepted is True
        assert fetched.suggestion == entry.suggestion

    @pytest.mark.asyncio
    async def test_mark_accepted_unknown_id(self, db, clock):
        cache = SuggestionCache(db, clock=clock)
        assert await cache.mark_accepted(999) is False

    @pytest.mark.asyncio
    async def test_accepted_survives_identical_upsert(self, db, clock):
        cache = SuggestionCache(db, clock=clock)
        entry = await cache.put(make_entry("k1"))
        await cache.mark_accepted(entry.id)
        await cache.put(make_entry("k1"))
        assert (await cache.get("k1")).accepted is True
        await cache.put(make_entry("k1", command="other"))
        assert (await cache.get("k1")).accepted is False

    @pytest.mark.asyncio
    async def test_prune_expired(self, db, clock):
        cache = SuggestionCache(db, ttl_seconds=10, clock=clock)
        await cache.put(make_entry("old"))
        clock.advance(5)
        await cache.put(make_entry("new"))
        removed = await cache.prune_expired(clock.now + 5)
        assert removed == 1
        assert await db.count_cache_entries() == 1
        assert await cache.get("new") is not None

    @pytest.mark.asyncio
    async def test_prune_by_capacity_removes_exactly_oldest(self, db, clock):
        cache = SuggestionCache(db, ttl_seconds=1000, clock=clock)
        for i in range(7):
            await cache.put(make_entry(f"k{i}"))
            clock.advance(1)

        removed = await cache.prune_by_capacity(4)
        assert removed == 3
        assert await db.count_cache_entries() == 4
        for i in range(3):
            assert await cache.get(f"k{i}") is None
        for i in range(3, 7):
            assert await cache.get(f"k{i}") is not None

    @pytest.mark.asyncio
    async def test_prune_by_capacity_ties_by_insertion_order(self, db, clock):
        cache = SuggestionCache(db, ttl_seconds=1000, clock=clock)
        for i in range(4):
            await cache.put(make_entry(f"k{i}"))

        assert await cache.prune_by_capacity(2) == 2
        assert await cache.get("k0") is None
        assert await cache.get("k1") is None
        assert await cache.get("k2") is not None
        assert await cache.get("k3") is not None

    @pytest.mark.asyncio
    async def test_prune_by_capacity_noop_under_limit(self, db, clock):
        cache = SuggestionCache(db, clock=clock)
        await cache.put(make_entry("k1"))
        assert await cache.prune_by_capacity(5) == 0
        assert await db.count_cache_entries() == 1

    @pytest.mark.asyncio
    async def test_store_enforces_capacity(self, db, clock, context):
        cache = SuggestionCache(db, ttl_seconds=1000, max_rows=3, clock=clock)
        for i in range(5):
            await cache.store(f"query {i}", context, make_suggestion(), "m", "p")
            clock.advance(1)
        assert await db.count_cache_entries() == 3
        assert await cache.lookup("query 0", context) is None
        assert await cache.lookup("QUERY   4", context) is not None

    @pytest.mark.asyncio
    async def test_stats(self, db, clock, context):
        cache = SuggestionCache(db, clock=clock)
        first = await cache.store("a", context, make_suggestion(), "m", "p")
        await cache.store("b", context, make_suggestion(), "m", "p")
        await cache.mark_accepted(first.id)
        stats = await cache.stats()
        assert stats.total == 2
        assert stats.accepted == 1
        assert stats.acceptance_rate == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_payload_roundtrip(self, db, clock):
        cache = SuggestionCache(db, clock=clock)
        suggestion = Suggestion.from_dict(
            {
                "command": "rm -ri ./build",
                "confidence": 0.7,
                "explanation": "Interactively remove build output",
                "risk": {
                    "level": "high",
                    "score": 0.8,
                    "factors": ["deletes files"],
                    "warnings": ["irreversible"],
                    "requires_confirmation": True,
                },
                "alternatives": [{"command": "mv build /tmp", "description": "move instead", "tradeoffs": None}],
            }
        )
        entry = make_entry("k1")
        entry.suggestion = suggestion
        await cache.put(entry)
        assert (await cache.get("k1")).suggestion == suggestion


class TestReadWriteLock:
    @pytest.mark.asyncio
    async def test_readers_share(self):
        lock = ReadWriteLock()
        inside = 0
        peak = 0

        async def reader():
            nonlocal inside, peak
            async with lock.read():
                inside += 1
                peak = max(peak, inside)
                await asyncio.sleep(0.01)
                inside -= 1

        await asyncio.gather(*(reader() for _ in range(3)))
        assert peak == 3

    @pytest.mark.asyncio
    async def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        events: list[str] = []

        async def writer():
            async with lock.write():
                events.append("w-start")
                await asyncio.sleep(0.02)
                events.append("w-end")

        async def reader():
            await asyncio.sleep(0.005)
            async with lock.read():
                events.append("r")

        await asyncio.gather(writer(), reader())
        assert events == ["w-start", "w-end", "r"]
