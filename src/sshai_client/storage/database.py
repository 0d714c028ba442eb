"""SQLite persistence for command history and the suggestion cache."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import aiosqlite

from sshai_client.storage.models import CacheEntry, Suggestion

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class Database:
    """aiosqlite-backed CRUD surface for history rows and cache rows."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open the database and create tables."""
        resolved = Path(self.db_path).expanduser().resolve()
        resolved.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(str(resolved))
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode = WAL")

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS commands (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                command TEXT NOT NULL,
                stdout TEXT DEFAULT '',
                stderr TEXT DEFAULT '',
                exit_code INTEGER,
                execution_time_ms INTEGER,
                source TEXT DEFAULT 'direct'
                    CHECK(source IN ('direct', 'suggestion')),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        await self._db.execute("CREATE INDEX IF NOT EXISTS idx_commands_created_at ON commands(created_at)")
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS suggestion_cache (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                key TEXT NOT NULL,
                query TEXT NOT NULL,
                fingerprint TEXT NOT NULL,
                payload TEXT NOT NULL,
                model_id TEXT NOT NULL,
                provider_id TEXT NOT NULL,
                created_at REAL NOT NULL,
                expires_at REAL NOT NULL,
                accepted INTEGER NOT NULL DEFAULT 0,
                UNIQUE(key, model_id, provider_id)
            )
        """)
        await self._db.execute("CREATE INDEX IF NOT EXISTS idx_cache_key ON suggestion_cache(key)")
        await self._db.execute("CREATE INDEX IF NOT EXISTS idx_cache_created_at ON suggestion_cache(created_at)")
        await self._migrate()
        await self._db.commit()
        logger.info("Database initialized: %s", resolved)

    async def _migrate(self) -> None:
        db = self.conn
        cursor = await db.execute("SELECT value FROM meta WHERE key = 'schema_version'")
        row = await cursor.fetchone()
        if row is None:
            await db.execute(
                "INSERT OR REPLACE INTO meta (key, value) VALUES ('schema_version', ?)",
                (str(SCHEMA_VERSION),),
            )
        # Future migrations: compare int(row["value"]) with SCHEMA_VERSION and apply steps.

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Database not initialized. Call connect() first.")
        return self._db

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.info("Database closed")

    async def schema_version(self) -> int:
        cursor = await self.conn.execute("SELECT value FROM meta WHERE key = 'schema_version'")
        row = await cursor.fetchone()
        return int(row["value"]) if row else 0

    # --- History ---

    async def save_command(
        self,
        session_id: str,
        command: str,
        stdout: str,
        stderr: str,
        exit_code: int,
        execution_time_ms: int,
        source: str = "direct",
    ) -> None:
        """Save a command execution to history."""
        try:
            await self.conn.execute(
                """INSERT INTO commands (session_id, command, stdout, stderr, exit_code, execution_time_ms, source)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (session_id, command, stdout, stderr, exit_code, execution_time_ms, source),
            )
            await self.conn.commit()
        except Exception:
            logger.exception("Failed to save command history")

    async def get_recent_commands(self, limit: int = 10) -> list[dict]:
        """Get recent command history, newest first."""
        cursor = await self.conn.execute(
            "SELECT session_id, command, stdout, stderr, exit_code, execution_time_ms, source, created_at "
            "FROM commands ORDER BY id DESC LIMIT ?",
            (limit,),
        )
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    # --- Suggestion cache ---

    async def upsert_cache_entry(self, entry: CacheEntry) -> int:
        """Insert or replace the row for (key, model, provider). Returns the row id.

        The accepted flag survives only when the payload is unchanged.
        """
        db = self.conn
        payload = json.dumps(entry.suggestion.to_dict(), ensure_ascii=False, sort_keys=True)
        await db.execute(
            """INSERT INTO suggestion_cache
                   (key, query, fingerprint, payload, model_id, provider_id, created_at, expires_at, accepted)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(key, model_id, provider_id) DO UPDATE SET
                   query = excluded.query,
                   fingerprint = excluded.fingerprint,
                   accepted = CASE WHEN suggestion_cache.payload = excluded.payload
                                   THEN suggestion_cache.accepted ELSE 0 END,
                   payload = excluded.payload,
                   created_at = excluded.created_at,
                   expires_at = excluded.expires_at""",
            (
                entry.key,
                entry.query,
                entry.fingerprint,
                payload,
                entry.model_id,
                entry.provider_id,
                entry.created_at,
                entry.expires_at,
                int(entry.accepted),
            ),
        )
        await db.commit()
        cursor = await db.execute(
            "SELECT id FROM suggestion_cache WHERE key = ? AND model_id = ? AND provider_id = ?",
            (entry.key, entry.model_id, entry.provider_id),
        )
        row = await cursor.fetchone()
        return int(row["id"])

    async def get_cache_entry(self, key: str, now: float) -> CacheEntry | None:
        """Most recently created entry for key that has not expired."""
        cursor = await self.conn.execute(
            "SELECT * FROM suggestion_cache WHERE key = ? AND expires_at > ? "
            "ORDER BY created_at DESC, id DESC LIMIT 1",
            (key, now),
        )
        row = await cursor.fetchone()
        return _row_to_entry(row) if row else None

    async def mark_cache_accepted(self, entry_id: int) -> bool:
        cursor = await self.conn.execute(
            "UPDATE suggestion_cache SET accepted = 1 WHERE id = ?",
            (entry_id,),
        )
        await self.conn.commit()
        return cursor.rowcount > 0

    async def delete_expired_cache(self, now: float) -> int:
        cursor = await self.conn.execute("DELETE FROM suggestion_cache WHERE expires_at <= ?", (now,))
        await self.conn.commit()
        return cursor.rowcount

    async def prune_cache_to(self, max_rows: int) -> int:
        """Delete the oldest-created rows (ties by insertion id) beyond max_rows."""
        excess = await self.count_cache_entries() - max(max_rows, 0)
        if excess <= 0:
            return 0
        cursor = await self.conn.execute(
            """DELETE FROM suggestion_cache WHERE id IN (
                   SELECT id FROM suggestion_cache ORDER BY created_at ASC, id ASC LIMIT ?
               )""",
            (excess,),
        )
        await self.conn.commit()
        return cursor.rowcount

    async def count_cache_entries(self) -> int:
        cursor = await self.conn.execute("SELECT COUNT(*) AS n FROM suggestion_cache")
        row = await cursor.fetchone()
        return int(row["n"])

    async def cache_acceptance_counts(self) -> tuple[int, int]:
        """Return (total, accepted) row counts."""
        cursor = await self.conn.execute(
            "SELECT COUNT(*) AS total, COALESCE(SUM(accepted), 0) AS accepted FROM suggestion_cache"
        )
        row = await cursor.fetchone()
        return int(row["total"]), int(row["accepted"])

    async def clear_cache(self) -> int:
        cursor = await self.conn.execute("DELETE FROM suggestion_cache")
        await self.conn.commit()
        return cursor.rowcount


def _row_to_entry(row: aiosqlite.Row) -> CacheEntry:
    return CacheEntry(
        id=row["id"],
        key=row["key"],
        query=row["query"],
        fingerprint=row["fingerprint"],
        suggestion=Suggestion.from_dict(json.loads(row["payload"])),
        model_id=row["model_id"],
        provider_id=row["provider_id"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
        accepted=bool(row["accepted"]),
    )
