"""SQLite-backed storage helpers for the Mina AI responder."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import aiosqlite

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS guild_settings (
  guild_id TEXT PRIMARY KEY,
  ai_enabled INTEGER NOT NULL DEFAULT 1,
  mention_only INTEGER NOT NULL DEFAULT 1,
  free_will_channels TEXT NOT NULL DEFAULT '[]',
  updated_by TEXT,
  updated_at INTEGER
);

-- Facts the assistant was asked to remember (native memory tools)
CREATE TABLE IF NOT EXISTS memories (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id TEXT NOT NULL,
  guild_id TEXT,
  key TEXT NOT NULL,
  value TEXT NOT NULL,
  importance INTEGER NOT NULL DEFAULT 5,
  context TEXT,
  created_at INTEGER NOT NULL,
  updated_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_memories_user ON memories(user_id, guild_id);
"""


@dataclass
class AiResponderSettings:
    """The `aiResponder` block of a guild's settings."""

    enabled: bool = True
    mention_only: bool = True
    free_will_channels: List[str] = field(default_factory=list)
    updated_by: Optional[str] = None
    updated_at: Optional[int] = None


@dataclass(frozen=True)
class MemoryMatch:
    found: bool
    old_value: Optional[str] = None
    new_value: Optional[str] = None


def _decode_channels(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Corrupt free_will_channels value, treating as empty: %r", raw[:80])
        return []
    if not isinstance(data, list):
        return []
    return [str(x) for x in data]


def _contains_pattern(text: str) -> str:
    """LIKE pattern matching `text` literally anywhere (used with ESCAPE '\\')."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class Store:
    """Async wrapper around the SQLite database."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    async def init(self) -> None:
        """Initialise tables if they do not exist."""

        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self._db_path) as db:
            await db.executescript(SCHEMA)
            await db.commit()

    # -----------------------------
    # Guild settings (aiResponder)
    # -----------------------------

    async def get_ai_responder_settings(self, guild_id: int | str) -> AiResponderSettings:
        async with aiosqlite.connect(self._db_path) as db:
            async with db.execute(
                "SELECT ai_enabled, mention_only, free_will_channels, updated_by, updated_at "
                "FROM guild_settings WHERE guild_id=?",
                (str(guild_id),),
            ) as cursor:
                row = await cursor.fetchone()
        if not row:
            return AiResponderSettings()
        return AiResponderSettings(
            enabled=bool(row[0]),
            mention_only=bool(row[1]),
            free_will_channels=_decode_channels(row[2]),
            updated_by=row[3],
            updated_at=row[4],
        )

    async def update_ai_responder_settings(self, guild_id: int | str, settings: AiResponderSettings) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                (
                    "INSERT INTO guild_settings(guild_id, ai_enabled, mention_only, free_will_channels, updated_by, updated_at) "
                    "VALUES(?, ?, ?, ?, ?, ?) ON CONFLICT(guild_id) DO UPDATE SET "
                    "ai_enabled=excluded.ai_enabled, mention_only=excluded.mention_only, "
                    "free_will_channels=excluded.free_will_channels, updated_by=excluded.updated_by, "
                    "updated_at=excluded.updated_at"
                ),
                (
                    str(guild_id),
                    int(settings.enabled),
                    int(settings.mention_only),
                    json.dumps([str(c) for c in settings.free_will_channels]),
                    settings.updated_by,
                    settings.updated_at,
                ),
            )
            await db.commit()

    # -----------------------------
    # Memories
    # -----------------------------

    async def store_memory(
        self,
        *,
        user_id: str,
        guild_id: Optional[str],
        key: str,
        value: str,
        importance: int = 5,
        context: Optional[str] = None,
    ) -> int:
        now = int(time.time())
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                (
                    "INSERT INTO memories(user_id, guild_id, key, value, importance, context, created_at, updated_at) "
                    "VALUES(?, ?, ?, ?, ?, ?, ?, ?)"
                ),
                (user_id, guild_id, key, value, int(importance), context, now, now),
            )
            await db.commit()
            return int(cursor.lastrowid or 0)

    async def recall_memories(
        self,
        *,
        user_id: str,
        guild_id: Optional[str],
        query: Optional[str] = None,
        limit: int = 5,
    ) -> list[dict]:
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            if query:
                sql = (
                    "SELECT * FROM memories WHERE user_id=? AND guild_id IS ? "
                    "AND (value LIKE ? ESCAPE '\\' OR key LIKE ? ESCAPE '\\') ORDER BY importance DESC, updated_at DESC LIMIT ?"
                )
                pattern = _contains_pattern(query)
                params = (user_id, guild_id, pattern, pattern, int(limit))
            else:
                sql = (
                    "SELECT * FROM memories WHERE user_id=? AND guild_id IS ? "
                    "ORDER BY importance DESC, updated_at DESC LIMIT ?"
                )
                params = (user_id, guild_id, int(limit))
            async with db.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]

    async def _find_memory(self, db: aiosqlite.Connection, user_id: str, guild_id: Optional[str], description: str):
        pattern = _contains_pattern(description)
        async with db.execute(
            (
                "SELECT id, value FROM memories WHERE user_id=? AND guild_id IS ? "
                "AND (value LIKE ? ESCAPE '\\' OR key LIKE ? ESCAPE '\\') ORDER BY updated_at DESC, id DESC LIMIT 1"
            ),
            (user_id, guild_id, pattern, pattern),
        ) as cursor:
            return await cursor.fetchone()

    async def update_memory_by_match(
        self, *, description: str, new_value: str, user_id: str, guild_id: Optional[str]
    ) -> MemoryMatch:
        async with aiosqlite.connect(self._db_path) as db:
            row = await self._find_memory(db, user_id, guild_id, description)
            if not row:
                return MemoryMatch(found=False)
            await db.execute(
                "UPDATE memories SET value=?, updated_at=? WHERE id=?",
                (new_value, int(time.time()), row[0]),
            )
            await db.commit()
        return MemoryMatch(found=True, old_value=row[1], new_value=new_value)

    async def delete_memory_by_match(
        self, *, description: str, user_id: str, guild_id: Optional[str]
    ) -> MemoryMatch:
        async with aiosqlite.connect(self._db_path) as db:
            row = await self._find_memory(db, user_id, guild_id, description)
            if not row:
                return MemoryMatch(found=False)
            await db.execute("DELETE FROM memories WHERE id=?", (row[0],))
            await db.commit()
        return MemoryMatch(found=True, old_value=row[1])
