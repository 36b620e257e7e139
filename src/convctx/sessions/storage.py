"""SessionStorage: durable persistence collaborator for sessions."""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from pathlib import Path

import aiosqlite

from ..models import Session


class SessionStorage(ABC):
    """Abstract key/value store of whole sessions."""

    @abstractmethod
    async def get(self, session_id: str) -> Session | None:
        ...

    @abstractmethod
    async def put(self, session: Session) -> None:
        ...

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        ...

    @abstractmethod
    async def list_ids(self) -> list[str]:
        ...


class InMemorySessionStorage(SessionStorage):
    """Dictionary-backed storage. Values are deep-copied in and out."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self.put_count = 0

    async def get(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session is not None else None

    async def put(self, session: Session) -> None:
        self._sessions[session.id] = session.model_copy(deep=True)
        self.put_count += 1

    async def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    async def list_ids(self) -> list[str]:
        return list(self._sessions)


class SqliteSessionStorage(SessionStorage):
    """SQLite-backed storage, one JSON document per session.

    The connection is opened on first use through ``aiosqlite``, which runs
    every statement on its own worker thread so persisting a session never
    blocks the event loop.
    """

    def __init__(self, db_path: Path | str = ":memory:") -> None:
        self._db_path = str(db_path)
        self._conn: aiosqlite.Connection | None = None
        self._open_lock = asyncio.Lock()

    async def _connection(self) -> aiosqlite.Connection:
        async with self._open_lock:
            if self._conn is None:
                conn = await aiosqlite.connect(self._db_path)
                try:
                    await conn.execute(
                        """CREATE TABLE IF NOT EXISTS sessions (
                            id TEXT PRIMARY KEY,
                            data TEXT NOT NULL,
                            updated_at REAL NOT NULL
                        )"""
                    )
                    await conn.commit()
                except Exception:
                    await conn.close()
                    raise
                self._conn = conn
            return self._conn

    async def get(self, session_id: str) -> Session | None:
        conn = await self._connection()
        async with conn.execute("SELECT data FROM sessions WHERE id = ?", (session_id,)) as cur:
            row = await cur.fetchone()
        return Session.model_validate_json(row[0]) if row else None

    async def put(self, session: Session) -> None:
        conn = await self._connection()
        await conn.execute(
            "INSERT INTO sessions (id, data, updated_at) VALUES (?, ?, ?)"
            " ON CONFLICT(id) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at",
            (session.id, session.model_dump_json(), time.time()),
        )
        await conn.commit()

    async def delete(self, session_id: str) -> bool:
        conn = await self._connection()
        cur = await conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        await conn.commit()
        return cur.rowcount > 0

    async def list_ids(self) -> list[str]:
        conn = await self._connection()
        async with conn.execute("SELECT id FROM sessions ORDER BY rowid") as cur:
            rows = await cur.fetchall()
        return [r[0] for r in rows]

    async def close(self) -> None:
        """Close the underlying database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
