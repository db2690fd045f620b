"""Catalog of named chat sessions."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import structlog
from ulid import ULID

from mneme.models.message import ChatSession
from mneme.store.history import HistoryStore, SessionNotFoundError

if TYPE_CHECKING:
    import aiosqlite

DEFAULT_TITLE = "New Chat"
PLACEHOLDER_SESSION_ID = "chat_default"


def make_session_id() -> str:
    """Return a sortable ``chat_<ULID>`` identifier."""
    return f"chat_{ULID()}"


class SessionRegistry:
    """
    Lists and names conversation threads for presentation.

    Sessions do not own messages or summaries: the message log is global to
    the store, and nothing here gates retention or context assembly.
    """

    def __init__(self, store: HistoryStore) -> None:
        self._store = store
        self._logger = structlog.get_logger("mneme.sessions")

    async def create(self, title: str = DEFAULT_TITLE) -> ChatSession:
        """Insert a new session with ``created_at == last_updated == now``."""
        session_id = make_session_id()
        async with self._store.transaction() as conn:
            now = self._store.next_timestamp()
            await conn.execute(
                "INSERT INTO chat_sessions (id, title, created_at, last_updated)"
                " VALUES (?, ?, ?, ?)",
                (session_id, title, now, now),
            )
        self._logger.info("session_created", session_id=session_id, title=title)
        return ChatSession(id=session_id, title=title, created_at=now, last_updated=now)

    async def get(self, session_id: str) -> ChatSession:
        """
        Fetch a session by id.

        Raises:
            SessionNotFoundError: If no session with this id exists.
        """
        row = await self._store.fetchone(
            "SELECT * FROM chat_sessions WHERE id = ?", (session_id,)
        )
        if row is None:
            raise SessionNotFoundError(session_id)
        return self._row_to_session(row)

    async def list_sessions(self) -> list[ChatSession]:
        """
        List sessions, most recently updated first.

        An empty registry yields a single unpersisted placeholder session so
        that a UI always has something to show.
        """
        rows = await self._store.fetchall(
            "SELECT * FROM chat_sessions ORDER BY last_updated DESC, id DESC"
        )
        if not rows:
            now = int(time.time() * 1000)
            return [
                ChatSession(
                    id=PLACEHOLDER_SESSION_ID,
                    title=DEFAULT_TITLE,
                    created_at=now,
                    last_updated=now,
                )
            ]
        return [self._row_to_session(r) for r in rows]

    async def touch(self, session_id: str) -> None:
        """
        Bump ``last_updated`` to now.

        Raises:
            SessionNotFoundError: If no session with this id exists.
        """
        async with self._store.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE chat_sessions SET last_updated = ? WHERE id = ?",
                (self._store.next_timestamp(), session_id),
            )
            updated = cursor.rowcount
            await cursor.close()
            if updated == 0:
                raise SessionNotFoundError(session_id)

    async def rename(self, session_id: str, title: str) -> ChatSession:
        """Change a session's title (also bumps ``last_updated``)."""
        async with self._store.transaction() as conn:
            now = self._store.next_timestamp()
            cursor = await conn.execute(
                "UPDATE chat_sessions SET title = ?, last_updated = ? WHERE id = ?",
                (title, now, session_id),
            )
            updated = cursor.rowcount
            await cursor.close()
            if updated == 0:
                raise SessionNotFoundError(session_id)
        return await self.get(session_id)

    @staticmethod
    def _row_to_session(row: aiosqlite.Row) -> ChatSession:
        return ChatSession(
            id=row["id"],
            title=row["title"],
            created_at=row["created_at"],
            last_updated=row["last_updated"],
        )
