"""Append-only SQLite-backed message log."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from mneme.models.config import StoreConfig
from mneme.models.message import ROLES, Message
from mneme.store.pool import StorePool, configure_connection

# ── Exceptions ─────────────────────────────────────────────────────────────────


class MnemeStoreError(Exception):
    """Base class for store errors."""


class StoreUnavailable(MnemeStoreError):
    """Raised when the database is not initialized, already closed, or failing IO."""


class InvalidRange(MnemeStoreError):
    """Raised when a summary range is malformed or overlaps an existing summary."""

    def __init__(self, start_message_id: int, end_message_id: int, reason: str) -> None:
        super().__init__(
            f"Invalid summary range [{start_message_id}, {end_message_id}]: {reason}"
        )
        self.start_message_id = start_message_id
        self.end_message_id = end_message_id
        self.reason = reason


class MessageNotFoundError(MnemeStoreError):
    """Raised when a message id does not exist in the store."""

    def __init__(self, message_id: int) -> None:
        super().__init__(f"Message not found: {message_id!r}")
        self.message_id = message_id


class SummaryNotFoundError(MnemeStoreError):
    """Raised when a summary id does not exist in the store."""

    def __init__(self, summary_id: int) -> None:
        super().__init__(f"Summary not found: {summary_id!r}")
        self.summary_id = summary_id


class SessionNotFoundError(MnemeStoreError):
    """Raised when a chat session id does not exist in the store."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id!r}")
        self.session_id = session_id


# ── HistoryStore ───────────────────────────────────────────────────────────────


class HistoryStore:
    """
    Append-only, SQLite-backed message log.

    Owns the database connection and schema for the whole memory: the
    ``SummaryLog``, ``SessionRegistry`` and ``HistorySearch`` adapters all run
    their SQL through the store they wrap.

    Every logical write runs inside :meth:`transaction`, which holds the write
    lock and commits (or rolls back) as one unit.  Message ids come from
    SQLite ``AUTOINCREMENT`` and are returned straight from the insert cursor,
    so they are strictly increasing and never reused.

    Usage (standalone)::

        store = HistoryStore(StoreConfig())
        await store.initialize()
        try:
            msg = await store.append_message("user", "Hello")
        finally:
            await store.close()

    When a ``StorePool`` is supplied the connection and write lock are borrowed
    from it; ``close()`` then leaves the connection open for the pool to close.
    """

    def __init__(self, config: StoreConfig, pool: StorePool | None = None) -> None:
        self._config = config
        self._db_path = str(Path(config.db_path).expanduser())
        self._pool = pool
        self._conn: aiosqlite.Connection | None = None
        self._write_lock: asyncio.Lock | None = None
        self._last_timestamp = 0
        self._logger = structlog.get_logger("mneme.store")

    async def initialize(self) -> None:
        """
        Open (or borrow) a database connection and apply the schema.

        Raises:
            StoreUnavailable: If the database cannot be opened or the schema fails.
        """
        try:
            if self._pool is not None:
                conn = await self._pool.acquire(
                    self._db_path,
                    wal_mode=self._config.wal_mode,
                    connection_timeout=self._config.connection_timeout,
                )
                write_lock = self._pool.write_lock(self._db_path)
            else:
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
                conn = await aiosqlite.connect(
                    self._db_path, timeout=self._config.connection_timeout
                )
                try:
                    await configure_connection(conn, wal_mode=self._config.wal_mode)
                except Exception:
                    await conn.close()
                    raise
                write_lock = asyncio.Lock()

            schema = (Path(__file__).parent / "schema.sql").read_text()
            await conn.executescript(schema)
            await conn.commit()

            async with conn.execute(
                "SELECT MAX(ts) FROM ("
                " SELECT MAX(timestamp) AS ts FROM messages"
                " UNION ALL SELECT MAX(timestamp) FROM summaries"
                " UNION ALL SELECT MAX(last_updated) FROM chat_sessions)"
            ) as cursor:
                row = await cursor.fetchone()
        except (aiosqlite.Error, OSError) as exc:
            self._logger.error("store_initialize_failed", db_path=self._db_path, error=str(exc))
            raise StoreUnavailable(f"Cannot open database {self._db_path!r}: {exc}") from exc

        self._last_timestamp = row[0] if row and row[0] is not None else 0
        self._conn = conn
        self._write_lock = write_lock
        self._logger.info("store_initialized", db_path=self._db_path)

    async def close(self) -> None:
        """
        Release the database connection.

        A pool-owned connection is left open; a private one is closed.
        """
        if self._conn is None:
            return
        if self._pool is None:
            await self._conn.close()
        self._conn = None
        self._write_lock = None
        self._logger.debug("store_closed", db_path=self._db_path)

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreUnavailable("Store is not initialized. Call initialize() first.")
        # The pool may have closed (or replaced) the connection this store borrowed
        if self._pool is not None and self._pool.connection(self._db_path) is not self._conn:
            raise StoreUnavailable(
                f"Pooled connection for {self._db_path!r} was closed. Call initialize() again."
            )
        return self._conn

    def _write_lock_or_raise(self) -> asyncio.Lock:
        self._conn_or_raise()
        if self._write_lock is None:
            raise StoreUnavailable("Store is not initialized. Call initialize() first.")
        return self._write_lock

    def next_timestamp(self) -> int:
        """
        Return a Unix-ms timestamp strictly greater than any handed out before.

        Must be called while holding the write lock so that timestamp order
        matches commit order across messages, summaries and sessions.
        """
        now = int(time.time() * 1000)
        self._last_timestamp = max(now, self._last_timestamp + 1)
        return self._last_timestamp

    # ── Transactions & reads ───────────────────────────────────────────────────

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Hold the write lock for one atomic logical write.

        Commits on normal exit and rolls back on any exception.  SQLite errors
        are re-raised as ``StoreUnavailable``; other exceptions propagate as-is.
        """
        write_lock = self._write_lock_or_raise()
        conn = self._conn_or_raise()
        async with write_lock:
            try:
                yield conn
                await conn.commit()
            except aiosqlite.Error as exc:
                await self._rollback(conn)
                self._logger.error("store_write_failed", error=str(exc))
                raise StoreUnavailable(f"Write failed: {exc}") from exc
            except BaseException:
                await self._rollback(conn)
                raise

    @asynccontextmanager
    async def snapshot(self) -> AsyncIterator[None]:
        """
        Hold the write lock across a group of reads.

        No write can commit in between, so every read inside the block sees
        the same committed state.  Do not start a transaction inside it.
        """
        async with self._write_lock_or_raise():
            yield

    async def fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[aiosqlite.Row]:
        conn = self._conn_or_raise()
        try:
            async with conn.execute(sql, tuple(params)) as cursor:
                return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            raise StoreUnavailable(f"Read failed: {exc}") from exc

    async def fetchone(self, sql: str, params: Iterable[Any] = ()) -> aiosqlite.Row | None:
        conn = self._conn_or_raise()
        try:
            async with conn.execute(sql, tuple(params)) as cursor:
                return await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StoreUnavailable(f"Read failed: {exc}") from exc

    async def _rollback(self, conn: aiosqlite.Connection) -> None:
        try:
            await conn.rollback()
        # aiosqlite raises ValueError once the connection has been closed
        except (aiosqlite.Error, ValueError) as exc:
            self._logger.warning("store_rollback_failed", error=str(exc))

    # ── Message Methods ────────────────────────────────────────────────────────

    async def append_message(self, role: str, content: str) -> Message:
        """
        Append a message to the log.

        Args:
            role: One of ``"user"``, ``"model"`` or ``"system"``.
            content: Message text. Empty text is stored as-is.

        Returns:
            The stored Message with its assigned id and timestamp.

        Raises:
            ValueError: If ``role`` is not a known role.
            StoreUnavailable: If the store is not initialized or the write fails.
        """
        if role not in ROLES:
            raise ValueError(f"Unknown role {role!r}; expected one of {sorted(ROLES)}")

        async with self.transaction() as conn:
            timestamp = self.next_timestamp()
            cursor = await conn.execute(
                "INSERT INTO messages (role, content, timestamp) VALUES (?, ?, ?)",
                (role, content, timestamp),
            )
            message_id = cursor.lastrowid
            await cursor.close()
            if message_id is None:
                raise StoreUnavailable("Message insert returned no row id")

        self._logger.debug("message_appended", message_id=message_id, role=role)
        return Message(id=message_id, role=role, content=content, timestamp=timestamp)  # type: ignore[arg-type]

    async def delete_range(self, from_id: int, to_id: int) -> int:
        """
        Delete messages with ids in ``[from_id, to_id]``.

        Only used by the opt-in ``delete_summarized`` retention option.

        Returns:
            Number of rows deleted.
        """
        async with self.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM messages WHERE id BETWEEN ? AND ?", (from_id, to_id)
            )
            deleted = cursor.rowcount
            await cursor.close()
        self._logger.info(
            "messages_deleted", from_id=from_id, to_id=to_id, deleted=deleted
        )
        return deleted

    # ── Query Methods ──────────────────────────────────────────────────────────

    async def count(self) -> int:
        """Return the number of stored messages."""
        row = await self.fetchone("SELECT COUNT(*) FROM messages")
        return row[0] if row else 0

    async def count_after(self, message_id: int) -> int:
        """Return the number of messages with an id greater than ``message_id``."""
        row = await self.fetchone("SELECT COUNT(*) FROM messages WHERE id > ?", (message_id,))
        return row[0] if row else 0

    async def message_exists(self, message_id: int) -> bool:
        row = await self.fetchone("SELECT 1 FROM messages WHERE id = ?", (message_id,))
        return row is not None

    async def get_message(self, message_id: int) -> Message:
        """
        Fetch a single message by id.

        Raises:
            MessageNotFoundError: If no message with this id exists.
        """
        row = await self.fetchone("SELECT * FROM messages WHERE id = ?", (message_id,))
        if row is None:
            raise MessageNotFoundError(message_id)
        return self._row_to_message(row)

    async def get_range(self, from_id: int, to_id: int) -> list[Message]:
        """Return messages with ids in ``[from_id, to_id]``, ascending by id."""
        rows = await self.fetchall(
            "SELECT * FROM messages WHERE id BETWEEN ? AND ? ORDER BY id ASC",
            (from_id, to_id),
        )
        return [self._row_to_message(r) for r in rows]

    async def get_oldest_after(self, message_id: int, limit: int) -> list[Message]:
        """Return up to ``limit`` of the oldest messages newer than ``message_id``."""
        rows = await self.fetchall(
            "SELECT * FROM messages WHERE id > ? ORDER BY id ASC LIMIT ?",
            (message_id, limit),
        )
        return [self._row_to_message(r) for r in rows]

    async def get_recent(self, limit: int) -> list[Message]:
        """Return the most recent ``limit`` messages in chronological (ascending) order."""
        rows = await self.fetchall(
            "SELECT * FROM messages ORDER BY id DESC LIMIT ?", (limit,)
        )
        return [self._row_to_message(r) for r in reversed(rows)]

    # ── Private Helpers ────────────────────────────────────────────────────────

    @staticmethod
    def _row_to_message(row: aiosqlite.Row) -> Message:
        return Message(
            id=row["id"],
            role=row["role"],
            content=row["content"],
            timestamp=row["timestamp"],
        )
