"""
Connection sharing for HistoryStore instances that point at the same database.

SQLite allows one writer at a time, and an ``aiosqlite`` connection runs its
statements on a single worker thread.  A ``StorePool`` therefore keeps exactly
one connection and one write lock per database file; every ``HistoryStore``
built with the pool borrows both, so a message append from one component and a
summary insert from another are serialised instead of racing.

Usage::

    pool = StorePool()
    history = HistoryStore(config.store, pool=pool)
    other = HistoryStore(config.store, pool=pool)   # borrows the same connection
    await history.initialize()
    await other.initialize()
    ...
    await pool.close_all()   # stores never close pooled connections themselves
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import aiosqlite
import structlog

_logger = structlog.get_logger("mneme.store.pool")


def _casefold(value: str | None) -> str | None:
    return value.casefold() if value is not None else None


async def configure_connection(conn: aiosqlite.Connection, *, wal_mode: bool) -> None:
    """
    Apply the pragmas and SQL functions every Mneme connection relies on.

    ``casefold()`` gives search Unicode-aware case-insensitive matching;
    SQLite's built-in ``lower()`` and ``LIKE`` only fold ASCII.
    """
    conn.row_factory = aiosqlite.Row
    if wal_mode:
        await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA synchronous=NORMAL")
    await conn.create_function("casefold", 1, _casefold, deterministic=True)


def resolve_path(db_path: str) -> str:
    return str(Path(db_path).expanduser().resolve())


@dataclass
class _Entry:
    conn: aiosqlite.Connection
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class StorePool:
    """
    Registry of shared connections, keyed by resolved database path.

    Bound to the event loop it is used from.  Concurrent ``acquire()`` calls
    for a path that is not open yet wait on a per-path opening lock, so the
    file is only ever connected once.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._opening: dict[str, asyncio.Lock] = {}

    async def acquire(
        self,
        db_path: str,
        *,
        wal_mode: bool = True,
        connection_timeout: float = 30.0,
    ) -> aiosqlite.Connection:
        """
        Borrow the connection for ``db_path``, connecting on first use.

        ``wal_mode`` and ``connection_timeout`` only apply to the first call
        for a path; later callers get the already-configured connection.

        Raises:
            aiosqlite.Error: If the database cannot be opened.
            OSError: If the parent directory cannot be created.
        """
        key = resolve_path(db_path)
        entry = self._entries.get(key)
        if entry is not None:
            return entry.conn

        async with self._opening.setdefault(key, asyncio.Lock()):
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry(conn=await self._connect(key, wal_mode, connection_timeout))
                self._entries[key] = entry
                _logger.debug("pool_connection_opened", db_path=key)
        return entry.conn

    @staticmethod
    async def _connect(path: str, wal_mode: bool, timeout: float) -> aiosqlite.Connection:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(path, timeout=timeout)
        try:
            await configure_connection(conn, wal_mode=wal_mode)
        except BaseException:
            await conn.close()
            raise
        return conn

    def write_lock(self, db_path: str) -> asyncio.Lock:
        """
        The lock every writer to ``db_path`` must hold.

        Raises ``KeyError`` if the path has not been acquired.
        """
        return self._entries[resolve_path(db_path)].write_lock

    def connection(self, db_path: str) -> aiosqlite.Connection | None:
        """The open connection for ``db_path``, or None once it has been closed."""
        entry = self._entries.get(resolve_path(db_path))
        return entry.conn if entry is not None else None

    def is_open(self, db_path: str) -> bool:
        return resolve_path(db_path) in self._entries

    async def close_path(self, db_path: str) -> None:
        key = resolve_path(db_path)
        self._opening.pop(key, None)
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        await entry.conn.close()
        _logger.debug("pool_connection_closed", db_path=key)

    async def close_all(self) -> None:
        """Close every pooled connection. Stores borrowing them become unusable."""
        for key in list(self._entries):
            await self.close_path(key)
