"""Summary log adapter over HistoryStore."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from mneme.models.message import Summary
from mneme.store.history import (
    HistoryStore,
    InvalidRange,
    StoreUnavailable,
    SummaryNotFoundError,
)

if TYPE_CHECKING:
    import aiosqlite


class SummaryLog:
    """
    Manages summary records, each compressing a closed message id range.

    Ranges are validated on insert, inside the same transaction as the write:

    - ``start_message_id <= end_message_id``;
    - ``end_message_id`` references an existing message;
    - ``start_message_id`` is newer than the latest summary's
      ``end_message_id``, so successive summaries never overlap.

    A violation is a retention bug, never a caller error, and raises
    ``InvalidRange`` rather than being coerced.
    """

    def __init__(self, store: HistoryStore) -> None:
        self._store = store
        self._logger = structlog.get_logger("mneme.summary_log")

    async def append(
        self, content: str, start_message_id: int, end_message_id: int
    ) -> Summary:
        """
        Persist a new summary covering ``[start_message_id, end_message_id]``.

        Returns:
            The stored Summary with its assigned id and timestamp.

        Raises:
            InvalidRange: If the bounds are malformed, reference a missing
                message, or overlap an existing summary.
            StoreUnavailable: If the write fails.
        """
        if start_message_id > end_message_id:
            raise InvalidRange(start_message_id, end_message_id, "start is after end")

        async with self._store.transaction() as conn:
            async with conn.execute(
                "SELECT 1 FROM messages WHERE id = ?", (end_message_id,)
            ) as cursor:
                exists = await cursor.fetchone()
            if exists is None:
                raise InvalidRange(
                    start_message_id, end_message_id, "end message does not exist"
                )

            async with conn.execute("SELECT MAX(end_message_id) FROM summaries") as cursor:
                row = await cursor.fetchone()
            covered = row[0] if row and row[0] is not None else 0
            if start_message_id <= covered:
                raise InvalidRange(
                    start_message_id,
                    end_message_id,
                    f"overlaps existing summary coverage up to message {covered}",
                )

            timestamp = self._store.next_timestamp()
            cursor = await conn.execute(
                """
                INSERT INTO summaries (content, start_message_id, end_message_id, timestamp)
                VALUES (?, ?, ?, ?)
                """,
                (content, start_message_id, end_message_id, timestamp),
            )
            summary_id = cursor.lastrowid
            await cursor.close()
            if summary_id is None:
                raise StoreUnavailable("Summary insert returned no row id")

        self._logger.info(
            "summary_appended",
            summary_id=summary_id,
            start_message_id=start_message_id,
            end_message_id=end_message_id,
        )
        return Summary(
            id=summary_id,
            content=content,
            start_message_id=start_message_id,
            end_message_id=end_message_id,
            timestamp=timestamp,
        )

    async def latest(self) -> Summary | None:
        """Return the summary with the greatest ``end_message_id`` (ties: greatest id)."""
        row = await self._store.fetchone(
            "SELECT * FROM summaries ORDER BY end_message_id DESC, id DESC LIMIT 1"
        )
        return self._row_to_summary(row) if row is not None else None

    async def get(self, summary_id: int) -> Summary:
        """
        Fetch a summary by id.

        Raises:
            SummaryNotFoundError: If no summary with this id exists.
        """
        row = await self._store.fetchone("SELECT * FROM summaries WHERE id = ?", (summary_id,))
        if row is None:
            raise SummaryNotFoundError(summary_id)
        return self._row_to_summary(row)

    async def list_all(self) -> list[Summary]:
        """Return every summary in creation order."""
        rows = await self._store.fetchall("SELECT * FROM summaries ORDER BY id ASC")
        return [self._row_to_summary(r) for r in rows]

    @staticmethod
    def _row_to_summary(row: aiosqlite.Row) -> Summary:
        return Summary(
            id=row["id"],
            content=row["content"],
            start_message_id=row["start_message_id"],
            end_message_id=row["end_message_id"],
            timestamp=row["timestamp"],
        )
