"""Substring search across messages and summaries."""

from __future__ import annotations

import structlog

from mneme.models.message import SearchHit
from mneme.store.history import HistoryStore

_MESSAGES = "SELECT 'message' AS origin, id AS source_id, content, timestamp FROM messages"
_SUMMARIES = "SELECT 'summary' AS origin, id AS source_id, content, timestamp FROM summaries"
_MATCH = " WHERE instr(casefold(content), ?) > 0"
# 'summary' sorts after 'message', so DESC puts a summary first on a timestamp tie
_ORDER = " ORDER BY timestamp DESC, origin DESC, source_id DESC"


class HistorySearch:
    """
    Read-time union query over the message and summary logs.

    Matching is a case-insensitive substring test using Unicode case folding.
    The needle is matched literally (``%`` and ``_`` have no special meaning).
    An empty needle matches every message and every summary.
    """

    def __init__(self, store: HistoryStore) -> None:
        self._store = store
        self._logger = structlog.get_logger("mneme.search")

    async def search(self, substring: str) -> list[SearchHit]:
        """
        Return every message and summary containing ``substring``.

        Results are ordered newest first; there is no pagination.
        """
        needle = substring.casefold()
        if needle:
            sql = f"{_MESSAGES}{_MATCH} UNION ALL {_SUMMARIES}{_MATCH}{_ORDER}"
            params: tuple[str, ...] = (needle, needle)
        else:
            sql = f"{_MESSAGES} UNION ALL {_SUMMARIES}{_ORDER}"
            params = ()

        # Under the write lock so an uncommitted insert is never returned
        async with self._store.snapshot():
            rows = await self._store.fetchall(sql, params)
        hits = [
            SearchHit(
                origin=row["origin"],
                source_id=row["source_id"],
                content=row["content"],
                timestamp=row["timestamp"],
            )
            for row in rows
        ]
        self._logger.debug("search_completed", query=substring, hits=len(hits))
        return hits
