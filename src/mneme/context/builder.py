"""Context window assembly algorithm."""

from __future__ import annotations

import structlog

from mneme.models.message import SUMMARY_PREFIX, ContextEntry, Message, Summary
from mneme.store.history import HistoryStore
from mneme.store.summary_log import SummaryLog


class ContextBuilder:
    """
    Assembles the conversation context handed to a language model.

    Invariants:
    1. At most ``limit`` raw messages are returned, the most recent ones, oldest first.
    2. At most one summary entry is returned, and only ahead of the raw window.
    3. The summary is included only when the whole window is newer than its
       coverage.  If the latest summary reaches into (or past) the oldest
       message of the window, the window is stale relative to the summary and
       is returned without it, so the same turns are never presented twice.
    4. Building never writes; repeated calls over unchanged state return
       identical output.
    """

    def __init__(self, store: HistoryStore, summary_log: SummaryLog) -> None:
        self._store = store
        self._summary_log = summary_log
        self._logger = structlog.get_logger("mneme.context_builder")

    async def build(self, limit: int) -> list[ContextEntry]:
        """
        Build the current context.

        Args:
            limit: Maximum number of raw messages to include.

        Returns:
            Optional summary entry followed by the most recent ``limit``
            messages in chronological order; empty if the log is empty.

        Raises:
            ValueError: If ``limit`` is less than 1.
        """
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")

        # Both reads see the same committed state
        async with self._store.snapshot():
            latest = await self._summary_log.latest()
            window = await self._store.get_recent(limit)

        if not window:
            return []

        entries = [self._message_entry(m) for m in window]
        oldest_id = window[0].id
        if latest is not None:
            if oldest_id > latest.end_message_id:
                entries.insert(0, self._summary_entry(latest))
            else:
                self._logger.debug(
                    "context_summary_skipped_stale_window",
                    summary_id=latest.id,
                    summary_end_message_id=latest.end_message_id,
                    oldest_message_id=oldest_id,
                )

        self._logger.debug(
            "context_built",
            message_count=len(window),
            has_summary=entries[0].is_summary,
        )
        return entries

    @staticmethod
    def as_llm_messages(entries: list[ContextEntry]) -> list[dict[str, str]]:
        """Convert context entries to ``{"role", "content"}`` dicts for a chat API."""
        return [{"role": e.role, "content": e.content} for e in entries]

    @staticmethod
    def _message_entry(message: Message) -> ContextEntry:
        return ContextEntry(
            role=message.role,
            content=message.content,
            timestamp=message.timestamp,
        )

    @staticmethod
    def _summary_entry(summary: Summary) -> ContextEntry:
        return ContextEntry(
            role="system",
            content=SUMMARY_PREFIX + summary.content,
            timestamp=summary.timestamp,
            is_summary=True,
        )
