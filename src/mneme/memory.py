"""ChatMemory, the primary public API entry point."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog

from mneme.context.builder import ContextBuilder
from mneme.events.bus import EventBus, Handler, MnemeEvent
from mneme.models.config import MnemeConfig, StoreConfig
from mneme.models.message import (
    ChatSession,
    ContextEntry,
    Message,
    RetentionResult,
    RetentionState,
    SearchHit,
    Summary,
)
from mneme.retention.policy import RetentionPolicy
from mneme.retention.summarizer import Summarizer, make_litellm_summarizer
from mneme.store.history import HistoryStore, StoreUnavailable
from mneme.store.pool import StorePool
from mneme.store.search import HistorySearch
from mneme.store.sessions import DEFAULT_TITLE, SessionRegistry
from mneme.store.summary_log import SummaryLog


class ChatMemory:
    """
    A bounded, summarizing, searchable conversation history.

    Handles message persistence, retention (compression of old turns into
    summaries), context assembly, search, and the session catalog.

    Usage::

        async with ChatMemory.open(db_path="chat.db") as memory:
            await memory.add_message("user", "Let's refactor the parser.")
            context = await memory.get_context()

        # Manual lifecycle
        memory = await ChatMemory.create(db_path="chat.db")
        await memory.add_message("user", "Hello")
        await memory.close()

    **Bring your own summarizer**

    By default summaries come from ``litellm`` using ``config.summarizer``.
    Any async callable ``(list[{"role", "content"}]) -> str`` can be passed
    instead::

        async def summarize(messages):
            return await my_client.summarize(messages)

        memory = await ChatMemory.create(db_path="chat.db", summarizer=summarize)

    Retention runs after every :meth:`add_message`.  With
    ``config.retention.background`` (the default) it runs as a background
    task; call :meth:`wait_for_pending` to wait for it.  A failed
    summarization never fails the append: the message is already durable and
    the next append retries the compression.
    """

    def __init__(
        self,
        config: MnemeConfig,
        store: HistoryStore,
        summary_log: SummaryLog,
        sessions: SessionRegistry,
        search: HistorySearch,
        context_builder: ContextBuilder,
        retention: RetentionPolicy,
        event_bus: EventBus,
    ) -> None:
        self._config = config
        self._store = store
        self._summary_log = summary_log
        self._sessions = sessions
        self._search = search
        self._context_builder = context_builder
        self._retention = retention
        self._event_bus = event_bus
        self._logger = structlog.get_logger("mneme.memory").bind(db_path=store.db_path)

    @classmethod
    async def create(
        cls,
        *,
        config: MnemeConfig | None = None,
        db_path: str | None = None,
        pool: StorePool | None = None,
        summarizer: Summarizer | None = None,
        event_bus: EventBus | None = None,
    ) -> ChatMemory:
        """
        Open (or create) a memory backed by a SQLite database.

        Args:
            config: Mneme configuration. Defaults to ``MnemeConfig()``.
            db_path: Override database path. Raises ``ValueError`` if both
                ``db_path`` and a non-default ``config.store.db_path`` are supplied.
            pool: Optional shared connection pool. The caller is responsible
                for calling ``pool.close_all()`` at shutdown.
            summarizer: Summarization collaborator. Defaults to the litellm
                summarizer built from ``config.summarizer``.
            event_bus: Optional bus to publish on. Defaults to a private bus.

        Returns:
            An initialized ChatMemory.

        Raises:
            ValueError: If the database path is given twice.
            StoreUnavailable: If the database cannot be opened.
        """
        cfg = config or MnemeConfig()
        if db_path is not None:
            if config is not None and cfg.store.db_path != StoreConfig().db_path:
                raise ValueError(
                    "Specify db_path either via db_path= or config.store.db_path, not both."
                )
            cfg = cfg.model_copy(
                update={"store": cfg.store.model_copy(update={"db_path": db_path})}
            )

        store = HistoryStore(cfg.store, pool=pool)
        await store.initialize()

        bus = event_bus or EventBus()
        summary_log = SummaryLog(store)
        retention = RetentionPolicy(
            store,
            summary_log,
            summarizer or make_litellm_summarizer(cfg.summarizer),
            bus,
            cfg,
        )
        memory = cls(
            config=cfg,
            store=store,
            summary_log=summary_log,
            sessions=SessionRegistry(store),
            search=HistorySearch(store),
            context_builder=ContextBuilder(store, summary_log),
            retention=retention,
            event_bus=bus,
        )
        memory._logger.info("memory_opened", max_active=cfg.retention.max_active)
        return memory

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        *,
        config: MnemeConfig | None = None,
        db_path: str | None = None,
        pool: StorePool | None = None,
        summarizer: Summarizer | None = None,
        event_bus: EventBus | None = None,
    ) -> AsyncGenerator[ChatMemory, None]:
        """
        Create a memory and use it as an async context manager.

        All parameters are identical to :meth:`create`.  The memory is closed
        (pending retention awaited, connection released) when the block exits,
        even on exception.
        """
        memory = await cls.create(
            config=config,
            db_path=db_path,
            pool=pool,
            summarizer=summarizer,
            event_bus=event_bus,
        )
        try:
            yield memory
        finally:
            await memory.close()

    # ── Messages ───────────────────────────────────────────────────────────────

    async def add_message(
        self, role: str, content: str, *, session_id: str | None = None
    ) -> Message:
        """
        Append a chat turn and run the retention policy.

        Args:
            role: ``"user"``, ``"model"`` or ``"system"``.
            content: Message text.
            session_id: Optional session whose ``last_updated`` is bumped.
                Messages are not scoped by session; the log is shared.

        Returns:
            The stored Message.

        Raises:
            ValueError: If ``role`` is unknown.
            SessionNotFoundError: If ``session_id`` is given but does not exist
                (checked before anything is written).
            StoreUnavailable: If the message cannot be written.
        """
        if session_id is not None:
            await self._sessions.get(session_id)

        message = await self._store.append_message(role, content)
        if session_id is not None:
            await self._sessions.touch(session_id)

        self._event_bus.publish(
            MnemeEvent.MESSAGE_CREATED, {"message_id": message.id, "role": message.role}
        )

        if self._config.retention.background:
            self._retention.trigger()
        else:
            try:
                await self._retention.evaluate()
            except StoreUnavailable as exc:
                # The message is committed; retention retries on the next append
                self._logger.error(
                    "retention_store_error", message_id=message.id, error=str(exc)
                )
        return message

    async def messages(self, from_id: int, to_id: int) -> list[Message]:
        """Return stored messages with ids in ``[from_id, to_id]``, ascending."""
        return await self._store.get_range(from_id, to_id)

    async def message_count(self) -> int:
        """Number of stored messages."""
        return await self._store.count()

    # ── Context & search ───────────────────────────────────────────────────────

    async def get_context(self, limit: int | None = None) -> list[ContextEntry]:
        """
        Return the context for the next model call.

        Args:
            limit: Maximum number of raw messages. Defaults to
                ``config.retention.max_active``.

        Returns:
            The latest applicable summary (as a ``system`` entry) followed by
            the most recent messages, oldest first.  Empty for an empty log.
        """
        effective = self._config.retention.max_active if limit is None else limit
        return await self._context_builder.build(effective)

    async def context_for_next_turn(self, limit: int | None = None) -> list[dict[str, str]]:
        """:meth:`get_context` as ``{"role", "content"}`` dicts for a chat completion API."""
        return ContextBuilder.as_llm_messages(await self.get_context(limit))

    async def search(self, substring: str) -> list[SearchHit]:
        """Case-insensitive substring search over messages and summaries, newest first."""
        return await self._search.search(substring)

    # ── Summaries & retention ──────────────────────────────────────────────────

    async def latest_summary(self) -> Summary | None:
        return await self._summary_log.latest()

    async def summaries(self) -> list[Summary]:
        """Every summary in creation order."""
        return await self._summary_log.list_all()

    async def compress(self) -> RetentionResult:
        """
        Run a retention evaluation now and wait for it.

        Compresses only if the threshold is exceeded.  Useful for
        checkpointing or when ``retention.background`` is off.
        """
        self._logger.info("manual_retention_triggered")
        await self._retention.wait_for_pending()
        return await self._retention.evaluate()

    async def wait_for_pending(self) -> None:
        """Wait for any background retention evaluation to finish."""
        await self._retention.wait_for_pending()

    # ── Sessions ───────────────────────────────────────────────────────────────

    async def create_session(self, title: str = DEFAULT_TITLE) -> str:
        """Create a chat session and return its id."""
        session = await self._sessions.create(title)
        self._event_bus.publish(
            MnemeEvent.SESSION_CREATED, {"session_id": session.id, "title": session.title}
        )
        return session.id

    async def list_sessions(self) -> list[ChatSession]:
        """Sessions by ``last_updated`` descending, or one placeholder if none exist."""
        return await self._sessions.list_sessions()

    async def get_session(self, session_id: str) -> ChatSession:
        return await self._sessions.get(session_id)

    async def rename_session(self, session_id: str, title: str) -> ChatSession:
        return await self._sessions.rename(session_id, title)

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def close(self) -> None:
        """
        Release resources.

        Waits for any background retention evaluation first so an in-flight
        summary write is never cut off, then releases the connection.
        """
        if not self._store.is_open:
            return
        await self._retention.wait_for_pending()
        self._event_bus.publish(MnemeEvent.MEMORY_CLOSED, {"db_path": self._store.db_path})
        await self._store.close()
        self._logger.info("memory_closed")

    async def __aenter__(self) -> ChatMemory:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def config(self) -> MnemeConfig:
        return self._config

    @property
    def retention_state(self) -> RetentionState:
        """Current state of the retention policy."""
        return self._retention.state

    @property
    def compression_in_progress(self) -> bool:
        """``True`` while a background retention evaluation is running."""
        return self._retention.in_progress

    @property
    def event_bus(self) -> EventBus:
        """The event bus for this memory. Subscribe to monitor events."""
        return self._event_bus

    def subscribe(self, event: MnemeEvent, handler: Handler) -> None:
        """Convenience wrapper for ``memory.event_bus.subscribe()``."""
        self._event_bus.subscribe(event, handler)
