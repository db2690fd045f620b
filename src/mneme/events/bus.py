"""In-process pub/sub event bus for Mneme memory lifecycle events."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["MnemeEvent", dict[str, Any]], None | Awaitable[None]]


class MnemeEvent(StrEnum):
    """All event types published by Mneme components.

    Typed payload definitions for each event live in
    :mod:`mneme.events.payloads`.

    ``MESSAGE_CREATED``
        :class:`~mneme.events.payloads.MessageCreatedPayload`

    ``SUMMARY_CREATED``
        :class:`~mneme.events.payloads.SummaryCreatedPayload`

    ``COMPRESSION_TRIGGERED``
        :class:`~mneme.events.payloads.CompressionTriggeredPayload`, published
        when an evaluation finds more uncovered messages than the threshold
        allows, just before the summarizer is called.

    ``COMPRESSION_COMPLETED``
        :class:`~mneme.events.payloads.CompressionCompletedPayload`, the
        ``model_dump()`` of the :class:`~mneme.models.message.RetentionResult`.

    ``COMPRESSION_FAILED``
        :class:`~mneme.events.payloads.CompressionFailedPayload`

    ``SESSION_CREATED``
        :class:`~mneme.events.payloads.SessionCreatedPayload`

    ``MEMORY_CLOSED``
        :class:`~mneme.events.payloads.MemoryClosedPayload`
    """

    MESSAGE_CREATED = "message.created"
    SUMMARY_CREATED = "summary.created"

    COMPRESSION_TRIGGERED = "compression.triggered"
    COMPRESSION_COMPLETED = "compression.completed"
    COMPRESSION_FAILED = "compression.failed"

    SESSION_CREATED = "session.created"
    MEMORY_CLOSED = "memory.closed"


class EventBus:
    """
    In-process publish/subscribe for memory lifecycle events.

    ``publish()`` never raises because of a subscriber.  Plain callables run
    before ``publish()`` returns; coroutine functions are started as tasks on
    the running loop and the bus holds them until they finish.  A failing
    subscriber is logged under ``event_handler_error``.

    Example::

        bus = EventBus()

        def on_failure(event, payload):
            alerts.append(payload["error"])

        bus.subscribe(MnemeEvent.COMPRESSION_FAILED, on_failure)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        # None holds the subscribe_all() handlers
        self._subscribers: dict[MnemeEvent | None, list[Handler]] = {None: []}
        self._running: set[asyncio.Task[Any]] = set()
        self._logger = logger or structlog.get_logger("mneme.events")

    def subscribe(self, event: MnemeEvent, handler: Handler) -> None:
        self._subscribers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Receive every event, after the event-specific subscribers."""
        self._subscribers[None].append(handler)

    def unsubscribe(self, event: MnemeEvent, handler: Handler) -> None:
        """Stop delivering ``event`` to ``handler``. Unknown handlers are ignored."""
        with contextlib.suppress(ValueError):
            self._subscribers.get(event, []).remove(handler)

    def publish(self, event: MnemeEvent, payload: dict[str, Any]) -> None:
        """Deliver ``payload`` to the subscribers of ``event`` and to global subscribers."""
        targets = [*self._subscribers.get(event, ()), *self._subscribers[None]]
        for handler in targets:
            try:
                outcome = handler(event, payload)
            except Exception as exc:
                self._report(event, handler, exc)
                continue
            if asyncio.iscoroutine(outcome):
                self._start(event, handler, outcome)

    def _start(self, event: MnemeEvent, handler: Handler, coro: Any) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            self._logger.warning("event_handler_skipped_no_loop", event_type=str(event))
            return
        self._running.add(task)

        def _finished(t: asyncio.Task[Any]) -> None:
            self._running.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                self._report(event, handler, exc)

        task.add_done_callback(_finished)

    def _report(self, event: MnemeEvent, handler: Handler, exc: BaseException) -> None:
        self._logger.error(
            "event_handler_error",
            event_type=str(event),
            handler=getattr(handler, "__qualname__", repr(handler)),
            error=str(exc),
        )
