"""Typed payload definitions for each MnemeEvent.

Usage example::

    from mneme.events.bus import EventBus, MnemeEvent
    from mneme.events.payloads import SummaryCreatedPayload

    def on_summary(event: MnemeEvent, payload: SummaryCreatedPayload) -> None:
        print(f"Summary {payload['summary_id']} covers {payload['message_count']} messages")

    bus.subscribe(MnemeEvent.SUMMARY_CREATED, on_summary)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import TypedDict

# ── Messages & summaries ──────────────────────────────────────────────────────


class MessageCreatedPayload(TypedDict):
    """Payload for :attr:`MnemeEvent.MESSAGE_CREATED`."""

    message_id: int
    role: str
    """``"user"``, ``"model"`` or ``"system"``."""


class SummaryCreatedPayload(TypedDict):
    """Payload for :attr:`MnemeEvent.SUMMARY_CREATED`."""

    summary_id: int
    start_message_id: int
    end_message_id: int
    message_count: int


# ── Compression lifecycle ─────────────────────────────────────────────────────


class CompressionTriggeredPayload(TypedDict):
    """Payload for :attr:`MnemeEvent.COMPRESSION_TRIGGERED`."""

    uncovered: int
    """Messages not covered by any summary when the evaluation started."""
    excess: int
    """How many of the oldest uncovered messages will be compressed."""


class CompressionCompletedPayload(TypedDict):
    """Payload for :attr:`MnemeEvent.COMPRESSION_COMPLETED`.

    This is the ``model_dump()`` of a :class:`mneme.models.message.RetentionResult`.
    """

    compressed: bool
    summary_id: int | None
    start_message_id: int | None
    end_message_id: int | None
    messages_compressed: int
    messages_deleted: int
    uncovered_before: int
    error: str | None
    elapsed_ms: float


class CompressionFailedPayload(TypedDict):
    """Payload for :attr:`MnemeEvent.COMPRESSION_FAILED`."""

    start_message_id: int
    end_message_id: int
    error: str


# ── Sessions & lifecycle ──────────────────────────────────────────────────────


class SessionCreatedPayload(TypedDict):
    """Payload for :attr:`MnemeEvent.SESSION_CREATED`."""

    session_id: str
    title: str


class MemoryClosedPayload(TypedDict):
    """Payload for :attr:`MnemeEvent.MEMORY_CLOSED`."""

    db_path: str
