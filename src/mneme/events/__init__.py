"""Mneme event bus."""

from mneme.events.bus import EventBus, Handler, MnemeEvent
from mneme.events.payloads import (
    CompressionCompletedPayload,
    CompressionFailedPayload,
    CompressionTriggeredPayload,
    MemoryClosedPayload,
    MessageCreatedPayload,
    SessionCreatedPayload,
    SummaryCreatedPayload,
)

__all__ = [
    "CompressionCompletedPayload",
    "CompressionFailedPayload",
    "CompressionTriggeredPayload",
    "EventBus",
    "Handler",
    "MemoryClosedPayload",
    "MessageCreatedPayload",
    "MnemeEvent",
    "SessionCreatedPayload",
    "SummaryCreatedPayload",
]
