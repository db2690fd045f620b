"""Tests for EventBus."""

from __future__ import annotations

import asyncio

from structlog.testing import capture_logs

from mneme.events.bus import EventBus, MnemeEvent


class TestEventBus:
    def test_sync_handler_called_inline(self):
        bus = EventBus()
        received = []
        bus.subscribe(MnemeEvent.MESSAGE_CREATED, lambda e, p: received.append((e, p)))

        bus.publish(MnemeEvent.MESSAGE_CREATED, {"message_id": 1, "role": "user"})

        assert received == [(MnemeEvent.MESSAGE_CREATED, {"message_id": 1, "role": "user"})]

    def test_handler_only_gets_subscribed_event(self):
        bus = EventBus()
        received = []
        bus.subscribe(MnemeEvent.SUMMARY_CREATED, lambda e, p: received.append(e))

        bus.publish(MnemeEvent.MESSAGE_CREATED, {})

        assert received == []

    def test_subscribe_all(self, event_bus):
        event_bus.publish(MnemeEvent.SESSION_CREATED, {"session_id": "chat_x", "title": "t"})
        event_bus.publish(MnemeEvent.MEMORY_CLOSED, {"db_path": "/tmp/x.db"})

        assert [e for e, _ in event_bus.collected] == [
            MnemeEvent.SESSION_CREATED,
            MnemeEvent.MEMORY_CLOSED,
        ]

    def test_unsubscribe(self):
        bus = EventBus()
        received = []

        def handler(event, payload):
            received.append(event)

        bus.subscribe(MnemeEvent.MESSAGE_CREATED, handler)
        bus.unsubscribe(MnemeEvent.MESSAGE_CREATED, handler)
        bus.unsubscribe(MnemeEvent.MESSAGE_CREATED, handler)  # no-op
        bus.publish(MnemeEvent.MESSAGE_CREATED, {})

        assert received == []

    def test_handler_error_does_not_propagate(self):
        bus = EventBus()
        received = []

        def broken(event, payload):
            raise RuntimeError("boom")

        bus.subscribe(MnemeEvent.MESSAGE_CREATED, broken)
        bus.subscribe(MnemeEvent.MESSAGE_CREATED, lambda e, p: received.append(e))

        bus.publish(MnemeEvent.MESSAGE_CREATED, {})

        assert received == [MnemeEvent.MESSAGE_CREATED]

    def test_handler_error_is_logged_with_event_type(self):
        bus = EventBus()

        def broken(event, payload):
            raise RuntimeError("boom")

        bus.subscribe(MnemeEvent.COMPRESSION_FAILED, broken)
        with capture_logs() as logs:
            bus.publish(MnemeEvent.COMPRESSION_FAILED, {})

        errors = [entry for entry in logs if entry["event"] == "event_handler_error"]
        assert len(errors) == 1
        assert errors[0]["event_type"] == "compression.failed"
        assert errors[0]["error"] == "boom"

    async def test_async_handler_scheduled(self):
        bus = EventBus()
        done = asyncio.Event()

        async def handler(event, payload):
            done.set()

        bus.subscribe(MnemeEvent.SUMMARY_CREATED, handler)
        bus.publish(MnemeEvent.SUMMARY_CREATED, {})

        await asyncio.wait_for(done.wait(), timeout=1.0)

    async def test_async_handler_error_is_logged_not_raised(self):
        bus = EventBus()

        async def broken(event, payload):
            raise RuntimeError("async boom")

        bus.subscribe(MnemeEvent.SUMMARY_CREATED, broken)
        bus.publish(MnemeEvent.SUMMARY_CREATED, {})
        await asyncio.sleep(0.01)

        assert bus._running == set()

    def test_event_values(self):
        assert MnemeEvent.MESSAGE_CREATED == "message.created"
        assert MnemeEvent.COMPRESSION_FAILED == "compression.failed"
