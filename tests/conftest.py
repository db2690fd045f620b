"""Shared fixtures for Mneme tests."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
import pytest_asyncio

from mneme.events.bus import EventBus, MnemeEvent
from mneme.models.config import MnemeConfig, RetentionConfig, StoreConfig, SummarizerConfig
from mneme.retention.policy import RetentionPolicy
from mneme.retention.summarizer import SummarizationFailed
from mneme.store.history import HistoryStore
from mneme.store.pool import StorePool
from mneme.store.summary_log import SummaryLog


@pytest.fixture
def config(tmp_path):
    """MnemeConfig with a temp database path and the default retention limits."""
    return MnemeConfig(store=StoreConfig(db_path=str(tmp_path / "test.db")))


@pytest_asyncio.fixture
async def pool(config):
    """StorePool for the test database. Closed after each test."""
    p = StorePool()
    yield p
    await p.close_all()


@pytest_asyncio.fixture
async def store(config, pool):
    """Initialized HistoryStore backed by a temp SQLite database (pool-managed)."""
    s = HistoryStore(config.store, pool=pool)
    await s.initialize()
    yield s
    await s.close()  # no-op for pool-managed conn; pool fixture closes the connection


@pytest_asyncio.fixture
async def summary_log(store):
    """SummaryLog backed by the test store."""
    return SummaryLog(store)


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[MnemeEvent, dict[str, Any]]] = []

    def _collect(event: MnemeEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


class ScriptedSummarizer:
    """
    Fake summarizer that records every batch it is given.

    ``fail_times`` makes the first N calls raise ``SummarizationFailed``;
    ``delay`` makes each call sleep before answering.
    """

    def __init__(self, fail_times: int = 0, delay: float = 0.0, text: str | None = None) -> None:
        self.calls: list[list[dict[str, str]]] = []
        self.fail_times = fail_times
        self.delay = delay
        self.text = text
        self.active = 0
        self.max_active = 0

    async def __call__(self, messages: list[dict[str, str]]) -> str:
        self.calls.append(messages)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if len(self.calls) <= self.fail_times:
                raise SummarizationFailed("scripted failure")
            if self.text is not None:
                return self.text
            return f"summary of {len(messages)} messages"
        finally:
            self.active -= 1


@pytest.fixture
def summarizer():
    """A ScriptedSummarizer that always succeeds."""
    return ScriptedSummarizer()


def make_config(
    tmp_path,
    *,
    max_active: int = 20,
    compress_threshold: int = 10,
    background: bool = False,
    delete_summarized: bool = False,
    timeout: float = 30.0,
) -> MnemeConfig:
    """Helper to build a MnemeConfig with a temp database and custom retention."""
    return MnemeConfig(
        retention=RetentionConfig(
            max_active=max_active,
            compress_threshold=compress_threshold,
            background=background,
            delete_summarized=delete_summarized,
        ),
        summarizer=SummarizerConfig(timeout=timeout),
        store=StoreConfig(db_path=str(tmp_path / "test.db")),
    )


def make_policy(
    store: HistoryStore,
    summary_log: SummaryLog,
    summarizer: Any,
    event_bus: EventBus,
    config: MnemeConfig,
) -> RetentionPolicy:
    """Helper to wire a RetentionPolicy against the test store."""
    return RetentionPolicy(store, summary_log, summarizer, event_bus, config)


async def append_turns(store: HistoryStore, count: int, content: str = "turn {i}") -> list[int]:
    """Append ``count`` alternating user/model messages and return their ids."""
    ids = []
    for i in range(count):
        role = "user" if i % 2 == 0 else "model"
        msg = await store.append_message(role, content.format(i=i + 1))
        ids.append(msg.id)
    return ids
