"""Mneme persistence layer."""

from mneme.store.history import (
    HistoryStore,
    InvalidRange,
    MessageNotFoundError,
    MnemeStoreError,
    SessionNotFoundError,
    StoreUnavailable,
    SummaryNotFoundError,
)
from mneme.store.pool import StorePool
from mneme.store.search import HistorySearch
from mneme.store.sessions import SessionRegistry
from mneme.store.summary_log import SummaryLog

__all__ = [
    "HistoryStore",
    "StorePool",
    "SummaryLog",
    "SessionRegistry",
    "HistorySearch",
    "MnemeStoreError",
    "StoreUnavailable",
    "InvalidRange",
    "MessageNotFoundError",
    "SummaryNotFoundError",
    "SessionNotFoundError",
]
