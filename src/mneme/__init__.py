"""
Mneme: bounded conversation memory with automatic summarization and search.

Primary entry point::

    from mneme import ChatMemory

    async with ChatMemory.open(db_path="chat.db") as memory:
        await memory.add_message("user", "Hello!")
        context = await memory.get_context()
"""

from mneme.memory import ChatMemory
from mneme.models import (
    MnemeConfig,
    RetentionConfig,
    SummarizerConfig,
    StoreConfig,
    Message,
    Summary,
    ChatSession,
    ContextEntry,
    SearchHit,
    RetentionResult,
    RetentionState,
)
from mneme.events.bus import EventBus, MnemeEvent
from mneme.retention.summarizer import SummarizationFailed, Summarizer
from mneme.store.history import (
    MnemeStoreError,
    StoreUnavailable,
    InvalidRange,
    SessionNotFoundError,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    "ChatMemory",
    # Config
    "MnemeConfig",
    "RetentionConfig",
    "SummarizerConfig",
    "StoreConfig",
    # Models
    "Message",
    "Summary",
    "ChatSession",
    "ContextEntry",
    "SearchHit",
    "RetentionResult",
    "RetentionState",
    # Events
    "EventBus",
    "MnemeEvent",
    # Summarization
    "Summarizer",
    "SummarizationFailed",
    # Errors
    "MnemeStoreError",
    "StoreUnavailable",
    "InvalidRange",
    "SessionNotFoundError",
]
