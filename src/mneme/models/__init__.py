"""Mneme data models."""

from mneme.models.config import (
    MnemeConfig,
    RetentionConfig,
    StoreConfig,
    SummarizerConfig,
)
from mneme.models.message import (
    ROLES,
    SUMMARY_PREFIX,
    ChatSession,
    ContextEntry,
    Message,
    RetentionResult,
    RetentionState,
    Role,
    SearchHit,
    Summary,
)

__all__ = [
    # Config
    "MnemeConfig",
    "RetentionConfig",
    "StoreConfig",
    "SummarizerConfig",
    # Records
    "ROLES",
    "Role",
    "Message",
    "Summary",
    "ChatSession",
    # Views
    "SUMMARY_PREFIX",
    "ContextEntry",
    "SearchHit",
    # Retention
    "RetentionState",
    "RetentionResult",
]
