"""Core record models for Mneme: messages, summaries, sessions and read views."""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

Role = Literal["user", "model", "system"]

ROLES: frozenset[str] = frozenset({"user", "model", "system"})

SUMMARY_PREFIX = "Previous conversation summary: "


# ── Persisted records ──────────────────────────────────────────────────────────


class Message(BaseModel):
    """One conversational turn. Ids and timestamps are assigned by the store."""

    id: int
    role: Role
    content: str
    timestamp: int
    """Unix milliseconds at insertion."""


class Summary(BaseModel):
    """
    A compression of the closed message id range ``[start_message_id, end_message_id]``.

    Summaries are additive: the raw messages they cover remain in the log unless
    the opt-in ``delete_summarized`` retention option removed them.
    """

    id: int
    content: str
    start_message_id: int
    end_message_id: int
    timestamp: int

    @property
    def message_count(self) -> int:
        """Width of the covered id range."""
        return self.end_message_id - self.start_message_id + 1


class ChatSession(BaseModel):
    """A named conversation thread, used for listing and presentation only."""

    id: str
    title: str
    created_at: int
    last_updated: int


# ── Read views ─────────────────────────────────────────────────────────────────


class ContextEntry(BaseModel):
    """A single entry of the assembled context handed to a language model."""

    role: Role
    content: str
    timestamp: int
    is_summary: bool = False


class SearchHit(BaseModel):
    """A search match, either a raw message or a summary."""

    origin: Literal["message", "summary"]
    source_id: int
    """Id of the matching row in its own table."""
    content: str
    timestamp: int


# ── Retention ──────────────────────────────────────────────────────────────────


class RetentionState(StrEnum):
    """Lifecycle of a single retention evaluation."""

    IDLE = "idle"
    EVALUATING = "evaluating"
    COMPRESSING = "compressing"


class RetentionResult(BaseModel):
    """Outcome of one retention policy evaluation."""

    compressed: bool = False
    summary_id: int | None = None
    start_message_id: int | None = None
    end_message_id: int | None = None
    messages_compressed: int = 0
    messages_deleted: int = 0
    uncovered_before: int = Field(
        default=0,
        description="Messages not covered by any summary when the evaluation started.",
    )
    error: str | None = None
    """Summarization failure message, if the attempted compression failed."""
    elapsed_ms: float = 0.0

    @property
    def failed(self) -> bool:
        return self.error is not None
