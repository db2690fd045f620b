"""Configuration models for Mneme memories and components."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RetentionConfig(BaseModel):
    """Configuration for the retention policy."""

    max_active: int = Field(
        default=20,
        ge=1,
        le=1_000,
        description="Number of most recent messages always kept uncompressed (the active window).",
    )

    compress_threshold: int = Field(
        default=10,
        ge=0,
        le=1_000,
        description=(
            "Hysteresis: compression runs only once the uncovered history exceeds "
            "max_active by more than this many messages."
        ),
    )

    background: bool = True
    """Evaluate retention in a background task after each append instead of inline."""

    delete_summarized: bool = False
    """Delete raw messages once a summary covering them has been written."""


class SummarizerConfig(BaseModel):
    """Configuration for the default litellm-backed summarizer."""

    model: str = Field(
        default="gemini/gemini-pro",
        description="litellm model string used to produce summaries.",
    )

    timeout: float = Field(
        default=30.0,
        gt=0,
        le=600.0,
        description="Seconds a single summarization call may take before it counts as failed.",
    )

    max_tokens: int = Field(default=2_048, ge=64, le=32_000)

    temperature: float = Field(default=0.2, ge=0.0, le=2.0)

    prompt: str | None = Field(
        default=None,
        description="Custom summarization instruction. None = use the built-in prompt.",
    )


class StoreConfig(BaseModel):
    """Configuration for the SQLite persistence layer."""

    db_path: str = Field(
        default="~/.mneme/chat_history.db",
        description="Path to the SQLite database file. ~ is expanded at runtime.",
    )

    wal_mode: bool = True
    """Use WAL journal mode for better concurrent read performance."""

    connection_timeout: float = 30.0
    """Seconds to wait for the database connection before raising."""


class MnemeConfig(BaseModel):
    """
    Top-level configuration for a ``ChatMemory``.

    All sub-configs have sensible defaults and can be overridden individually.

    Example::

        config = MnemeConfig(
            retention=RetentionConfig(max_active=40, compress_threshold=20),
            summarizer=SummarizerConfig(model="openai/gpt-4o-mini", timeout=10.0),
        )
    """

    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    summarizer: SummarizerConfig = Field(default_factory=SummarizerConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)

    @classmethod
    def default(cls) -> MnemeConfig:
        """Return a config instance with all defaults."""
        return cls()
