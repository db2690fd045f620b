"""Summarization collaborator contract and the default litellm-backed summarizer.

A summarizer is any async callable taking the ordered batch of turns to
compress and returning plain summary text::

    async def summarize(messages: list[dict[str, str]]) -> str: ...

Each item has ``role`` and ``content`` keys.  Implementations should raise
:class:`SummarizationFailed` on any error; the retention policy also treats
any other exception, a timeout, or a blank result as a failed attempt.
"""

from __future__ import annotations

import os
from collections.abc import Awaitable, Callable

import structlog

from mneme.models.config import SummarizerConfig

Summarizer = Callable[[list[dict[str, str]]], Awaitable[str]]

logger = structlog.get_logger("mneme.summarizer")

DEFAULT_PROMPT = "Please summarize the following conversation:"

MOCK_ENV_VAR = "MNEME_MOCK_LLM"


class SummarizationFailed(Exception):
    """The summarization collaborator could not produce a summary."""


def build_transcript(messages: list[dict[str, str]]) -> str:
    """Render turns as ``[role]: content`` lines."""
    return "\n".join(f"[{m['role']}]: {m['content']}" for m in messages)


def build_prompt(messages: list[dict[str, str]], instruction: str | None = None) -> str:
    """Build the single-turn summarization prompt for ``messages``."""
    return f"{instruction or DEFAULT_PROMPT}\n\n{build_transcript(messages)}\n\nSummary:"


def _mock_summary(messages: list[dict[str, str]]) -> str:
    bullets = "\n".join(
        f"- [{m['role']}] {m['content'].strip()[:120]}" for m in messages[:8] if m["content"].strip()
    )
    return f"Summary of {len(messages)} messages:\n{bullets or '- (no content)'}"


def make_litellm_summarizer(config: SummarizerConfig) -> Summarizer:
    """
    Return an async summarizer that calls ``litellm.acompletion``.

    Set ``MNEME_MOCK_LLM=1`` to get a deterministic offline summary instead,
    which is how the examples and tests run without API keys.

    Args:
        config: Model, sampling and prompt settings.

    Returns:
        A :data:`Summarizer` raising :class:`SummarizationFailed` on any error.
    """

    async def _summarize(messages: list[dict[str, str]]) -> str:
        if os.environ.get(MOCK_ENV_VAR) == "1":
            return _mock_summary(messages)

        import litellm

        prompt = build_prompt(messages, config.prompt)
        try:
            response = await litellm.acompletion(
                model=config.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=config.max_tokens,
                temperature=config.temperature,
            )
            text = response.choices[0].message.content
        except Exception as exc:
            logger.warning("summarizer_llm_failed", model=config.model, error=str(exc))
            raise SummarizationFailed(f"{config.model}: {exc}") from exc

        if not isinstance(text, str) or not text.strip():
            raise SummarizationFailed(f"{config.model}: empty summary response")
        return text.strip()

    return _summarize
