"""Mneme retention components."""

from mneme.retention.policy import RetentionPolicy
from mneme.retention.summarizer import (
    SummarizationFailed,
    Summarizer,
    build_prompt,
    build_transcript,
    make_litellm_summarizer,
)

__all__ = [
    "RetentionPolicy",
    "SummarizationFailed",
    "Summarizer",
    "build_prompt",
    "build_transcript",
    "make_litellm_summarizer",
]
