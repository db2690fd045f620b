"""
Example 02: Bring Your Own Summarizer
=====================================

Demonstrates using ChatMemory with a summarizer you control instead of the
default litellm call.  A summarizer is any async callable that takes the
batch of turns being compressed and returns summary text.

This example uses a canned local summarizer so it runs without any API key,
and fails on its first call to show that a failed summarization is retried
on the next append instead of losing messages.

Run:
    uv run python examples/02_custom_summarizer.py
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

_calls = 0


async def keyword_summarizer(messages: list[dict[str, str]]) -> str:
    """Stub: replace this with your real SDK call."""
    global _calls
    _calls += 1
    if _calls == 1:
        from mneme import SummarizationFailed

        raise SummarizationFailed("provider is warming up")
    words = (word.strip(".,?!").lower() for m in messages for word in m["content"].split())
    topics = sorted({w for w in words if len(w) > 7})
    return f"{len(messages)} turns about: {', '.join(topics[:6])}"


async def main() -> None:
    from mneme import ChatMemory, MnemeConfig, MnemeEvent, RetentionConfig

    print("=== Mneme Custom Summarizer Example ===\n")

    config = MnemeConfig(
        retention=RetentionConfig(max_active=4, compress_threshold=1, background=False)
    )

    async with ChatMemory.open(
        config=config,
        db_path="/tmp/mneme_example_02.db",
        summarizer=keyword_summarizer,
    ) as memory:
        memory.subscribe(
            MnemeEvent.COMPRESSION_FAILED,
            lambda e, p: print(f"  !!! compression failed: {p['error']}"),
        )
        memory.subscribe(
            MnemeEvent.COMPRESSION_COMPLETED,
            lambda e, p: print(f"  *** compressed {p['messages_compressed']} messages ***"),
        )

        for i in range(1, 9):
            role = "user" if i % 2 else "model"
            await memory.add_message(role, f"Turn {i} discusses photosynthesis and chlorophyll absorption")
            print(f"added turn {i}")

        latest = await memory.latest_summary()
        if latest is not None:
            print(f"\nLatest summary covers {latest.start_message_id}-{latest.end_message_id}:")
            print(f"  {latest.content}")
        print(f"Messages kept: {await memory.message_count()}")


if __name__ == "__main__":
    asyncio.run(main())
