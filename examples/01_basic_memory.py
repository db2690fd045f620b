"""
Example 01: Basic Memory
========================

Demonstrates the simplest end-to-end usage of ChatMemory:
- Opening a memory as an async context manager
- Recording user/model turns into a named session
- Watching retention fold old turns into a summary
- Building the context for the next model call
- Searching messages and summaries

Run without an API key:
    MNEME_MOCK_LLM=1 uv run python examples/01_basic_memory.py

Run with a real LLM (set your API key first):
    GEMINI_API_KEY=... uv run python examples/01_basic_memory.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


async def main() -> None:
    from mneme import ChatMemory, MnemeConfig, MnemeEvent, RetentionConfig

    print("=== Mneme Basic Memory Example ===\n")

    # Small window so retention kicks in after a handful of turns
    config = MnemeConfig(retention=RetentionConfig(max_active=6, compress_threshold=2))

    async with ChatMemory.open(config=config, db_path="/tmp/mneme_example_01.db") as memory:
        memory.subscribe(
            MnemeEvent.SUMMARY_CREATED,
            lambda event, payload: print(
                f"  *** Summarised messages {payload['start_message_id']}"
                f"-{payload['end_message_id']} ***"
            ),
        )

        session_id = await memory.create_session("Parser refactor")
        print(f"Session created: {session_id}\n")

        turns = [
            ("user", "Let's refactor the parser into smaller functions."),
            ("model", "Good idea. Start by extracting the tokenizer."),
            ("user", "The tokenizer also handles comments, is that fine?"),
            ("model", "Move comment handling into its own pass."),
            ("user", "What about error recovery?"),
            ("model", "Collect errors instead of raising on the first one."),
            ("user", "Should the AST nodes be dataclasses?"),
            ("model", "Yes, frozen dataclasses keep them hashable."),
            ("user", "How do I test the new tokenizer?"),
            ("model", "Table-driven tests over small source snippets."),
        ]

        for role, content in turns:
            message = await memory.add_message(role, content, session_id=session_id)
            print(f"[{message.id}] {role}: {content}")

        await memory.wait_for_pending()

        print("\nContext for the next turn:")
        for entry in await memory.get_context():
            marker = "(summary) " if entry.is_summary else ""
            print(f"  {marker}{entry.role}: {entry.content[:100]}")

        print("\nSearch for 'tokenizer':")
        for hit in await memory.search("tokenizer"):
            print(f"  {hit.origin} #{hit.source_id}: {hit.content[:80]}")

        print("\nSessions:")
        for session in await memory.list_sessions():
            print(f"  {session.id}  {session.title}")

    print("\nMemory closed cleanly.")


if __name__ == "__main__":
    asyncio.run(main())
