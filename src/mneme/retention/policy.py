"""Retention policy: keeps the uncovered history bounded by folding old turns into summaries.

After every append the policy counts the messages not yet covered by the
latest summary.  Once that count exceeds ``max_active`` by more than
``compress_threshold``, the oldest excess messages are handed to the
summarizer and the result is written to the summary log.  The threshold gives
hysteresis: compression happens in batches rather than on every append.

Evaluations are single-flight.  ``evaluate()`` holds a per-policy lock for
its whole duration (including the summarizer call), so two evaluations can
never pick overlapping batches.  ``trigger()`` runs evaluation in the
background and coalesces triggers that arrive while one is in flight into a
single follow-up evaluation.
"""

from __future__ import annotations

import asyncio
import time

import structlog

from mneme.events.bus import EventBus, MnemeEvent
from mneme.models.config import MnemeConfig
from mneme.models.message import Message, RetentionResult, RetentionState
from mneme.retention.summarizer import SummarizationFailed, Summarizer
from mneme.store.history import HistoryStore
from mneme.store.summary_log import SummaryLog


class RetentionPolicy:
    """
    Decides when to compress and runs the compression.

    Guarantees:
    - At most one evaluation runs at a time per policy.
    - A summarization failure or timeout never raises out of ``evaluate()``;
      no summary is written and the next evaluation retries from the same
      oldest uncovered message.
    - The state always returns to ``IDLE`` when an evaluation ends.

    Example::

        policy = RetentionPolicy(store, summary_log, summarizer, event_bus, config)
        await store.append_message("user", "hi")
        policy.trigger()               # non-blocking
        await policy.wait_for_pending()
    """

    def __init__(
        self,
        store: HistoryStore,
        summary_log: SummaryLog,
        summarizer: Summarizer,
        event_bus: EventBus,
        config: MnemeConfig,
    ) -> None:
        self._store = store
        self._summary_log = summary_log
        self._summarizer = summarizer
        self._event_bus = event_bus
        self._config = config
        self._lock = asyncio.Lock()
        self._state = RetentionState.IDLE
        self._pending_task: asyncio.Task[RetentionResult] | None = None
        self._rerun_requested = False
        self._logger = structlog.get_logger("mneme.retention")

    @property
    def state(self) -> RetentionState:
        return self._state

    @property
    def in_progress(self) -> bool:
        """``True`` while a background evaluation task is running."""
        task = self._pending_task
        return task is not None and not task.done()

    def excess_for(self, uncovered: int) -> int:
        """Number of oldest uncovered messages to compress, or 0 if under threshold."""
        retention = self._config.retention
        excess = uncovered - retention.max_active
        return excess if excess > retention.compress_threshold else 0

    # ── Trigger / scheduling ────────────────────────────────────────────────────

    def trigger(self) -> bool:
        """
        Schedule a background evaluation.

        If one is already in flight, request a single follow-up evaluation
        instead of starting a concurrent one.

        Returns:
            True if a new task was started, False if the trigger was coalesced.
        """
        if self.in_progress:
            self._rerun_requested = True
            return False
        task = asyncio.create_task(self._drain())
        task.add_done_callback(self._on_task_done)
        self._pending_task = task
        return True

    async def wait_for_pending(self) -> None:
        """Await the in-flight background evaluation (and its follow-ups), then clear it."""
        task = self._pending_task
        if task is not None and not task.done():
            try:
                await task
            except Exception as exc:
                self._logger.error("background_retention_failed", error=str(exc))
        self._pending_task = None

    async def _drain(self) -> RetentionResult:
        result = await self.evaluate()
        while self._rerun_requested:
            self._rerun_requested = False
            result = await self.evaluate()
        return result

    def _on_task_done(self, task: asyncio.Task[RetentionResult]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error("background_retention_failed", error=str(exc))

    # ── Evaluation ─────────────────────────────────────────────────────────────

    async def evaluate(self) -> RetentionResult:
        """
        Run one retention evaluation, compressing if the threshold is exceeded.

        Returns:
            RetentionResult describing what happened.

        Raises:
            StoreUnavailable: If the store cannot be read or written.
            InvalidRange: If the chosen batch is rejected by the summary log
                (a bug in this policy).
        """
        async with self._lock:
            start_ms = time.time() * 1000
            self._state = RetentionState.EVALUATING
            try:
                return await self._evaluate_locked(start_ms)
            finally:
                self._state = RetentionState.IDLE

    async def _evaluate_locked(self, start_ms: float) -> RetentionResult:
        # Count and batch must come from the same committed state
        async with self._store.snapshot():
            latest = await self._summary_log.latest()
            covered = latest.end_message_id if latest is not None else 0
            uncovered = await self._store.count_after(covered)
            excess = self.excess_for(uncovered)
            batch = await self._store.get_oldest_after(covered, excess) if excess else []

        if not batch:
            return RetentionResult(
                uncovered_before=uncovered, elapsed_ms=time.time() * 1000 - start_ms
            )

        first_id, last_id = batch[0].id, batch[-1].id

        self._state = RetentionState.COMPRESSING
        self._logger.info(
            "compression_triggered",
            uncovered=uncovered,
            excess=excess,
            start_message_id=first_id,
            end_message_id=last_id,
        )
        self._event_bus.publish(
            MnemeEvent.COMPRESSION_TRIGGERED, {"uncovered": uncovered, "excess": excess}
        )

        try:
            text = await self._summarize(batch)
        except SummarizationFailed as exc:
            elapsed = time.time() * 1000 - start_ms
            self._logger.warning(
                "compression_failed",
                start_message_id=first_id,
                end_message_id=last_id,
                error=str(exc),
                elapsed_ms=elapsed,
            )
            self._event_bus.publish(
                MnemeEvent.COMPRESSION_FAILED,
                {"start_message_id": first_id, "end_message_id": last_id, "error": str(exc)},
            )
            return RetentionResult(
                start_message_id=first_id,
                end_message_id=last_id,
                uncovered_before=uncovered,
                error=str(exc),
                elapsed_ms=elapsed,
            )

        summary = await self._summary_log.append(text, first_id, last_id)
        self._event_bus.publish(
            MnemeEvent.SUMMARY_CREATED,
            {
                "summary_id": summary.id,
                "start_message_id": first_id,
                "end_message_id": last_id,
                "message_count": len(batch),
            },
        )

        deleted = 0
        if self._config.retention.delete_summarized:
            deleted = await self._store.delete_range(first_id, last_id)

        elapsed = time.time() * 1000 - start_ms
        result = RetentionResult(
            compressed=True,
            summary_id=summary.id,
            start_message_id=first_id,
            end_message_id=last_id,
            messages_compressed=len(batch),
            messages_deleted=deleted,
            uncovered_before=uncovered,
            elapsed_ms=elapsed,
        )
        self._logger.info(
            "compression_completed",
            summary_id=summary.id,
            start_message_id=first_id,
            end_message_id=last_id,
            messages_compressed=len(batch),
            messages_deleted=deleted,
            elapsed_ms=elapsed,
        )
        self._event_bus.publish(MnemeEvent.COMPRESSION_COMPLETED, result.model_dump())
        return result

    async def _summarize(self, batch: list[Message]) -> str:
        """Call the summarizer with a timeout, normalising every failure to SummarizationFailed."""
        timeout = self._config.summarizer.timeout
        payload = [{"role": m.role, "content": m.content} for m in batch]
        try:
            text = await asyncio.wait_for(self._summarizer(payload), timeout=timeout)
        except TimeoutError as exc:
            raise SummarizationFailed(f"Summarizer timed out after {timeout}s") from exc
        except SummarizationFailed:
            raise
        except Exception as exc:
            raise SummarizationFailed(f"Summarizer error: {exc}") from exc

        if not isinstance(text, str) or not text.strip():
            raise SummarizationFailed("Summarizer returned an empty summary")
        return text
