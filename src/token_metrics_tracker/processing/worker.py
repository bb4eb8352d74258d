"""Concurrent batch consumption under a wall-clock budget."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from token_metrics_tracker.errors import InfrastructureError

if TYPE_CHECKING:
    from token_metrics_tracker.processing.processor import BatchProcessor, BatchResult
    from token_metrics_tracker.queue.base import Delivery, Queue

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5
DEFAULT_RECEIVE_TIMEOUT_SECONDS = 1.0


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retries with exponential backoff."""

    max_attempts: int = 3
    backoff_base_seconds: float = 5.0

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Delay before the attempt that follows `attempt` (1-based)."""
        return self.backoff_base_seconds * (2 ** (attempt - 1))


@dataclass
class WorkerRunStats:
    """Counters for one `BatchWorkerPool.run` call."""

    batches_completed: int = 0
    batches_retried: int = 0
    batches_dropped: int = 0
    batches_interrupted: int = 0
    mints_processed: int = 0
    mints_skipped: int = 0
    mints_failed: int = 0
    alerts_triggered: int = 0
    budget_expired: bool = False
    stragglers: int = 0
    duration_seconds: float = 0.0

    def record(self, result: BatchResult) -> None:
        self.batches_completed += 1
        self.mints_processed += result.processed
        self.mints_skipped += result.skipped_stale
        self.mints_failed += result.failed
        self.alerts_triggered += result.alerts_triggered
        if result.interrupted:
            self.batches_interrupted += 1


class BatchWorkerPool:
    """Runs N consumers that each process one batch at a time.

    When the budget expires, consumers stop taking new batches and batches
    in progress stop after their current mint. Whatever has not finished
    within the drain timeout keeps running detached until `shutdown`.
    """

    def __init__(
        self,
        queue: Queue,
        processor: BatchProcessor,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        retry_policy: RetryPolicy | None = None,
        receive_timeout_seconds: float = DEFAULT_RECEIVE_TIMEOUT_SECONDS,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue = queue
        self._processor = processor
        self._concurrency = concurrency
        self._retry = retry_policy or RetryPolicy()
        self._receive_timeout = receive_timeout_seconds
        self._stragglers: set[asyncio.Task[None]] = set()

    @property
    def straggler_count(self) -> int:
        return sum(1 for t in self._stragglers if not t.done())

    async def run(
        self,
        budget_seconds: float,
        drain_timeout_seconds: float = 10.0,
        *,
        stop_when_drained: bool = True,
    ) -> WorkerRunStats:
        """Consume batches until the queue is drained or the budget expires."""
        stats = WorkerRunStats()
        stop_event = asyncio.Event()
        started = time.monotonic()

        workers = [
            asyncio.create_task(
                self._worker_loop(i, stop_event, stats, stop_when_drained),
                name=f"batch-worker-{i}",
            )
            for i in range(self._concurrency)
        ]

        _, pending = await asyncio.wait(workers, timeout=budget_seconds)
        if pending:
            stats.budget_expired = True
            stop_event.set()
            logger.info(
                "Processing budget of %.1fs expired; draining %d workers",
                budget_seconds,
                len(pending),
            )
            _, pending = await asyncio.wait(pending, timeout=drain_timeout_seconds)
            if pending:
                stats.stragglers = len(pending)
                self._stragglers.update(pending)
                for task in pending:
                    task.add_done_callback(self._stragglers.discard)
                logger.warning("%d workers still busy after drain timeout; leaving them detached", len(pending))

        stats.duration_seconds = time.monotonic() - started
        logger.info(
            "Worker run finished in %.1fs: batches=%d retried=%d dropped=%d mints=%d skipped=%d failed=%d alerts=%d",
            stats.duration_seconds,
            stats.batches_completed,
            stats.batches_retried,
            stats.batches_dropped,
            stats.mints_processed,
            stats.mints_skipped,
            stats.mints_failed,
            stats.alerts_triggered,
        )
        return stats

    async def _worker_loop(
        self,
        worker_id: int,
        stop_event: asyncio.Event,
        stats: WorkerRunStats,
        stop_when_drained: bool,
    ) -> None:
        while not stop_event.is_set():
            try:
                delivery = await self._queue.receive(self._receive_timeout)
                if delivery is None:
                    if stop_when_drained and await self._queue.pending_count() == 0:
                        logger.debug("Worker %d: queue drained", worker_id)
                        return
                    continue
                await self._handle(delivery, stop_event, stats)
            except InfrastructureError as e:
                logger.error("Worker %d: queue unavailable: %s", worker_id, e)
                await asyncio.sleep(self._receive_timeout)

    async def _handle(self, delivery: Delivery, stop_event: asyncio.Event, stats: WorkerRunStats) -> None:
        batch = delivery.batch
        try:
            result = await self._processor.process(batch, should_stop=stop_event.is_set)
        except Exception as e:
            await self._retry_or_drop(delivery, e, stats)
            return

        stats.record(result)
        if result.remaining:
            await self._queue.enqueue(batch.with_mints(result.remaining))
        await self._queue.ack(delivery)

    async def _retry_or_drop(self, delivery: Delivery, error: Exception, stats: WorkerRunStats) -> None:
        batch = delivery.batch
        if self._retry.should_retry(batch.attempt):
            delay = self._retry.delay_for(batch.attempt)
            logger.warning(
                "Batch %s failed on attempt %d/%d (%s); retrying in %.1fs",
                batch.id,
                batch.attempt,
                self._retry.max_attempts,
                error,
                delay,
            )
            await self._queue.requeue(delivery, delay)
            stats.batches_retried += 1
            return

        logger.error(
            "Dropping batch %s after %d attempts: %s (mints: %s)",
            batch.id,
            batch.attempt,
            error,
            ", ".join(batch.mints),
        )
        await self._queue.ack(delivery)
        stats.batches_dropped += 1

    async def shutdown(self) -> None:
        """Cancel detached workers; their open transactions roll back."""
        stragglers = [t for t in self._stragglers if not t.done()]
        for task in stragglers:
            task.cancel()
        for task in stragglers:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._stragglers.clear()
        if stragglers:
            logger.info("Cancelled %d detached workers", len(stragglers))
