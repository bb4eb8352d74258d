"""In-process queue for single-process runs and tests."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from token_metrics_tracker.queue.base import Delivery, Queue, TokenBatch

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)


class InMemoryQueue(Queue):
    """asyncio.Queue-backed transport; delayed retries are re-put by the event loop."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[TokenBatch] = asyncio.Queue()
        self._delayed: set[asyncio.TimerHandle] = set()
        self._in_flight: dict[str, TokenBatch] = {}

    async def enqueue(self, batch: TokenBatch) -> None:
        self._queue.put_nowait(batch)

    async def enqueue_many(self, batches: Sequence[TokenBatch]) -> None:
        for batch in batches:
            self._queue.put_nowait(batch)

    async def receive(self, timeout: float) -> Delivery | None:
        try:
            batch = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except TimeoutError:
            return None
        self._in_flight[batch.id] = batch
        return Delivery(batch=batch, receipt=batch.id)

    async def ack(self, delivery: Delivery) -> None:
        self._in_flight.pop(delivery.batch.id, None)

    async def requeue(self, delivery: Delivery, delay_seconds: float) -> None:
        await self.ack(delivery)
        retry = delivery.batch.next_attempt()
        if delay_seconds <= 0:
            self._queue.put_nowait(retry)
            return

        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def _release() -> None:
            if handle is not None:
                self._delayed.discard(handle)
            self._queue.put_nowait(retry)

        handle = loop.call_later(delay_seconds, _release)
        self._delayed.add(handle)

    async def pending_count(self) -> int:
        return self._queue.qsize() + len(self._delayed)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def close(self) -> None:
        for handle in list(self._delayed):
            handle.cancel()
        self._delayed.clear()
        with contextlib.suppress(asyncio.QueueEmpty):
            while True:
                self._queue.get_nowait()
