"""Partition tracked mints into batches and enqueue them."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from token_metrics_tracker.errors import InfrastructureError
from token_metrics_tracker.queue.base import TokenBatch
from token_metrics_tracker.storage.database import is_connectivity_error
from token_metrics_tracker.storage.repos import AlertRuleRepository

if TYPE_CHECKING:
    from collections.abc import Sequence

    from token_metrics_tracker.queue.base import Queue
    from token_metrics_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_TRACKED = 50


def partition(mints: Sequence[str], batch_size: int) -> list[list[str]]:
    """Split mints into contiguous chunks of `batch_size` (the last may be shorter)."""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [list(mints[i : i + batch_size]) for i in range(0, len(mints), batch_size)]


class TrackedAssetSource:
    """Mints to monitor: configured ones plus those referenced by pending alerts."""

    def __init__(
        self,
        db: DatabaseManager | None,
        *,
        configured_mints: Sequence[str] = (),
        include_alert_mints: bool = True,
        max_tracked: int = DEFAULT_MAX_TRACKED,
    ) -> None:
        self._db = db
        self._configured = tuple(configured_mints)
        self._include_alert_mints = include_alert_mints
        self._max_tracked = max_tracked

    async def get_tokens_to_monitor(self) -> list[str]:
        candidates: list[str] = list(self._configured)
        if self._include_alert_mints and self._db is not None:
            try:
                async with self._db.get_async_session() as session:
                    candidates.extend(await AlertRuleRepository(session).list_pending_mints())
            except Exception as e:
                if is_connectivity_error(e):
                    raise InfrastructureError(f"alert store unreachable: {e}") from e
                raise

        mints = list(dict.fromkeys(m for m in candidates if m))[: self._max_tracked]
        logger.info("Found %d tokens to monitor", len(mints))
        return mints


class BatchDispatcher:
    """Turns the tracked set into queued batches."""

    def __init__(self, queue: Queue, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self._queue = queue
        self._batch_size = batch_size

    async def dispatch(self, tracked_mints: Sequence[str], batch_size: int | None = None) -> int:
        """Enqueue all tracked mints in fixed-size batches.

        Returns:
            Number of batches queued.

        Raises:
            InfrastructureError: If the queue rejects the batches.
        """
        if not tracked_mints:
            logger.info("No tokens to queue")
            return 0

        size = batch_size or self._batch_size
        batches = [TokenBatch(mints=tuple(chunk)) for chunk in partition(tracked_mints, size)]
        try:
            await self._queue.enqueue_many(batches)
        except InfrastructureError:
            logger.error("Failed to send %d batches to the queue", len(batches))
            raise
        logger.info("Queued %d batches for %d tokens", len(batches), len(tracked_mints))
        return len(batches)
