"""Redis list-backed reliable queue.

Layout under a key prefix:

- ``{prefix}:pending``: list of batches ready for delivery
- ``{prefix}:processing``: list of batches received but not yet acked
- ``{prefix}:leases``: sorted set of processing entries scored by receive time
- ``{prefix}:delayed``: sorted set of retry batches scored by release time

A worker that dies mid-batch leaves its entry in the processing list.
``recover_in_flight`` moves such entries back to pending once their lease
has expired; entries still within their lease belong to a live worker and
are left alone.
"""

from __future__ import annotations

import contextlib
import logging
import time
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING

from redis.exceptions import RedisError

from token_metrics_tracker.errors import InfrastructureError
from token_metrics_tracker.queue.base import Delivery, Queue, TokenBatch

if TYPE_CHECKING:
    from collections.abc import Sequence

    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "token_metrics:batches"
DEFAULT_LEASE_SECONDS = 900.0


@contextlib.contextmanager
def _redis_errors(action: str) -> Iterator[None]:
    try:
        yield
    except RedisError as e:
        raise InfrastructureError(f"queue {action} failed: {e}") from e


class RedisListQueue(Queue):
    """Queue backed by Redis lists with BLMOVE hand-off."""

    def __init__(
        self,
        redis: Redis,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self._lease_seconds = lease_seconds
        self._clock = clock
        self.pending_key = f"{key_prefix}:pending"
        self.processing_key = f"{key_prefix}:processing"
        self.leases_key = f"{key_prefix}:leases"
        self.delayed_key = f"{key_prefix}:delayed"

    async def enqueue(self, batch: TokenBatch) -> None:
        with _redis_errors("enqueue"):
            await self._redis.rpush(self.pending_key, batch.to_json())

    async def enqueue_many(self, batches: Sequence[TokenBatch]) -> None:
        if not batches:
            return
        with _redis_errors("enqueue"):
            await self._redis.rpush(self.pending_key, *(b.to_json() for b in batches))

    async def _release_due(self) -> int:
        """Move retry batches whose delay has elapsed to the pending list."""
        due = await self._redis.zrangebyscore(self.delayed_key, 0, self._clock())
        released = 0
        for raw in due:
            # Only the caller that removes the entry gets to release it.
            if await self._redis.zrem(self.delayed_key, raw):
                await self._redis.rpush(self.pending_key, raw)
                released += 1
        return released

    async def receive(self, timeout: float) -> Delivery | None:
        with _redis_errors("receive"):
            await self._release_due()
            raw = await self._redis.blmove(
                self.pending_key,
                self.processing_key,
                timeout,
                "LEFT",
                "RIGHT",
            )
            if raw is None:
                return None
            await self._redis.zadd(self.leases_key, {raw: self._clock()})

        try:
            batch = TokenBatch.from_json(raw)
        except (ValueError, TypeError, KeyError) as e:
            logger.error("Dropping undecodable batch %r: %s", raw, e)
            await self._settle(raw, "ack")
            return None
        return Delivery(batch=batch, receipt=raw)

    async def _settle(self, raw: str | bytes, action: str) -> None:
        with _redis_errors(action):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.lrem(self.processing_key, 1, raw)
                pipe.zrem(self.leases_key, raw)
                await pipe.execute()

    async def ack(self, delivery: Delivery) -> None:
        await self._settle(delivery.receipt, "ack")

    async def requeue(self, delivery: Delivery, delay_seconds: float) -> None:
        retry = delivery.batch.next_attempt()
        release_at = self._clock() + max(delay_seconds, 0.0)
        with _redis_errors("requeue"):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.lrem(self.processing_key, 1, delivery.receipt)
                pipe.zrem(self.leases_key, delivery.receipt)
                pipe.zadd(self.delayed_key, {retry.to_json(): release_at})
                await pipe.execute()

    async def pending_count(self) -> int:
        with _redis_errors("count"):
            pending = await self._redis.llen(self.pending_key)
            delayed = await self._redis.zcard(self.delayed_key)
        return int(pending) + int(delayed)

    async def recover_in_flight(self) -> int:
        """Return processing entries whose lease expired to the front of pending.

        An entry with no lease (its receiver stopped between the move and the
        stamp) is stamped now and reclaimed by a later pass if still unacked.
        """
        now = self._clock()
        recovered = 0
        with _redis_errors("recover"):
            for raw in await self._redis.lrange(self.processing_key, 0, -1):
                leased_at = await self._redis.zscore(self.leases_key, raw)
                if leased_at is None:
                    await self._redis.zadd(self.leases_key, {raw: now}, nx=True)
                    continue
                if now - float(leased_at) < self._lease_seconds:
                    continue
                # Only the caller that removes the entry gets to reclaim it.
                if await self._redis.lrem(self.processing_key, 1, raw):
                    await self._redis.zrem(self.leases_key, raw)
                    await self._redis.lpush(self.pending_key, raw)
                    recovered += 1
        if recovered:
            logger.warning("Recovered %d in-flight batches with expired leases", recovered)
        return recovered

    async def close(self) -> None:
        with _redis_errors("close"):
            await self._redis.aclose()
