"""Tests for the Redis list-backed queue."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from token_metrics_tracker.errors import InfrastructureError
from token_metrics_tracker.queue.base import Delivery, TokenBatch
from token_metrics_tracker.queue.redis_queue import RedisListQueue

NOW = 1_000_000.0


@pytest.fixture
def pipe():
    mock = MagicMock()
    mock.execute = AsyncMock()
    return mock


@pytest.fixture
def redis(pipe):
    """AsyncMock standing in for redis.asyncio.Redis."""
    mock = AsyncMock()
    mock.zrangebyscore.return_value = []
    mock.blmove.return_value = None
    mock.lrange.return_value = []
    pipeline_cm = MagicMock()
    pipeline_cm.__aenter__ = AsyncMock(return_value=pipe)
    pipeline_cm.__aexit__ = AsyncMock(return_value=None)
    mock.pipeline = MagicMock(return_value=pipeline_cm)
    return mock


@pytest.fixture
def queue(redis) -> RedisListQueue:
    return RedisListQueue(redis, key_prefix="test:batches", lease_seconds=60, clock=lambda: NOW)


class TestRedisListQueue:
    """Tests for RedisListQueue."""

    @pytest.mark.asyncio
    async def test_enqueue_many_single_push(self, queue, redis) -> None:
        batches = [TokenBatch(mints=("a",)), TokenBatch(mints=("b",))]

        await queue.enqueue_many(batches)

        redis.rpush.assert_awaited_once()
        key, *payloads = redis.rpush.call_args.args
        assert key == "test:batches:pending"
        assert [TokenBatch.from_json(p) for p in payloads] == batches

    @pytest.mark.asyncio
    async def test_receive_moves_to_processing_and_takes_lease(self, queue, redis) -> None:
        batch = TokenBatch(mints=("a",))
        raw = batch.to_json().encode()
        redis.blmove.return_value = raw

        delivery = await queue.receive(timeout=1.0)

        redis.blmove.assert_awaited_once_with(
            "test:batches:pending", "test:batches:processing", 1.0, "LEFT", "RIGHT"
        )
        redis.zadd.assert_awaited_once_with("test:batches:leases", {raw: NOW})
        assert delivery.batch == batch
        assert delivery.receipt == raw

    @pytest.mark.asyncio
    async def test_receive_releases_due_retries_first(self, queue, redis) -> None:
        redis.zrangebyscore.return_value = [b"retry"]
        redis.zrem.return_value = 1

        assert await queue.receive(timeout=0.5) is None

        redis.zrangebyscore.assert_awaited_once_with("test:batches:delayed", 0, NOW)
        redis.zrem.assert_awaited_once_with("test:batches:delayed", b"retry")
        redis.rpush.assert_awaited_once_with("test:batches:pending", b"retry")

    @pytest.mark.asyncio
    async def test_undecodable_batch_is_dropped(self, queue, redis, pipe) -> None:
        redis.blmove.return_value = b"not json"

        assert await queue.receive(timeout=0.5) is None

        pipe.lrem.assert_called_once_with("test:batches:processing", 1, b"not json")
        pipe.zrem.assert_called_once_with("test:batches:leases", b"not json")

    @pytest.mark.asyncio
    async def test_ack_removes_entry_and_lease(self, queue, redis, pipe) -> None:
        await queue.ack(Delivery(batch=TokenBatch(mints=("a",)), receipt=b"raw"))

        redis.pipeline.assert_called_once_with(transaction=True)
        pipe.lrem.assert_called_once_with("test:batches:processing", 1, b"raw")
        pipe.zrem.assert_called_once_with("test:batches:leases", b"raw")
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_requeue_is_transactional(self, queue, redis, pipe) -> None:
        batch = TokenBatch(mints=("a",))

        await queue.requeue(Delivery(batch=batch, receipt=b"raw"), delay_seconds=5)

        redis.pipeline.assert_called_once_with(transaction=True)
        pipe.lrem.assert_called_once_with("test:batches:processing", 1, b"raw")
        pipe.zrem.assert_called_once_with("test:batches:leases", b"raw")
        key, mapping = pipe.zadd.call_args.args
        assert key == "test:batches:delayed"
        ((payload, release_at),) = mapping.items()
        assert TokenBatch.from_json(payload).attempt == 2
        assert release_at == NOW + 5
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_pending_count_includes_delayed(self, queue, redis) -> None:
        redis.llen.return_value = 3
        redis.zcard.return_value = 2
        assert await queue.pending_count() == 5

    @pytest.mark.asyncio
    async def test_redis_errors_become_infrastructure_errors(self, queue, redis) -> None:
        redis.rpush.side_effect = RedisConnectionError("connection refused")

        with pytest.raises(InfrastructureError, match="enqueue"):
            await queue.enqueue(TokenBatch(mints=("a",)))


class TestRecoverInFlight:
    """Tests for reclaiming batches abandoned by dead workers."""

    @pytest.mark.asyncio
    async def test_expired_lease_is_reclaimed(self, queue, redis) -> None:
        redis.lrange.return_value = [b"old"]
        redis.zscore.return_value = NOW - 61
        redis.lrem.return_value = 1

        assert await queue.recover_in_flight() == 1

        redis.lrem.assert_awaited_once_with("test:batches:processing", 1, b"old")
        redis.zrem.assert_awaited_once_with("test:batches:leases", b"old")
        redis.lpush.assert_awaited_once_with("test:batches:pending", b"old")

    @pytest.mark.asyncio
    async def test_fresh_delivery_is_left_with_its_worker(self, queue, redis) -> None:
        redis.lrange.return_value = [b"live"]
        redis.zscore.return_value = NOW - 5

        assert await queue.recover_in_flight() == 0

        redis.lrem.assert_not_awaited()
        redis.lpush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_second_start_does_not_steal_received_batch(self, redis) -> None:
        leases: dict = {}
        processing: list = []
        raw = TokenBatch(mints=("a",)).to_json()

        async def blmove(*args):
            processing.append(raw)
            return raw

        async def zadd(key, mapping, nx=False):
            for member, score in mapping.items():
                if not (nx and member in leases):
                    leases[member] = score

        redis.blmove.side_effect = blmove
        redis.zadd.side_effect = zadd
        redis.lrange.side_effect = lambda *args: list(processing)
        redis.zscore.side_effect = lambda key, member: leases.get(member)

        worker = RedisListQueue(redis, key_prefix="test:batches", lease_seconds=60, clock=lambda: NOW)
        other_process = RedisListQueue(redis, key_prefix="test:batches", lease_seconds=60, clock=lambda: NOW + 1)

        delivery = await worker.receive(timeout=1.0)
        assert await other_process.recover_in_flight() == 0

        assert delivery is not None
        redis.lpush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_entry_without_lease_is_stamped_not_reclaimed(self, queue, redis) -> None:
        redis.lrange.return_value = [b"unstamped"]
        redis.zscore.return_value = None

        assert await queue.recover_in_flight() == 0

        redis.zadd.assert_awaited_once_with("test:batches:leases", {b"unstamped": NOW}, nx=True)
        redis.lpush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_entry_acked_meanwhile_is_not_reclaimed(self, queue, redis) -> None:
        redis.lrange.return_value = [b"old"]
        redis.zscore.return_value = NOW - 600
        redis.lrem.return_value = 0

        assert await queue.recover_in_flight() == 0

        redis.lpush.assert_not_awaited()
