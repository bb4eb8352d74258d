"""Batch queue - contract and transports."""

from token_metrics_tracker.queue.base import Delivery, Queue, TokenBatch
from token_metrics_tracker.queue.memory import InMemoryQueue
from token_metrics_tracker.queue.redis_queue import RedisListQueue

__all__ = [
    "Delivery",
    "InMemoryQueue",
    "Queue",
    "RedisListQueue",
    "TokenBatch",
]
