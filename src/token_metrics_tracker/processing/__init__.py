"""Batch processing - dispatch, per-batch ingestion and the worker pool."""

from token_metrics_tracker.processing.dispatcher import BatchDispatcher, TrackedAssetSource, partition
from token_metrics_tracker.processing.processor import BatchProcessor, BatchResult
from token_metrics_tracker.processing.worker import BatchWorkerPool, RetryPolicy, WorkerRunStats

__all__ = [
    "BatchDispatcher",
    "BatchProcessor",
    "BatchResult",
    "BatchWorkerPool",
    "RetryPolicy",
    "TrackedAssetSource",
    "WorkerRunStats",
    "partition",
]
