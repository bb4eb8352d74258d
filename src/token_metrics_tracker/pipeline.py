"""Service orchestrator for the Token Metrics Tracker.

This module provides the TrackerService class that wires together the
provider client, storage, alerting and the batch queue, and runs
dispatch + processing cycles.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis

from token_metrics_tracker.alerter.channels import (
    LogChannel,
    NotificationChannel,
    SmtpEmailChannel,
    WebhookChannel,
)
from token_metrics_tracker.alerter.dispatcher import NotificationDispatcher
from token_metrics_tracker.alerter.evaluator import AlertEvaluator
from token_metrics_tracker.alerter.formatter import AlertFormatter
from token_metrics_tracker.config import Settings, get_settings
from token_metrics_tracker.errors import InfrastructureError
from token_metrics_tracker.ingestor.freshness import FreshnessGate
from token_metrics_tracker.ingestor.provider_client import ProviderClient
from token_metrics_tracker.processing.dispatcher import BatchDispatcher, TrackedAssetSource
from token_metrics_tracker.processing.processor import BatchProcessor
from token_metrics_tracker.processing.worker import BatchWorkerPool, RetryPolicy, WorkerRunStats
from token_metrics_tracker.queue.memory import InMemoryQueue
from token_metrics_tracker.queue.redis_queue import RedisListQueue
from token_metrics_tracker.storage.database import DatabaseManager
from token_metrics_tracker.storage.persistor import MetricsPersistor

if TYPE_CHECKING:
    from token_metrics_tracker.queue.base import Queue

logger = logging.getLogger(__name__)


class ServiceState(str, Enum):
    """Service lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class ServiceStats:
    """Statistics for the service."""

    started_at: datetime | None = None
    cycles_completed: int = 0
    batches_dispatched: int = 0
    mints_processed: int = 0
    mints_skipped: int = 0
    mints_failed: int = 0
    alerts_triggered: int = 0
    last_cycle_at: datetime | None = None
    last_error: str | None = None


class TrackerService:
    """Owns every long-lived component and runs ingestion cycles.

    Cycle flow:
        TrackedAssetSource → BatchDispatcher → Queue → BatchWorkerPool → BatchProcessor

    Components may be injected (tests pass an in-memory database, a mocked
    HTTP transport and an in-memory queue); anything not injected is built
    from settings in `start()`.

    Example:
        ```python
        from token_metrics_tracker.config import get_settings
        from token_metrics_tracker.pipeline import TrackerService

        async with TrackerService(get_settings()) as service:
            await service.run_cycle()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        db: DatabaseManager | None = None,
        client: ProviderClient | None = None,
        queue: Queue | None = None,
        channel: NotificationChannel | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            settings: Defaults to the process-wide `get_settings()`.
            dry_run: If True, notifications are only logged. Overrides settings.dry_run.
            db: Pre-built database manager.
            client: Pre-built provider client.
            queue: Pre-built batch queue.
            channel: Pre-built notification channel.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = ServiceState.STOPPED
        self._stats = ServiceStats()

        self._db_manager = db
        self._client = client
        self._queue = queue
        self._channel = channel
        self._owns_db = db is None
        self._owns_client = client is None
        self._owns_queue = queue is None

        # Built in start() unless injected.
        self._redis: Redis | None = None
        self._notification_dispatcher: NotificationDispatcher | None = None
        self._asset_source: TrackedAssetSource | None = None
        self._batch_dispatcher: BatchDispatcher | None = None
        self._processor: BatchProcessor | None = None
        self._worker_pool: BatchWorkerPool | None = None

        # Synchronization
        self._cycle_lock = asyncio.Lock()

    @property
    def state(self) -> ServiceState:
        """Current service state."""
        return self._state

    @property
    def stats(self) -> ServiceStats:
        """Current service statistics."""
        return self._stats

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def is_running(self) -> bool:
        """Check if service is running."""
        return self._state == ServiceState.RUNNING

    @property
    def db(self) -> DatabaseManager:
        if self._db_manager is None:
            raise RuntimeError("Service not started")
        return self._db_manager

    @property
    def client(self) -> ProviderClient:
        if self._client is None:
            raise RuntimeError("Service not started")
        return self._client

    @property
    def queue(self) -> Queue:
        if self._queue is None:
            raise RuntimeError("Service not started")
        return self._queue

    async def start(self) -> None:
        """Start the service.

        Raises:
            RuntimeError: If the service is already running.
            Exception: Whatever a component raised while being built; partial state is released first.
        """
        if self._state != ServiceState.STOPPED:
            raise RuntimeError(f"Cannot start service in state {self._state}")

        self._state = ServiceState.STARTING
        logger.info("Starting tracker service...")

        try:
            await self._initialize_components()
            self._stats.started_at = datetime.now(UTC)
            self._state = ServiceState.RUNNING
            logger.info("Tracker service started successfully")
        except Exception as e:
            self._state = ServiceState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start tracker service: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the service, cancelling any detached workers."""
        if self._state == ServiceState.STOPPED:
            return

        self._state = ServiceState.STOPPING
        logger.info("Stopping tracker service...")

        await self._cleanup()

        self._state = ServiceState.STOPPED
        logger.info("Tracker service stopped")

    async def _initialize_components(self) -> None:
        """Initialize all service components."""
        settings = self._settings

        if self._db_manager is None:
            logger.debug("Creating database manager for %s", settings.database.url.split("@")[-1])
            self._db_manager = DatabaseManager(settings.database.url)

        if self._client is None:
            logger.debug("Creating provider client (%.1f req/s)", settings.provider.requests_per_second)
            self._client = ProviderClient(
                risk_api_url=settings.provider.risk_api_url,
                price_api_url=settings.provider.price_api_url,
                timeout_seconds=settings.provider.timeout_seconds,
                requests_per_second=settings.provider.requests_per_second,
            )

        if self._queue is None:
            self._queue = await self._build_queue()

        channel = self._channel or self._build_notification_channel()
        self._notification_dispatcher = NotificationDispatcher(channel, AlertFormatter())

        self._asset_source = TrackedAssetSource(
            self._db_manager,
            configured_mints=settings.tracking.mints,
            include_alert_mints=settings.tracking.include_alert_mints,
            max_tracked=settings.tracking.max_tracked,
        )
        self._batch_dispatcher = BatchDispatcher(self._queue, batch_size=settings.worker.batch_size)
        self._processor = BatchProcessor(
            self._client,
            FreshnessGate(self._db_manager),
            MetricsPersistor(self._db_manager),
            AlertEvaluator(self._db_manager, self._notification_dispatcher),
        )
        self._worker_pool = BatchWorkerPool(
            self._queue,
            self._processor,
            concurrency=settings.worker.concurrency,
            retry_policy=RetryPolicy(
                max_attempts=settings.queue.max_attempts,
                backoff_base_seconds=settings.queue.backoff_base_seconds,
            ),
            receive_timeout_seconds=settings.queue.receive_timeout_seconds,
        )
        logger.info("Tracker components ready (queue=%s)", settings.queue.transport)

    async def _build_queue(self) -> Queue:
        settings = self._settings
        if settings.queue.transport == "memory":
            logger.info("Using in-process batch queue")
            return InMemoryQueue()

        logger.debug("Connecting batch queue to Redis")
        self._redis = Redis.from_url(settings.redis.url)
        queue = RedisListQueue(
            self._redis,
            key_prefix=settings.queue.key_prefix,
            lease_seconds=settings.queue.lease_seconds,
        )
        await queue.recover_in_flight()
        return queue

    def _build_notification_channel(self) -> NotificationChannel:
        """Build the configured notification channel."""
        notify = self._settings.notify

        if self._dry_run:
            logger.info("Dry run: notifications will be logged only")
            return LogChannel()

        if notify.channel == "smtp" and notify.smtp_host:
            logger.info("SMTP notification channel enabled")
            return SmtpEmailChannel(
                host=notify.smtp_host,
                port=notify.smtp_port,
                sender=notify.sender,
                username=notify.smtp_username,
                password=notify.smtp_password.get_secret_value() if notify.smtp_password else None,
                starttls=notify.smtp_starttls,
            )

        if notify.channel == "webhook" and notify.webhook_url:
            logger.info("Webhook notification channel enabled")
            return WebhookChannel(notify.webhook_url.get_secret_value())

        if notify.channel != "log":
            logger.warning("Notification channel %s is not configured; logging notifications", notify.channel)
        return LogChannel()

    async def dispatch(self) -> int:
        """Queue batches for every tracked mint. Returns the number of batches."""
        if not self._asset_source or not self._batch_dispatcher:
            raise RuntimeError("Service not started")
        mints = await self._asset_source.get_tokens_to_monitor()
        queued = await self._batch_dispatcher.dispatch(mints)
        self._stats.batches_dispatched += queued
        return queued

    async def work(
        self,
        budget_seconds: float | None = None,
        *,
        stop_when_drained: bool = True,
    ) -> WorkerRunStats:
        """Process queued batches within the configured (or given) budget."""
        if not self._worker_pool:
            raise RuntimeError("Service not started")
        worker = self._settings.worker
        run_stats = await self._worker_pool.run(
            budget_seconds if budget_seconds is not None else worker.budget_seconds,
            worker.drain_timeout_seconds,
            stop_when_drained=stop_when_drained,
        )
        self._stats.mints_processed += run_stats.mints_processed
        self._stats.mints_skipped += run_stats.mints_skipped
        self._stats.mints_failed += run_stats.mints_failed
        self._stats.alerts_triggered += run_stats.alerts_triggered
        return run_stats

    async def run_cycle(self) -> WorkerRunStats | None:
        """Dispatch, then process within budget. Overlapping calls are skipped."""
        if self._cycle_lock.locked():
            logger.warning("Previous cycle still running; skipping")
            return None

        async with self._cycle_lock:
            try:
                await self.dispatch()
                run_stats = await self.work()
            except Exception as e:
                self._stats.last_error = str(e)
                logger.error("Cycle failed: %s", e)
                raise
            self._stats.cycles_completed += 1
            self._stats.last_cycle_at = datetime.now(UTC)
            return run_stats

    async def _cleanup(self) -> None:
        """Release whatever this service created; injected collaborators are left open."""
        if self._worker_pool:
            await self._worker_pool.shutdown()

        if self._notification_dispatcher:
            await self._notification_dispatcher.close()
            self._notification_dispatcher = None

        if self._queue and self._owns_queue:
            try:
                await self._queue.close()
            except InfrastructureError as e:
                logger.warning("Error closing batch queue: %s", e)
            self._queue = None
            self._redis = None

        if self._client and self._owns_client:
            await self._client.close()
            self._client = None

        if self._db_manager and self._owns_db:
            await self._db_manager.dispose_async()
            self._db_manager = None

        logger.debug("Tracker resources released")

    async def __aenter__(self) -> TrackerService:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()
