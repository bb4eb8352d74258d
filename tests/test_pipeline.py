"""Tests for the service orchestrator."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from token_metrics_tracker.alerter.channels import LogChannel, SmtpEmailChannel, WebhookChannel
from token_metrics_tracker.config import (
    DatabaseSettings,
    NotificationSettings,
    QueueSettings,
    Settings,
    TrackingSettings,
    WorkerSettings,
)
from token_metrics_tracker.pipeline import ServiceState, TrackerService
from token_metrics_tracker.queue.memory import InMemoryQueue
from token_metrics_tracker.storage.repos import AlertRuleRepository, TokenMetricsRepository

# ============================================================================
# Fixtures
# ============================================================================


def _settings(**overrides) -> Settings:
    values = dict(
        database=DatabaseSettings(DATABASE_URL="sqlite+aiosqlite:///:memory:"),
        queue=QueueSettings(QUEUE_TRANSPORT="memory", QUEUE_RECEIVE_TIMEOUT_SECONDS=0.01),
        worker=WorkerSettings(WORKER_BATCH_SIZE=2, WORKER_CONCURRENCY=2, WORKER_BUDGET_SECONDS=10),
        tracking=TrackingSettings(TRACKED_MINTS="Mint1,Mint2,Mint3"),
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return _settings()


@pytest.fixture
def channel():
    mock = AsyncMock()
    mock.name = "mock"
    mock.send.return_value = True
    return mock


@pytest.fixture
async def service(settings, db, fake_provider, channel):
    svc = TrackerService(
        settings,
        db=db,
        client=fake_provider.client(),
        queue=InMemoryQueue(),
        channel=channel,
    )
    await svc.start()
    yield svc
    await svc.stop()


async def _count(db, mint: str) -> int:
    async with db.get_async_session() as session:
        return await TokenMetricsRepository(session).count_for_mint(mint)


def _recent() -> datetime:
    return datetime.now(UTC) - timedelta(minutes=5)


# ============================================================================
# Lifecycle Tests
# ============================================================================


class TestServiceLifecycle:
    """Tests for service lifecycle methods."""

    def test_initial_state_is_stopped(self, settings) -> None:
        service = TrackerService(settings)
        assert service.state == ServiceState.STOPPED
        assert service.is_running is False

    def test_components_unavailable_before_start(self, settings) -> None:
        service = TrackerService(settings)
        with pytest.raises(RuntimeError, match="not started"):
            _ = service.db

    @pytest.mark.asyncio
    async def test_cannot_start_when_not_stopped(self, settings) -> None:
        service = TrackerService(settings)
        service._state = ServiceState.RUNNING

        with pytest.raises(RuntimeError, match="Cannot start service"):
            await service.start()

    @pytest.mark.asyncio
    async def test_stop_when_already_stopped(self, settings) -> None:
        service = TrackerService(settings)
        await service.stop()
        assert service.state == ServiceState.STOPPED

    @pytest.mark.asyncio
    async def test_start_and_stop(self, service) -> None:
        assert service.is_running
        assert service.stats.started_at is not None

        await service.stop()

        assert service.state == ServiceState.STOPPED

    @pytest.mark.asyncio
    async def test_context_manager_calls_start_and_stop(self, settings) -> None:
        service = TrackerService(settings)
        service.start = AsyncMock()
        service.stop = AsyncMock()

        async with service:
            service.start.assert_called_once()

        service.stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_start_failure_sets_error_state(self, settings) -> None:
        service = TrackerService(settings)
        with (
            patch.object(TrackerService, "_initialize_components", side_effect=RuntimeError("no db")),
            pytest.raises(RuntimeError, match="no db"),
        ):
            await service.start()

        assert service.state == ServiceState.ERROR
        assert service.stats.last_error == "no db"


class TestNotificationChannelSelection:
    """Tests for building the notification channel from settings."""

    def test_dry_run_forces_log_channel(self) -> None:
        settings = _settings(
            notify=NotificationSettings(NOTIFY_CHANNEL="webhook", NOTIFY_WEBHOOK_URL="https://hooks.test/x"),
            DRY_RUN=True,
        )
        assert isinstance(TrackerService(settings)._build_notification_channel(), LogChannel)

    def test_webhook_channel(self) -> None:
        settings = _settings(
            notify=NotificationSettings(NOTIFY_CHANNEL="webhook", NOTIFY_WEBHOOK_URL="https://hooks.test/x"),
        )
        assert isinstance(TrackerService(settings)._build_notification_channel(), WebhookChannel)

    def test_smtp_channel(self) -> None:
        settings = _settings(notify=NotificationSettings(NOTIFY_CHANNEL="smtp", NOTIFY_SMTP_HOST="smtp.test"))
        assert isinstance(TrackerService(settings)._build_notification_channel(), SmtpEmailChannel)

    def test_dry_run_override(self) -> None:
        settings = _settings(
            notify=NotificationSettings(NOTIFY_CHANNEL="smtp", NOTIFY_SMTP_HOST="smtp.test"),
        )
        service = TrackerService(settings, dry_run=True)
        assert isinstance(service._build_notification_channel(), LogChannel)


# ============================================================================
# Cycle Tests
# ============================================================================


class TestRunCycle:
    """End-to-end cycles over in-memory storage, queue and provider."""

    @pytest.mark.asyncio
    async def test_cycle_ingests_all_tracked_mints(self, service, fake_provider, db) -> None:
        for mint in ("Mint1", "Mint2", "Mint3"):
            fake_provider.add(mint, detected_at=_recent())

        run_stats = await service.run_cycle()

        assert run_stats.mints_processed == 3
        assert service.stats.batches_dispatched == 2
        assert service.stats.cycles_completed == 1
        for mint in ("Mint1", "Mint2", "Mint3"):
            assert await _count(db, mint) == 1

    @pytest.mark.asyncio
    async def test_second_cycle_skips_unchanged_reports(self, service, fake_provider, db) -> None:
        for mint in ("Mint1", "Mint2", "Mint3"):
            fake_provider.add(mint, detected_at=_recent())

        await service.run_cycle()
        second = await service.run_cycle()

        assert second.mints_processed == 0
        assert second.mints_skipped == 3
        assert await _count(db, "Mint1") == 1

    @pytest.mark.asyncio
    async def test_failing_mint_does_not_block_batch(self, service, fake_provider, db) -> None:
        for mint in ("Mint1", "Mint2", "Mint3"):
            fake_provider.add(mint, detected_at=_recent())
        fake_provider.failures[("Mint2", "report")] = 500

        run_stats = await service.run_cycle()

        assert run_stats.mints_processed == 2
        assert run_stats.mints_failed == 1
        assert await _count(db, "Mint1") == 1
        assert await _count(db, "Mint2") == 0
        assert await _count(db, "Mint3") == 1

    @pytest.mark.asyncio
    async def test_alert_fires_once_across_cycles(self, service, fake_provider, db, channel) -> None:
        async with db.get_async_session() as session:
            await AlertRuleRepository(session).create(
                user_email="a@example.com",
                mint="Mint1",
                parameter="price",
                comparison="LESS_THAN",
                threshold=0.5,
            )
        for mint in ("Mint1", "Mint2", "Mint3"):
            fake_provider.add(mint, price=0.3, detected_at=_recent())

        first = await service.run_cycle()
        fake_provider.add("Mint1", price=0.2, detected_at=datetime.now(UTC) + timedelta(minutes=1))
        second = await service.run_cycle()

        assert first.alerts_triggered == 1
        assert second.mints_processed == 1
        assert second.alerts_triggered == 0
        assert channel.send.await_count == 1

    @pytest.mark.asyncio
    async def test_overlapping_cycle_is_skipped(self, service) -> None:
        async with service._cycle_lock:
            assert await service.run_cycle() is None

    @pytest.mark.asyncio
    async def test_dispatch_requires_start(self, settings) -> None:
        with pytest.raises(RuntimeError, match="not started"):
            await TrackerService(settings).dispatch()


class TestBuildQueue:
    """Tests for queue transport selection."""

    @pytest.mark.asyncio
    async def test_memory_transport(self, settings) -> None:
        queue = await TrackerService(settings)._build_queue()
        assert isinstance(queue, InMemoryQueue)

    @pytest.mark.asyncio
    async def test_redis_transport_recovers_in_flight(self) -> None:
        settings = _settings(queue=QueueSettings(QUEUE_TRANSPORT="redis"))
        redis = AsyncMock()
        redis.lrange.return_value = []

        with patch("token_metrics_tracker.pipeline.Redis") as redis_cls:
            redis_cls.from_url = MagicMock(return_value=redis)
            queue = await TrackerService(settings)._build_queue()

        redis_cls.from_url.assert_called_once_with(settings.redis.url)
        redis.lrange.assert_awaited_once_with("token_metrics:batches:processing", 0, -1)
        assert queue.pending_key == "token_metrics:batches:pending"
        assert queue._lease_seconds == settings.queue.lease_seconds
