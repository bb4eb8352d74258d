"""Notification dispatch for triggered alerts.

Delivery is best-effort: a failed send is logged and counted, never
retried, and never changes the state of the rule that fired.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from token_metrics_tracker.alerter.formatter import AlertFormatter
from token_metrics_tracker.alerter.models import Comparison, MetricParameter, TriggeredAlert
from token_metrics_tracker.errors import NotificationError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from token_metrics_tracker.alerter.channels import NotificationChannel
    from token_metrics_tracker.storage.repos import AlertRuleDTO

logger = logging.getLogger(__name__)


@dataclass
class DispatchStats:
    sent: int = 0
    failed: int = 0


class NotificationDispatcher:
    """Formats triggered alerts and hands them to a channel."""

    def __init__(self, channel: NotificationChannel, formatter: AlertFormatter | None = None) -> None:
        self._channel = channel
        self._formatter = formatter or AlertFormatter()
        self.stats = DispatchStats()

    @property
    def channel(self) -> NotificationChannel:
        return self._channel

    def _fail(self, alert_id: str, user_email: str, error: Exception) -> bool:
        self.stats.failed += 1
        logger.error("Failed to send notification for alert %s to %s: %s", alert_id, user_email, error)
        return False

    async def notify(self, rule: AlertRuleDTO, current_value: float) -> bool:
        """Send one notification. Returns whether the channel accepted it."""
        parameter = MetricParameter.parse(rule.parameter)
        comparison = Comparison.parse(rule.comparison)
        if parameter is None or comparison is None:
            error = NotificationError(f"cannot describe rule ({rule.parameter!r}, {rule.comparison!r})")
            return self._fail(rule.id, rule.user_email, error)
        alert = TriggeredAlert(rule=rule, parameter=parameter, comparison=comparison, current_value=current_value)
        return await self.deliver(alert)

    async def deliver(self, alert: TriggeredAlert) -> bool:
        try:
            message = self._formatter.format(alert)
            accepted = await self._channel.send(message.to, message.subject, message.body, payload=message.payload)
            if not accepted:
                raise NotificationError(f"{self._channel.name} channel rejected notification")
        except Exception as e:
            return self._fail(alert.rule.id, alert.rule.user_email, e)

        self.stats.sent += 1
        logger.info(
            "Notification sent for alert %s to %s via %s",
            alert.rule.id,
            alert.rule.user_email,
            self._channel.name,
        )
        return True

    async def deliver_many(self, alerts: Sequence[TriggeredAlert]) -> int:
        """Send notifications concurrently. Returns how many were accepted."""
        if not alerts:
            return 0
        results = await asyncio.gather(*(self.deliver(a) for a in alerts))
        return sum(1 for ok in results if ok)

    async def close(self) -> None:
        await self._channel.close()
