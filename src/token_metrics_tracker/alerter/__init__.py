"""Alerting layer - rule evaluation and notification delivery."""

from token_metrics_tracker.alerter.channels import (
    LogChannel,
    NotificationChannel,
    SmtpEmailChannel,
    WebhookChannel,
)
from token_metrics_tracker.alerter.dispatcher import DispatchStats, NotificationDispatcher
from token_metrics_tracker.alerter.evaluator import AlertEvaluator
from token_metrics_tracker.alerter.formatter import AlertFormatter
from token_metrics_tracker.alerter.models import (
    Comparison,
    FormattedAlert,
    MetricParameter,
    TriggeredAlert,
)

__all__ = [
    "AlertEvaluator",
    "AlertFormatter",
    "Comparison",
    "DispatchStats",
    "FormattedAlert",
    "LogChannel",
    "MetricParameter",
    "NotificationChannel",
    "NotificationDispatcher",
    "SmtpEmailChannel",
    "TriggeredAlert",
    "WebhookChannel",
]
