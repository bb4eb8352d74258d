"""Error taxonomy for the ingestion and alert pipeline.

Per-asset errors (UpstreamFetchError, PersistenceError) are recovered by the
batch processor. InfrastructureError is the only error that escapes a batch,
so the queue can redeliver it.
"""

from __future__ import annotations


class TrackerError(Exception):
    """Base exception for all tracker errors."""


class UpstreamFetchError(TrackerError):
    """Raised when an upstream provider resource cannot be fetched."""

    def __init__(self, resource: str, status: int | None, body: str) -> None:
        self.resource = resource
        self.status = status
        self.body = body
        status_text = str(status) if status is not None else "no response"
        super().__init__(f"{resource} fetch failed ({status_text}): {body[:500]}")


class PersistenceError(TrackerError):
    """Raised when a snapshot or an alert state change cannot be written."""


class AlertEvaluationWarning(TrackerError):
    """A rule could not be evaluated against a snapshot and is skipped."""

    def __init__(self, rule_id: str, reason: str) -> None:
        self.rule_id = rule_id
        self.reason = reason
        super().__init__(f"alert {rule_id} skipped: {reason}")


class NotificationError(TrackerError):
    """Raised by notification channels when delivery fails."""


class InfrastructureError(TrackerError):
    """Raised when the store or the queue is unreachable."""


class DuplicateAlertError(TrackerError):
    """Raised when a user already owns an alert rule."""
