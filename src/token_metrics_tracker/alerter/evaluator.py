"""Threshold evaluation of alert rules against a fresh snapshot."""

from __future__ import annotations

import logging
import math
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from token_metrics_tracker.alerter.models import Comparison, MetricParameter, TriggeredAlert
from token_metrics_tracker.errors import AlertEvaluationWarning, InfrastructureError, PersistenceError
from token_metrics_tracker.storage.database import is_connectivity_error
from token_metrics_tracker.storage.repos import AlertRuleRepository

if TYPE_CHECKING:
    from token_metrics_tracker.alerter.dispatcher import NotificationDispatcher
    from token_metrics_tracker.storage.database import DatabaseManager
    from token_metrics_tracker.storage.repos import AlertRuleDTO, TokenMetricsDTO

logger = logging.getLogger(__name__)


def resolve(rule: AlertRuleDTO, snapshot: TokenMetricsDTO) -> TriggeredAlert | None:
    """Check one rule against a snapshot.

    Returns the triggered alert when the condition holds, None when it does
    not.

    Raises:
        AlertEvaluationWarning: If the rule cannot be evaluated.
    """
    parameter = MetricParameter.parse(rule.parameter)
    if parameter is None:
        raise AlertEvaluationWarning(rule.id, f"unknown parameter {rule.parameter!r}")

    raw = parameter.read(snapshot)
    if raw is None:
        raise AlertEvaluationWarning(rule.id, f"parameter {rule.parameter!r} has no value")
    try:
        value = float(raw)
    except (TypeError, ValueError) as e:
        raise AlertEvaluationWarning(rule.id, f"value {raw!r} is not numeric") from e
    if math.isnan(value):
        raise AlertEvaluationWarning(rule.id, f"value of {rule.parameter!r} is NaN")

    comparison = Comparison.parse(rule.comparison)
    if comparison is None:
        raise AlertEvaluationWarning(rule.id, f"unknown comparison {rule.comparison!r}")

    logger.debug(
        "Evaluating alert %s: %s current=%s %s threshold=%s",
        rule.id,
        parameter.value,
        value,
        comparison.value,
        rule.threshold,
    )
    if not comparison.holds(value, rule.threshold):
        return None
    return TriggeredAlert(rule=rule, parameter=parameter, comparison=comparison, current_value=value)


class AlertEvaluator:
    """Evaluates a mint's pending rules and fires each at most once.

    Triggered rules are stamped in one statement and that transaction is
    committed before any notification goes out. Only the rules this call
    stamped are notified, so a rule fires once even when two evaluations of
    the same mint overlap.
    """

    def __init__(self, db: DatabaseManager, dispatcher: NotificationDispatcher) -> None:
        self._db = db
        self._dispatcher = dispatcher

    async def _load_pending(self, mint: str) -> list[AlertRuleDTO]:
        try:
            async with self._db.get_async_session() as session:
                return await AlertRuleRepository(session).list_pending_for_mint(mint)
        except Exception as e:
            if is_connectivity_error(e):
                raise InfrastructureError(f"alert store unreachable: {e}") from e
            raise PersistenceError(f"failed to load alerts for {mint}: {e}") from e

    async def _mark_triggered(self, mint: str, alert_ids: list[str], at: datetime) -> list[str]:
        try:
            async with self._db.get_async_session() as session:
                return await AlertRuleRepository(session).mark_triggered(alert_ids, at=at)
        except Exception as e:
            if is_connectivity_error(e):
                raise InfrastructureError(f"alert store unreachable: {e}") from e
            raise PersistenceError(f"failed to mark alerts triggered for {mint}: {e}") from e

    async def evaluate(self, mint: str, snapshot: TokenMetricsDTO) -> list[TriggeredAlert]:
        """Evaluate pending rules for a mint and notify the ones that fired.

        Raises:
            PersistenceError: If the triggered state cannot be written; no
                notification is sent in that case.
            InfrastructureError: If the store is unreachable.
        """
        rules = await self._load_pending(mint)
        if not rules:
            logger.debug("No active alerts for %s", mint)
            return []

        triggered: list[TriggeredAlert] = []
        for rule in rules:
            try:
                alert = resolve(rule, snapshot)
            except AlertEvaluationWarning as w:
                logger.warning("Alert %s for %s skipped: %s", w.rule_id, mint, w.reason)
                continue
            if alert is not None:
                logger.info("Condition met for alert %s (%s %s)", rule.id, rule.parameter, rule.comparison)
                triggered.append(alert)

        if not triggered:
            return []

        now = datetime.now(UTC)
        marked = set(await self._mark_triggered(mint, [t.rule.id for t in triggered], now))
        if len(marked) < len(triggered):
            logger.info(
                "%d of %d alerts for %s were already triggered elsewhere",
                len(triggered) - len(marked),
                len(triggered),
                mint,
            )
        fired = [t for t in triggered if t.rule.id in marked]
        logger.info("Marked %d alerts triggered for %s", len(fired), mint)

        await self._dispatcher.deliver_many(fired)
        return fired
