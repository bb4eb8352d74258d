"""Alert message formatter.

This module turns a triggered alert into an email-style subject and body,
plus a JSON payload for webhook delivery.
"""

from __future__ import annotations

from token_metrics_tracker.alerter.models import FormattedAlert, TriggeredAlert


def truncate_mint(mint: str, chars: int = 4) -> str:
    """Truncate a mint address to ABCD...WXYZ format."""
    if len(mint) < chars * 2 + 3:
        return mint
    return f"{mint[:chars]}...{mint[-chars:]}"


def format_value(value: float) -> str:
    """Render whole numbers without a trailing `.0`."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}" if abs(value) < 1e-4 else str(value)


class AlertFormatter:
    """Formats triggered alerts for notification channels."""

    def __init__(self, *, symbol_lookup: dict[str, str] | None = None) -> None:
        """Initialize the formatter.

        Args:
            symbol_lookup: Optional mint -> symbol mapping; the mint is used
                when no symbol is known.
        """
        self._symbols = symbol_lookup or {}

    def format(self, alert: TriggeredAlert) -> FormattedAlert:
        rule = alert.rule
        symbol = self._symbols.get(rule.mint, rule.mint)
        condition = f"{alert.comparison.label} {format_value(rule.threshold)}"
        current = format_value(alert.current_value)

        subject = f"Alert Triggered for {symbol}!"
        body = (
            "Your alert condition was met:\n\n"
            f"Token: {rule.mint}\n"
            f"Symbol: {symbol}\n"
            f"Parameter: {alert.parameter.value}\n"
            f"Condition: {condition}\n"
            f"Current Value: {current}\n\n"
            "This alert will not trigger again unless reset."
        )
        payload: dict[str, object] = {
            "alert_id": rule.id,
            "user_email": rule.user_email,
            "mint": rule.mint,
            "parameter": alert.parameter.value,
            "comparison": alert.comparison.value,
            "threshold": rule.threshold,
            "current_value": alert.current_value,
            "summary": f"{truncate_mint(rule.mint)} {alert.parameter.value} {condition} (now {current})",
        }
        return FormattedAlert(to=rule.user_email, subject=subject, body=body, payload=payload)
