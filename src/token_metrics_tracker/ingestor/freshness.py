"""Freshness gate: skip assets whose upstream report is not newer than our snapshot."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from token_metrics_tracker.errors import InfrastructureError
from token_metrics_tracker.storage.database import is_connectivity_error
from token_metrics_tracker.storage.repos import TokenMetricsRepository

if TYPE_CHECKING:
    from token_metrics_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


class FreshnessGate:
    """Decides whether a mint's upstream report is already reflected in storage."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def is_stale(self, mint: str, upstream_detected_at: datetime | None) -> bool:
        """Return True when ingestion should be skipped.

        Skips only when a prior snapshot exists and the report's detection
        time is not after it. A report without a detection time is ingested.
        """
        if upstream_detected_at is None:
            return False

        try:
            async with self._db.get_async_session() as session:
                last = await TokenMetricsRepository(session).get_latest_timestamp(mint)
        except Exception as e:
            if is_connectivity_error(e):
                raise InfrastructureError(f"metrics store unreachable: {e}") from e
            raise

        if last is None:
            return False

        detected = upstream_detected_at
        if detected.tzinfo is None:
            detected = detected.replace(tzinfo=UTC)

        stale = detected <= last
        if stale:
            logger.info(
                "Mint %s already updated at %s (report detectedAt %s); skipping",
                mint,
                last.isoformat(),
                detected.isoformat(),
            )
        return stale
