"""Per-batch ingestion: fetch, gate, persist and evaluate each mint in turn."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from token_metrics_tracker.errors import InfrastructureError, PersistenceError, UpstreamFetchError
from token_metrics_tracker.ingestor.models import UpstreamBundle

if TYPE_CHECKING:
    from token_metrics_tracker.alerter.evaluator import AlertEvaluator
    from token_metrics_tracker.ingestor.freshness import FreshnessGate
    from token_metrics_tracker.ingestor.provider_client import ProviderClient
    from token_metrics_tracker.queue.base import TokenBatch
    from token_metrics_tracker.storage.persistor import MetricsPersistor

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Outcome of processing one batch."""

    batch_id: str
    processed: int = 0
    skipped_stale: int = 0
    failed: int = 0
    alerts_triggered: int = 0
    remaining: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def interrupted(self) -> bool:
        return bool(self.remaining)


class BatchProcessor:
    """Runs the ingestion cycle for every mint of a batch.

    A failure on one mint never stops the others. Only InfrastructureError
    escapes, so the batch can be redelivered as a whole.
    """

    def __init__(
        self,
        client: ProviderClient,
        gate: FreshnessGate,
        persistor: MetricsPersistor,
        evaluator: AlertEvaluator,
    ) -> None:
        self._client = client
        self._gate = gate
        self._persistor = persistor
        self._evaluator = evaluator

    async def process_mint(self, mint: str) -> tuple[bool, int]:
        """Ingest one mint.

        Returns:
            (ingested, alerts_triggered); ingested is False when the stored
            snapshot is already up to date.
        """
        report = await self._client.fetch_report(mint)
        if await self._gate.is_stale(mint, report.detected_at):
            return False, 0

        price, votes, graph = await self._client.fetch_secondary(mint)
        bundle = UpstreamBundle(report=report, price=price, votes=votes, insider_graph=graph)

        snapshot = await self._persistor.persist(mint, bundle)
        triggered = await self._evaluator.evaluate(mint, snapshot)
        return True, len(triggered)

    async def process(
        self,
        batch: TokenBatch,
        *,
        should_stop: Callable[[], bool] | None = None,
    ) -> BatchResult:
        """Process mints in order until done or asked to stop.

        Raises:
            InfrastructureError: If the store or queue became unreachable.
        """
        result = BatchResult(batch_id=batch.id)
        mints = list(batch.mints)
        logger.info("Processing batch %s (attempt %d): %d mints", batch.id, batch.attempt, len(mints))

        for index, mint in enumerate(mints):
            if should_stop is not None and should_stop():
                result.remaining = mints[index:]
                logger.warning(
                    "Batch %s interrupted; %d mints left unprocessed",
                    batch.id,
                    len(result.remaining),
                )
                break

            try:
                ingested, alerts = await self.process_mint(mint)
            except InfrastructureError:
                raise
            except UpstreamFetchError as e:
                result.failed += 1
                result.errors[mint] = str(e)
                logger.error("Upstream fetch failed for %s: %s", mint, e)
                continue
            except PersistenceError as e:
                result.failed += 1
                result.errors[mint] = str(e)
                logger.error("Persistence failed for %s: %s", mint, e)
                continue
            except Exception as e:
                result.failed += 1
                result.errors[mint] = f"{type(e).__name__}: {e}"
                logger.exception("Unexpected error processing %s", mint)
                continue

            if ingested:
                result.processed += 1
                result.alerts_triggered += alerts
            else:
                result.skipped_stale += 1

        logger.info(
            "Finished batch %s: processed=%d skipped=%d failed=%d alerts=%d",
            batch.id,
            result.processed,
            result.skipped_stale,
            result.failed,
            result.alerts_triggered,
        )
        return result
