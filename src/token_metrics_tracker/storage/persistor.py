"""Atomic multi-table write of one asset's ingestion cycle."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from token_metrics_tracker.errors import InfrastructureError, PersistenceError
from token_metrics_tracker.storage.database import is_connectivity_error
from token_metrics_tracker.storage.repos import (
    HolderMovementDTO,
    HolderMovementRepository,
    InsiderGraphNodeDTO,
    InsiderGraphRepository,
    LiquidityEventDTO,
    LiquidityEventRepository,
    TokenMetricsDTO,
    TokenMetricsRepository,
)

if TYPE_CHECKING:
    from token_metrics_tracker.ingestor.models import UpstreamBundle
    from token_metrics_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

MAX_HOLDERS_PER_SNAPSHOT = 5
MAX_INSIDER_NODES_PER_SNAPSHOT = 25


def build_snapshot(mint: str, bundle: UpstreamBundle, timestamp: datetime) -> TokenMetricsDTO:
    report = bundle.report
    return TokenMetricsDTO(
        mint=mint,
        timestamp=timestamp,
        price=bundle.price,
        total_market_liquidity=report.total_market_liquidity,
        total_holders=report.total_holders,
        score=report.score,
        score_normalised=report.score_normalised,
        upvotes=bundle.votes.up,
        downvotes=bundle.votes.down,
    )


def build_holders(mint: str, bundle: UpstreamBundle, timestamp: datetime) -> list[HolderMovementDTO]:
    ranked = sorted(bundle.report.top_holders, key=lambda h: h.pct, reverse=True)
    return [
        HolderMovementDTO(
            mint=mint,
            timestamp=timestamp,
            address=h.address,
            amount=h.amount,
            pct=h.pct,
            insider=h.insider,
        )
        for h in ranked[:MAX_HOLDERS_PER_SNAPSHOT]
    ]


def build_liquidity_event(mint: str, bundle: UpstreamBundle, timestamp: datetime) -> LiquidityEventDTO | None:
    market = bundle.report.primary_market
    if market is None:
        return None
    locker = bundle.report.primary_locker
    return LiquidityEventDTO(
        mint=mint,
        timestamp=timestamp,
        market_pubkey=market.pubkey,
        lp_locked=market.lp_locked,
        lp_locked_pct=market.lp_locked_pct,
        usdc_locked=locker.usdc_locked if locker else None,
        unlock_date=locker.unlock_date if locker else None,
    )


def build_insider_nodes(mint: str, bundle: UpstreamBundle, timestamp: datetime) -> list[InsiderGraphNodeDTO]:
    return [
        InsiderGraphNodeDTO(
            mint=mint,
            timestamp=timestamp,
            node_id=node.node_id,
            participant=node.participant,
            holdings=node.holdings,
        )
        for node in bundle.insider_graph.nodes[:MAX_INSIDER_NODES_PER_SNAPSHOT]
    ]


class MetricsPersistor:
    """Writes a snapshot and its detail rows as a single transaction.

    Either every row of the cycle is committed under one timestamp, or none
    of them is.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def persist(
        self,
        mint: str,
        bundle: UpstreamBundle,
        *,
        timestamp: datetime | None = None,
    ) -> TokenMetricsDTO:
        """Persist one cycle for a mint and return the written snapshot.

        Raises:
            PersistenceError: If any write fails; nothing is kept.
            InfrastructureError: If the store is unreachable.
        """
        ts = timestamp or datetime.now(UTC)

        snapshot = build_snapshot(mint, bundle, ts)
        holders = build_holders(mint, bundle, ts)
        liquidity = build_liquidity_event(mint, bundle, ts)
        nodes = build_insider_nodes(mint, bundle, ts)

        if liquidity is None:
            logger.warning("Mint %s has no market data in report; no liquidity event recorded", mint)

        try:
            async with self._db.get_async_session() as session:
                snapshot = await TokenMetricsRepository(session).insert(snapshot)
                await HolderMovementRepository(session).insert_many(holders)
                if liquidity is not None:
                    await LiquidityEventRepository(session).insert(liquidity)
                await InsiderGraphRepository(session).insert_many(nodes)
        except Exception as e:
            if is_connectivity_error(e):
                raise InfrastructureError(f"metrics store unreachable while persisting {mint}: {e}") from e
            raise PersistenceError(f"failed to persist snapshot for {mint}: {e}") from e

        logger.info(
            "Persisted snapshot for %s at %s (holders=%d, liquidity=%s, insider_nodes=%d)",
            mint,
            ts.isoformat(),
            len(holders),
            "yes" if liquidity is not None else "no",
            len(nodes),
        )
        return snapshot
