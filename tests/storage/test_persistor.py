"""Tests for the atomic snapshot writer."""

from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from token_metrics_tracker.errors import PersistenceError
from token_metrics_tracker.ingestor.models import InsiderGraph, TokenReport, UpstreamBundle, VoteTally
from token_metrics_tracker.storage.models import (
    HolderMovementModel,
    InsiderGraphNodeModel,
    LiquidityEventModel,
    TokenMetricsModel,
)
from token_metrics_tracker.storage.persistor import (
    MAX_HOLDERS_PER_SNAPSHOT,
    MAX_INSIDER_NODES_PER_SNAPSHOT,
    MetricsPersistor,
    build_holders,
    build_insider_nodes,
    build_liquidity_event,
)
from token_metrics_tracker.storage.repos import (
    HolderMovementRepository,
    InsiderGraphRepository,
    LiquidityEventRepository,
)


def _bundle(mint: str, report_payload: dict, *, graph_payload=None) -> UpstreamBundle:
    return UpstreamBundle(
        report=TokenReport.from_dict(mint, report_payload),
        price=0.75,
        votes=VoteTally(up=5, down=1),
        insider_graph=InsiderGraph.from_payload(graph_payload or []),
    )


async def _count(db, model) -> int:
    async with db.get_async_session() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return int(result.scalar_one())


class TestBuilders:
    """Tests for the row builders."""

    def test_holders_sorted_and_capped(self, report_factory, sample_mint, fixed_now) -> None:
        holders = [{"address": f"h{i}", "amount": i, "pct": float(i)} for i in range(8)]
        bundle = _bundle(sample_mint, report_factory(sample_mint, top_holders=holders))

        rows = build_holders(sample_mint, bundle, fixed_now)

        assert len(rows) == MAX_HOLDERS_PER_SNAPSHOT
        assert [r.address for r in rows] == ["h7", "h6", "h5", "h4", "h3"]
        assert all(r.timestamp == fixed_now for r in rows)

    def test_liquidity_uses_first_market_and_first_locker(self, report_factory, sample_mint, fixed_now) -> None:
        payload = report_factory(
            sample_mint,
            markets=[{"pubkey": "first", "lp": {"lpLocked": 1}}, {"pubkey": "second"}],
            lockers=[{"usdcLocked": 10, "unlockDate": 100}, {"usdcLocked": 20}],
        )
        event = build_liquidity_event(sample_mint, _bundle(sample_mint, payload), fixed_now)

        assert event.market_pubkey == "first"
        assert event.lp_locked == 1.0
        assert event.usdc_locked == 10.0
        assert event.unlock_date == 100

    def test_liquidity_without_locker(self, report_factory, sample_mint, fixed_now) -> None:
        payload = report_factory(sample_mint, lockers={})
        event = build_liquidity_event(sample_mint, _bundle(sample_mint, payload), fixed_now)

        assert event.usdc_locked is None
        assert event.unlock_date is None

    def test_no_market_no_liquidity_event(self, report_factory, sample_mint, fixed_now) -> None:
        payload = report_factory(sample_mint, markets=[])
        assert build_liquidity_event(sample_mint, _bundle(sample_mint, payload), fixed_now) is None

    def test_insider_nodes_capped(self, report_factory, sample_mint, fixed_now) -> None:
        graph = [{"nodes": [{"id": f"n{i}"} for i in range(20)]}, {"nodes": [{"id": f"m{i}"} for i in range(20)]}]
        bundle = _bundle(sample_mint, report_factory(sample_mint), graph_payload=graph)

        nodes = build_insider_nodes(sample_mint, bundle, fixed_now)

        assert len(nodes) == MAX_INSIDER_NODES_PER_SNAPSHOT
        assert nodes[0].node_id == "n0"
        assert nodes[-1].node_id == "m4"


class TestMetricsPersistor:
    """Tests for MetricsPersistor.persist."""

    @pytest.mark.asyncio
    async def test_persists_all_rows_under_one_timestamp(self, db, report_factory, sample_mint, fixed_now) -> None:
        bundle = _bundle(
            sample_mint,
            report_factory(sample_mint),
            graph_payload=[{"nodes": [{"id": "a"}, {"id": "b", "participant": True}]}],
        )

        snapshot = await MetricsPersistor(db).persist(sample_mint, bundle, timestamp=fixed_now)

        assert snapshot.timestamp == fixed_now
        assert snapshot.price == 0.75
        assert snapshot.upvotes == 5
        assert snapshot.total_holders == 4200

        async with db.get_async_session() as session:
            holders = await HolderMovementRepository(session).list_for_snapshot(sample_mint, fixed_now)
            nodes = await InsiderGraphRepository(session).list_for_snapshot(sample_mint, fixed_now)
            liquidity = await LiquidityEventRepository(session).get_latest(sample_mint)

        assert [h.address for h in holders] == ["holderB", "holderA"]
        assert holders[0].amount == Decimal(2500000)
        assert [n.node_id for n in nodes] == ["a", "b"]
        assert liquidity.timestamp == fixed_now
        assert liquidity.usdc_locked == 5000.25

    @pytest.mark.asyncio
    async def test_snapshot_without_market(self, db, report_factory, sample_mint, fixed_now) -> None:
        bundle = _bundle(sample_mint, report_factory(sample_mint, markets=[]))

        await MetricsPersistor(db).persist(sample_mint, bundle, timestamp=fixed_now)

        assert await _count(db, TokenMetricsModel) == 1
        assert await _count(db, LiquidityEventModel) == 0

    @pytest.mark.asyncio
    async def test_insider_insert_failure_rolls_back_everything(
        self, db, report_factory, sample_mint, fixed_now
    ) -> None:
        """A failing last sub-write leaves no snapshot, holder or liquidity rows."""
        bundle = _bundle(sample_mint, report_factory(sample_mint), graph_payload=[{"nodes": [{"id": "a"}]}])

        with (
            patch.object(InsiderGraphRepository, "insert_many", side_effect=ValueError("constraint violated")),
            pytest.raises(PersistenceError, match="constraint violated"),
        ):
            await MetricsPersistor(db).persist(sample_mint, bundle, timestamp=fixed_now)

        assert await _count(db, TokenMetricsModel) == 0
        assert await _count(db, HolderMovementModel) == 0
        assert await _count(db, LiquidityEventModel) == 0
        assert await _count(db, InsiderGraphNodeModel) == 0

    @pytest.mark.asyncio
    async def test_duplicate_timestamp_rejected(self, db, report_factory, sample_mint, fixed_now) -> None:
        persistor = MetricsPersistor(db)
        bundle = _bundle(sample_mint, report_factory(sample_mint))
        await persistor.persist(sample_mint, bundle, timestamp=fixed_now)

        with pytest.raises(PersistenceError):
            await persistor.persist(sample_mint, bundle, timestamp=fixed_now)

        assert await _count(db, TokenMetricsModel) == 1
        assert await _count(db, HolderMovementModel) == 2
