"""Tests for provider payload models."""

from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal

from token_metrics_tracker.ingestor.models import (
    InsiderGraph,
    TokenReport,
    TopHolder,
    VoteTally,
    parse_detected_at,
    parse_price,
)


class TestParseDetectedAt:
    """Tests for detectedAt parsing."""

    def test_trailing_z_is_utc(self) -> None:
        assert parse_detected_at("2026-01-01T10:00:00Z") == datetime(2026, 1, 1, 10, tzinfo=UTC)

    def test_offset_preserved(self) -> None:
        parsed = parse_detected_at("2026-01-01T12:00:00+02:00")
        assert parsed == datetime(2026, 1, 1, 10, tzinfo=UTC)
        assert parsed.utcoffset() == timedelta(hours=2)

    def test_naive_is_treated_as_utc(self) -> None:
        assert parse_detected_at("2026-01-01T10:00:00").tzinfo == UTC

    def test_missing_or_garbage(self) -> None:
        assert parse_detected_at(None) is None
        assert parse_detected_at("") is None
        assert parse_detected_at("yesterday") is None
        assert parse_detected_at(1767261600) is None


class TestParsePrice:
    def test_shapes(self) -> None:
        assert parse_price(3) == 3.0
        assert parse_price({"price": "0.5"}) == 0.5
        assert parse_price({"value": 1}) == 0.0
        assert parse_price(None) == 0.0
        assert parse_price(True) == 0.0


class TestTokenReport:
    """Tests for TokenReport.from_dict."""

    def test_full_report(self, report_factory, sample_mint) -> None:
        report = TokenReport.from_dict(sample_mint, report_factory(sample_mint, detected_at="2026-01-01T00:00:00Z"))

        assert report.total_market_liquidity == 125000.5
        assert report.total_holders == 4200
        assert report.score == 501.0
        assert report.score_normalised == 12.5
        assert len(report.top_holders) == 2
        assert report.primary_market.pubkey == "marketPubkey1"
        assert report.primary_market.lp_locked_pct == 98.5
        assert report.primary_locker.usdc_locked == 5000.25
        assert report.primary_locker.unlock_date == 1767225600

    def test_missing_fields_default_to_zero(self, sample_mint) -> None:
        report = TokenReport.from_dict(sample_mint, {})

        assert report.mint == sample_mint
        assert report.detected_at is None
        assert report.total_market_liquidity == 0.0
        assert report.total_holders == 0
        assert report.score == 0.0
        assert report.top_holders == ()
        assert report.primary_market is None
        assert report.primary_locker is None

    def test_infinite_counts_default_to_zero(self, sample_mint) -> None:
        report = TokenReport.from_dict(sample_mint, {"totalHolders": float("inf"), "score": 3})

        assert report.total_holders == 0
        assert report.score == 3.0

    def test_lockers_as_list(self, sample_mint) -> None:
        report = TokenReport.from_dict(sample_mint, {"lockers": [{"usdcLocked": 1}, {"usdcLocked": 2}]})
        assert report.primary_locker.usdc_locked == 1.0

    def test_non_dict_entries_ignored(self, sample_mint) -> None:
        report = TokenReport.from_dict(sample_mint, {"topHolders": [None, "x", {"address": "a"}], "markets": [1]})
        assert [h.address for h in report.top_holders] == ["a"]
        assert report.markets == ()


class TestTopHolder:
    def test_defaults(self) -> None:
        holder = TopHolder.from_dict({"address": "a"})
        assert holder.amount == Decimal(0)
        assert holder.pct == 0.0
        assert holder.insider is False

    def test_large_amount_is_exact(self) -> None:
        holder = TopHolder.from_dict({"address": "a", "amount": "123456789012345678901234567890"})
        assert holder.amount == Decimal("123456789012345678901234567890")


class TestVotesAndGraph:
    def test_votes_defaults(self) -> None:
        assert VoteTally.from_dict(None) == VoteTally(up=0, down=0)
        assert VoteTally.from_dict({"up": "4"}) == VoteTally(up=4, down=0)
        assert VoteTally.from_dict({"up": "Infinity", "down": "1e400"}) == VoteTally(up=0, down=0)

    def test_graph_flattens_networks_in_order(self) -> None:
        graph = InsiderGraph.from_payload(
            [
                {"nodes": [{"id": "a", "participant": True}, {"id": "b"}]},
                {"nodes": [{"id": "c", "holdings": "7.5"}]},
                "not-a-network",
            ]
        )
        assert [n.node_id for n in graph.nodes] == ["a", "b", "c"]
        assert graph.nodes[0].participant is True
        assert graph.nodes[1].participant is False
        assert graph.nodes[1].holdings == 0.0
        assert graph.nodes[2].holdings == 7.5

    def test_graph_unknown_payload(self) -> None:
        assert InsiderGraph.from_payload(None).nodes == ()
        assert InsiderGraph.from_payload({"unexpected": True}).nodes == ()


def test_offset_timezone_helper_roundtrip() -> None:
    """Offsets other than UTC compare correctly against UTC instants."""
    parsed = parse_detected_at("2026-01-01T05:00:00-05:00")
    assert parsed == datetime(2026, 1, 1, 10, tzinfo=timezone.utc)
