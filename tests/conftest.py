"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest

from token_metrics_tracker.ingestor.provider_client import ProviderClient
from token_metrics_tracker.storage.database import DatabaseManager

RISK_API = "https://risk.test"
PRICE_API = "https://price.test"


@pytest.fixture
def sample_mint() -> str:
    """Sample mint address for testing."""
    return "So11111111111111111111111111111111111111112"


@pytest.fixture
async def db():
    """In-memory SQLite database with the schema created."""
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


def build_report(
    mint: str,
    *,
    detected_at: datetime | str | None = None,
    liquidity: float = 125000.5,
    holders: int = 4200,
    score: float = 501.0,
    score_normalised: float = 12.5,
    top_holders: list[dict[str, Any]] | None = None,
    markets: list[dict[str, Any]] | None = None,
    lockers: dict[str, Any] | list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    if isinstance(detected_at, datetime):
        detected_at = detected_at.isoformat().replace("+00:00", "Z")
    payload: dict[str, Any] = {
        "mint": mint,
        "totalMarketLiquidity": liquidity,
        "totalHolders": holders,
        "score": score,
        "score_normalised": score_normalised,
        "topHolders": top_holders
        if top_holders is not None
        else [
            {"address": "holderA", "amount": 900000, "pct": 9.0, "insider": False},
            {"address": "holderB", "amount": 2500000, "pct": 25.0, "insider": True},
        ],
        "markets": markets
        if markets is not None
        else [{"pubkey": "marketPubkey1", "lp": {"lpLocked": 1000.0, "lpLockedPct": 98.5}}],
        "lockers": lockers
        if lockers is not None
        else {"locker1": {"usdcLocked": 5000.25, "unlockDate": 1767225600}},
    }
    if detected_at is not None:
        payload["detectedAt"] = detected_at
    return payload


class FakeProvider:
    """Serves provider resources per mint from dictionaries.

    `failures[(mint, resource)] = status` makes a resource answer with that
    status; `requests` records every path requested.
    """

    def __init__(self) -> None:
        self.reports: dict[str, dict[str, Any]] = {}
        self.prices: dict[str, Any] = {}
        self.votes: dict[str, Any] = {}
        self.graphs: dict[str, Any] = {}
        self.summaries: dict[str, Any] = {}
        self.failures: dict[tuple[str, str], int] = {}
        self.requests: list[str] = []

    def add(
        self,
        mint: str,
        *,
        price: Any = 1.25,
        votes: dict[str, int] | None = None,
        graph: Any = None,
        **report_kwargs: Any,
    ) -> None:
        self.reports[mint] = build_report(mint, **report_kwargs)
        self.prices[mint] = {"price": price} if isinstance(price, (int, float)) else price
        self.votes[mint] = votes if votes is not None else {"up": 7, "down": 2}
        self.graphs[mint] = (
            graph
            if graph is not None
            else [{"nodes": [{"id": "node1", "participant": True, "holdings": 12.0}, {"id": "node2"}]}]
        )

    def _route(self, request: httpx.Request) -> tuple[str, str]:
        parts = request.url.path.strip("/").split("/")
        if request.url.host == "price.test":
            return parts[1], "price"
        mint = parts[2]
        tail = "/".join(parts[3:])
        return mint, {
            "report": "report",
            "votes": "votes",
            "insiders/graph": "graph",
            "report/summary": "summary",
        }[tail]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(f"{request.url.host}{request.url.path}")
        mint, resource = self._route(request)
        status = self.failures.get((mint, resource))
        if status is not None:
            return httpx.Response(status, text=f"{resource} unavailable")

        store = {
            "report": self.reports,
            "price": self.prices,
            "votes": self.votes,
            "graph": self.graphs,
            "summary": self.summaries,
        }[resource]
        if mint not in store:
            return httpx.Response(404, json={"error": "not found"})
        return httpx.Response(200, json=store[mint])

    def client(self) -> ProviderClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return ProviderClient(
            risk_api_url=RISK_API,
            price_api_url=PRICE_API,
            requests_per_second=1000.0,
            http_client=http_client,
        )


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def report_factory() -> Callable[..., dict[str, Any]]:
    return build_report


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
