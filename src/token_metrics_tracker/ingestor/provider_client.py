"""Async HTTP client for the upstream risk and price provider."""

import asyncio
import logging
import time
from typing import Any

import httpx

from token_metrics_tracker.errors import UpstreamFetchError
from token_metrics_tracker.ingestor.models import (
    InsiderGraph,
    TokenReport,
    UpstreamBundle,
    VoteTally,
    parse_price,
)

logger = logging.getLogger(__name__)

# Constants
DEFAULT_RISK_API_URL = "https://api.rugcheck.xyz"
DEFAULT_PRICE_API_URL = "https://data.fluxbeam.xyz"
DEFAULT_TIMEOUT_SECONDS = 15.0
MAX_REQUESTS_PER_SECOND = 10.0


class RateLimiter:
    """Token bucket rate limiter for API requests."""

    def __init__(self, max_requests_per_second: float = MAX_REQUESTS_PER_SECOND) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_second: Maximum requests allowed per second.
        """
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            elapsed = time.monotonic() - self._last_request_time
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


class ProviderClient:
    """Fetches per-mint report, price, votes and insider graph resources.

    Every resource either parses completely or raises UpstreamFetchError;
    callers never see a partial bundle.

    Example:
        >>> async with ProviderClient() as client:
        ...     bundle = await client.fetch_all("So11111111111111111111111111111111111111112")
    """

    def __init__(
        self,
        *,
        risk_api_url: str = DEFAULT_RISK_API_URL,
        price_api_url: str = DEFAULT_PRICE_API_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        requests_per_second: float = MAX_REQUESTS_PER_SECOND,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the provider client.

        Args:
            risk_api_url: Base URL for report, votes, insider graph and summary.
            price_api_url: Base URL for prices.
            timeout_seconds: Per-request timeout.
            requests_per_second: Client-side rate limit.
            http_client: Pre-built client (tests inject one with a mock transport).
        """
        self._risk_api_url = risk_api_url.rstrip("/")
        self._price_api_url = price_api_url.rstrip("/")
        self._rate_limiter = RateLimiter(requests_per_second)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

        logger.info(
            "Initialized ProviderClient with risk_api=%s, price_api=%s, rate_limit=%.1f req/s",
            self._risk_api_url,
            self._price_api_url,
            requests_per_second,
        )

    async def __aenter__(self) -> "ProviderClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get_json(self, resource: str, url: str) -> Any:
        await self._rate_limiter.acquire()
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise UpstreamFetchError(resource, None, f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            raise UpstreamFetchError(resource, response.status_code, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamFetchError(resource, response.status_code, f"invalid JSON: {e}") from e

    async def fetch_report(self, mint: str) -> TokenReport:
        payload = await self._get_json("report", f"{self._risk_api_url}/v1/tokens/{mint}/report")
        if not isinstance(payload, dict):
            raise UpstreamFetchError("report", None, f"unexpected payload type {type(payload).__name__}")
        return TokenReport.from_dict(mint, payload)

    async def fetch_price(self, mint: str) -> float:
        payload = await self._get_json("price", f"{self._price_api_url}/tokens/{mint}/price")
        return parse_price(payload)

    async def fetch_votes(self, mint: str) -> VoteTally:
        payload = await self._get_json("votes", f"{self._risk_api_url}/v1/tokens/{mint}/votes")
        return VoteTally.from_dict(payload)

    async def fetch_insider_graph(self, mint: str) -> InsiderGraph:
        payload = await self._get_json(
            "insider graph", f"{self._risk_api_url}/v1/tokens/{mint}/insiders/graph"
        )
        return InsiderGraph.from_payload(payload)

    async def fetch_secondary(self, mint: str) -> tuple[float, VoteTally, InsiderGraph]:
        """Fetch price, votes and insider graph concurrently."""
        price, votes, graph = await asyncio.gather(
            self.fetch_price(mint),
            self.fetch_votes(mint),
            self.fetch_insider_graph(mint),
        )
        return price, votes, graph

    async def fetch_all(self, mint: str) -> UpstreamBundle:
        report = await self.fetch_report(mint)
        price, votes, graph = await self.fetch_secondary(mint)
        return UpstreamBundle(report=report, price=price, votes=votes, insider_graph=graph)

    async def fetch_report_summary(self, mint: str) -> dict[str, Any]:
        payload = await self._get_json(
            "report summary", f"{self._risk_api_url}/v1/tokens/{mint}/report/summary"
        )
        if not isinstance(payload, dict):
            raise UpstreamFetchError("report summary", None, f"unexpected payload type {type(payload).__name__}")
        return payload
