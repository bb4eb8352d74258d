"""Data ingestion layer - upstream provider client and freshness gate."""

from token_metrics_tracker.ingestor.freshness import FreshnessGate
from token_metrics_tracker.ingestor.models import (
    InsiderGraph,
    InsiderNode,
    LockerInfo,
    MarketInfo,
    TokenReport,
    TopHolder,
    UpstreamBundle,
    VoteTally,
)
from token_metrics_tracker.ingestor.provider_client import ProviderClient, RateLimiter

__all__ = [
    "FreshnessGate",
    "InsiderGraph",
    "InsiderNode",
    "LockerInfo",
    "MarketInfo",
    "ProviderClient",
    "RateLimiter",
    "TokenReport",
    "TopHolder",
    "UpstreamBundle",
    "VoteTally",
]
