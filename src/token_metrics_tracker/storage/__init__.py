"""Storage layer - Database schemas, repositories and the snapshot persistor."""

from token_metrics_tracker.storage.database import (
    DatabaseManager,
    is_connectivity_error,
    to_async_url,
)
from token_metrics_tracker.storage.models import (
    AlertRuleModel,
    Base,
    HolderMovementModel,
    InsiderGraphNodeModel,
    LiquidityEventModel,
    TokenMetricsModel,
)
from token_metrics_tracker.storage.persistor import MetricsPersistor
from token_metrics_tracker.storage.repos import (
    AlertRuleDTO,
    AlertRuleRepository,
    HolderMovementDTO,
    HolderMovementRepository,
    InsiderGraphNodeDTO,
    InsiderGraphRepository,
    LiquidityEventDTO,
    LiquidityEventRepository,
    TokenMetricsDTO,
    TokenMetricsRepository,
)

__all__ = [
    "AlertRuleDTO",
    "AlertRuleModel",
    "AlertRuleRepository",
    "Base",
    "DatabaseManager",
    "HolderMovementDTO",
    "HolderMovementModel",
    "HolderMovementRepository",
    "InsiderGraphNodeDTO",
    "InsiderGraphNodeModel",
    "InsiderGraphRepository",
    "LiquidityEventDTO",
    "LiquidityEventModel",
    "LiquidityEventRepository",
    "MetricsPersistor",
    "TokenMetricsDTO",
    "TokenMetricsModel",
    "TokenMetricsRepository",
    "is_connectivity_error",
    "to_async_url",
]
