"""Alert rule vocabulary and evaluation results."""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from token_metrics_tracker.storage.repos import AlertRuleDTO, TokenMetricsDTO


class MetricParameter(str, Enum):
    """Snapshot metrics a rule may watch. Values are the names users submit."""

    PRICE = "price"
    TOTAL_MARKET_LIQUIDITY = "totalMarketLiquidity"
    TOTAL_HOLDERS = "totalHolders"
    SCORE = "score"
    SCORE_NORMALISED = "score_normalised"
    UPVOTES = "upvotes"
    DOWNVOTES = "downvotes"

    @classmethod
    def parse(cls, name: str) -> MetricParameter | None:
        try:
            return cls(name)
        except ValueError:
            return None

    def read(self, snapshot: TokenMetricsDTO) -> float | int | None:
        return _ACCESSORS[self](snapshot)


_ACCESSORS: dict[MetricParameter, Callable[[TokenMetricsDTO], float | int | None]] = {
    MetricParameter.PRICE: lambda s: s.price,
    MetricParameter.TOTAL_MARKET_LIQUIDITY: lambda s: s.total_market_liquidity,
    MetricParameter.TOTAL_HOLDERS: lambda s: s.total_holders,
    MetricParameter.SCORE: lambda s: s.score,
    MetricParameter.SCORE_NORMALISED: lambda s: s.score_normalised,
    MetricParameter.UPVOTES: lambda s: s.upvotes,
    MetricParameter.DOWNVOTES: lambda s: s.downvotes,
}


class Comparison(str, Enum):
    """How an observed value is compared against a rule's threshold."""

    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    EQUALS = "EQUALS"

    @classmethod
    def parse(cls, name: str) -> Comparison | None:
        try:
            return cls(name)
        except ValueError:
            return None

    def holds(self, value: float, threshold: float) -> bool:
        if math.isnan(value):
            return False
        if self is Comparison.GREATER_THAN:
            return value > threshold
        if self is Comparison.LESS_THAN:
            return value < threshold
        return value == threshold

    @property
    def label(self) -> str:
        """Human-readable form used in notifications, e.g. "LESS THAN"."""
        return self.value.replace("_", " ")


@dataclass(frozen=True)
class TriggeredAlert:
    """A rule whose condition held against a snapshot."""

    rule: AlertRuleDTO
    parameter: MetricParameter
    comparison: Comparison
    current_value: float


@dataclass(frozen=True)
class FormattedAlert:
    """A notification rendered for delivery."""

    to: str
    subject: str
    body: str
    payload: dict[str, object]
