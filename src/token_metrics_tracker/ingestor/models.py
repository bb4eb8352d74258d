"""Data models for upstream provider payloads.

Only the fields the tracker persists are modelled; everything else in the
provider's responses is ignored.
"""

import contextlib
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any


def _as_float(value: Any, default: float = 0.0) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return default if math.isnan(result) else result


def _as_optional_float(value: Any) -> float | None:
    if value is None:
        return None
    with contextlib.suppress(TypeError, ValueError):
        return float(value)
    return None


def _as_int(value: Any, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        pass
    result = _as_float(value, default)
    return int(result) if math.isfinite(result) else default


def parse_detected_at(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp; a trailing `Z` means UTC. Naive values are UTC."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def parse_price(payload: Any) -> float:
    """Price payloads arrive either as a bare number or as `{"price": n}`."""
    if isinstance(payload, (int, float)) and not isinstance(payload, bool):
        return float(payload)
    if isinstance(payload, dict):
        return _as_float(payload.get("price"))
    return 0.0


@dataclass(frozen=True)
class TopHolder:
    """A holder listed in the report's `topHolders`."""

    address: str
    amount: Decimal
    pct: float
    insider: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TopHolder":
        amount = Decimal(0)
        raw_amount = data.get("amount")
        if raw_amount is not None:
            with contextlib.suppress(InvalidOperation, TypeError, ValueError):
                amount = Decimal(str(raw_amount))
        return cls(
            address=str(data.get("address", "")),
            amount=amount,
            pct=_as_float(data.get("pct")),
            insider=bool(data.get("insider") or False),
        )


@dataclass(frozen=True)
class MarketInfo:
    """Liquidity pool of a market listed in the report's `markets`."""

    pubkey: str
    lp_locked: float | None = None
    lp_locked_pct: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MarketInfo":
        lp = data.get("lp") or {}
        return cls(
            pubkey=str(data.get("pubkey", "")),
            lp_locked=_as_optional_float(lp.get("lpLocked")),
            lp_locked_pct=_as_optional_float(lp.get("lpLockedPct")),
        )


@dataclass(frozen=True)
class LockerInfo:
    """One entry of the report's `lockers` mapping."""

    usdc_locked: float | None = None
    unlock_date: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LockerInfo":
        unlock = data.get("unlockDate")
        return cls(
            usdc_locked=_as_optional_float(data.get("usdcLocked")),
            unlock_date=_as_int(unlock) if unlock is not None else None,
        )


@dataclass(frozen=True)
class TokenReport:
    """The provider's risk report for one mint."""

    mint: str
    detected_at: datetime | None
    total_market_liquidity: float = 0.0
    total_holders: int = 0
    score: float = 0.0
    score_normalised: float = 0.0
    top_holders: tuple[TopHolder, ...] = ()
    markets: tuple[MarketInfo, ...] = ()
    lockers: tuple[LockerInfo, ...] = ()

    @classmethod
    def from_dict(cls, mint: str, data: dict[str, Any]) -> "TokenReport":
        lockers_raw = data.get("lockers") or {}
        if isinstance(lockers_raw, dict):
            lockers_iter = lockers_raw.values()
        elif isinstance(lockers_raw, list):
            lockers_iter = lockers_raw
        else:
            lockers_iter = []

        return cls(
            mint=str(data.get("mint") or mint),
            detected_at=parse_detected_at(data.get("detectedAt")),
            total_market_liquidity=_as_float(data.get("totalMarketLiquidity")),
            total_holders=_as_int(data.get("totalHolders")),
            score=_as_float(data.get("score")),
            score_normalised=_as_float(data.get("score_normalised")),
            top_holders=tuple(
                TopHolder.from_dict(h) for h in (data.get("topHolders") or []) if isinstance(h, dict)
            ),
            markets=tuple(
                MarketInfo.from_dict(m) for m in (data.get("markets") or []) if isinstance(m, dict)
            ),
            lockers=tuple(LockerInfo.from_dict(lk) for lk in lockers_iter if isinstance(lk, dict)),
        )

    @property
    def primary_market(self) -> MarketInfo | None:
        return self.markets[0] if self.markets else None

    @property
    def primary_locker(self) -> LockerInfo | None:
        return self.lockers[0] if self.lockers else None


@dataclass(frozen=True)
class VoteTally:
    """Community up/down votes."""

    up: int = 0
    down: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> "VoteTally":
        if not isinstance(data, dict):
            return cls()
        return cls(up=_as_int(data.get("up")), down=_as_int(data.get("down")))


@dataclass(frozen=True)
class InsiderNode:
    """Node of an insider network."""

    node_id: str
    participant: bool = False
    holdings: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InsiderNode":
        return cls(
            node_id=str(data.get("id", "")),
            participant=bool(data.get("participant") or False),
            holdings=_as_float(data.get("holdings")),
        )


@dataclass(frozen=True)
class InsiderGraph:
    """All insider networks, flattened to their nodes in upstream order."""

    nodes: tuple[InsiderNode, ...] = ()

    @classmethod
    def from_payload(cls, payload: Any) -> "InsiderGraph":
        if isinstance(payload, dict):
            networks = payload.get("networks") or []
        elif isinstance(payload, list):
            networks = payload
        else:
            networks = []

        nodes: list[InsiderNode] = []
        for network in networks:
            if not isinstance(network, dict):
                continue
            nodes.extend(InsiderNode.from_dict(n) for n in (network.get("nodes") or []) if isinstance(n, dict))
        return cls(nodes=tuple(nodes))


@dataclass(frozen=True)
class UpstreamBundle:
    """Everything fetched for one mint in one cycle."""

    report: TokenReport
    price: float = 0.0
    votes: VoteTally = field(default_factory=VoteTally)
    insider_graph: InsiderGraph = field(default_factory=InsiderGraph)
