"""Session-scoped repositories returning plain DTOs.

One repository per table; callers own the session and its transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from token_metrics_tracker.errors import DuplicateAlertError
from token_metrics_tracker.storage.models import (
    AlertRuleModel,
    HolderMovementModel,
    InsiderGraphNodeModel,
    LiquidityEventModel,
    TokenMetricsModel,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100
TOP_HOLDERS_LIMIT = 5


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from stores that drop tz info."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True)
class TokenMetricsDTO:
    """Data transfer object for metric snapshots."""

    mint: str
    timestamp: datetime
    price: float
    total_market_liquidity: float
    total_holders: int
    score: float
    score_normalised: float
    upvotes: int
    downvotes: int
    id: int | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TokenMetricsModel) -> TokenMetricsDTO:
        return cls(
            mint=model.mint,
            timestamp=ensure_utc(model.timestamp),
            price=model.price,
            total_market_liquidity=model.total_market_liquidity,
            total_holders=model.total_holders,
            score=model.score,
            score_normalised=model.score_normalised,
            upvotes=model.upvotes,
            downvotes=model.downvotes,
            id=model.id,
            created_at=model.created_at,
        )


@dataclass(frozen=True)
class HolderMovementDTO:
    """Data transfer object for top-holder rows."""

    mint: str
    timestamp: datetime
    address: str
    amount: Decimal
    pct: float
    insider: bool

    @classmethod
    def from_model(cls, model: HolderMovementModel) -> HolderMovementDTO:
        return cls(
            mint=model.mint,
            timestamp=ensure_utc(model.timestamp),
            address=model.address,
            amount=Decimal(model.amount),
            pct=model.pct,
            insider=model.insider,
        )


@dataclass(frozen=True)
class LiquidityEventDTO:
    """Data transfer object for liquidity lock rows."""

    mint: str
    timestamp: datetime
    market_pubkey: str
    lp_locked: float | None = None
    lp_locked_pct: float | None = None
    usdc_locked: float | None = None
    unlock_date: int | None = None

    @classmethod
    def from_model(cls, model: LiquidityEventModel) -> LiquidityEventDTO:
        return cls(
            mint=model.mint,
            timestamp=ensure_utc(model.timestamp),
            market_pubkey=model.market_pubkey,
            lp_locked=model.lp_locked,
            lp_locked_pct=model.lp_locked_pct,
            usdc_locked=model.usdc_locked,
            unlock_date=model.unlock_date,
        )


@dataclass(frozen=True)
class InsiderGraphNodeDTO:
    """Data transfer object for insider graph nodes."""

    mint: str
    timestamp: datetime
    node_id: str
    participant: bool
    holdings: float

    @classmethod
    def from_model(cls, model: InsiderGraphNodeModel) -> InsiderGraphNodeDTO:
        return cls(
            mint=model.mint,
            timestamp=ensure_utc(model.timestamp),
            node_id=model.node_id,
            participant=model.participant,
            holdings=model.holdings,
        )


@dataclass(frozen=True)
class AlertRuleDTO:
    """Data transfer object for alert rules."""

    id: str
    user_email: str
    mint: str
    parameter: str
    comparison: str
    threshold: float
    is_active: bool = True
    triggered_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: AlertRuleModel) -> AlertRuleDTO:
        return cls(
            id=model.id,
            user_email=model.user_email,
            mint=model.mint,
            parameter=model.parameter,
            comparison=model.comparison,
            threshold=model.threshold,
            is_active=model.is_active,
            triggered_at=ensure_utc(model.triggered_at) if model.triggered_at else None,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


class TokenMetricsRepository:
    """Repository for metric snapshots."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: TokenMetricsDTO) -> TokenMetricsDTO:
        model = TokenMetricsModel(
            mint=dto.mint,
            timestamp=dto.timestamp,
            price=dto.price,
            total_market_liquidity=dto.total_market_liquidity,
            total_holders=dto.total_holders,
            score=dto.score,
            score_normalised=dto.score_normalised,
            upvotes=dto.upvotes,
            downvotes=dto.downvotes,
        )
        self.session.add(model)
        await self.session.flush()
        return replace(dto, id=model.id, created_at=model.created_at)

    async def get_latest_timestamp(self, mint: str) -> datetime | None:
        """Timestamp of the newest stored snapshot for a mint, in UTC."""
        result = await self.session.execute(
            select(func.max(TokenMetricsModel.timestamp)).where(TokenMetricsModel.mint == mint)
        )
        latest = result.scalar_one_or_none()
        return ensure_utc(latest) if latest is not None else None

    async def get_latest(self, mint: str) -> TokenMetricsDTO | None:
        result = await self.session.execute(
            select(TokenMetricsModel)
            .where(TokenMetricsModel.mint == mint)
            .order_by(TokenMetricsModel.timestamp.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return TokenMetricsDTO.from_model(model) if model else None

    async def count_for_mint(self, mint: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(TokenMetricsModel).where(TokenMetricsModel.mint == mint)
        )
        return int(result.scalar_one())

    async def list_history(
        self, mint: str, *, limit: int = DEFAULT_HISTORY_LIMIT, offset: int = 0
    ) -> list[TokenMetricsDTO]:
        """Latest `limit` snapshots after skipping `offset`, oldest first."""
        result = await self.session.execute(
            select(TokenMetricsModel)
            .where(TokenMetricsModel.mint == mint)
            .order_by(TokenMetricsModel.timestamp.desc())
            .limit(limit)
            .offset(offset)
        )
        models = result.scalars().all()
        return [TokenMetricsDTO.from_model(m) for m in reversed(models)]


class HolderMovementRepository:
    """Repository for top-holder rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_many(self, dtos: Sequence[HolderMovementDTO]) -> int:
        if not dtos:
            return 0
        rows = [
            {
                "mint": dto.mint,
                "timestamp": dto.timestamp,
                "address": dto.address,
                "amount": dto.amount,
                "pct": dto.pct,
                "insider": dto.insider,
            }
            for dto in dtos
        ]
        await self.session.execute(sa.insert(HolderMovementModel), rows)
        await self.session.flush()
        return len(rows)

    async def get_top_holders(self, mint: str, *, limit: int = TOP_HOLDERS_LIMIT) -> list[HolderMovementDTO]:
        """Holders recorded with the newest snapshot, largest share first."""
        latest_result = await self.session.execute(
            select(func.max(HolderMovementModel.timestamp)).where(HolderMovementModel.mint == mint)
        )
        latest = latest_result.scalar_one_or_none()
        if latest is None:
            return []

        result = await self.session.execute(
            select(HolderMovementModel)
            .where((HolderMovementModel.mint == mint) & (HolderMovementModel.timestamp == latest))
            .order_by(HolderMovementModel.pct.desc())
            .limit(limit)
        )
        return [HolderMovementDTO.from_model(m) for m in result.scalars().all()]

    async def list_for_snapshot(self, mint: str, timestamp: datetime) -> list[HolderMovementDTO]:
        result = await self.session.execute(
            select(HolderMovementModel)
            .where((HolderMovementModel.mint == mint) & (HolderMovementModel.timestamp == timestamp))
            .order_by(HolderMovementModel.pct.desc())
        )
        return [HolderMovementDTO.from_model(m) for m in result.scalars().all()]


class LiquidityEventRepository:
    """Repository for liquidity lock rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: LiquidityEventDTO) -> LiquidityEventDTO:
        model = LiquidityEventModel(
            mint=dto.mint,
            timestamp=dto.timestamp,
            market_pubkey=dto.market_pubkey,
            lp_locked=dto.lp_locked,
            lp_locked_pct=dto.lp_locked_pct,
            usdc_locked=dto.usdc_locked,
            unlock_date=dto.unlock_date,
        )
        self.session.add(model)
        await self.session.flush()
        return dto

    async def get_latest(self, mint: str) -> LiquidityEventDTO | None:
        result = await self.session.execute(
            select(LiquidityEventModel)
            .where(LiquidityEventModel.mint == mint)
            .order_by(LiquidityEventModel.timestamp.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return LiquidityEventDTO.from_model(model) if model else None


class InsiderGraphRepository:
    """Repository for insider graph nodes."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_many(self, dtos: Sequence[InsiderGraphNodeDTO]) -> int:
        if not dtos:
            return 0
        rows = [
            {
                "mint": dto.mint,
                "timestamp": dto.timestamp,
                "node_id": dto.node_id,
                "participant": dto.participant,
                "holdings": dto.holdings,
            }
            for dto in dtos
        ]
        await self.session.execute(sa.insert(InsiderGraphNodeModel), rows)
        await self.session.flush()
        return len(rows)

    async def list_for_snapshot(self, mint: str, timestamp: datetime) -> list[InsiderGraphNodeDTO]:
        result = await self.session.execute(
            select(InsiderGraphNodeModel)
            .where((InsiderGraphNodeModel.mint == mint) & (InsiderGraphNodeModel.timestamp == timestamp))
            .order_by(InsiderGraphNodeModel.id)
        )
        return [InsiderGraphNodeDTO.from_model(m) for m in result.scalars().all()]


class AlertRuleRepository:
    """Repository for alert rules.

    A user owns at most one rule. Triggering is one-shot: a rule with
    `triggered_at` set is never selected for evaluation until it is reset.
    """

    _UPDATABLE_FIELDS = frozenset({"mint", "parameter", "comparison", "threshold", "is_active"})

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        *,
        user_email: str,
        mint: str,
        parameter: str,
        comparison: str,
        threshold: float,
    ) -> AlertRuleDTO:
        """Create a rule for a user.

        Raises:
            DuplicateAlertError: If the user already has a rule.
        """
        if await self.get_by_user_email(user_email) is not None:
            raise DuplicateAlertError(f"User already has an alert: {user_email}")

        model = AlertRuleModel(
            user_email=user_email,
            mint=mint,
            parameter=parameter,
            comparison=comparison,
            threshold=threshold,
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateAlertError(f"User already has an alert: {user_email}") from e
        return AlertRuleDTO.from_model(model)

    async def get(self, alert_id: str) -> AlertRuleDTO | None:
        result = await self.session.execute(select(AlertRuleModel).where(AlertRuleModel.id == alert_id))
        model = result.scalar_one_or_none()
        return AlertRuleDTO.from_model(model) if model else None

    async def get_by_user_email(self, user_email: str) -> AlertRuleDTO | None:
        result = await self.session.execute(
            select(AlertRuleModel).where(AlertRuleModel.user_email == user_email)
        )
        model = result.scalar_one_or_none()
        return AlertRuleDTO.from_model(model) if model else None

    async def list_all(self) -> list[AlertRuleDTO]:
        result = await self.session.execute(select(AlertRuleModel).order_by(AlertRuleModel.created_at))
        return [AlertRuleDTO.from_model(m) for m in result.scalars().all()]

    async def list_by_mint(self, mint: str) -> list[AlertRuleDTO]:
        result = await self.session.execute(
            select(AlertRuleModel).where(AlertRuleModel.mint == mint).order_by(AlertRuleModel.created_at)
        )
        return [AlertRuleDTO.from_model(m) for m in result.scalars().all()]

    async def list_pending_for_mint(self, mint: str) -> list[AlertRuleDTO]:
        """Active rules on a mint that have not fired yet."""
        result = await self.session.execute(
            select(AlertRuleModel).where(
                (AlertRuleModel.mint == mint)
                & (AlertRuleModel.is_active.is_(True))
                & (AlertRuleModel.triggered_at.is_(None))
            )
        )
        return [AlertRuleDTO.from_model(m) for m in result.scalars().all()]

    async def list_pending_mints(self) -> list[str]:
        """Distinct mints referenced by active, untriggered rules."""
        result = await self.session.execute(
            select(AlertRuleModel.mint)
            .where((AlertRuleModel.is_active.is_(True)) & (AlertRuleModel.triggered_at.is_(None)))
            .group_by(AlertRuleModel.mint)
            .order_by(func.min(AlertRuleModel.created_at))
        )
        return list(result.scalars().all())

    async def mark_triggered(self, alert_ids: Sequence[str], *, at: datetime) -> list[str]:
        """Stamp `triggered_at` on all given rules in one statement.

        Returns the ids this call stamped. Rules that already fired, here or in
        a concurrent evaluation, are left untouched and not returned.
        """
        if not alert_ids:
            return []
        result = await self.session.execute(
            update(AlertRuleModel)
            .where(AlertRuleModel.id.in_(list(alert_ids)) & AlertRuleModel.triggered_at.is_(None))
            .values(triggered_at=at, updated_at=at)
            .returning(AlertRuleModel.id)
        )
        marked = list(result.scalars().all())
        await self.session.flush()
        return marked

    async def update_by_user_email(
        self, user_email: str, *, reset: bool = False, **fields: Any
    ) -> AlertRuleDTO | None:
        """Update a user's rule. `reset` clears `triggered_at` so it can fire again."""
        unknown = set(fields) - self._UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update alert fields: {sorted(unknown)}")

        values: dict[str, Any] = {k: v for k, v in fields.items() if v is not None}
        if reset:
            values["triggered_at"] = None
        if not values:
            return await self.get_by_user_email(user_email)

        values["updated_at"] = datetime.now(UTC)
        result = await self.session.execute(
            update(AlertRuleModel).where(AlertRuleModel.user_email == user_email).values(**values)
        )
        await self.session.flush()
        if not result.rowcount:
            return None
        return await self.get_by_user_email(user_email)

    async def delete_by_user_email(self, user_email: str) -> bool:
        result = await self.session.execute(
            delete(AlertRuleModel).where(AlertRuleModel.user_email == user_email)
        )
        await self.session.flush()
        return bool(result.rowcount)
