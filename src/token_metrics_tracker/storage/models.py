"""SQLAlchemy models for persistent storage.

This module defines the database schema for per-asset metric snapshots,
their holder/liquidity/insider-graph detail rows, and user alert rules.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TokenMetricsModel(Base):
    """Point-in-time snapshot of an asset's headline metrics."""

    __tablename__ = "token_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    mint: Mapped[str] = mapped_column(String(64), nullable=False)

    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_market_liquidity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_holders: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    score_normalised: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    upvotes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    downvotes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("mint", "timestamp", name="uq_token_metrics_mint_ts"),
        Index("idx_token_metrics_mint_ts", "mint", "timestamp"),
    )


class HolderMovementModel(Base):
    """Top holder position recorded alongside a snapshot."""

    __tablename__ = "holder_movements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    mint: Mapped[str] = mapped_column(String(64), nullable=False)
    address: Mapped[str] = mapped_column(String(64), nullable=False)

    # Raw token units; can exceed 64-bit range.
    amount: Mapped[Decimal] = mapped_column(Numeric(40, 0), nullable=False)
    pct: Mapped[float] = mapped_column(Float, nullable=False)
    insider: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (Index("idx_holder_movements_mint_ts", "mint", "timestamp"),)


class LiquidityEventModel(Base):
    """Liquidity-pool lock state of an asset's primary market."""

    __tablename__ = "liquidity_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    mint: Mapped[str] = mapped_column(String(64), nullable=False)
    market_pubkey: Mapped[str] = mapped_column(String(64), nullable=False)

    lp_locked: Mapped[float | None] = mapped_column(Float, nullable=True)
    lp_locked_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    usdc_locked: Mapped[float | None] = mapped_column(Float, nullable=True)
    unlock_date: Mapped[int | None] = mapped_column(BigInteger, nullable=True)  # unix seconds

    __table_args__ = (Index("idx_liquidity_events_mint_ts", "mint", "timestamp"),)


class InsiderGraphNodeModel(Base):
    """Node of the upstream insider network graph."""

    __tablename__ = "insider_graph_nodes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    mint: Mapped[str] = mapped_column(String(64), nullable=False)
    node_id: Mapped[str] = mapped_column(String(128), nullable=False)
    participant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    holdings: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    __table_args__ = (Index("idx_insider_graph_nodes_mint_ts", "mint", "timestamp"),)


class AlertRuleModel(Base):
    """User-defined threshold rule on one metric of one asset."""

    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    user_email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    mint: Mapped[str] = mapped_column(String(64), nullable=False)
    parameter: Mapped[str] = mapped_column(String(64), nullable=False)
    comparison: Mapped[str] = mapped_column(String(32), nullable=False)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    triggered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("idx_alerts_pending", "mint", "parameter", "is_active", "triggered_at"),
    )
