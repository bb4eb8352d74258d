"""Snapshot history, detail rows and alert rules.

Revision ID: 001_token_metrics
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_token_metrics"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "token_metrics",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("mint", sa.String(64), nullable=False),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("total_market_liquidity", sa.Float(), nullable=False),
        sa.Column("total_holders", sa.BigInteger(), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("score_normalised", sa.Float(), nullable=False),
        sa.Column("upvotes", sa.Integer(), nullable=False),
        sa.Column("downvotes", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("mint", "timestamp", name="uq_token_metrics_mint_ts"),
    )
    op.create_index("idx_token_metrics_mint_ts", "token_metrics", ["mint", "timestamp"])

    op.create_table(
        "holder_movements",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("mint", sa.String(64), nullable=False),
        sa.Column("address", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(40, 0), nullable=False),
        sa.Column("pct", sa.Float(), nullable=False),
        sa.Column("insider", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_holder_movements_mint_ts", "holder_movements", ["mint", "timestamp"])

    op.create_table(
        "liquidity_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("mint", sa.String(64), nullable=False),
        sa.Column("market_pubkey", sa.String(64), nullable=False),
        sa.Column("lp_locked", sa.Float(), nullable=True),
        sa.Column("lp_locked_pct", sa.Float(), nullable=True),
        sa.Column("usdc_locked", sa.Float(), nullable=True),
        sa.Column("unlock_date", sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_liquidity_events_mint_ts", "liquidity_events", ["mint", "timestamp"])

    op.create_table(
        "insider_graph_nodes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("mint", sa.String(64), nullable=False),
        sa.Column("node_id", sa.String(128), nullable=False),
        sa.Column("participant", sa.Boolean(), nullable=False),
        sa.Column("holdings", sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_insider_graph_nodes_mint_ts", "insider_graph_nodes", ["mint", "timestamp"])

    op.create_table(
        "alerts",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("user_email", sa.String(320), nullable=False),
        sa.Column("mint", sa.String(64), nullable=False),
        sa.Column("parameter", sa.String(64), nullable=False),
        sa.Column("comparison", sa.String(32), nullable=False),
        sa.Column("threshold", sa.Float(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("triggered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_email"),
    )
    op.create_index(
        "idx_alerts_pending", "alerts", ["mint", "parameter", "is_active", "triggered_at"]
    )


def downgrade() -> None:
    op.drop_index("idx_alerts_pending", table_name="alerts")
    op.drop_table("alerts")
    op.drop_index("idx_insider_graph_nodes_mint_ts", table_name="insider_graph_nodes")
    op.drop_table("insider_graph_nodes")
    op.drop_index("idx_liquidity_events_mint_ts", table_name="liquidity_events")
    op.drop_table("liquidity_events")
    op.drop_index("idx_holder_movements_mint_ts", table_name="holder_movements")
    op.drop_table("holder_movements")
    op.drop_index("idx_token_metrics_mint_ts", table_name="token_metrics")
    op.drop_table("token_metrics")
