"""create yarn catalog, inventory ledger, journal and requisition tables

Revision ID: 3f9a1c2b7d10
Revises:
Create Date: 2026-10-18 09:12:40.118204
"""
from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f9a1c2b7d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TRANSACTION_TYPES = ("issued", "blocked", "stocked", "transferred", "returned")
INVENTORY_STATUSES = ("in_stock", "low_stock", "soon_to_be_low")
ALERT_STATUSES = ("below_minimum", "overbooked")


def _pk() -> sa.Column:
    # INTEGER PRIMARY KEY en SQLite pour l'auto-incrément (rowid)
    return sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), primary_key=True)


def _weight(name: str, **kw) -> sa.Column:
    return sa.Column(name, sa.Numeric(14, 3), **kw)


def _bucket_columns(prefix: str) -> list[sa.Column]:
    return [
        _weight(f"{prefix}_total_weight"),
        _weight(f"{prefix}_tear_weight"),
        _weight(f"{prefix}_net_weight"),
        sa.Column(f"{prefix}_number_of_cones", sa.Integer()),
    ]


def upgrade() -> None:
    op.create_table(
        "yarn_catalog",
        _pk(),
        sa.Column("yarn_name", sa.String(255), nullable=False, unique=True),
        _weight("min_quantity"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "yarn_inventories",
        _pk(),
        sa.Column(
            "yarn_id",
            sa.BigInteger(),
            sa.ForeignKey("yarn_catalog.id", ondelete="RESTRICT"),
            nullable=False,
            unique=True,
        ),
        sa.Column("yarn_name", sa.String(255), nullable=False),
        *_bucket_columns("lt"),
        *_bucket_columns("st"),
        *_bucket_columns("total"),
        _weight("blocked_net_weight"),
        sa.Column(
            "inventory_status",
            sa.Enum(*INVENTORY_STATUSES, name="inventory_status"),
            nullable=False,
            server_default="in_stock",
        ),
        sa.Column("overbooked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "yarn_transactions",
        _pk(),
        sa.Column("yarn_id", sa.BigInteger(), sa.ForeignKey("yarn_catalog.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("yarn_name", sa.String(255), nullable=False),
        sa.Column("transaction_type", sa.Enum(*TRANSACTION_TYPES, name="yarn_transaction_type"), nullable=False),
        sa.Column("transaction_date", sa.DateTime(timezone=True), nullable=False),
        _weight("net_weight", nullable=False),
        _weight("total_weight", nullable=False),
        _weight("tear_weight", nullable=False),
        sa.Column("number_of_cones", sa.Integer(), nullable=False),
        sa.Column("order_ref", sa.String(64)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_yarn_transactions_yarn_id", "yarn_transactions", ["yarn_id"])
    op.create_index("ix_yarn_transactions_order_ref", "yarn_transactions", ["order_ref"])
    op.create_index("ix_yarn_transactions_yarn_date", "yarn_transactions", ["yarn_id", "transaction_date"])

    op.create_table(
        "yarn_requisitions",
        _pk(),
        sa.Column("yarn_id", sa.BigInteger(), sa.ForeignKey("yarn_catalog.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("yarn_name", sa.String(255), nullable=False),
        _weight("min_qty", nullable=False),
        _weight("available_qty", nullable=False),
        _weight("blocked_qty", nullable=False),
        sa.Column("alert_status", sa.Enum(*ALERT_STATUSES, name="yarn_alert_status")),
        sa.Column("po_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_yarn_requisitions_yarn_id", "yarn_requisitions", ["yarn_id"])
    # Une seule réquisition ouverte par fil
    op.create_index(
        "uq_yarn_requisitions_open_per_yarn",
        "yarn_requisitions",
        ["yarn_id"],
        unique=True,
        postgresql_where=sa.text("po_sent = false"),
        sqlite_where=sa.text("po_sent = 0"),
    )


def downgrade() -> None:
    op.drop_index("uq_yarn_requisitions_open_per_yarn", table_name="yarn_requisitions")
    op.drop_index("ix_yarn_requisitions_yarn_id", table_name="yarn_requisitions")
    op.drop_table("yarn_requisitions")
    op.drop_index("ix_yarn_transactions_yarn_date", table_name="yarn_transactions")
    op.drop_index("ix_yarn_transactions_order_ref", table_name="yarn_transactions")
    op.drop_index("ix_yarn_transactions_yarn_id", table_name="yarn_transactions")
    op.drop_table("yarn_transactions")
    op.drop_table("yarn_inventories")
    op.drop_table("yarn_catalog")
    sa.Enum(name="yarn_alert_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="yarn_transaction_type").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="inventory_status").drop(op.get_bind(), checkfirst=True)
