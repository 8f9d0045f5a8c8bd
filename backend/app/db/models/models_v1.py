from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    DateTime,
    Boolean,
    ForeignKey,
    Numeric,
    Enum,
    Index,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, composite, relationship

from backend.app.core.errors import ImmutableRecordError
from backend.app.db.base import Base
from backend.app.db.models.core_types import (
    WEIGHT_DECIMAL_PLACES,
    WEIGHT_MAX_DIGITS,
    AlertStatus,
    Bucket,
    InventoryStatus,
    TransactionType,
)

# BIGINT en Postgres, INTEGER (rowid auto-incrémenté) en SQLite
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
Weight = Numeric(WEIGHT_MAX_DIGITS, WEIGHT_DECIMAL_PLACES)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _bucket(prefix: str):
    # NULL toléré (lignes legacy) : ramené à 0 par ensure_ledger
    return composite(
        mapped_column(f"{prefix}_total_weight", Weight, default=0, nullable=True),
        mapped_column(f"{prefix}_tear_weight", Weight, default=0, nullable=True),
        mapped_column(f"{prefix}_net_weight", Weight, default=0, nullable=True),
        mapped_column(f"{prefix}_number_of_cones", Integer, default=0, nullable=True),
    )


# ---------- CATALOGUE (collaborateur externe, lecture seule ici) ----------
class YarnCatalog(Base):
    __tablename__ = "yarn_catalog"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    yarn_name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    min_quantity: Mapped[Decimal | None] = mapped_column(Weight, default=0)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


# ---------- INVENTAIRE ----------
class YarnInventory(Base):
    """Ledger agrégé d'un fil : long terme + court terme, total dérivé."""

    __tablename__ = "yarn_inventories"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    yarn_id: Mapped[int] = mapped_column(
        ForeignKey("yarn_catalog.id", ondelete="RESTRICT"),
        unique=True,
        nullable=False,
    )
    yarn_name: Mapped[str] = mapped_column(String(255), nullable=False)

    long_term: Mapped[Bucket] = _bucket("lt")
    short_term: Mapped[Bucket] = _bucket("st")
    # Écrit uniquement par recompute_total()
    total: Mapped[Bucket] = _bucket("total")

    blocked_net_weight: Mapped[Decimal | None] = mapped_column(Weight, default=0)
    inventory_status: Mapped[InventoryStatus] = mapped_column(
        Enum(InventoryStatus, name="inventory_status"),
        default=InventoryStatus.in_stock,
        nullable=False,
    )
    overbooked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    yarn: Mapped[YarnCatalog] = relationship()


# ---------- JOURNAL ----------
class YarnTransaction(Base):
    __tablename__ = "yarn_transactions"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    yarn_id: Mapped[int] = mapped_column(
        ForeignKey("yarn_catalog.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    yarn_name: Mapped[str] = mapped_column(String(255), nullable=False)
    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, name="yarn_transaction_type"),
        nullable=False,
    )
    transaction_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    net_weight: Mapped[Decimal] = mapped_column(Weight, default=0, nullable=False)
    total_weight: Mapped[Decimal] = mapped_column(Weight, default=0, nullable=False)
    tear_weight: Mapped[Decimal] = mapped_column(Weight, default=0, nullable=False)
    number_of_cones: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    order_ref: Mapped[str | None] = mapped_column(String(64), index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_yarn_transactions_yarn_date", "yarn_id", "transaction_date"),)


# ---------- PROCUREMENT ----------
class YarnRequisition(Base):
    __tablename__ = "yarn_requisitions"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    yarn_id: Mapped[int] = mapped_column(
        ForeignKey("yarn_catalog.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    yarn_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Instantanés au moment de la levée / du rafraîchissement
    min_qty: Mapped[Decimal] = mapped_column(Weight, nullable=False)
    available_qty: Mapped[Decimal] = mapped_column(Weight, nullable=False)
    blocked_qty: Mapped[Decimal] = mapped_column(Weight, default=0, nullable=False)

    alert_status: Mapped[AlertStatus | None] = mapped_column(Enum(AlertStatus, name="yarn_alert_status"))
    po_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        # Une seule réquisition ouverte (po_sent = false) par fil
        Index(
            "uq_yarn_requisitions_open_per_yarn",
            "yarn_id",
            unique=True,
            postgresql_where=text("po_sent = false"),
            sqlite_where=text("po_sent = 0"),
        ),
    )


# ---------- IMMUTABILITÉ DU JOURNAL ----------
@event.listens_for(YarnTransaction, "before_update")
def _prevent_transaction_update(mapper, connection, target):
    raise ImmutableRecordError("YarnTransaction", target.id)


@event.listens_for(YarnTransaction, "before_delete")
def _prevent_transaction_delete(mapper, connection, target):
    raise ImmutableRecordError("YarnTransaction", target.id)
