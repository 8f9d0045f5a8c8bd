from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.db.models.core_types import TransactionType
from backend.app.db.models.models_v1 import YarnTransaction
from backend.app.schemas.validation import validate_as
from backend.app.schemas.yarn_transaction import TransactionFilters, TransactionRead
from backend.services.normalizer import CanonicalTransaction


def day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def day_end(value: date) -> datetime:
    return datetime.combine(value, time.max, tzinfo=timezone.utc)


def record_transaction(db: Session, transaction: CanonicalTransaction, *, yarn_name: str) -> YarnTransaction:
    """Ajoute la ligne de journal (append-only) dans la portée courante."""
    row = YarnTransaction(
        yarn_id=transaction.yarn_id,
        yarn_name=yarn_name,
        transaction_type=transaction.transaction_type,
        transaction_date=transaction.transaction_date,
        net_weight=transaction.net_weight,
        total_weight=transaction.total_weight,
        tear_weight=transaction.tear_weight,
        number_of_cones=transaction.number_of_cones,
        order_ref=transaction.order_ref,
    )
    db.add(row)
    db.flush()
    return row


def _newest_first(stmt):
    return stmt.order_by(YarnTransaction.transaction_date.desc(), YarnTransaction.id.desc())


def query_transactions(
    db: Session,
    filters: TransactionFilters | Mapping[str, Any] | None = None,
) -> list[TransactionRead]:
    f = validate_as(TransactionFilters, filters)
    stmt = select(YarnTransaction)

    if f.transaction_type is not None:
        stmt = stmt.where(YarnTransaction.transaction_type == f.transaction_type)
    if f.yarn_id is not None:
        stmt = stmt.where(YarnTransaction.yarn_id == f.yarn_id)
    if f.yarn_name:
        stmt = stmt.where(YarnTransaction.yarn_name.icontains(f.yarn_name, autoescape=True))
    if f.order_ref:
        stmt = stmt.where(YarnTransaction.order_ref.icontains(f.order_ref, autoescape=True))
    if f.date_from is not None:
        stmt = stmt.where(YarnTransaction.transaction_date >= day_start(f.date_from))
    if f.date_to is not None:
        stmt = stmt.where(YarnTransaction.transaction_date <= day_end(f.date_to))

    rows = db.execute(_newest_first(stmt)).scalars().all()
    return [TransactionRead.model_validate(r) for r in rows]


def get_issued_by_order(db: Session, order_ref: str) -> list[TransactionRead]:
    """Toutes les sorties (issued) d'une commande, tous fils confondus."""
    stmt = (
        select(YarnTransaction)
        .where(YarnTransaction.order_ref == order_ref.strip())
        .where(YarnTransaction.transaction_type == TransactionType.issued)
    )
    rows = db.execute(_newest_first(stmt)).scalars().all()
    return [TransactionRead.model_validate(r) for r in rows]


def get_all_issued(
    db: Session,
    *,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[TransactionRead]:
    return query_transactions(
        db,
        TransactionFilters(
            transaction_type=TransactionType.issued,
            date_from=date_from,
            date_to=date_to,
        ),
    )
