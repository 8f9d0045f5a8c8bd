"""
Moteur de transactions fil : point d'entrée des écritures et lectures ledger.

Pipeline d'une écriture, dans UNE portée atomique :
    normalisation -> fil catalogue (NotFound) -> ledger (FOR UPDATE / init)
    -> ligne de journal -> mouvement des compartiments -> total recalculé
    -> statut + réquisition -> persistance

Deux écritures sur le même fil se sérialisent sur le verrou de la ligne ledger ;
des fils différents n'ont aucune coordination entre eux.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backend.app.core.errors import ConflictError, NotFoundError, ValidationError
from backend.app.db.models.core_types import AlertStatus, Bucket, TransactionType, to_decimal
from backend.app.db.models.models_v1 import YarnCatalog, YarnInventory
from backend.app.schemas.validation import validate_as
from backend.app.schemas.yarn_inventory import (
    InventoryCreate,
    LedgerFilters,
    LedgerRead,
    Page,
    StorageRead,
    YarnInventoryRead,
)
from backend.app.schemas.yarn_transaction import TransactionCreate, TransactionRead
from backend.services.journal import record_transaction
from backend.services.ledger import LedgerState, ensure_ledger, read_state, recompute_total, write_buckets
from backend.services.movements import apply_movement, to_movement
from backend.services.normalizer import CanonicalTransaction, normalise_transaction
from backend.services.procurement import evaluate_inventory
from backend.services.unit_of_work import atomic

logger = structlog.get_logger(__name__)

SORTABLE_FIELDS = {
    "yarn_name": YarnInventory.yarn_name,
    "inventory_status": YarnInventory.inventory_status,
    "blocked_net_weight": YarnInventory.blocked_net_weight,
    "created_at": YarnInventory.created_at,
    "updated_at": YarnInventory.updated_at,
}
DEFAULT_PAGE_LIMIT = 10


@dataclass(frozen=True)
class CommitResult:
    transaction: TransactionRead
    ledger: LedgerRead


def get_yarn(db: Session, yarn_id: int) -> YarnCatalog:
    yarn = db.get(YarnCatalog, yarn_id)
    if not yarn:
        raise NotFoundError("YarnCatalog", yarn_id)
    return yarn


def over_reservation_trigger(inventory: YarnInventory, transaction: CanonicalTransaction) -> AlertStatus | None:
    """
    Déclencheur "overbooked", lu AVANT application du mouvement.

    Actif si le ledger sortait déjà surréservé du commit précédent (la
    réquisition ouverte est alors rafraîchie même si ce mouvement résorbe la
    surréservation), ou si une réservation dépasse à elle seule le stock net total.
    """
    if inventory.overbooked:
        return AlertStatus.overbooked
    if (
        transaction.transaction_type is TransactionType.blocked
        and transaction.net_weight > Bucket.coerce(inventory.total).net_weight
    ):
        return AlertStatus.overbooked
    return None


def create_transaction(db: Session, payload: Mapping[str, Any] | TransactionCreate) -> CommitResult:
    transaction = normalise_transaction(payload)
    log = logger.bind(yarn_id=transaction.yarn_id, transaction_type=transaction.transaction_type.value)

    try:
        with atomic(db, yarn_id=transaction.yarn_id):
            yarn = get_yarn(db, transaction.yarn_id)
            inventory = ensure_ledger(db, yarn)

            record = record_transaction(db, transaction, yarn_name=transaction.yarn_name or yarn.yarn_name)

            trigger = over_reservation_trigger(inventory, transaction)
            state = apply_movement(read_state(inventory), to_movement(transaction))
            write_buckets(inventory, state)
            inventory.total = recompute_total(state)

            evaluate_inventory(db, inventory, yarn, trigger=trigger)
            db.flush()
    except Exception as exc:
        log.warning("yarn_transaction_aborted", code=getattr(exc, "code", type(exc).__name__), error=str(exc))
        raise

    result = CommitResult(
        transaction=TransactionRead.model_validate(record),
        ledger=LedgerRead.model_validate(inventory),
    )
    log.info(
        "yarn_transaction_committed",
        transaction_id=record.id,
        inventory_status=result.ledger.inventory_status.value,
        overbooked=result.ledger.overbooked,
    )
    return result


def initialise_ledger(db: Session, payload: Mapping[str, Any] | InventoryCreate) -> YarnInventoryRead:
    """Ouvre un ledger avec soldes initiaux ; refuse s'il existe déjà."""
    data = validate_as(InventoryCreate, payload)

    with atomic(db, yarn_id=data.yarn_id):
        yarn = get_yarn(db, data.yarn_id)
        existing = db.execute(select(YarnInventory.id).where(YarnInventory.yarn_id == yarn.id)).scalar_one_or_none()
        if existing is not None:
            raise ConflictError("Inventory already exists for this yarn", yarn_id=yarn.id)

        state = LedgerState(
            long_term=data.long_term.to_bucket(),
            short_term=data.short_term.to_bucket(),
            blocked_net_weight=data.blocked_net_weight,
        )
        inventory = YarnInventory(yarn_id=yarn.id, yarn_name=yarn.yarn_name)
        write_buckets(inventory, state)
        inventory.total = recompute_total(state)
        db.add(inventory)

        evaluate_inventory(db, inventory, yarn)
        db.flush()

    return to_display(inventory)


# ---------- LECTURE ----------
def to_display(inventory: YarnInventory) -> YarnInventoryRead:
    """Vue d'affichage : le réservé est réintégré dans le net de chaque compartiment."""
    blocked = to_decimal(inventory.blocked_net_weight)

    def storage(bucket: Bucket | None) -> StorageRead:
        bucket = Bucket.coerce(bucket)
        return StorageRead(
            total_weight=bucket.total_weight,
            net_weight=bucket.net_weight + blocked,
            number_of_cones=bucket.number_of_cones,
        )

    return YarnInventoryRead(
        id=inventory.id,
        yarn_id=inventory.yarn_id,
        yarn_name=inventory.yarn_name,
        long_term_storage=storage(inventory.long_term),
        short_term_storage=storage(inventory.short_term),
        inventory_status=inventory.inventory_status,
        overbooked=inventory.overbooked,
    )


def _order_by(sort_by: str | None) -> list:
    if not sort_by:
        return [YarnInventory.created_at.asc(), YarnInventory.id.asc()]

    clauses = []
    for part in sort_by.split(","):
        field, _, direction = part.strip().partition(":")
        column = SORTABLE_FIELDS.get(field)
        if column is None or direction not in ("", "asc", "desc"):
            raise ValidationError({"sort_by": [f"unsupported sort key {part.strip()!r}"]})
        clauses.append(column.desc() if direction == "desc" else column.asc())
    clauses.append(YarnInventory.id.asc())
    return clauses


def query_ledgers(
    db: Session,
    filters: LedgerFilters | Mapping[str, Any] | None = None,
    *,
    page: int = 1,
    limit: int = DEFAULT_PAGE_LIMIT,
    sort_by: str | None = None,
) -> Page[YarnInventoryRead]:
    f = validate_as(LedgerFilters, filters)
    if page < 1 or limit < 1:
        raise ValidationError({"pagination": ["page and limit must be positive"]})

    stmt = select(YarnInventory)
    if f.yarn_id is not None:
        stmt = stmt.where(YarnInventory.yarn_id == f.yarn_id)
    if f.yarn_name:
        stmt = stmt.where(YarnInventory.yarn_name.icontains(f.yarn_name, autoescape=True))
    if f.inventory_status is not None:
        stmt = stmt.where(YarnInventory.inventory_status == f.inventory_status)
    if f.overbooked is not None:
        stmt = stmt.where(YarnInventory.overbooked.is_(f.overbooked))

    total_results = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = (
        db.execute(stmt.order_by(*_order_by(sort_by)).offset((page - 1) * limit).limit(limit))
        .scalars()
        .all()
    )

    return Page[YarnInventoryRead](
        results=[to_display(inv) for inv in rows],
        page=page,
        limit=limit,
        total_pages=math.ceil(total_results / limit),
        total_results=total_results,
    )


def get_ledger(db: Session, inventory_id: int) -> YarnInventoryRead:
    inventory = db.get(YarnInventory, inventory_id)
    if not inventory:
        raise NotFoundError("YarnInventory", inventory_id)
    return to_display(inventory)


def get_ledger_by_yarn(db: Session, yarn_id: int) -> YarnInventoryRead:
    inventory = db.execute(select(YarnInventory).where(YarnInventory.yarn_id == yarn_id)).scalar_one_or_none()
    if not inventory:
        raise NotFoundError("YarnInventory", yarn_id)
    return to_display(inventory)
