from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.db.models.core_types import ZERO, Bucket, InventoryStatus, to_decimal
from backend.app.db.models.models_v1 import YarnCatalog, YarnInventory

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LedgerState:
    """Les compartiments mutables d'un ledger ; le total n'en fait pas partie."""

    long_term: Bucket = Bucket()
    short_term: Bucket = Bucket()
    blocked_net_weight: Decimal = ZERO


def recompute_total(state: LedgerState) -> Bucket:
    """Seule source du total : long terme + court terme, métrique par métrique."""
    return state.long_term + state.short_term


def read_state(inventory: YarnInventory) -> LedgerState:
    return LedgerState(
        long_term=Bucket.coerce(inventory.long_term),
        short_term=Bucket.coerce(inventory.short_term),
        blocked_net_weight=to_decimal(inventory.blocked_net_weight),
    )


def write_buckets(inventory: YarnInventory, state: LedgerState) -> None:
    inventory.long_term = state.long_term
    inventory.short_term = state.short_term
    inventory.blocked_net_weight = state.blocked_net_weight


def ensure_ledger(db: Session, yarn: YarnCatalog) -> YarnInventory:
    """
    Charge le ledger du fil (verrouillé FOR UPDATE) ou l'initialise à zéro.

    Les champs NULL des lignes legacy sont ramenés à 0 ici, avant toute mutation.
    """
    inventory = (
        db.execute(
            select(YarnInventory)
            .where(YarnInventory.yarn_id == yarn.id)
            .with_for_update()
        )
        .scalar_one_or_none()
    )

    if not inventory:
        inventory = YarnInventory(
            yarn_id=yarn.id,
            yarn_name=yarn.yarn_name,
            long_term=Bucket(),
            short_term=Bucket(),
            total=Bucket(),
            blocked_net_weight=ZERO,
            inventory_status=InventoryStatus.in_stock,
            overbooked=False,
        )
        db.add(inventory)
        db.flush()
        logger.debug("yarn_inventory_initialised", yarn_id=yarn.id, inventory_id=inventory.id)
        return inventory

    if not inventory.yarn_name:
        inventory.yarn_name = yarn.yarn_name
    state = read_state(inventory)
    write_buckets(inventory, state)
    inventory.total = Bucket.coerce(inventory.total)
    return inventory
