"""
Santé du stock et réquisitions d'achat.

Règles :
    available_net = max(total.net - réservé, 0)
    overbooked    = réservé > total.net (strict)
    statut (sur total.net, pas sur available_net) :
        min <= 0            -> in_stock
        total <= min        -> low_stock
        total <= min * 1.2  -> soon_to_be_low
        sinon               -> in_stock

Une réquisition est levée / rafraîchie si overbooked, si statut bas, ou sur
déclencheur externe "overbooked". Jamais fermée ici : la fermeture (po_sent)
appartient au workflow achats.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.core.errors import NotFoundError
from backend.app.db.models.core_types import ZERO, AlertStatus, Bucket, InventoryStatus, to_decimal
from backend.app.db.models.models_v1 import YarnCatalog, YarnInventory, YarnRequisition
from backend.app.schemas.yarn_requisition import RequisitionRead
from backend.services.unit_of_work import atomic

logger = structlog.get_logger(__name__)

SOON_TO_BE_LOW_FACTOR = Decimal("1.2")
LOW_STATUSES = {InventoryStatus.low_stock, InventoryStatus.soon_to_be_low}


@dataclass(frozen=True)
class StockAssessment:
    status: InventoryStatus
    overbooked: bool
    available_net: Decimal
    blocked_net: Decimal
    min_quantity: Decimal

    @property
    def alert_status(self) -> AlertStatus:
        return AlertStatus.overbooked if self.overbooked else AlertStatus.below_minimum

    def requires_requisition(self, trigger: AlertStatus | None = None) -> bool:
        return self.overbooked or self.status in LOW_STATUSES or trigger is AlertStatus.overbooked


def derive_status(total_net: Decimal, min_quantity: Decimal) -> InventoryStatus:
    if min_quantity <= 0:
        return InventoryStatus.in_stock
    if total_net <= min_quantity:
        return InventoryStatus.low_stock
    if total_net <= min_quantity * SOON_TO_BE_LOW_FACTOR:
        return InventoryStatus.soon_to_be_low
    return InventoryStatus.in_stock


def assess_stock(total_net, blocked_net, min_quantity) -> StockAssessment:
    total_net = to_decimal(total_net)
    blocked_net = to_decimal(blocked_net)
    min_quantity = to_decimal(min_quantity)
    return StockAssessment(
        status=derive_status(total_net, min_quantity),
        overbooked=blocked_net > total_net,
        available_net=max(total_net - blocked_net, ZERO),
        blocked_net=blocked_net,
        min_quantity=min_quantity,
    )


def upsert_requisition(db: Session, inventory: YarnInventory, assessment: StockAssessment) -> YarnRequisition:
    """
    Find-or-create sur (yarn, po_sent=false).

    La ligne ouverte existante est verrouillée puis écrasée (dernier écrivain
    gagne) ; sinon une nouvelle ligne ouverte est créée.
    """
    requisition = (
        db.execute(
            select(YarnRequisition)
            .where(YarnRequisition.yarn_id == inventory.yarn_id)
            .where(YarnRequisition.po_sent.is_(False))
            .with_for_update()
        )
        .scalar_one_or_none()
    )

    created = requisition is None
    if created:
        requisition = YarnRequisition(yarn_id=inventory.yarn_id, po_sent=False)
        db.add(requisition)

    requisition.yarn_name = inventory.yarn_name
    requisition.min_qty = assessment.min_quantity
    requisition.available_qty = assessment.available_net
    requisition.blocked_qty = assessment.blocked_net
    requisition.alert_status = assessment.alert_status
    db.flush()

    logger.info(
        "yarn_requisition_raised" if created else "yarn_requisition_refreshed",
        yarn_id=inventory.yarn_id,
        requisition_id=requisition.id,
        alert_status=requisition.alert_status.value,
    )
    return requisition


def evaluate_inventory(
    db: Session,
    inventory: YarnInventory,
    yarn: YarnCatalog,
    *,
    trigger: AlertStatus | None = None,
) -> StockAssessment:
    """Recalcule statut + flag overbooked du ledger et lève la réquisition si besoin."""
    total = Bucket.coerce(inventory.total)
    assessment = assess_stock(total.net_weight, inventory.blocked_net_weight, yarn.min_quantity)

    inventory.inventory_status = assessment.status
    inventory.overbooked = assessment.overbooked

    if assessment.requires_requisition(trigger):
        upsert_requisition(db, inventory, assessment)
    return assessment


def list_requisitions(
    db: Session,
    *,
    start_date: date,
    end_date: date,
    po_sent: bool | None = None,
) -> list[RequisitionRead]:
    stmt = (
        select(YarnRequisition)
        .where(YarnRequisition.created_at >= datetime.combine(start_date, time.min, tzinfo=timezone.utc))
        .where(YarnRequisition.created_at <= datetime.combine(end_date, time.max, tzinfo=timezone.utc))
        .order_by(YarnRequisition.created_at.desc(), YarnRequisition.id.desc())
    )
    if po_sent is not None:
        stmt = stmt.where(YarnRequisition.po_sent.is_(po_sent))

    return [RequisitionRead.model_validate(r) for r in db.execute(stmt).scalars().all()]


def update_requisition_status(db: Session, requisition_id: int, po_sent: bool) -> RequisitionRead:
    """Fermeture (po_sent=True) ou réouverture par le workflow achats."""
    with atomic(db):
        requisition = db.get(YarnRequisition, requisition_id, with_for_update=True)
        if not requisition:
            raise NotFoundError("YarnRequisition", requisition_id)
        requisition.po_sent = po_sent
        db.flush()

    logger.info(
        "yarn_requisition_status_updated",
        requisition_id=requisition_id,
        yarn_id=requisition.yarn_id,
        po_sent=po_sent,
    )
    return RequisitionRead.model_validate(requisition)
