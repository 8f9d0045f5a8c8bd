"""
Normalisation des transactions fil.

Transforme un payload hétérogène (alias, anciens noms, champs manquants) en une
transaction canonique : cinq types possibles, quatre métriques numériques
toujours renseignées (0 par défaut).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping

from backend.app.core.errors import ValidationError
from backend.app.db.models.core_types import ZERO, Bucket, TransactionType, to_decimal
from backend.app.schemas.validation import validate_as
from backend.app.schemas.yarn_transaction import TransactionCreate

# Noms historiques de l'API
LEGACY_TRANSACTION_TYPES = {
    "yarn_issued": TransactionType.issued,
    "yarn_blocked": TransactionType.blocked,
    "yarn_stocked": TransactionType.stocked,
    "internal_transfer": TransactionType.transferred,
    "yarn_returned": TransactionType.returned,
}


@dataclass(frozen=True)
class CanonicalTransaction:
    yarn_id: int
    yarn_name: str | None
    transaction_type: TransactionType
    transaction_date: datetime
    net_weight: Decimal
    total_weight: Decimal
    tear_weight: Decimal
    number_of_cones: int
    order_ref: str | None = None

    @property
    def delta(self) -> Bucket:
        return Bucket(
            total_weight=self.total_weight,
            tear_weight=self.tear_weight,
            net_weight=self.net_weight,
            number_of_cones=self.number_of_cones,
        )


def parse_transaction_type(value: str | TransactionType | None) -> TransactionType:
    if isinstance(value, TransactionType):
        return value
    if value:
        key = str(value).strip().lower()
        if key in LEGACY_TRANSACTION_TYPES:
            return LEGACY_TRANSACTION_TYPES[key]
        try:
            return TransactionType(key)
        except ValueError:
            pass
    allowed = ", ".join(t.value for t in TransactionType)
    raise ValidationError({"transaction_type": [f"must be one of: {allowed} (got {value!r})"]})


def _as_utc(value: datetime | None) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def derive_tear_weight(
    tear_weight: Decimal | None,
    total_weight: Decimal | None,
    net_weight: Decimal | None,
) -> Decimal:
    """Tare fournie, sinon max(total - net, 0) si les deux sont connus, sinon 0."""
    if tear_weight is not None:
        return tear_weight
    if total_weight is not None and net_weight is not None:
        return max(total_weight - net_weight, ZERO)
    return ZERO


def normalise_transaction(payload: Mapping[str, Any] | TransactionCreate) -> CanonicalTransaction:
    body = validate_as(TransactionCreate, payload)

    if body.yarn_id is None:
        raise ValidationError({"yarn_id": ["yarn reference is required"]})
    transaction_type = parse_transaction_type(body.transaction_type)

    if transaction_type is TransactionType.blocked:
        # Une réservation n'a ni tare ni cônes
        blocked = body.blocked_weight if body.blocked_weight is not None else body.net_weight
        net_weight = total_weight = to_decimal(blocked)
        tear_weight = ZERO
        number_of_cones = 0
    else:
        net_weight = to_decimal(body.net_weight)
        total_weight = to_decimal(body.total_weight)
        tear_weight = derive_tear_weight(body.tear_weight, body.total_weight, body.net_weight)
        number_of_cones = body.number_of_cones or 0

    return CanonicalTransaction(
        yarn_id=body.yarn_id,
        yarn_name=body.yarn_name.strip() if body.yarn_name else None,
        transaction_type=transaction_type,
        transaction_date=_as_utc(body.transaction_date),
        net_weight=net_weight,
        total_weight=total_weight,
        tear_weight=tear_weight,
        number_of_cones=number_of_cones,
        order_ref=body.order_ref.strip() if body.order_ref else None,
    )
