from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal

ZERO = Decimal("0")

# Précision de stockage des poids (colonnes Numeric)
WEIGHT_MAX_DIGITS = 14
WEIGHT_DECIMAL_PLACES = 3


class TransactionType(str, enum.Enum):
    issued = "issued"
    blocked = "blocked"
    stocked = "stocked"
    transferred = "transferred"
    returned = "returned"


class InventoryStatus(str, enum.Enum):
    in_stock = "in_stock"
    low_stock = "low_stock"
    soon_to_be_low = "soon_to_be_low"


class AlertStatus(str, enum.Enum):
    below_minimum = "below_minimum"
    overbooked = "overbooked"


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # float -> str d'abord, sinon on hérite de l'erreur binaire
    return Decimal(str(value))


@dataclass(frozen=True)
class Bucket:
    """
    Un compartiment de stock (long terme, court terme ou total).

    Valeur immuable : une mutation = un nouveau Bucket réassigné sur la ligne.
    L'ordre des champs suit l'ordre des colonnes du composite SQLAlchemy.
    """

    total_weight: Decimal = ZERO
    tear_weight: Decimal = ZERO
    net_weight: Decimal = ZERO
    number_of_cones: int = 0

    @classmethod
    def coerce(cls, value: Bucket | None) -> Bucket:
        """NULL -> 0 champ par champ (lignes legacy partiellement écrites)."""
        if value is None:
            return cls()
        return cls(
            total_weight=to_decimal(value.total_weight),
            tear_weight=to_decimal(value.tear_weight),
            net_weight=to_decimal(value.net_weight),
            number_of_cones=int(value.number_of_cones or 0),
        )

    def __add__(self, other: Bucket) -> Bucket:
        return Bucket(
            total_weight=self.total_weight + other.total_weight,
            tear_weight=self.tear_weight + other.tear_weight,
            net_weight=self.net_weight + other.net_weight,
            number_of_cones=self.number_of_cones + other.number_of_cones,
        )

    def __neg__(self) -> Bucket:
        return Bucket(
            total_weight=-self.total_weight,
            tear_weight=-self.tear_weight,
            net_weight=-self.net_weight,
            number_of_cones=-self.number_of_cones,
        )

    def __sub__(self, other: Bucket) -> Bucket:
        return self + (-other)
