from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from backend.app.db.models.core_types import WEIGHT_DECIMAL_PLACES, WEIGHT_MAX_DIGITS, TransactionType


class TransactionCreate(BaseModel):
    """
    Payload brut d'une transaction fil.

    Plusieurs noms sont acceptés par champ (snake_case, camelCase, anciens
    noms de l'API) ; le premier présent gagne. Tous les poids sont optionnels :
    la normalisation les ramène à 0. Précision bornée à celle du stockage
    (3 décimales), sinon ValidationError.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    yarn_id: int | None = Field(default=None, validation_alias=AliasChoices("yarn_id", "yarn", "yarnId"))
    yarn_name: str | None = Field(default=None, validation_alias=AliasChoices("yarn_name", "yarnName"))
    transaction_type: str | None = Field(
        default=None,
        validation_alias=AliasChoices("transaction_type", "transactionType"),
    )
    transaction_date: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("transaction_date", "transactionDate"),
    )

    total_weight: Decimal | None = Field(
        default=None,
        max_digits=WEIGHT_MAX_DIGITS,
        decimal_places=WEIGHT_DECIMAL_PLACES,
        validation_alias=AliasChoices("total_weight", "totalWeight", "transactionTotalWeight"),
    )
    net_weight: Decimal | None = Field(
        default=None,
        max_digits=WEIGHT_MAX_DIGITS,
        decimal_places=WEIGHT_DECIMAL_PLACES,
        validation_alias=AliasChoices("net_weight", "netWeight", "totalNetWeight", "transactionNetWeight"),
    )
    tear_weight: Decimal | None = Field(
        default=None,
        max_digits=WEIGHT_MAX_DIGITS,
        decimal_places=WEIGHT_DECIMAL_PLACES,
        validation_alias=AliasChoices("tear_weight", "tearWeight", "totalTearWeight", "transactionTearWeight"),
    )
    number_of_cones: int | None = Field(
        default=None,
        validation_alias=AliasChoices("number_of_cones", "numberOfCones", "transactionConeCount"),
    )
    blocked_weight: Decimal | None = Field(
        default=None,
        max_digits=WEIGHT_MAX_DIGITS,
        decimal_places=WEIGHT_DECIMAL_PLACES,
        validation_alias=AliasChoices("blocked_weight", "blockedWeight", "totalBlockedWeight"),
    )
    order_ref: str | None = Field(default=None, validation_alias=AliasChoices("order_ref", "orderRef", "orderno"))


class TransactionFilters(BaseModel):
    transaction_type: TransactionType | None = None
    yarn_id: int | None = None
    yarn_name: str | None = None
    order_ref: str | None = None
    date_from: date | None = None
    date_to: date | None = None


class TransactionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    yarn_id: int
    yarn_name: str
    transaction_type: TransactionType
    transaction_date: datetime
    net_weight: Decimal
    total_weight: Decimal
    tear_weight: Decimal
    number_of_cones: int
    order_ref: str | None = None
