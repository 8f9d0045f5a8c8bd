from __future__ import annotations

from decimal import Decimal
from typing import Generic, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from backend.app.db.models.core_types import WEIGHT_DECIMAL_PLACES, WEIGHT_MAX_DIGITS, Bucket, InventoryStatus

T = TypeVar("T")


class BucketRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_weight: Decimal
    tear_weight: Decimal
    net_weight: Decimal
    number_of_cones: int


class LedgerRead(BaseModel):
    """État brut du ledger (total = long terme + court terme, sans réservé)."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    yarn_id: int
    yarn_name: str
    long_term: BucketRead
    short_term: BucketRead
    total: BucketRead
    blocked_net_weight: Decimal
    inventory_status: InventoryStatus
    overbooked: bool


class StorageRead(BaseModel):
    total_weight: Decimal
    net_weight: Decimal  # net du compartiment + réservé (affichage uniquement)
    number_of_cones: int


class YarnInventoryRead(BaseModel):
    id: int
    yarn_id: int
    yarn_name: str
    long_term_storage: StorageRead
    short_term_storage: StorageRead
    inventory_status: InventoryStatus
    overbooked: bool


class LedgerFilters(BaseModel):
    yarn_id: int | None = None
    yarn_name: str | None = None
    inventory_status: InventoryStatus | None = None
    overbooked: bool | None = None


class BucketCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_weight: Decimal = Field(
        default=Decimal("0"),
        max_digits=WEIGHT_MAX_DIGITS,
        decimal_places=WEIGHT_DECIMAL_PLACES,
        validation_alias=AliasChoices("total_weight", "totalWeight"),
    )
    tear_weight: Decimal = Field(
        default=Decimal("0"),
        max_digits=WEIGHT_MAX_DIGITS,
        decimal_places=WEIGHT_DECIMAL_PLACES,
        validation_alias=AliasChoices("tear_weight", "tearWeight", "totalTearWeight"),
    )
    net_weight: Decimal = Field(
        default=Decimal("0"),
        max_digits=WEIGHT_MAX_DIGITS,
        decimal_places=WEIGHT_DECIMAL_PLACES,
        validation_alias=AliasChoices("net_weight", "netWeight", "totalNetWeight"),
    )
    number_of_cones: int = Field(default=0, validation_alias=AliasChoices("number_of_cones", "numberOfCones"))

    def to_bucket(self) -> Bucket:
        return Bucket(
            total_weight=self.total_weight,
            tear_weight=self.tear_weight,
            net_weight=self.net_weight,
            number_of_cones=self.number_of_cones,
        )


class InventoryCreate(BaseModel):
    """Ouverture explicite d'un ledger avec soldes initiaux (le total n'est jamais accepté)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    yarn_id: int = Field(validation_alias=AliasChoices("yarn_id", "yarn", "yarnId"))
    long_term: BucketCreate = Field(
        default_factory=BucketCreate,
        validation_alias=AliasChoices("long_term", "longTerm", "longTermInventory"),
    )
    short_term: BucketCreate = Field(
        default_factory=BucketCreate,
        validation_alias=AliasChoices("short_term", "shortTerm", "shortTermInventory"),
    )
    blocked_net_weight: Decimal = Field(
        default=Decimal("0"),
        max_digits=WEIGHT_MAX_DIGITS,
        decimal_places=WEIGHT_DECIMAL_PLACES,
        validation_alias=AliasChoices("blocked_net_weight", "blockedNetWeight"),
    )


class Page(BaseModel, Generic[T]):
    results: list[T]
    page: int
    limit: int
    total_pages: int
    total_results: int
