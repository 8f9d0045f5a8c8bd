"""
Erreurs typées du moteur d'inventaire fil.

Chaque classe porte un ``code`` (attribut de classe, lisible machine) et ses
données structurées en attributs : on attrape par type, jamais par message.

    InventoryError
    +-- ValidationError       payload invalide (type inconnu, fil absent, nombre mal formé)
    +-- NotFoundError         référence inexistante (catalogue, inventaire, réquisition)
    +-- ConflictError         conflit d'écriture concurrente / doublon
    +-- ImmutableRecordError  modification d'une ligne du journal

Surstock réservé (overbooked) et stock bas ne sont PAS des erreurs : ce sont des
états enregistrés via le statut, le flag et la réquisition.
"""

from __future__ import annotations

from typing import Any


class InventoryError(Exception):
    """Base de toutes les erreurs du moteur."""

    code: str = "INVENTORY_ERROR"

    def as_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class ValidationError(InventoryError):
    code: str = "VALIDATION_ERROR"

    def __init__(self, errors: dict[str, list[str]]):
        self.errors = errors
        detail = "; ".join(f"{field}: {', '.join(msgs)}" for field, msgs in errors.items())
        super().__init__(f"Invalid payload ({detail})")

    def as_dict(self) -> dict[str, Any]:
        return {**super().as_dict(), "errors": self.errors}


class NotFoundError(InventoryError):
    code: str = "NOT_FOUND"

    def __init__(self, entity: str, reference: Any):
        self.entity = entity
        self.reference = reference
        super().__init__(f"{entity} not found: {reference}")


class ConflictError(InventoryError):
    code: str = "CONFLICT"

    def __init__(self, message: str, *, yarn_id: int | None = None):
        self.yarn_id = yarn_id
        super().__init__(message)


class ImmutableRecordError(InventoryError):
    code: str = "IMMUTABLE_RECORD"

    def __init__(self, entity: str, reference: Any):
        self.entity = entity
        self.reference = reference
        super().__init__(f"{entity} {reference} is immutable once journaled")
