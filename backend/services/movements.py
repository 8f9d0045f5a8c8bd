"""
Application des transactions sur les compartiments d'un ledger.

Chaque type de transaction est une variante d'union (Issued, Blocked, ...) ;
``apply_movement`` est une fonction pure état -> état, sans accès DB.
Aucun plancher à zéro : un compartiment peut devenir négatif (transactions
correctives, sorties avant transfert) ; c'est le statut qui le signale.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import assert_never

from backend.app.db.models.core_types import Bucket, TransactionType
from backend.services.ledger import LedgerState
from backend.services.normalizer import CanonicalTransaction


@dataclass(frozen=True)
class Issued:
    """Sortie physique du court terme ; libère la réservation correspondante."""

    delta: Bucket


@dataclass(frozen=True)
class Blocked:
    """Réservation pure : seul le réservé bouge."""

    weight: Decimal


@dataclass(frozen=True)
class Stocked:
    """Réception : entre en stockage long terme."""

    delta: Bucket


@dataclass(frozen=True)
class Transferred:
    """Long terme -> court terme, même delta des deux côtés."""

    delta: Bucket


@dataclass(frozen=True)
class Returned:
    """Retour : revient en court terme."""

    delta: Bucket


Movement = Issued | Blocked | Stocked | Transferred | Returned


def to_movement(transaction: CanonicalTransaction) -> Movement:
    match transaction.transaction_type:
        case TransactionType.issued:
            return Issued(transaction.delta)
        case TransactionType.blocked:
            return Blocked(transaction.net_weight)
        case TransactionType.stocked:
            return Stocked(transaction.delta)
        case TransactionType.transferred:
            return Transferred(transaction.delta)
        case TransactionType.returned:
            return Returned(transaction.delta)
        case _:
            assert_never(transaction.transaction_type)


def apply_movement(state: LedgerState, movement: Movement) -> LedgerState:
    match movement:
        case Issued(delta=delta):
            return replace(
                state,
                short_term=state.short_term - delta,
                blocked_net_weight=state.blocked_net_weight - delta.net_weight,
            )
        case Blocked(weight=weight):
            return replace(state, blocked_net_weight=state.blocked_net_weight + weight)
        case Stocked(delta=delta):
            return replace(state, long_term=state.long_term + delta)
        case Transferred(delta=delta):
            return replace(
                state,
                long_term=state.long_term - delta,
                short_term=state.short_term + delta,
            )
        case Returned(delta=delta):
            return replace(state, short_term=state.short_term + delta)
        case _:
            assert_never(movement)
