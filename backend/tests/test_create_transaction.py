from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, insert, select
from sqlalchemy.exc import IntegrityError, OperationalError
from structlog.testing import capture_logs

from backend.app.core.errors import ConflictError, ImmutableRecordError, NotFoundError, ValidationError
from backend.app.db.models.core_types import AlertStatus, Bucket, InventoryStatus, TransactionType
from backend.app.db.models.models_v1 import YarnInventory, YarnRequisition, YarnTransaction
from backend.services.inventory import create_transaction, over_reservation_trigger
from backend.services.normalizer import normalise_transaction
from backend.services.unit_of_work import atomic, is_write_conflict

D = Decimal


def _count(db, model, **where):
    stmt = select(func.count()).select_from(model)
    for column, value in where.items():
        stmt = stmt.where(getattr(model, column) == value)
    return db.execute(stmt).scalar_one()


def _ledger(db, yarn_id) -> YarnInventory:
    return db.execute(select(YarnInventory).where(YarnInventory.yarn_id == yarn_id)).scalar_one()


def _requisition(db, yarn_id) -> YarnRequisition | None:
    return db.execute(
        select(YarnRequisition).where(YarnRequisition.yarn_id == yarn_id).where(YarnRequisition.po_sent.is_(False))
    ).scalar_one_or_none()


def test_stock_on_zeroed_ledger(db_session, yarn_factory):
    """
    GIVEN : un fil sans ledger
    THEN  : le ledger est créé à zéro puis la réception entre en long terme
    """
    yarn = yarn_factory()

    result = create_transaction(
        db_session,
        {"yarn": yarn.id, "transactionType": "stocked", "netWeight": 100, "numberOfCones": 10},
    )

    assert result.ledger.long_term.net_weight == D("100")
    assert result.ledger.long_term.number_of_cones == 10
    assert result.ledger.total.net_weight == D("100")
    assert result.ledger.short_term.net_weight == D("0")
    assert result.transaction.transaction_type is TransactionType.stocked
    assert result.transaction.yarn_name == yarn.yarn_name


def test_block_then_issue_before_transfer(db_session, yarn_factory):
    yarn = yarn_factory()
    create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "stocked", "net_weight": 100})

    # Réservation : seuls les réservés bougent
    blocked = create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "blocked", "blocked_weight": 30})
    assert blocked.ledger.blocked_net_weight == D("30")
    assert blocked.ledger.long_term.net_weight == D("100")
    assert blocked.ledger.total.net_weight == D("100")
    assert blocked.ledger.overbooked is False

    requisition = _requisition(db_session, yarn.id)
    assert requisition is None

    # Sortie sans transfert préalable : court terme négatif toléré
    issued = create_transaction(
        db_session,
        {"yarn_id": yarn.id, "transaction_type": "issued", "net_weight": 30, "number_of_cones": 0},
    )
    assert issued.ledger.short_term.net_weight == D("-30")
    assert issued.ledger.blocked_net_weight == D("0")
    assert issued.ledger.total.net_weight == D("70")


def test_low_stock_raises_requisition(db_session, yarn_factory):
    yarn = yarn_factory(min_quantity="50")

    result = create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "stocked", "net_weight": 40})

    assert result.ledger.inventory_status is InventoryStatus.low_stock
    requisition = _requisition(db_session, yarn.id)
    assert requisition is not None
    assert requisition.alert_status is AlertStatus.below_minimum
    assert requisition.po_sent is False
    assert requisition.min_qty == D("50")
    assert requisition.available_qty == D("40")


def test_overbooked_regardless_of_minimum(db_session, yarn_factory):
    yarn = yarn_factory(min_quantity="0")
    create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "stocked", "net_weight": 100})

    result = create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "blocked", "blocked_weight": 120})

    assert result.ledger.overbooked is True
    assert result.ledger.inventory_status is InventoryStatus.in_stock
    requisition = _requisition(db_session, yarn.id)
    assert requisition.alert_status is AlertStatus.overbooked
    assert requisition.available_qty == D("0")
    assert requisition.blocked_qty == D("120")


def test_sequential_blocks_accumulate_and_stay_distinct(db_session, yarn_factory):
    yarn = yarn_factory()
    first = create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "blocked", "blocked_weight": 20})
    second = create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "blocked", "blocked_weight": 15})

    assert second.ledger.blocked_net_weight == D("35")
    assert first.transaction.id != second.transaction.id
    assert _count(db_session, YarnTransaction, yarn_id=yarn.id, transaction_type=TransactionType.blocked) == 2


def test_total_always_equals_sum_of_tiers(db_session, yarn_factory):
    yarn = yarn_factory(min_quantity="25")
    payloads = [
        {"transaction_type": "stocked", "total_weight": 220, "net_weight": 200, "number_of_cones": 20},
        {"transaction_type": "transferred", "total_weight": 66, "net_weight": 60, "number_of_cones": 6},
        {"transaction_type": "blocked", "blocked_weight": 25},
        {"transaction_type": "issued", "total_weight": 27.5, "net_weight": 25, "number_of_cones": 2},
        {"transaction_type": "returned", "total_weight": 5.5, "tear_weight": 0.5, "net_weight": 5, "number_of_cones": 1},
        {"transaction_type": "stocked", "net_weight": -10},
    ]

    for payload in payloads:
        ledger = create_transaction(db_session, {"yarn_id": yarn.id, **payload}).ledger
        for field in ("total_weight", "tear_weight", "net_weight", "number_of_cones"):
            expected = getattr(ledger.long_term, field) + getattr(ledger.short_term, field)
            assert getattr(ledger.total, field) == expected

    assert ledger.long_term.net_weight == D("130")
    assert ledger.short_term.net_weight == D("40")
    assert ledger.total.number_of_cones == 19
    assert ledger.blocked_net_weight == D("0")


def test_issue_reduces_short_term_and_reservation_by_same_amount(db_session, yarn_factory):
    yarn = yarn_factory()
    create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "stocked", "net_weight": 80})
    create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "transferred", "net_weight": 50})
    before = create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "blocked", "blocked_weight": 40}).ledger

    after = create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "issued", "net_weight": 12}).ledger

    assert before.short_term.net_weight - after.short_term.net_weight == D("12")
    assert before.blocked_net_weight - after.blocked_net_weight == D("12")
    assert after.long_term == before.long_term


def test_unknown_yarn_persists_nothing(db_session):
    with capture_logs() as logs:
        with pytest.raises(NotFoundError) as exc_info:
            create_transaction(db_session, {"yarn_id": 999, "transaction_type": "stocked", "net_weight": 10})

    assert exc_info.value.entity == "YarnCatalog"
    assert _count(db_session, YarnTransaction) == 0
    assert _count(db_session, YarnInventory) == 0
    assert [e["event"] for e in logs] == ["yarn_transaction_aborted"]
    assert logs[0]["code"] == "NOT_FOUND"


def test_invalid_payload_is_rejected_before_any_write(db_session, yarn_factory):
    yarn = yarn_factory()
    with pytest.raises(ValidationError) as exc_info:
        create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "consumed", "net_weight": 10})

    assert "transaction_type" in exc_info.value.errors
    assert _count(db_session, YarnTransaction) == 0


def test_failure_mid_commit_rolls_everything_back(db_session, yarn_factory, monkeypatch):
    """
    ARRANGE : un ledger existant à 100
    ACT     : l'évaluateur plante après mutation des compartiments
    ASSERT  : ni journal, ni ledger, ni réquisition ne sont modifiés
    """
    yarn = yarn_factory(min_quantity="500")
    create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "stocked", "net_weight": 100})
    requisition_before = _requisition(db_session, yarn.id).available_qty

    def boom(*args, **kwargs):
        raise RuntimeError("evaluator down")

    monkeypatch.setattr("backend.services.inventory.evaluate_inventory", boom)

    with pytest.raises(RuntimeError):
        create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "stocked", "net_weight": 50})

    ledger = _ledger(db_session, yarn.id)
    assert ledger.long_term.net_weight == D("100")
    assert ledger.total.net_weight == D("100")
    assert _count(db_session, YarnTransaction, yarn_id=yarn.id) == 1
    assert _requisition(db_session, yarn.id).available_qty == requisition_before


def test_commit_failure_leaves_no_partial_state(db_session, yarn_factory, monkeypatch):
    yarn = yarn_factory()

    def failing_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db_session, "commit", failing_commit)

    with capture_logs() as logs:
        with pytest.raises(OperationalError):
            create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "stocked", "net_weight": 10})

    monkeypatch.undo()
    assert _count(db_session, YarnTransaction) == 0
    assert _count(db_session, YarnInventory) == 0

    aborted = [e for e in logs if e["event"] == "yarn_transaction_aborted"]
    assert len(aborted) == 1
    assert aborted[0]["code"] == "OperationalError"
    assert aborted[0]["log_level"] == "warning"


class _FakeDriverError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


@pytest.mark.parametrize(
    "exc, expected",
    [
        (IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: yarn_inventories.yarn_id")), True),
        (OperationalError("UPDATE", {}, _FakeDriverError("40001")), True),
        (OperationalError("UPDATE", {}, _FakeDriverError("40P01")), True),
        (OperationalError("SELECT", {}, _FakeDriverError("55P03")), True),
        (IntegrityError("INSERT", {}, _FakeDriverError("23503")), False),
        (IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: yarn_transactions.yarn_name")), False),
    ],
)
def test_write_conflict_detection(exc, expected):
    assert is_write_conflict(exc) is expected


def test_atomic_maps_store_conflicts(db_session):
    with pytest.raises(ConflictError) as exc_info:
        with atomic(db_session, yarn_id=7):
            raise OperationalError("UPDATE", {}, _FakeDriverError("40001"))

    assert exc_info.value.yarn_id == 7
    assert exc_info.value.code == "CONFLICT"
    assert isinstance(exc_info.value.__cause__, OperationalError)


def test_journal_rows_are_immutable(db_session, yarn_factory):
    yarn = yarn_factory()
    result = create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "stocked", "net_weight": 10})
    row = db_session.get(YarnTransaction, result.transaction.id)

    row.net_weight = D("999")
    with pytest.raises(ImmutableRecordError):
        db_session.flush()
    db_session.rollback()

    db_session.delete(row)
    with pytest.raises(ImmutableRecordError):
        db_session.flush()
    db_session.rollback()

    assert db_session.get(YarnTransaction, result.transaction.id).net_weight == D("10")


def test_legacy_null_buckets_are_coerced(db_session, yarn_factory):
    yarn = yarn_factory()
    now = datetime.now(timezone.utc)
    db_session.execute(
        insert(YarnInventory).values(
            yarn_id=yarn.id,
            yarn_name=yarn.yarn_name,
            lt_total_weight=None,
            lt_tear_weight=None,
            lt_net_weight=None,
            lt_number_of_cones=None,
            st_total_weight=None,
            st_tear_weight=None,
            st_net_weight=None,
            st_number_of_cones=None,
            total_total_weight=None,
            total_tear_weight=None,
            total_net_weight=None,
            total_number_of_cones=None,
            blocked_net_weight=None,
            inventory_status=InventoryStatus.in_stock,
            overbooked=False,
            created_at=now,
            updated_at=now,
        )
    )
    db_session.commit()

    result = create_transaction(
        db_session,
        {"yarn_id": yarn.id, "transaction_type": "returned", "net_weight": 5, "number_of_cones": 1},
    )

    assert result.ledger.short_term.net_weight == D("5")
    assert result.ledger.long_term.net_weight == D("0")
    assert result.ledger.total.number_of_cones == 1
    assert result.ledger.blocked_net_weight == D("0")
    assert _count(db_session, YarnInventory) == 1


def test_over_reservation_trigger(yarn_factory):
    inventory = YarnInventory(total=Bucket(net_weight=D("50")), overbooked=False)
    yarn_id = yarn_factory().id

    big_block = normalise_transaction({"yarn_id": yarn_id, "transaction_type": "blocked", "blocked_weight": 60})
    small_block = normalise_transaction({"yarn_id": yarn_id, "transaction_type": "blocked", "blocked_weight": 50})
    issue = normalise_transaction({"yarn_id": yarn_id, "transaction_type": "issued", "net_weight": 60})

    assert over_reservation_trigger(inventory, big_block) is AlertStatus.overbooked
    assert over_reservation_trigger(inventory, small_block) is None
    assert over_reservation_trigger(inventory, issue) is None

    # Ledger déjà surréservé : le déclencheur suit, quel que soit le type
    carried = YarnInventory(total=Bucket(net_weight=D("500")), overbooked=True)
    stock = normalise_transaction({"yarn_id": yarn_id, "transaction_type": "stocked", "net_weight": 10})
    assert over_reservation_trigger(carried, stock) is AlertStatus.overbooked
    assert over_reservation_trigger(carried, small_block) is AlertStatus.overbooked


def test_over_reservation_raises_requisition_even_when_not_overbooked(db_session, yarn_factory):
    yarn = yarn_factory(min_quantity="0")
    create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "stocked", "net_weight": 200})
    # Sortie sans réservation : réservé négatif (-100), total 100
    create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "issued", "net_weight": 100})
    assert _requisition(db_session, yarn.id) is None

    result = create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "blocked", "blocked_weight": 150})

    assert result.ledger.overbooked is False
    requisition = _requisition(db_session, yarn.id)
    assert requisition is not None
    assert requisition.alert_status is AlertStatus.below_minimum


def test_commit_emits_structured_events(db_session, yarn_factory):
    yarn = yarn_factory(min_quantity="50")

    with capture_logs() as logs:
        result = create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "stocked", "net_weight": 10})

    events = [e["event"] for e in logs]
    assert events == ["yarn_inventory_initialised", "yarn_requisition_raised", "yarn_transaction_committed"]

    committed = logs[-1]
    assert committed["yarn_id"] == yarn.id
    assert committed["transaction_type"] == "stocked"
    assert committed["transaction_id"] == result.transaction.id
    assert committed["inventory_status"] == "low_stock"
    assert committed["log_level"] == "info"


def test_clearing_an_overbooking_still_refreshes_the_requisition(db_session, yarn_factory):
    """
    GIVEN : un ledger surréservé (120 réservés pour 100 en stock) et sa réquisition ouverte
    THEN  : la réception qui résorbe la surréservation rafraîchit encore la réquisition,
            la suivante (ledger sain) ne la touche plus
    """
    yarn = yarn_factory(min_quantity="0")
    create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "stocked", "net_weight": 100})
    create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "blocked", "blocked_weight": 120})
    assert _requisition(db_session, yarn.id).alert_status is AlertStatus.overbooked

    cleared = create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "stocked", "net_weight": 50})

    assert cleared.ledger.overbooked is False
    requisition = _requisition(db_session, yarn.id)
    assert requisition.alert_status is AlertStatus.below_minimum
    assert requisition.available_qty == D("30")
    assert requisition.blocked_qty == D("120")

    create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "stocked", "net_weight": 10})
    assert _requisition(db_session, yarn.id).available_qty == D("30")


def test_total_matches_tiers_at_storage_precision(db_session, yarn_factory):
    yarn = yarn_factory()
    create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "stocked", "net_weight": "0.003"})
    create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "transferred", "net_weight": "0.001"})

    # Plus fin que la précision de stockage : refusé, rien n'est arrondi en silence
    with pytest.raises(ValidationError) as exc_info:
        create_transaction(db_session, {"yarn_id": yarn.id, "transaction_type": "transferred", "net_weight": "0.0005"})
    assert "net_weight" in exc_info.value.errors

    db_session.expire_all()
    ledger = _ledger(db_session, yarn.id)
    assert ledger.long_term.net_weight == D("0.002")
    assert ledger.short_term.net_weight == D("0.001")
    assert ledger.total.net_weight == ledger.long_term.net_weight + ledger.short_term.net_weight
    assert _count(db_session, YarnTransaction, yarn_id=yarn.id) == 2


REPLAY = [
    {"transaction_type": "stocked", "total_weight": "120.5", "net_weight": "110.25", "number_of_cones": 12},
    {"transaction_type": "blocked", "blocked_weight": "40.125"},
    {"transaction_type": "transferred", "total_weight": "60", "net_weight": "55", "number_of_cones": 6},
    {"transaction_type": "issued", "total_weight": "30", "net_weight": "27.5", "number_of_cones": 3},
    {"transaction_type": "returned", "net_weight": "2.5", "number_of_cones": 1},
    {"transaction_type": "stocked", "net_weight": "-5"},
]


def test_replay_gives_same_ledger_despite_other_yarns(db_session, yarn_factory):
    """
    ARRANGE : trois fils de même seuil
    ACT     : même séquence sur A seul, puis sur B entrelacée avec des écritures sur C
    ASSERT  : A et B aboutissent au même ledger
    """
    yarn_a = yarn_factory(min_quantity="80")
    yarn_b = yarn_factory(min_quantity="80")
    yarn_c = yarn_factory(min_quantity="80")

    for payload in REPLAY:
        create_transaction(db_session, {"yarn_id": yarn_a.id, **payload})

    for i, payload in enumerate(REPLAY):
        create_transaction(db_session, {"yarn_id": yarn_c.id, "transaction_type": "stocked", "net_weight": 7 + i})
        create_transaction(db_session, {"yarn_id": yarn_b.id, **payload})
        create_transaction(db_session, {"yarn_id": yarn_c.id, "transaction_type": "blocked", "blocked_weight": 500})

    db_session.expire_all()
    a, b = _ledger(db_session, yarn_a.id), _ledger(db_session, yarn_b.id)
    assert (a.long_term, a.short_term, a.total) == (b.long_term, b.short_term, b.total)
    assert a.blocked_net_weight == b.blocked_net_weight
    assert (a.inventory_status, a.overbooked) == (b.inventory_status, b.overbooked)

    req_a, req_b = _requisition(db_session, yarn_a.id), _requisition(db_session, yarn_b.id)
    assert (req_a.available_qty, req_a.blocked_qty, req_a.alert_status) == (
        req_b.available_qty,
        req_b.blocked_qty,
        req_b.alert_status,
    )
