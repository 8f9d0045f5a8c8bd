from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from backend.app.core.config import get_settings
from backend.app.core.errors import ConflictError

# serialization_failure, deadlock_detected, lock_not_available, unique_violation
CONFLICT_SQLSTATES = {"40001", "40P01", "55P03", "23505"}


def is_write_conflict(exc: DBAPIError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate is not None:
        return sqlstate in CONFLICT_SQLSTATES
    # SQLite : pas de SQLSTATE, seul le doublon d'unicité compte
    return isinstance(exc, IntegrityError) and "UNIQUE" in str(orig).upper()


def _apply_lock_timeout(db: Session) -> None:
    timeout_ms = get_settings().lock_timeout_ms
    if timeout_ms <= 0 or db.get_bind().dialect.name != "postgresql":
        return
    db.execute(
        text("SELECT set_config('lock_timeout', :timeout, true)"),
        {"timeout": f"{timeout_ms}ms"},
    )


@contextmanager
def atomic(db: Session, *, yarn_id: int | None = None) -> Iterator[Session]:
    """
    Portée tout-ou-rien : commit en sortie normale, rollback complet sinon.

    Aucune relance automatique ; les conflits d'écriture du store remontent en
    ConflictError, le reste tel quel.
    """
    try:
        _apply_lock_timeout(db)
        yield db
        db.commit()
    except DBAPIError as exc:
        db.rollback()
        if is_write_conflict(exc):
            raise ConflictError(f"Concurrent write conflict on yarn {yarn_id}", yarn_id=yarn_id) from exc
        raise
    except BaseException:
        db.rollback()
        raise
