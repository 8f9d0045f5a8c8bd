from __future__ import annotations

from typing import Any, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from backend.app.core.config import get_settings


def build_engine(url: str | None = None, **kwargs: Any) -> Engine:
    """Engine vers le store ; DATABASE_URL par défaut."""
    kwargs.setdefault("pool_pre_ping", True)
    return create_engine(url or get_settings().database_url, **kwargs)


# Non lié : on passe bind= à l'ouverture (engine applicatif ou connexion de test)
SessionLocal = sessionmaker(autoflush=False, autocommit=False)


def get_db(engine: Engine) -> Generator[Session, None, None]:
    db = SessionLocal(bind=engine)
    try:
        yield db
    finally:
        db.close()
