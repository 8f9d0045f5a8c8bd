import itertools
import os
from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool

from backend.app.db.base import Base
from backend.app.db.models.models_v1 import YarnCatalog
from backend.app.db.session import build_engine, get_db

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")


@pytest.fixture(scope="function")
def engine():
    """
    Engine isolé par test.

    SQLite mémoire par défaut (StaticPool : une seule connexion partagée) ;
    TEST_DATABASE_URL permet de pointer un Postgres jetable.
    """
    kwargs = {}
    if TEST_DATABASE_URL.startswith("sqlite"):
        kwargs = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}

    engine = build_engine(TEST_DATABASE_URL, **kwargs)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine):
    yield from get_db(engine)


@pytest.fixture
def yarn_factory(db_session):
    """Crée une entrée catalogue (collaborateur externe) et la commit."""
    seq = itertools.count(1)

    def _make(min_quantity="0", yarn_name=None) -> YarnCatalog:
        n = next(seq)
        yarn = YarnCatalog(
            yarn_name=yarn_name or f"TEST-YARN-{n}",
            min_quantity=Decimal(str(min_quantity)),
            active=True,
        )
        db_session.add(yarn)
        db_session.commit()
        return yarn

    return _make
