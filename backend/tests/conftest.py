import os

# must be set before inventario.core.* is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session, SQLModel

import inventario.models  # noqa: F401  (registers every table)
from inventario.core.database import engine
from inventario.services.records import StockDataset

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def ago(**kwargs) -> datetime:
    """``NOW`` minus the given timedelta arguments."""
    return NOW - timedelta(**kwargs)


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    SQLModel.metadata.create_all(engine)
    yield
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session():
    """Session whose rows are wiped after the test."""
    with Session(engine) as ses:
        yield ses
    with Session(engine) as ses:
        for table in reversed(SQLModel.metadata.sorted_tables):
            ses.execute(table.delete())
        ses.commit()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_dataset():
    """Build a dataset from keyword collections (plain dicts)."""
    def _make(**collections) -> StockDataset:
        return StockDataset(**collections)
    return _make


@pytest.fixture
def scenario_dataset() -> StockDataset:
    """
    P1 counted 3 days ago at L1 (25 units) and sent 5 out yesterday;
    P1 has a 15-unit baseline at L2; P2 has a 7-unit baseline at L2.
    """
    return StockDataset(
        products=[
            {"id": "P1", "stock_minimo": 10},
            {"id": "P2", "stock_minimo": 3},
        ],
        locations=[{"id": "L1"}, {"id": "L2"}],
        baselines=[
            {"product_id": "P1", "location_id": "L1", "quantity": 40},
            {"product_id": "P1", "location_id": "L2", "quantity": 15},
            {"product_id": "P2", "location_id": "L2", "quantity": 7},
        ],
        counts=[
            {"id": "C1", "location_id": "L1", "estado": "completed",
             "fecha_completado": ago(days=3)},
        ],
        count_details=[
            {"conteo_id": "C1", "producto_id": "P1", "cantidad_fisica": 25,
             "cantidad_sistema": 30, "contado": True},
        ],
        movements=[
            {"id": "M1", "origen_id": "L1", "destino_id": "L2", "estado": "completed",
             "fecha_creacion": ago(days=2), "fecha_confirmacion": ago(days=1)},
        ],
        movement_details=[
            {"movimiento_id": "M1", "producto_id": "P1", "cantidad_enviada": 5},
        ],
    )
