from __future__ import annotations

from typing import Generator

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from inventario.core.settings import DATABASE_URL


def _engine_kwargs(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {}
    kwargs: dict = {"connect_args": {"check_same_thread": False}}
    # in-memory SQLite: every connection would otherwise see its own empty DB
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return kwargs


engine = create_engine(
    DATABASE_URL.replace("+asyncpg", ""),
    echo=False,
    **_engine_kwargs(DATABASE_URL),
)


def get_session() -> Generator[Session, None, None]:  # dependency
    with Session(engine) as ses:
        yield ses


def init_db() -> None:
    """
    Dev-convenience: create any missing tables.

    In production the schema is owned by the data-access service's migrations.
    """
    import inventario.models  # noqa: F401  (registers every table)

    SQLModel.metadata.create_all(engine)
