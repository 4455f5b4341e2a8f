from __future__ import annotations

from typing import Callable

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .base import Base
from .uow import SQLAlchemyUnitOfWork

SQLITE_BUSY_TIMEOUT_MS = 5000


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite") and ":memory:" in url:
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(url)

    if url.startswith("sqlite"):
        # Several sessions may write party documents at once.
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, _connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
            cursor.close()

    return engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


def create_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def build_uow_factory(url: str) -> Callable[[], SQLAlchemyUnitOfWork]:
    """Engine, schema and unit-of-work factory for a document database URL."""
    engine = build_engine(url)
    create_schema(engine)
    session_factory = build_session_factory(engine)
    return lambda: SQLAlchemyUnitOfWork(session_factory)
