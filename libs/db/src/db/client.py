"""SQLAlchemy engine/session helpers for the workspace.

Engines and session factories are built explicitly and handed to the code that
needs them; nothing here caches a process-wide client.

Usage
-----
from db.client import create_db_engine, make_session_factory, session_scope

engine = create_db_engine()
factory = make_session_factory(engine)
with session_scope(factory) as s:
    s.execute(...)
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


def database_url(override: str | None = None) -> str:
    """Return ``override`` or ``DATABASE_URL``; raise when neither is set."""

    url = override or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set; cannot initialize database client")
    return url


def create_db_engine(*, database_url_override: str | None = None, echo: bool = False) -> Engine:
    """Create a new SQLAlchemy engine for the resolved database URL."""

    url = database_url(database_url_override)
    engine = create_engine(url, pool_pre_ping=True, echo=echo)
    if engine.dialect.name == "sqlite":
        _configure_sqlite(engine)
    return engine


def _configure_sqlite(engine: Engine) -> None:
    """Enforce foreign keys and let SQLAlchemy drive BEGIN so SAVEPOINT works.

    pysqlite otherwise defers BEGIN until the first DML statement, which breaks
    ``Session.begin_nested()``.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _record):  # pragma: no cover - driver bridge
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):  # pragma: no cover - driver bridge
        conn.exec_driver_sql("BEGIN")


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory bound to ``engine``."""

    return sessionmaker(bind=engine, expire_on_commit=False, class_=Session)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = [
    "database_url",
    "create_db_engine",
    "make_session_factory",
    "session_scope",
]
