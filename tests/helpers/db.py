"""DB helpers for tests: bootstrap a temporary SQLite DB and seed categories."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from db import Base
from db.client import create_db_engine, make_session_factory, session_scope
from db.models.finance import FiCategory
from sqlalchemy import text as sql_text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

USER = "user-1"
OTHER_USER = "user-2"


def bootstrap_sqlite_db(db_file: Path) -> tuple[str, Engine]:
    """Create a SQLite database file with the ORM schema; return ``(url, engine)``.

    Using a file-backed SQLite DB ensures multiple SQLAlchemy connections share
    the same state (in-memory DBs are per-connection by default).
    """

    db_file.parent.mkdir(parents=True, exist_ok=True)
    url = f"sqlite+pysqlite:///{db_file}"
    engine = create_db_engine(database_url_override=url)
    Base.metadata.create_all(bind=engine)
    _assert_fingerprint_constraint(engine)
    return url, engine


def seed_categories(
    factory: sessionmaker[Session],
    *,
    user_id: str,
    names: Iterable[str] = ("Groceries", "Coffee", "Shopping", "Transport"),
) -> dict[str, int]:
    """Insert the system ``Uncategorized`` row plus user categories.

    Returns a name → id map including ``"Uncategorized"``.
    """

    ids: dict[str, int] = {}
    with session_scope(factory) as session:
        system = FiCategory(user_id=None, name="Uncategorized", type="expense", is_system=True)
        session.add(system)
        session.flush()
        ids["Uncategorized"] = system.id
        for name in names:
            row = FiCategory(user_id=user_id, name=name, type="expense", is_system=False)
            session.add(row)
            session.flush()
            ids[name] = row.id
    return ids


def _assert_fingerprint_constraint(engine: Engine) -> None:
    """Sanity check: the per-user fingerprint uniqueness made it into SQLite."""

    with engine.connect() as conn:
        rows = conn.execute(sql_text("PRAGMA index_list('fi_transactions')")).fetchall()
    unique = [r for r in rows if r[2]]  # (seq, name, unique, origin, partial)
    assert unique, "fi_transactions is missing its unique (user_id, fingerprint_hash) index"


def make_factory(engine: Engine) -> sessionmaker[Session]:
    return make_session_factory(engine)
