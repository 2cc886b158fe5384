"""Shared fixtures: a fresh file-backed SQLite database per test.

Each test gets its own database under ``tmp_path`` with the ORM schema, the
system ``Uncategorized`` category and a few categories owned by ``USER``.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from tests.helpers.db import USER, bootstrap_sqlite_db, make_factory, seed_categories


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests independent of the developer's shell environment."""

    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("FI_PREPARE_CONCURRENCY", raising=False)


@pytest.fixture
def db(tmp_path: Path) -> Iterator[tuple[str, Engine]]:
    url, engine = bootstrap_sqlite_db(tmp_path / "fi.sqlite3")
    yield url, engine
    engine.dispose()


@pytest.fixture
def factory(db: tuple[str, Engine]) -> sessionmaker[Session]:
    return make_factory(db[1])


@pytest.fixture
def categories(factory: sessionmaker[Session]) -> dict[str, int]:
    return seed_categories(factory, user_id=USER)


@pytest.fixture
def session(factory: sessionmaker[Session], categories: dict[str, int]) -> Iterator[Session]:
    """A session over a seeded database; committed on success like production."""

    s = factory()
    try:
        yield s
        s.commit()
    finally:
        s.close()
