import io
import logging

import pytest

from financial_import.logging_setup import (
    LOG_LEVEL_ENV,
    configure_logging,
    get_logger,
    resolve_level,
)


@pytest.fixture
def clean_package_logger():
    logger = logging.getLogger("financial_import")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    logger.handlers.clear()
    yield logger
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


def test_resolve_level(monkeypatch):
    monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level("15") == 15
    assert resolve_level(None) == logging.INFO
    monkeypatch.setenv(LOG_LEVEL_ENV, "WARNING")
    assert resolve_level(None) == logging.WARNING
    assert resolve_level("nonsense") == logging.WARNING


def test_configure_installs_one_handler(clean_package_logger):
    buf = io.StringIO()
    get_logger("financial_import.importer")
    configure_logging("INFO", stream=buf)
    configure_logging("DEBUG", stream=buf)

    get_logger("financial_import.importer").debug("hello %s", "there")

    assert len(clean_package_logger.handlers) == 1
    assert clean_package_logger.propagate is False
    assert "financial_import.importer DEBUG hello there" in buf.getvalue()
