from __future__ import annotations

import textwrap
from pathlib import Path

import pytest
from db.models.finance import FiCategorizationRule, FiCategory, FiTransaction, FiUpload
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from typer.testing import CliRunner

import financial_import.importer as importer_mod
from financial_import.cli import app
from tests.helpers.db import USER

runner = CliRunner()

CSV = textwrap.dedent(
    """\
    Date,Description,Amount
    2024-01-05,STARBUCKS #1234,-5.75
    2024-01-06,AMAZON.COM*TM0QZ6HK3,-42.10
    2024-01-07,PAYROLL ACME,2500.00
    """
)


@pytest.fixture(autouse=True)
def _no_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def csv_file(tmp_path: Path) -> Path:
    path = tmp_path / "jan.csv"
    path.write_text(CSV, encoding="utf-8")
    return path


def _invoke(db, *args: str):
    url, _ = db
    return runner.invoke(app, ["--database-url", url, *args])


def _count(factory, model) -> int:
    with factory() as s:
        return s.execute(select(func.count()).select_from(model)).scalar_one()


def test_import_twice_keeps_one_copy(db, factory, categories, csv_file):
    first = _invoke(db, "import", "--csv-path", str(csv_file), "--user-id", USER)
    second = _invoke(db, "import", "--csv-path", str(csv_file), "--user-id", USER)

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    assert _count(factory, FiTransaction) == 3
    with factory() as s:
        uploads = s.execute(select(FiUpload).order_by(FiUpload.id)).scalars().all()
    assert [u.status for u in uploads] == ["completed", "completed"]
    assert [(u.imported_count, u.duplicate_count) for u in uploads] == [(3, 0), (0, 3)]


def test_import_with_explicit_columns(db, factory, categories, tmp_path):
    path = tmp_path / "odd.csv"
    path.write_text("When,What,HowMuch\n2024-01-05,CORNER SHOP,-1.00\n", encoding="utf-8")

    result = _invoke(
        db,
        "import",
        "--csv-path",
        str(path),
        "--user-id",
        USER,
        "--date-column",
        "When",
        "--description-column",
        "What",
        "--amount-column",
        "HowMuch",
    )

    assert result.exit_code == 0, result.output
    assert _count(factory, FiTransaction) == 1


def test_import_of_missing_file_fails(db, categories, tmp_path):
    result = _invoke(db, "import", "--csv-path", str(tmp_path / "nope.csv"), "--user-id", USER)

    assert result.exit_code == 1
    assert "File not found" in result.output


def test_failed_import_keeps_the_failed_upload(db, factory, categories, csv_file, monkeypatch):
    def _boom(*_a, **_kw):
        raise SQLAlchemyError("categories unavailable")

    monkeypatch.setattr(importer_mod, "load_category_index", _boom)

    result = _invoke(db, "import", "--csv-path", str(csv_file), "--user-id", USER)

    assert result.exit_code == 1
    assert "Failed to load categories" in result.output
    with factory() as s:
        upload = s.execute(select(FiUpload)).scalar_one()
    assert upload.status == "failed"
    assert upload.completed_at is not None
    assert _count(factory, FiTransaction) == 0


def test_analyze_does_not_write(db, factory, categories, csv_file):
    result = _invoke(db, "analyze", "--csv-path", str(csv_file), "--user-id", USER)

    assert result.exit_code == 0, result.output
    assert _count(factory, FiTransaction) == 0
    assert _count(factory, FiUpload) == 0


def test_detect_columns(csv_file, tmp_path):
    ok = runner.invoke(app, ["detect-columns", "--csv-path", str(csv_file)])
    bad_path = tmp_path / "bad.csv"
    bad_path.write_text("Foo,Bar\n1,2\n", encoding="utf-8")
    bad = runner.invoke(app, ["detect-columns", "--csv-path", str(bad_path)])

    assert ok.exit_code == 0, ok.output
    assert "Description" in ok.output
    assert bad.exit_code == 1
    assert "Missing required columns" in bad.output


def test_rules_add_list_and_delete(db, factory, categories):
    added = _invoke(
        db,
        "rules",
        "add",
        "--user-id",
        USER,
        "--pattern",
        "Starbucks",
        "--category-id",
        str(categories["Coffee"]),
        "--priority",
        "150",
    )
    duplicate = _invoke(
        db,
        "rules",
        "add",
        "--user-id",
        USER,
        "--pattern",
        "starbucks",
        "--category-id",
        str(categories["Coffee"]),
    )
    listed = _invoke(db, "rules", "list", "--user-id", USER)

    assert added.exit_code == 0, added.output
    assert "Created rule" in added.output
    assert duplicate.exit_code == 1
    assert "already exists" in duplicate.output
    assert listed.exit_code == 0
    assert "starbucks" in listed.output

    with factory() as s:
        rule = s.execute(select(FiCategorizationRule)).scalar_one()
    assert rule.priority == 150

    deleted = _invoke(db, "rules", "delete", str(rule.id), "--user-id", USER)
    assert deleted.exit_code == 0
    assert f"Deleted rule {rule.id}" in deleted.output
    assert _count(factory, FiCategorizationRule) == 0


def test_rules_update_deactivates(db, factory, categories):
    _invoke(
        db,
        "rules",
        "add",
        "--user-id",
        USER,
        "--pattern",
        "amazon",
        "--category-id",
        str(categories["Shopping"]),
    )
    with factory() as s:
        rule_id = s.execute(select(FiCategorizationRule.id)).scalar_one()

    result = _invoke(db, "rules", "update", str(rule_id), "--user-id", USER, "--inactive")

    assert result.exit_code == 0, result.output
    with factory() as s:
        assert s.get(FiCategorizationRule, rule_id).is_active is False


def test_rule_for_a_foreign_category_fails(db, categories):
    coffee = str(categories["Coffee"])
    result = _invoke(
        db, "rules", "add", "--user-id", "someone-else", "--pattern", "x", "--category-id", coffee
    )

    assert result.exit_code == 1
    assert "Category not found" in result.output


def test_recategorize_and_regenerate(db, factory, categories, csv_file):
    _invoke(db, "import", "--csv-path", str(csv_file), "--user-id", USER)
    with factory() as s:
        tx_id = s.execute(
            select(FiTransaction.id).where(FiTransaction.merchant_key == "STARBUCKS")
        ).scalar_one()

    recat = _invoke(
        db,
        "recategorize",
        "--user-id",
        USER,
        "--transaction-id",
        str(tx_id),
        "--category-id",
        str(categories["Coffee"]),
        "--create-rule",
    )
    regen = _invoke(db, "regenerate-merchant-keys", "--user-id", USER)

    assert recat.exit_code == 0, recat.output
    assert "Updated 1 transaction(s); created rule" in recat.output
    assert regen.exit_code == 0, regen.output
    assert "0 updated" in regen.output
    with factory() as s:
        tx = s.get(FiTransaction, tx_id)
    assert tx.classification_source == "manual"


def test_categories_add_and_list(db, factory, categories):
    created = _invoke(db, "categories", "add", "--user-id", USER, "--name", "Pets")
    again = _invoke(db, "categories", "add", "--user-id", USER, "--name", "pets")
    bad = _invoke(db, "categories", "add", "--user-id", USER, "--name", "Pets!")
    listed = _invoke(db, "categories", "list", "--user-id", USER)

    assert created.exit_code == 0
    assert created.output.startswith("Created: category")
    assert again.output.startswith("Exists: category")
    assert bad.exit_code == 1
    assert listed.exit_code == 0
    assert "Uncategorized" in listed.output
    with factory() as s:
        pets = s.execute(select(FiCategory).where(FiCategory.name == "Pets")).scalars().all()
    assert len(pets) == 1


def test_missing_database_url_is_an_error(csv_file):
    result = runner.invoke(app, ["rules", "list", "--user-id", USER])

    assert result.exit_code == 1
    assert "DATABASE_URL is not set" in result.output
