from __future__ import annotations

import textwrap

import pytest
from db.models.finance import FiCategorizationRule, FiTransaction
from sqlalchemy import select, update

from financial_import.categories import CategoryNotFoundError, create_category
from financial_import.csv_parser import parse_csv
from financial_import.importer import import_rows
from financial_import.models import ColumnMapping, RuleInput
from financial_import.rules_service import create_rule
from financial_import.transactions import recategorize_transactions, regenerate_merchant_keys
from tests.helpers.db import OTHER_USER, USER

MAPPING = ColumnMapping(posted_date="Date", description="Description", amount="Amount")

CSV = textwrap.dedent(
    """\
    Date,Description,Amount
    2024-01-05,STARBUCKS #1234,-5.75
    2024-01-12,STARBUCKS STORE 5678,-6.25
    2024-01-20,AMAZON MKTPL*1A2B3,-120.00
    """
)


def _import(session, user_id: str = USER) -> list[FiTransaction]:
    import_rows(session, user_id=user_id, rows=parse_csv(CSV).rows, mapping=MAPPING)
    stmt = select(FiTransaction).where(FiTransaction.user_id == user_id).order_by(FiTransaction.id)
    return list(session.execute(stmt).scalars())


def test_regenerate_merchant_keys_is_idempotent(session, categories):
    txs = _import(session)
    fingerprints = [t.fingerprint_hash for t in txs]
    session.execute(
        update(FiTransaction).where(FiTransaction.id == txs[0].id).values(merchant_key="OLD_KEY")
    )

    first = regenerate_merchant_keys(session, user_id=USER)
    second = regenerate_merchant_keys(session, user_id=USER)

    assert (first.total, first.updated, first.unchanged) == (3, 1, 2)
    assert (second.total, second.updated, second.unchanged) == (3, 0, 3)
    for tx in txs:
        session.refresh(tx)
    assert txs[0].merchant_key == "STARBUCKS"
    assert [t.fingerprint_hash for t in txs] == fingerprints


def test_regenerate_only_touches_the_given_user(session, categories):
    _import(session)
    _import(session, user_id=OTHER_USER)
    session.execute(update(FiTransaction).values(merchant_key="OLD_KEY"))

    result = regenerate_merchant_keys(session, user_id=USER)

    assert result.updated == 3
    other = session.execute(
        select(FiTransaction.merchant_key).where(FiTransaction.user_id == OTHER_USER)
    ).scalars()
    assert set(other) == {"OLD_KEY"}


def test_recategorize_marks_rows_manual(session, categories):
    txs = _import(session)

    result = recategorize_transactions(
        session, user_id=USER, transaction_ids=[txs[2].id], category_id=categories["Shopping"]
    )

    assert (result.updated, result.rule_created, result.additional_updated) == (1, False, 0)
    session.refresh(txs[2])
    assert txs[2].category_id == categories["Shopping"]
    assert txs[2].classification_source == "manual"
    assert txs[2].classification_confidence == pytest.approx(1.0)


def test_recategorize_with_rule_applies_to_similar_transactions(session, categories):
    txs = _import(session)

    result = recategorize_transactions(
        session,
        user_id=USER,
        transaction_ids=[txs[0].id],
        category_id=categories["Coffee"],
        create_rule_for_merchant=True,
    )

    assert (result.updated, result.rule_created, result.additional_updated) == (1, True, 1)
    rule = session.execute(select(FiCategorizationRule)).scalar_one()
    assert rule.merchant_pattern == "starbucks"
    assert rule.match_count == 2
    session.refresh(txs[1])
    assert txs[1].classification_source == "rule"
    assert txs[1].category_id == categories["Coffee"]


def test_recategorize_keeps_an_existing_rule(session, categories):
    txs = _import(session)
    create_rule(
        session,
        user_id=USER,
        rule=RuleInput(merchant_pattern="starbucks", category_id=categories["Groceries"]),
    )

    result = recategorize_transactions(
        session,
        user_id=USER,
        transaction_ids=[txs[0].id],
        category_id=categories["Coffee"],
        create_rule_for_merchant=True,
    )

    assert result.rule_created is False
    rule = session.execute(select(FiCategorizationRule)).scalar_one()
    assert rule.category_id == categories["Groceries"]


def test_recategorize_rejects_foreign_rows_and_categories(session, categories):
    theirs = _import(session, user_id=OTHER_USER)
    foreign, _ = create_category(session, user_id=OTHER_USER, name="Theirs")
    mine = _import(session)

    with pytest.raises(ValueError):
        recategorize_transactions(
            session, user_id=USER, transaction_ids=[theirs[0].id], category_id=categories["Coffee"]
        )
    with pytest.raises(CategoryNotFoundError):
        recategorize_transactions(
            session, user_id=USER, transaction_ids=[mine[0].id], category_id=foreign.id
        )
