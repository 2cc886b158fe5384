from __future__ import annotations

import pytest

from financial_import.categories import (
    create_category,
    find_uncategorized,
    list_categories,
    load_category_index,
    match_category_name,
    validate_name,
)
from financial_import.models import Matched, Unmatched
from tests.helpers.db import OTHER_USER, USER


@pytest.mark.parametrize(
    ("name", "ok"),
    [
        ("Coffee Shops", True),
        ("Bills & Utilities", True),
        ("Kids' Stuff, Misc.", True),
        ("   ", False),
        ("Pets!", False),
        ("x" * 65, False),
    ],
)
def test_validate_name(name: str, ok: bool):
    assert validate_name(name).ok is ok


def test_list_puts_system_categories_first(session, categories):
    create_category(session, user_id=OTHER_USER, name="Hidden")

    names = [c.name for c in list_categories(session, user_id=USER)]

    assert names == ["Uncategorized", "Coffee", "Groceries", "Shopping", "Transport"]


def test_index_is_case_insensitive_and_prefers_user_rows(session, categories):
    mine, created = create_category(session, user_id=USER, name="  uncategorized ")
    index = load_category_index(session, user_id=USER)

    assert created is False
    assert mine.id == categories["Uncategorized"]
    assert match_category_name(" COFFEE ", index) == Matched(categories["Coffee"])
    assert isinstance(match_category_name("Rent", index), Unmatched)
    assert isinstance(match_category_name(None, index), Unmatched)


def test_create_category_rejects_bad_input(session, categories):
    with pytest.raises(ValueError):
        create_category(session, user_id=USER, name="Pets!")
    with pytest.raises(ValueError):
        create_category(session, user_id=USER, name="Pets", type="savings")


def test_find_uncategorized_returns_the_system_row(session, categories):
    assert find_uncategorized(session, user_id=OTHER_USER) == categories["Uncategorized"]
