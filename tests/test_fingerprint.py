from datetime import date
from decimal import Decimal

import pytest

from financial_import.fingerprint import compute_fingerprint

BASE = {
    "posted_date": "2024-01-05",
    "amount": Decimal("-5.75"),
    "description": "STARBUCKS #1234",
    "account_id": None,
}


def test_deterministic_hex_digest():
    a = compute_fingerprint(**BASE)
    b = compute_fingerprint(**BASE)

    assert a == b
    assert len(a) == 64
    assert int(a, 16) >= 0
    assert a == a.lower()


@pytest.mark.parametrize(
    "change",
    [
        {"posted_date": "2024-01-06"},
        {"amount": Decimal("5.75")},
        {"amount": Decimal("-5.76")},
        {"description": "STARBUCKS #1235"},
        {"account_id": "checking"},
    ],
)
def test_any_field_change_changes_the_fingerprint(change):
    assert compute_fingerprint(**{**BASE, **change}) != compute_fingerprint(**BASE)


def test_equivalent_inputs_share_a_fingerprint():
    base = compute_fingerprint(**BASE)

    assert compute_fingerprint(**{**BASE, "posted_date": date(2024, 1, 5)}) == base
    assert compute_fingerprint(**{**BASE, "amount": Decimal("-5.750")}) == base
    assert compute_fingerprint(**{**BASE, "description": "  starbucks   #1234 "}) == base
