from decimal import Decimal

import pytest

from financial_import.normalizers import (
    format_amount,
    infer_day_first,
    parse_amount,
    parse_date,
    transaction_type,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("12.34", "12.34"),
        ("$1,234.56", "1234.56"),
        ("(45.00)", "-45.00"),
        ("-12.5", "-12.50"),
        ("12.50-", "-12.50"),
        ("-$1,000", "-1000.00"),
        ("$(7.25)", "-7.25"),
        ("1.234,56", "1234.56"),
        ("10,50", "10.50"),
        ("1,234", "1234.00"),
        ("EUR 10,50", "10.50"),
        ("USD100", "100.00"),
        ("  7 ", "7.00"),
        ("+3", "3.00"),
        ("0.005", "0.01"),
        ("1 234.50", "1234.50"),
    ],
)
def test_parse_amount(raw: str, expected: str):
    assert parse_amount(raw) == Decimal(expected)
    assert format_amount(parse_amount(raw)) == expected


def test_parse_amount_never_returns_negative_zero():
    assert not parse_amount("-0.00").is_signed()
    assert format_amount(parse_amount("(0)")) == "0.00"


@pytest.mark.parametrize("raw", [None, "", "   ", "abc", "1.2.3", "NaN", "Infinity", "$", "--"])
def test_parse_amount_rejects_non_numeric(raw):
    with pytest.raises(ValueError):
        parse_amount(raw)


def test_transaction_type():
    assert transaction_type(Decimal("0.00")) == "credit"
    assert transaction_type(Decimal("10.00")) == "credit"
    assert transaction_type(Decimal("-0.01")) == "debit"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2024-01-05", "2024-01-05"),
        ("2024-01-05T10:30:00", "2024-01-05"),
        ("2024/1/5", "2024-01-05"),
        ("01/05/2024", "2024-01-05"),
        ("01/05/2024 10:00", "2024-01-05"),
        ("1/5/24", "2024-01-05"),
        ("01-05-2024", "2024-01-05"),
        ("12-31-99", "1999-12-31"),
        ("31/01/2024", "2024-01-31"),
        ("05.01.2024", "2024-01-05"),
        ("20240105", "2024-01-05"),
        ("Jan 5, 2024", "2024-01-05"),
        ("05 January 2024", "2024-01-05"),
        ("5-Jan-24", "2024-01-05"),
    ],
)
def test_parse_date(raw: str, expected: str):
    assert parse_date(raw) == expected


def test_parse_date_day_first_only_affects_ambiguous_dates():
    assert parse_date("01/05/2024", day_first=True) == "2024-05-01"
    assert parse_date("31/01/2024", day_first=True) == "2024-01-31"


@pytest.mark.parametrize("raw", [None, "", "not a date", "2024-13-01", "02/30/2024", "13/13/2024"])
def test_parse_date_rejects_invalid(raw):
    with pytest.raises(ValueError):
        parse_date(raw)


def test_infer_day_first():
    assert infer_day_first(["13/01/2024", "02/01/2024", None]) is True
    assert infer_day_first(["01/13/2024", "01/02/2024"]) is False
    assert infer_day_first(["01/02/2024", "2024-01-05"]) is False
    assert infer_day_first([]) is False
