import textwrap

import pytest

from financial_import.csv_parser import EmptyCSVError, detect_column_mapping, parse_csv
from financial_import.models import Matched, Unmatched


def _dedent(s: str) -> str:
    return textwrap.dedent(s).lstrip("\n")


def test_parse_handles_quotes_embedded_commas_and_newlines():
    csv_text = _dedent(
        '''
        Date,Description,Amount
        01/05/2024,"STARBUCKS, INC",-5.75
        01/06/2024,"MULTI
        LINE ""QUOTED""",-1.00
        '''
    )

    parsed = parse_csv(csv_text)

    assert parsed.headers == ("Date", "Description", "Amount")
    assert parsed.total_rows == 2
    assert parsed.rows[0]["Description"] == "STARBUCKS, INC"
    assert parsed.rows[1]["Description"] == 'MULTI\nLINE "QUOTED"'


def test_parse_strips_bom_and_trims_cells():
    parsed = parse_csv("\ufeffDate , Amount\n 2024-01-05 ,  12.00 \n")

    assert parsed.headers == ("Date", "Amount")
    assert parsed.rows[0] == {"Date": "2024-01-05", "Amount": "12.00"}


def test_blank_and_malformed_lines_are_skipped():
    csv_text = "Date,Description,Amount\n\n2024-01-05,A,1\n2024-01-06,B\n,,\n2024-01-07,C,3\n"

    parsed = parse_csv(csv_text)

    assert [r["Description"] for r in parsed.rows] == ["A", "C"]
    assert parsed.skipped == 1


def test_unclosed_quote_only_costs_its_own_line():
    csv_text = _dedent(
        '''
        Date,Description,Amount
        2024-01-01,"BROKEN QUOTE,-1.00
        2024-01-02,FIRST,-2.00
        2024-01-03,12" PIZZA,-3.00
        2024-01-04,"LAST, INC",-4.00
        '''
    )

    parsed = parse_csv(csv_text)

    assert [r["Description"] for r in parsed.rows] == ["FIRST", '12" PIZZA', "LAST, INC"]
    assert parsed.rows[2]["Amount"] == "-4.00"
    assert parsed.skipped == 1


def test_duplicate_headers_are_made_unique():
    parsed = parse_csv("Date,Amount,Amount,\n2024-01-05,1,2,x\n")

    assert parsed.headers == ("Date", "Amount", "Amount_2", "column_4")


@pytest.mark.parametrize("text", ["", "\n\n", "Date,Description,Amount\n", "Date,Amount\n\n"])
def test_no_data_rows_raises(text: str):
    with pytest.raises(EmptyCSVError):
        parse_csv(text)


def test_detect_exact_synonyms():
    detected = detect_column_mapping(["Transaction Date", "Description", "Amount", "Category"])

    assert detected.posted_date == Matched("Transaction Date")
    assert detected.description == Matched("Description")
    assert detected.amount == Matched("Amount")
    assert detected.category == Matched("Category")
    assert isinstance(detected.transaction_id, Unmatched)

    mapping = detected.suggest()
    assert mapping.posted_date == "Transaction Date"
    assert mapping.category == "Category"
    assert mapping.transaction_id is None


def test_detect_falls_back_to_substring_and_never_reuses_a_header():
    detected = detect_column_mapping(["Date", "Payee", "Debit Amount", "Reference"])

    assert detected.posted_date == Matched("Date")
    assert detected.description == Matched("Payee")
    assert detected.amount == Matched("Debit Amount")
    assert detected.transaction_id == Matched("Reference")


def test_detect_reports_missing_required_columns():
    detected = detect_column_mapping(["Foo", "Bar"])

    assert detected.missing_required() == ["posted_date", "description", "amount"]
    with pytest.raises(ValueError, match="posted_date"):
        detected.suggest()
