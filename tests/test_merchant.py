import re

import pytest

from financial_import.merchant import (
    FALLBACK_KEY,
    clean_merchant_name,
    extract_merchant_display_name,
    generate_merchant_key,
)

_KEY_RE = re.compile(r"^[A-Z0-9]+(?:_[A-Z0-9]+)*$")

SAMPLES = [
    "AMAZON.COM*TM0QZ6HK3",
    "AMAZON MKTPL*1A2B3",
    "AMAZON MARK PLACE",
    "AMZN Mktp US*2K3LM",
    "STARBUCKS #1234",
    "STARBUCKS STORE 5678",
    "SQ *BLUE BOTTLE COFFEE",
    "TST* JOE'S PIZZA",
    "PAYPAL *NETFLIX",
    "UBER *TRIP HELP.UBER.COM",
    "UBER EATS 8005928996",
    "POS PURCHASE WALGREENS #1234 CHICAGO IL",
    "SHELL OIL 57442 HOUSTON TX",
    "CHECK 1234",
    "12345678",
    "ACH",
    "",
    "***",
    "ACME " * 40,
]


@pytest.mark.parametrize(
    "description",
    ["AMAZON.COM*TM0QZ6HK3", "AMAZON MKTPL*1A2B3", "AMAZON MARK PLACE", "AMZN Mktp US*2K3LM"],
)
def test_amazon_variants_share_a_key(description: str):
    assert generate_merchant_key(description) == "AMAZON"


def test_starbucks_store_numbers_are_dropped():
    a = generate_merchant_key("STARBUCKS #1234")
    b = generate_merchant_key("STARBUCKS STORE 5678")
    assert a == b == "STARBUCKS"
    assert a != generate_merchant_key("AMAZON.COM*TM0QZ6HK3")


@pytest.mark.parametrize(
    ("description", "expected"),
    [
        ("SQ *BLUE BOTTLE COFFEE", "BLUE_BOTTLE_COFFEE"),
        ("TST* JOE'S PIZZA", "JOES_PIZZA"),
        ("PAYPAL *NETFLIX", "NETFLIX"),
        ("UBER *TRIP HELP.UBER.COM", "UBER"),
        ("UBER EATS 8005928996", "UBER_EATS"),
        ("POS PURCHASE WALGREENS #1234 CHICAGO IL", "WALGREENS_CHICAGO"),
        ("SHELL OIL 57442 HOUSTON TX", "SHELL_OIL_HOUSTON"),
    ],
)
def test_noise_is_stripped(description: str, expected: str):
    assert generate_merchant_key(description) == expected


def test_uber_and_uber_eats_stay_distinct():
    assert generate_merchant_key("UBER TRIP") != generate_merchant_key("UBER EATS ORDER")


@pytest.mark.parametrize("description", SAMPLES)
def test_key_is_idempotent_well_formed_and_bounded(description: str):
    key = generate_merchant_key(description)

    assert key
    assert _KEY_RE.match(key)
    assert len(key) <= 100
    assert generate_merchant_key(key) == key


def test_fallbacks_never_return_empty():
    assert generate_merchant_key("CHECK 1234") == "CHECK_1234"
    assert generate_merchant_key("12345678") == "12345678"
    assert generate_merchant_key("ACH") == "ACH"
    assert generate_merchant_key("") == FALLBACK_KEY
    assert generate_merchant_key("***") == FALLBACK_KEY


def test_clean_name_can_be_empty_for_pure_noise():
    assert clean_merchant_name("#1234") == ""


def test_display_name():
    assert extract_merchant_display_name("SQ *BLUE BOTTLE COFFEE") == "Blue Bottle Coffee"
    assert extract_merchant_display_name("AMAZON MKTPL*1A2B3") == "Amazon"
    assert extract_merchant_display_name("1234") == "Unknown"
