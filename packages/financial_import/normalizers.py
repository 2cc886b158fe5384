"""Amount and date normalization for bank CSV cells.

Amounts become signed ``Decimal`` values with exactly two places; dates become
``YYYY-MM-DD`` strings. Both raise ``ValueError`` on input they cannot read so
the importer can count the row as an error instead of storing a guess.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Literal

# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

_CURRENCY_SYMBOLS = "$€£¥₹₩₽₺₪"
_CURRENCY_CODE_RE = re.compile(
    r"(?<![A-Za-z])(?:USD|EUR|GBP|CAD|AUD|NZD|CHF|JPY|INR|MXN)(?![A-Za-z])", re.IGNORECASE
)
_NUMERIC_RE = re.compile(r"^\d+(?:\.\d+)?$|^\.\d+$")

_CENT = Decimal("0.01")


def _strip_grouping(s: str) -> str:
    """Remove thousands separators, leaving ``.`` as the decimal point.

    When both ``,`` and ``.`` appear, whichever comes last is the decimal
    separator (``1.234,56`` and ``1,234.56`` are both 1234.56). A lone comma
    followed by exactly two digits is treated as a decimal comma.
    """

    s = s.replace(" ", "").replace("\u00a0", "").replace("'", "")
    has_comma = "," in s
    has_dot = "." in s
    if has_comma and has_dot:
        if s.rfind(",") > s.rfind("."):
            return s.replace(".", "").replace(",", ".")
        return s.replace(",", "")
    if has_comma:
        head, _, tail = s.rpartition(",")
        if s.count(",") == 1 and len(tail) == 2:
            return f"{head}.{tail}"
        return s.replace(",", "")
    return s


def parse_amount(raw: str | None) -> Decimal:
    """Parse a locale-formatted amount string into a signed 2dp ``Decimal``.

    Handles currency symbols and codes, thousands separators, parentheses for
    negatives (``"(45.00)"`` → ``-45.00``), and leading or trailing minus
    signs. Anything that does not reduce to a finite number raises
    ``ValueError``.
    """

    if raw is None:
        raise ValueError("amount is required")
    s = raw.strip()
    if not s:
        raise ValueError("amount is empty")

    s = _CURRENCY_CODE_RE.sub("", s).strip()
    negative = False

    # Strip sign, currency symbol and surrounding parentheses in any order
    # until stable, so "-($1,234.56)" and "$(1,234.56)" both work.
    while True:
        changed = False
        if s.startswith("+"):
            s = s[1:].lstrip()
            changed = True
        elif s.startswith("-"):
            negative = True
            s = s[1:].lstrip()
            changed = True
        elif s.endswith("-"):
            negative = True
            s = s[:-1].rstrip()
            changed = True
        if s and s[0] in _CURRENCY_SYMBOLS:
            s = s[1:].lstrip()
            changed = True
        if s and s[-1] in _CURRENCY_SYMBOLS:
            s = s[:-1].rstrip()
            changed = True
        if s.startswith("(") and s.endswith(")") and len(s) >= 2:
            negative = True
            s = s[1:-1].strip()
            changed = True
        if not changed:
            break

    s = _strip_grouping(s)
    if not _NUMERIC_RE.match(s):
        raise ValueError(f"invalid amount: {raw!r}")
    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    if not d.is_finite():
        raise ValueError(f"invalid amount: {raw!r}")
    d = d.quantize(_CENT, rounding=ROUND_HALF_UP)
    return -d if negative and d != 0 else d


def format_amount(d: Decimal) -> str:
    """Exactly two decimals; ASCII dot; leading minus for negatives."""

    return f"{d.quantize(_CENT, rounding=ROUND_HALF_UP):.2f}"


def transaction_type(amount: Decimal) -> Literal["credit", "debit"]:
    """``credit`` for zero or positive amounts, ``debit`` otherwise."""

    return "credit" if amount >= 0 else "debit"


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

_NUMERIC_DATE_RE = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2}|\d{4})$")
_ISO_RE = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})$")
_COMPACT_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")

_NAMED_MONTH_FORMATS: tuple[str, ...] = (
    "%b %d %Y",
    "%B %d %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d %y",
    "%d %b %y",
    "%d-%b-%Y",
    "%d-%b-%y",
)


def _first_token(value: str) -> str:
    """Drop a trailing time part (``2024-01-05T10:00:00``, ``01/05/2024 10:00``)."""

    s = value.strip()
    if "T" in s and _ISO_RE.match(s.split("T", 1)[0]):
        return s.split("T", 1)[0]
    head = s.split()[0] if s.split() else s
    if _ISO_RE.match(head) or _NUMERIC_DATE_RE.match(head) or _COMPACT_RE.match(head):
        return head
    return s


def _expand_year(year: str) -> int:
    y = int(year)
    if len(year) == 2:
        return 2000 + y if y < 50 else 1900 + y
    return y


def _iso(year: int, month: int, day: int, raw: str) -> str:
    try:
        return datetime(year, month, day).strftime("%Y-%m-%d")
    except ValueError as exc:
        raise ValueError(f"invalid date: {raw!r}") from exc


def parse_date(raw: str | None, *, day_first: bool = False) -> str:
    """Normalize a date string to ``YYYY-MM-DD``.

    Accepts ISO dates (optionally with a time), ``YYYY/MM/DD``, numeric
    ``MM/DD/YYYY``-style dates with ``/``, ``-`` or ``.`` separators and
    two- or four-digit years, compact ``YYYYMMDD``, and month-name forms
    (``Jan 5, 2024``, ``05 January 2024``). Numeric dates are read month
    first unless ``day_first`` is set; a first component above 12 is always
    read as the day.
    """

    if raw is None:
        raise ValueError("date is required")
    s = raw.strip()
    if not s:
        raise ValueError("date is empty")
    token = _first_token(s)

    m = _ISO_RE.match(token)
    if m:
        return _iso(int(m.group(1)), int(m.group(2)), int(m.group(3)), raw)

    m = _COMPACT_RE.match(token)
    if m:
        return _iso(int(m.group(1)), int(m.group(2)), int(m.group(3)), raw)

    m = _NUMERIC_DATE_RE.match(token)
    if m:
        a, b, year = int(m.group(1)), int(m.group(2)), _expand_year(m.group(3))
        # Dotted dates (31.01.2024) are a day-first convention.
        dotted = "." in token
        if a > 12 or ((day_first or dotted) and b <= 12):
            return _iso(year, b, a, raw)
        return _iso(year, a, b, raw)

    cleaned = s.replace(",", " ")
    cleaned = " ".join(cleaned.split())
    for fmt in _NAMED_MONTH_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).strftime("%Y-%m-%d")
        except ValueError:
            continue

    raise ValueError(f"invalid date format: {raw!r}")


def infer_day_first(values: Iterable[str | None]) -> bool:
    """Decide whether ambiguous numeric dates in a column are day-first.

    Each ``NN/NN/YYYY``-style value whose first component is above 12 votes
    day-first; one whose second component is above 12 votes month-first. Ties
    and columns that never disambiguate themselves read month-first.
    """

    day_first_votes = 0
    month_first_votes = 0
    for v in values:
        if not v:
            continue
        m = _NUMERIC_DATE_RE.match(_first_token(v))
        if not m:
            continue
        a, b = int(m.group(1)), int(m.group(2))
        if a > 12 >= b:
            day_first_votes += 1
        elif b > 12 >= a:
            month_first_votes += 1
    return day_first_votes > month_first_votes


__all__ = [
    "parse_amount",
    "format_amount",
    "transaction_type",
    "parse_date",
    "infer_day_first",
]
