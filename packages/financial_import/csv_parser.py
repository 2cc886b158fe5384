"""CSV text → header list + ordered row mappings, and column detection.

Parsing follows RFC 4180 rules via the stdlib :mod:`csv` module (quoted fields
with embedded commas and newlines, doubled quotes). The first record is the
header row. Blank records and records whose field count differs from the
header are dropped rather than aborting the parse; a stray quote on one line
does not swallow the lines after it.

Column detection is a heuristic default only: callers present the suggestion
for confirmation and import with the confirmed :class:`ColumnMapping`.
"""

from __future__ import annotations

import csv
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass
from io import StringIO

from .logging_setup import get_logger
from .models import UNMATCHED, ColumnMapping, CSVRow, Match, Matched, Unmatched

logger = get_logger("financial_import.csv_parser")


class EmptyCSVError(ValueError):
    """Raised when a CSV contains no usable data rows."""


@dataclass(frozen=True, slots=True)
class ParsedCSV:
    headers: tuple[str, ...]
    rows: tuple[CSVRow, ...]
    skipped: int = 0

    @property
    def total_rows(self) -> int:
        return len(self.rows)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _unique_headers(raw: Sequence[str]) -> list[str]:
    """Trim header names and suffix repeats (``Amount``, ``Amount_2``, ...)."""

    seen: dict[str, int] = {}
    out: list[str] = []
    for i, h in enumerate(raw):
        name = h.strip() or f"column_{i + 1}"
        if name in seen:
            seen[name] += 1
            candidate = f"{name}_{seen[name]}"
            while candidate in seen:
                seen[name] += 1
                candidate = f"{name}_{seen[name]}"
            name = candidate
        seen.setdefault(name, 1)
        out.append(name)
    return out


# A quoted field may span physical lines; an unbalanced quote is given up on
# after this many.
_MAX_RECORD_LINES = 50

type _Line = tuple[int, str]


def _join(lines: Sequence[_Line]) -> str:
    return "".join(text for _, text in lines)


def _read_record(chunk: str, delimiter: str) -> list[str] | None:
    """Parse ``chunk`` as a single record; ``None`` when it is not exactly one."""

    try:
        records = list(csv.reader(StringIO(chunk, newline=""), delimiter=delimiter))
    except csv.Error:
        return None
    if not records:
        return []
    return records[0] if len(records) == 1 else None


def _complete_record(chunk: str, delimiter: str) -> list[str] | None:
    if chunk.count('"') % 2:
        return None
    return _read_record(chunk, delimiter)


def _spans_rows(
    record: list[str] | None, lines: Sequence[_Line], headers: Sequence[str] | None, delimiter: str
) -> bool:
    """Whether a multi-line record is really a stray quote swallowing rows.

    True when the record does not fit the header, or when one of its
    continuation lines is a complete row by itself.
    """

    if record is None:
        return True
    if headers is None:
        return False
    if record and len(record) != len(headers):
        return True
    for _, text in lines[1:]:
        alone = _complete_record(text, delimiter)
        if alone is not None and len(alone) == len(headers):
            return True
    return False


def parse_csv(csv_text: str, *, delimiter: str = ",") -> ParsedCSV:
    """Parse ``csv_text`` into unique headers and header-keyed rows.

    Records are assembled from physical lines so that a malformed line (for
    example one with an unclosed quote) only costs that line: when a
    multi-line record does not fit the header, its first line is retried on
    its own and the remaining lines are parsed again.

    Raises :class:`EmptyCSVError` when there is no header or no data row
    survives filtering.
    """

    text = csv_text.lstrip("\ufeff")
    pending: deque[_Line] = deque(enumerate(StringIO(text, newline=""), start=1))
    headers: list[str] | None = None
    rows: list[CSVRow] = []
    skipped = 0

    while pending:
        taken = [pending.popleft()]
        while _join(taken).count('"') % 2 and pending and len(taken) < _MAX_RECORD_LINES:
            taken.append(pending.popleft())

        record = _complete_record(_join(taken), delimiter)
        if len(taken) > 1 and _spans_rows(record, taken, headers, delimiter):
            pending.extendleft(reversed(taken[1:]))
            del taken[1:]
            record = _read_record(taken[0][1], delimiter)
        elif record is None:
            record = _read_record(taken[0][1], delimiter)

        lineno = taken[0][0]
        if record is None:
            skipped += 1
            logger.debug("Skipping unparseable CSV line %d", lineno)
            continue
        if not any(cell.strip() for cell in record):
            continue
        if headers is None:
            headers = _unique_headers(record)
            continue
        if len(record) != len(headers):
            skipped += 1
            logger.debug(
                "Skipping CSV line %d: %d fields, expected %d", lineno, len(record), len(headers)
            )
            continue
        rows.append({h: cell.strip() for h, cell in zip(headers, record, strict=True)})

    if headers is None or not rows:
        raise EmptyCSVError("CSV file is empty")
    if skipped:
        logger.info("Parsed %d CSV rows (%d malformed lines skipped)", len(rows), skipped)
    return ParsedCSV(headers=tuple(headers), rows=tuple(rows), skipped=skipped)


# ---------------------------------------------------------------------------
# Column detection
# ---------------------------------------------------------------------------

# Ordered synonym sets; earlier entries are preferred.
_SYNONYMS: dict[str, tuple[str, ...]] = {
    "posted_date": (
        "posted date",
        "post date",
        "posting date",
        "transaction date",
        "trans date",
        "date",
        "posted",
    ),
    "description": (
        "description",
        "payee",
        "merchant",
        "memo",
        "details",
        "narrative",
        "name",
    ),
    "amount": (
        "amount",
        "transaction amount",
        "amount ($)",
        "value",
        "debit",
        "credit",
    ),
    "category": ("category", "categories"),
    "transaction_id": ("transaction id", "reference", "reference number", "ref", "id"),
}

# Only these fields fall back to substring matching; short synonyms such as
# "id" would otherwise claim unrelated headers ("Paid").
_SUBSTRING_FIELDS: tuple[str, ...] = ("posted_date", "description", "amount", "category")


def _norm_header(h: str) -> str:
    return " ".join(h.strip().lower().replace("_", " ").split())


@dataclass(frozen=True, slots=True)
class DetectedColumns:
    posted_date: Match[str]
    description: Match[str]
    amount: Match[str]
    category: Match[str]
    transaction_id: Match[str]

    def missing_required(self) -> list[str]:
        return [
            name
            for name in ("posted_date", "description", "amount")
            if isinstance(getattr(self, name), Unmatched)
        ]

    def suggest(self) -> ColumnMapping:
        """Build a :class:`ColumnMapping` from the detected headers.

        Raises ``ValueError`` naming the required fields that were not found.
        """

        missing = self.missing_required()
        if missing:
            raise ValueError("Could not detect required columns: " + ", ".join(missing))

        def _value(m: Match[str]) -> str | None:
            return m.value if isinstance(m, Matched) else None

        return ColumnMapping(
            posted_date=_value(self.posted_date),
            description=_value(self.description),
            amount=_value(self.amount),
            category=_value(self.category),
            transaction_id=_value(self.transaction_id),
        )


def detect_column_mapping(headers: Sequence[str]) -> DetectedColumns:
    """Guess which headers supply each pipeline field.

    Exact (case-insensitive) synonym matches are assigned first, then
    substring matches for the core fields. A header is never assigned to more
    than one field.
    """

    normalized = [(h, _norm_header(h)) for h in headers]
    taken: set[str] = set()
    found: dict[str, str] = {}

    for field_name, synonyms in _SYNONYMS.items():
        for syn in synonyms:
            hit = next((h for h, n in normalized if n == syn and h not in taken), None)
            if hit is not None:
                found[field_name] = hit
                taken.add(hit)
                break

    for field_name in _SUBSTRING_FIELDS:
        if field_name in found:
            continue
        for syn in _SYNONYMS[field_name]:
            hit = next((h for h, n in normalized if syn in n and h not in taken), None)
            if hit is not None:
                found[field_name] = hit
                taken.add(hit)
                break

    def _tag(name: str) -> Match[str]:
        return Matched(found[name]) if name in found else UNMATCHED

    return DetectedColumns(
        posted_date=_tag("posted_date"),
        description=_tag("description"),
        amount=_tag("amount"),
        category=_tag("category"),
        transaction_id=_tag("transaction_id"),
    )


__all__ = [
    "EmptyCSVError",
    "ParsedCSV",
    "parse_csv",
    "DetectedColumns",
    "detect_column_mapping",
]
