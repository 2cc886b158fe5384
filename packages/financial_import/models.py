"""Data models and type aliases for ``financial_import``.

Boundary inputs (column mappings, rule definitions) are pydantic models so
callers get validation errors before anything touches the database. Results
flowing back out of the pipeline are frozen dataclasses.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Final, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Raw CSV rows
# ---------------------------------------------------------------------------

type CSVRow = Mapping[str, str]
"""A single CSV data line keyed by (unique) header name."""


# ---------------------------------------------------------------------------
# Tagged lookup results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Matched(Generic[T]):
    """A heuristic lookup that found ``value``."""

    value: T


@dataclass(frozen=True, slots=True)
class Unmatched:
    """A heuristic lookup that found nothing."""


UNMATCHED: Final = Unmatched()

type Match[V] = Matched[V] | Unmatched


# ---------------------------------------------------------------------------
# Classification vocabulary
# ---------------------------------------------------------------------------

type ClassificationSource = Literal["default", "rule", "manual"]

DEFAULT_CONFIDENCE: Final = 0.5
RULE_CONFIDENCE: Final = 0.9
MANUAL_CONFIDENCE: Final = 1.0

UNCATEGORIZED_NAME: Final = "Uncategorized"


# ---------------------------------------------------------------------------
# Column mapping
# ---------------------------------------------------------------------------


class ColumnMapping(BaseModel):
    """User-confirmed mapping from pipeline fields to CSV header names.

    ``posted_date``, ``description`` and ``amount`` are required for import;
    ``category`` and ``transaction_id`` are optional enrichment.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    posted_date: str
    description: str
    amount: str
    category: str | None = None
    transaction_id: str | None = None

    @field_validator("posted_date", "description", "amount")
    @classmethod
    def _required_non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("required column name must be non-empty")
        return v

    @field_validator("category", "transaction_id")
    @classmethod
    def _blank_to_none(cls, v: str | None) -> str | None:
        return v or None


# ---------------------------------------------------------------------------
# Prepared (normalized) transactions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PreparedTransaction:
    """A CSV row after validation and normalization, ready for insertion."""

    row_number: int
    posted_date: str
    description: str
    amount: Decimal
    type: Literal["credit", "debit"]
    merchant_key: str
    fingerprint_hash: str
    category_name: str | None = None
    transaction_id: str | None = None

    @property
    def posted_on(self) -> date:
        return date.fromisoformat(self.posted_date)


@dataclass(frozen=True, slots=True)
class RowError:
    """A row rejected during preparation."""

    row_number: int
    message: str

    def __str__(self) -> str:
        return f"Row {self.row_number}: {self.message}"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ImportResult:
    """Outcome counters for one import run.

    ``imported + duplicates + errors == total`` for every completed run.
    ``auto_categorized``/``uncategorized`` describe the rows imported in this
    run and are secondary to the four primary counters.
    """

    imported: int
    duplicates: int
    errors: int
    total: int
    auto_categorized: int = 0
    uncategorized: int = 0
    error_details: tuple[str, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "imported": self.imported,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "total": self.total,
            "auto_categorized": self.auto_categorized,
            "uncategorized": self.uncategorized,
        }


@dataclass(frozen=True, slots=True)
class AnalyzedTransaction:
    posted_date: str
    description: str
    merchant_name: str
    amount: Decimal
    fingerprint_hash: str
    is_duplicate: bool


@dataclass(frozen=True, slots=True)
class AnalyzeResult:
    """Dry-run preview of an import."""

    total_rows: int
    new_transactions: int
    duplicates: int
    errors: int
    earliest: str | None
    latest: str | None
    new_details: tuple[AnalyzedTransaction, ...] = ()
    duplicate_details: tuple[AnalyzedTransaction, ...] = ()
    error_details: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class SweepResult:
    categorized: int
    uncategorized: int
    match_counts: Mapping[int, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RegenerateResult:
    total: int
    updated: int
    unchanged: int


@dataclass(frozen=True, slots=True)
class RecategorizeResult:
    updated: int
    rule_created: bool
    additional_updated: int


# ---------------------------------------------------------------------------
# Rule definitions
# ---------------------------------------------------------------------------


def normalize_pattern(pattern: str) -> str:
    """Lowercase, trim and single-space a merchant pattern."""

    return " ".join(pattern.strip().lower().split())


class _RuleBounds(BaseModel):
    amount_min: Decimal | None = None
    amount_max: Decimal | None = None

    @model_validator(mode="after")
    def _bounds_ordered(self) -> _RuleBounds:
        lo, hi = self.amount_min, self.amount_max
        if lo is not None and hi is not None and lo > hi:
            raise ValueError("amount_min must be less than or equal to amount_max")
        return self


class RuleInput(_RuleBounds):
    """Definition of a new categorization rule."""

    model_config = ConfigDict(extra="forbid")

    merchant_pattern: str
    category_id: int
    priority: int = 100

    @field_validator("merchant_pattern")
    @classmethod
    def _normalize(cls, v: str) -> str:
        n = normalize_pattern(v)
        if not n:
            raise ValueError("merchant_pattern must be non-empty")
        return n


class RuleUpdate(_RuleBounds):
    """Partial update of a rule; only explicitly set fields are applied."""

    model_config = ConfigDict(extra="forbid")

    merchant_pattern: str | None = None
    category_id: int | None = None
    priority: int | None = None
    is_active: bool | None = None

    @field_validator("merchant_pattern")
    @classmethod
    def _normalize(cls, v: str | None) -> str | None:
        if v is None:
            return None
        n = normalize_pattern(v)
        if not n:
            raise ValueError("merchant_pattern must be non-empty")
        return n


__all__ = [
    "CSVRow",
    "Matched",
    "Unmatched",
    "UNMATCHED",
    "Match",
    "ClassificationSource",
    "DEFAULT_CONFIDENCE",
    "RULE_CONFIDENCE",
    "MANUAL_CONFIDENCE",
    "UNCATEGORIZED_NAME",
    "ColumnMapping",
    "PreparedTransaction",
    "RowError",
    "ImportResult",
    "AnalyzedTransaction",
    "AnalyzeResult",
    "SweepResult",
    "RegenerateResult",
    "RecategorizeResult",
    "normalize_pattern",
    "RuleInput",
    "RuleUpdate",
]
