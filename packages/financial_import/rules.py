"""Pure categorization-rule matching.

Rules are evaluated highest priority first; equal priorities fall back to
creation order (lowest id first) so evaluation is deterministic. The first
matching rule wins. Nothing here touches the database: persistence and
``match_count`` bookkeeping live in :mod:`financial_import.rules_service`.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Literal

from db.models.finance import FiCategorizationRule

from .models import RULE_CONFIDENCE


@dataclass(frozen=True, slots=True)
class RuleSpec:
    """Immutable view of a rule used for matching."""

    id: int
    merchant_pattern: str
    category_id: int
    priority: int = 100
    is_active: bool = True
    amount_min: Decimal | None = None
    amount_max: Decimal | None = None

    @classmethod
    def from_orm(cls, rule: FiCategorizationRule) -> RuleSpec:
        return cls(
            id=rule.id,
            merchant_pattern=rule.merchant_pattern,
            category_id=rule.category_id,
            priority=rule.priority,
            is_active=rule.is_active,
            amount_min=rule.amount_min,
            amount_max=rule.amount_max,
        )


@dataclass(frozen=True, slots=True)
class RuleMatch:
    rule_id: int
    category_id: int
    source: Literal["rule"] = "rule"
    confidence: float = RULE_CONFIDENCE


def _fold(s: str) -> str:
    return " ".join(s.replace("_", " ").lower().split())


def order_rules(rules: Iterable[RuleSpec]) -> list[RuleSpec]:
    """Sort by priority descending, then id ascending."""

    return sorted(rules, key=lambda r: (-r.priority, r.id))


def _within(value: Decimal, lo: Decimal | None, hi: Decimal | None) -> bool:
    if lo is not None and value < lo:
        return False
    if hi is not None and value > hi:
        return False
    return True


def amount_in_bounds(rule: RuleSpec, amount: Decimal) -> bool:
    """Inclusive check of the signed ``amount`` against the rule's bounds.

    Debits are negative, so a bound on purchases is written with negative
    numbers (``amount_max=-100`` means "debits of 100 or more").
    """

    return _within(amount, rule.amount_min, rule.amount_max)


def pattern_matches(pattern: str, merchant_key: str) -> bool:
    """Case-insensitive substring test; ``_`` and spaces compare equal."""

    needle = _fold(pattern)
    return bool(needle) and needle in _fold(merchant_key)


def rule_matches(rule: RuleSpec, merchant_key: str, amount: Decimal) -> bool:
    return (
        rule.is_active
        and pattern_matches(rule.merchant_pattern, merchant_key)
        and amount_in_bounds(rule, amount)
    )


def first_match(
    rules: Sequence[RuleSpec],
    merchant_key: str,
    amount: Decimal,
    *,
    ordered: bool = False,
) -> RuleMatch | None:
    """Return the winning rule for a transaction, or ``None``.

    Pass ``ordered=True`` when ``rules`` already come from :func:`order_rules`
    to skip re-sorting in tight loops.
    """

    candidates = rules if ordered else order_rules(rules)
    for rule in candidates:
        if rule_matches(rule, merchant_key, amount):
            return RuleMatch(rule_id=rule.id, category_id=rule.category_id)
    return None


__all__ = [
    "RuleSpec",
    "RuleMatch",
    "order_rules",
    "amount_in_bounds",
    "pattern_matches",
    "rule_matches",
    "first_match",
]
