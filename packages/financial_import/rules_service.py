"""Categorization rules: persistence, re-application and the post-import sweep.

Matching itself is pure (:mod:`financial_import.rules`); this module loads
rules and transactions, writes category assignments, and keeps
``match_count`` in step. Automatic passes never touch rows whose
``classification_source`` is ``manual``.

All functions take a caller-owned ``Session`` and only ``flush``; committing
is the caller's decision.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable, Iterator, Sequence
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, TypeVar

from db.models.finance import FiCategorizationRule, FiTransaction
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .categories import get_visible_category
from .logging_setup import get_logger
from .models import RULE_CONFIDENCE, RuleInput, RuleUpdate, SweepResult
from .rules import RuleSpec, first_match, order_rules, rule_matches

logger = get_logger("financial_import.rules_service")

T = TypeVar("T")

_CHUNK = 500


class RuleConflictError(ValueError):
    """A rule with the same merchant pattern already exists for the user."""


class RuleNotFoundError(LookupError):
    """No rule with the given id belongs to the user."""


def _chunks(items: Sequence[T], size: int = _CHUNK) -> Iterator[Sequence[T]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


def _q(d: Decimal | None) -> Decimal | None:
    return None if d is None else d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# ---------------------------
# Queries
# ---------------------------


def list_rules(session: Session, *, user_id: str) -> list[FiCategorizationRule]:
    """All of a user's rules in evaluation order."""

    stmt = (
        select(FiCategorizationRule)
        .where(FiCategorizationRule.user_id == user_id)
        .order_by(FiCategorizationRule.priority.desc(), FiCategorizationRule.id.asc())
    )
    return list(session.execute(stmt).scalars())


def get_rule(session: Session, *, user_id: str, rule_id: int) -> FiCategorizationRule:
    row = session.execute(
        select(FiCategorizationRule).where(
            FiCategorizationRule.id == rule_id, FiCategorizationRule.user_id == user_id
        )
    ).scalar_one_or_none()
    if row is None:
        raise RuleNotFoundError(f"Rule not found: {rule_id}")
    return row


def load_rule_specs(session: Session, *, user_id: str) -> list[RuleSpec]:
    """Active rules for ``user_id`` as ordered :class:`RuleSpec` values."""

    stmt = select(FiCategorizationRule).where(
        FiCategorizationRule.user_id == user_id, FiCategorizationRule.is_active.is_(True)
    )
    return order_rules(RuleSpec.from_orm(r) for r in session.execute(stmt).scalars())


def _pattern_taken(
    session: Session, *, user_id: str, pattern: str, exclude_id: int | None = None
) -> bool:
    stmt = select(FiCategorizationRule.id).where(
        FiCategorizationRule.user_id == user_id,
        FiCategorizationRule.merchant_pattern == pattern,
    )
    if exclude_id is not None:
        stmt = stmt.where(FiCategorizationRule.id != exclude_id)
    return session.execute(stmt.limit(1)).first() is not None


# ---------------------------
# Writes shared by every categorization path
# ---------------------------


def _assign_rule_category(
    session: Session, *, user_id: str, category_id: int, transaction_ids: Sequence[int]
) -> int:
    """Mark ``transaction_ids`` as rule-classified into ``category_id``.

    ``manual`` rows are excluded in the statement itself so that no caller can
    overwrite them.
    """

    updated = 0
    for chunk in _chunks(list(transaction_ids)):
        res = session.execute(
            update(FiTransaction)
            .where(
                FiTransaction.user_id == user_id,
                FiTransaction.id.in_(chunk),
                FiTransaction.classification_source != "manual",
            )
            .values(
                category_id=category_id,
                classification_source="rule",
                classification_confidence=RULE_CONFIDENCE,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session="fetch")
        )
        updated += res.rowcount or 0
    return updated


def increment_match_counts(session: Session, counts: dict[int, int]) -> None:
    """Add ``counts[rule_id]`` to each rule's ``match_count``."""

    for rule_id, n in counts.items():
        if n <= 0:
            continue
        session.execute(
            update(FiCategorizationRule)
            .where(FiCategorizationRule.id == rule_id)
            .values(match_count=FiCategorizationRule.match_count + n)
            .execution_options(synchronize_session=False)
        )
    session.flush()


def _like_prefilter(pattern: str) -> str:
    # In LIKE, "_" matches any single character, which covers both the space
    # in a pattern and the underscore in a merchant key.
    escaped = pattern.lower().replace("\\", "\\\\").replace("%", "\\%")
    return "%" + "_".join(escaped.replace("_", " ").split()) + "%"


# ---------------------------
# Re-application and sweep
# ---------------------------


def reapply_rule(session: Session, *, user_id: str, rule: FiCategorizationRule) -> int:
    """Apply one rule to every matching non-manual transaction of the user.

    Returns the number of transactions assigned and adds it to the rule's
    ``match_count``. Inactive rules apply to nothing.
    """

    spec = RuleSpec.from_orm(rule)
    if not spec.is_active:
        return 0

    stmt = select(FiTransaction.id, FiTransaction.merchant_key, FiTransaction.amount).where(
        FiTransaction.user_id == user_id,
        FiTransaction.classification_source != "manual",
        func.lower(FiTransaction.merchant_key).like(
            _like_prefilter(spec.merchant_pattern), escape="\\"
        ),
    )
    ids = [
        tx_id
        for tx_id, merchant_key, amount in session.execute(stmt)
        if rule_matches(spec, merchant_key, Decimal(amount))
    ]
    if not ids:
        return 0

    applied = _assign_rule_category(
        session, user_id=user_id, category_id=spec.category_id, transaction_ids=ids
    )
    increment_match_counts(session, {spec.id: applied})
    session.refresh(rule, ["match_count"])
    logger.info("Rule %s (%r) applied to %d transactions", spec.id, spec.merchant_pattern, applied)
    return applied


def sweep_default_transactions(
    session: Session, *, user_id: str, transaction_ids: Iterable[int]
) -> SweepResult:
    """Categorize the given transactions that are still ``default``.

    Each row gets the first matching active rule; rows with no match keep
    their current category. Match counts are written after all assignments.
    """

    ids = list(transaction_ids)
    specs = load_rule_specs(session, user_id=user_id)
    if not ids:
        return SweepResult(categorized=0, uncategorized=0)

    candidates: list[tuple[int, str, Decimal]] = []
    for chunk in _chunks(ids):
        stmt = select(FiTransaction.id, FiTransaction.merchant_key, FiTransaction.amount).where(
            FiTransaction.user_id == user_id,
            FiTransaction.id.in_(chunk),
            FiTransaction.classification_source == "default",
        )
        candidates.extend((i, k, Decimal(a)) for i, k, a in session.execute(stmt))

    if not specs:
        return SweepResult(categorized=0, uncategorized=len(candidates))

    by_category: dict[int, list[int]] = defaultdict(list)
    per_rule: Counter[int] = Counter()
    for tx_id, merchant_key, amount in candidates:
        hit = first_match(specs, merchant_key, amount, ordered=True)
        if hit is None:
            continue
        by_category[hit.category_id].append(tx_id)
        per_rule[hit.rule_id] += 1

    categorized = 0
    for category_id, tx_ids in by_category.items():
        categorized += _assign_rule_category(
            session, user_id=user_id, category_id=category_id, transaction_ids=tx_ids
        )
    increment_match_counts(session, dict(per_rule))

    logger.debug("Sweep categorized %d of %d default rows", categorized, len(candidates))
    return SweepResult(
        categorized=categorized,
        uncategorized=len(candidates) - categorized,
        match_counts=dict(per_rule),
    )


# ---------------------------
# Rule surface
# ---------------------------


def create_rule(
    session: Session,
    *,
    user_id: str,
    rule: RuleInput,
    apply_to_existing: bool = False,
    initial_match_count: int = 0,
) -> tuple[FiCategorizationRule, int]:
    """Create a rule; optionally apply it to existing transactions.

    Returns ``(row, applied)`` where ``applied`` counts transactions assigned
    by the optional re-application. Raises :class:`RuleConflictError` when the
    pattern already exists for the user and
    :class:`~financial_import.categories.CategoryNotFoundError` when the
    category is not visible to the user.
    """

    get_visible_category(session, user_id=user_id, category_id=rule.category_id)
    if _pattern_taken(session, user_id=user_id, pattern=rule.merchant_pattern):
        raise RuleConflictError(f"A rule for {rule.merchant_pattern!r} already exists")

    row = FiCategorizationRule(
        user_id=user_id,
        merchant_pattern=rule.merchant_pattern,
        category_id=rule.category_id,
        amount_min=_q(rule.amount_min),
        amount_max=_q(rule.amount_max),
        priority=rule.priority,
        is_active=True,
        match_count=initial_match_count,
    )
    try:
        with session.begin_nested():
            session.add(row)
    except IntegrityError as exc:
        raise RuleConflictError(f"A rule for {rule.merchant_pattern!r} already exists") from exc
    logger.info("Created rule %s %r -> category %s", row.id, row.merchant_pattern, row.category_id)

    applied = reapply_rule(session, user_id=user_id, rule=row) if apply_to_existing else 0
    return row, applied


def update_rule(
    session: Session,
    *,
    user_id: str,
    rule_id: int,
    changes: RuleUpdate,
    reapply: bool = False,
) -> tuple[FiCategorizationRule, int]:
    """Apply the fields explicitly set on ``changes``; optionally re-apply.

    Returns ``(row, applied)``.
    """

    row = get_rule(session, user_id=user_id, rule_id=rule_id)
    fields: dict[str, Any] = changes.model_dump(exclude_unset=True)

    pattern = fields.get("merchant_pattern")
    if pattern is not None and pattern != row.merchant_pattern:
        if _pattern_taken(session, user_id=user_id, pattern=pattern, exclude_id=row.id):
            raise RuleConflictError(f"A rule for {pattern!r} already exists")
    if fields.get("category_id") is not None:
        get_visible_category(session, user_id=user_id, category_id=fields["category_id"])

    lo = _q(fields["amount_min"]) if "amount_min" in fields else row.amount_min
    hi = _q(fields["amount_max"]) if "amount_max" in fields else row.amount_max
    if lo is not None and hi is not None and lo > hi:
        raise ValueError("amount_min must be less than or equal to amount_max")

    for name in ("merchant_pattern", "category_id", "priority", "is_active"):
        if fields.get(name) is not None:
            setattr(row, name, fields[name])
    row.amount_min = lo
    row.amount_max = hi
    row.updated_at = func.now()
    session.flush()
    # Pull back the server-side timestamp before callers read the row.
    session.refresh(row)

    applied = reapply_rule(session, user_id=user_id, rule=row) if reapply else 0
    return row, applied


def delete_rule(session: Session, *, user_id: str, rule_id: int) -> None:
    """Delete a rule. Transactions it categorized keep their category."""

    row = get_rule(session, user_id=user_id, rule_id=rule_id)
    session.delete(row)
    session.flush()
    logger.info("Deleted rule %s", rule_id)


__all__ = [
    "RuleConflictError",
    "RuleNotFoundError",
    "list_rules",
    "get_rule",
    "load_rule_specs",
    "increment_match_counts",
    "reapply_rule",
    "sweep_default_transactions",
    "create_rule",
    "update_rule",
    "delete_rule",
]
