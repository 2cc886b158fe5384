"""Maintenance operations on stored transactions.

- ``regenerate_merchant_keys``: recompute merchant keys after the merchant
  algorithm changes. Fingerprints are never touched.
- ``recategorize_transactions``: a user's manual correction, optionally
  turned into a rule that is applied to similar transactions.
"""

from __future__ import annotations

from collections.abc import Sequence

from db.models.finance import FiTransaction
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .categories import get_visible_category
from .logging_setup import get_logger
from .merchant import generate_merchant_key
from .models import (
    MANUAL_CONFIDENCE,
    RecategorizeResult,
    RegenerateResult,
    RuleInput,
    normalize_pattern,
)
from .rules_service import RuleConflictError, create_rule

logger = get_logger("financial_import.transactions")

_BATCH = 500


def regenerate_merchant_keys(session: Session, *, user_id: str) -> RegenerateResult:
    """Recompute ``merchant_key`` for every transaction of ``user_id``.

    Only rows whose key actually changes are written, so running this twice
    in a row updates nothing the second time.
    """

    stmt = select(FiTransaction.id, FiTransaction.description, FiTransaction.merchant_key).where(
        FiTransaction.user_id == user_id
    )
    total = 0
    changes: list[dict[str, object]] = []
    for tx_id, description, current in session.execute(stmt):
        total += 1
        key = generate_merchant_key(description)
        if key != current:
            changes.append({"id": tx_id, "merchant_key": key})

    for i in range(0, len(changes), _BATCH):
        # ORM bulk UPDATE by primary key.
        session.execute(update(FiTransaction), changes[i : i + _BATCH])
    session.flush()

    logger.info(
        "Regenerated merchant keys for user %s: %d of %d changed", user_id, len(changes), total
    )
    return RegenerateResult(total=total, updated=len(changes), unchanged=total - len(changes))


def _pattern_from_key(merchant_key: str) -> str:
    return normalize_pattern(merchant_key.replace("_", " "))


def recategorize_transactions(
    session: Session,
    *,
    user_id: str,
    transaction_ids: Sequence[int],
    category_id: int,
    create_rule_for_merchant: bool = False,
    merchant_pattern: str | None = None,
    priority: int = 100,
) -> RecategorizeResult:
    """Assign ``category_id`` to the given transactions as a manual edit.

    With ``create_rule_for_merchant`` a rule is created for ``merchant_pattern``
    (default: the first edited transaction's merchant key) and applied to the
    user's other non-manual transactions. The new rule starts with
    ``match_count`` equal to the number of edited rows. An existing rule for
    the same pattern is left alone.

    Raises ``ValueError`` when none of ``transaction_ids`` belong to the user.
    """

    get_visible_category(session, user_id=user_id, category_id=category_id)

    ids = list(dict.fromkeys(transaction_ids))
    found = session.execute(
        select(FiTransaction.id, FiTransaction.merchant_key)
        .where(FiTransaction.user_id == user_id, FiTransaction.id.in_(ids))
        .order_by(FiTransaction.id)
    ).all()
    if not found:
        raise ValueError("No matching transactions for this user")

    res = session.execute(
        update(FiTransaction)
        .where(FiTransaction.user_id == user_id, FiTransaction.id.in_([r.id for r in found]))
        .values(
            category_id=category_id,
            classification_source="manual",
            classification_confidence=MANUAL_CONFIDENCE,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session="fetch")
    )
    updated = res.rowcount or 0

    if not create_rule_for_merchant:
        session.flush()
        return RecategorizeResult(updated=updated, rule_created=False, additional_updated=0)

    pattern = merchant_pattern or _pattern_from_key(found[0].merchant_key)
    try:
        rule_input = RuleInput(merchant_pattern=pattern, category_id=category_id, priority=priority)
        _, applied = create_rule(
            session,
            user_id=user_id,
            rule=rule_input,
            apply_to_existing=True,
            initial_match_count=updated,
        )
    except RuleConflictError:
        logger.info("Rule for %r already exists; not creating another", pattern)
        return RecategorizeResult(updated=updated, rule_created=False, additional_updated=0)

    return RecategorizeResult(updated=updated, rule_created=True, additional_updated=applied)


__all__ = ["regenerate_merchant_keys", "recategorize_transactions"]
