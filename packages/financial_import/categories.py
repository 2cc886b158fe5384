"""Category lookup and creation.

Categories are either system rows (``user_id IS NULL``, shared by every user)
or owned by one user. Everything here is scoped to what a given user can see:
their own categories plus the system set.

Exports
-------
- ``normalize_name(...)`` / ``validate_name(...)``: name hygiene shared by the
  CLI and :func:`create_category`.
- ``load_category_index(...)``: case-insensitive name → id map used by the
  importer to resolve a mapped category column.
- ``find_uncategorized(...)``: the fallback category for unmatched rows.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass

from db.models.finance import FiCategory
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from .logging_setup import get_logger
from .models import UNCATEGORIZED_NAME, UNMATCHED, Match, Matched

logger = get_logger("financial_import.categories")

CATEGORY_TYPES: tuple[str, ...] = ("income", "expense", "transfer")


class CategoryNotFoundError(LookupError):
    """Raised when a category id does not exist or is not visible to the user."""


# ---------------------------
# Name normalization/validation
# ---------------------------

_ALLOWED_RE = re.compile(r"^[A-Za-z0-9 &\-/',.]+$")


def normalize_name(name: str) -> str:
    """Return a trimmed, single-spaced representation of ``name``.

    Does not change case.
    """

    return " ".join(name.strip().split())


@dataclass(frozen=True, slots=True)
class NameValidation:
    ok: bool
    reason: str | None = None


def validate_name(name: str, *, min_len: int = 1, max_len: int = 64) -> NameValidation:
    """Validate a category name.

    Rules
    -----
    - Trim whitespace; enforce length bounds 1..64.
    - Allowed characters: letters, numbers, spaces, and ``& - / ' , .``.
    """

    n = normalize_name(name)
    if len(n) < min_len:
        return NameValidation(False, "Name cannot be empty")
    if len(n) > max_len:
        return NameValidation(False, f"Name must be at most {max_len} characters")
    if not _ALLOWED_RE.match(n):
        return NameValidation(False, "Only letters, numbers, spaces, and & - / ' , . are allowed")
    return NameValidation(True, None)


# ---------------------------
# Lookups
# ---------------------------


def _visible_to(user_id: str):
    return or_(FiCategory.user_id == user_id, FiCategory.user_id.is_(None))


def list_categories(session: Session, *, user_id: str) -> list[FiCategory]:
    """System categories first, then the user's own, each alphabetically."""

    stmt = (
        select(FiCategory)
        .where(_visible_to(user_id))
        .order_by(FiCategory.user_id.is_not(None), func.lower(FiCategory.name), FiCategory.id)
    )
    return list(session.execute(stmt).scalars())


def get_visible_category(session: Session, *, user_id: str, category_id: int) -> FiCategory:
    row = session.execute(
        select(FiCategory).where(FiCategory.id == category_id, _visible_to(user_id))
    ).scalar_one_or_none()
    if row is None:
        raise CategoryNotFoundError(f"Category not found: {category_id}")
    return row


def load_category_index(session: Session, *, user_id: str) -> dict[str, int]:
    """Map lowercased category name → id for everything ``user_id`` can see.

    When a user category shares a name with a system category the user's row
    wins.
    """

    index: dict[str, int] = {}
    for row in list_categories(session, user_id=user_id):
        key = normalize_name(row.name).lower()
        if row.user_id is not None or key not in index:
            index[key] = row.id
    return index


def match_category_name(name: str | None, index: Mapping[str, int]) -> Match[int]:
    """Look up a CSV category cell in a :func:`load_category_index` map."""

    if not name:
        return UNMATCHED
    category_id = index.get(normalize_name(name).lower())
    return Matched(category_id) if category_id is not None else UNMATCHED


def find_uncategorized(session: Session, *, user_id: str) -> int | None:
    """Return the id of the ``Uncategorized`` category, preferring the system row."""

    stmt = (
        select(FiCategory.id)
        .where(_visible_to(user_id), func.lower(FiCategory.name) == UNCATEGORIZED_NAME.lower())
        .order_by(FiCategory.user_id.is_not(None), FiCategory.id)
        .limit(1)
    )
    found = session.execute(stmt).scalar_one_or_none()
    if found is None:
        logger.warning("No %r category visible to user %s", UNCATEGORIZED_NAME, user_id)
    return found


# ---------------------------
# Service operations
# ---------------------------


def create_category(
    session: Session,
    *,
    user_id: str,
    name: str,
    type: str = "expense",
) -> tuple[FiCategory, bool]:
    """Create a user category unless a visible one already has that name.

    Returns ``(row, created)``. Case-insensitive duplicates of a visible
    category return the existing row with ``created=False``. Raises
    ``ValueError`` for invalid names or types.
    """

    name_n = normalize_name(name)
    v = validate_name(name_n)
    if not v.ok:
        raise ValueError(f"Invalid category name: {v.reason}")
    if type not in CATEGORY_TYPES:
        raise ValueError(f"Invalid category type: {type!r}")

    existing = session.execute(
        select(FiCategory)
        .where(_visible_to(user_id), func.lower(FiCategory.name) == name_n.lower())
        .order_by(FiCategory.user_id.is_(None), FiCategory.id)
        .limit(1)
    ).scalar_one_or_none()
    if existing is not None:
        return existing, False

    row = FiCategory(user_id=user_id, name=name_n, type=type, is_system=False)
    session.add(row)
    session.flush()
    logger.info("Created category %r (id=%s) for user %s", name_n, row.id, user_id)
    return row, True


__all__ = [
    "CATEGORY_TYPES",
    "CategoryNotFoundError",
    "normalize_name",
    "validate_name",
    "NameValidation",
    "list_categories",
    "get_visible_category",
    "load_category_index",
    "match_category_name",
    "find_uncategorized",
    "create_category",
]
