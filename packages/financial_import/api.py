"""Public API for the ``financial_import`` package.

This module is the stable import surface for callers (the CLI, a web layer,
background jobs). Operations live in their own modules and are re-exported
here; the only logic of its own is :func:`import_csv_text`, which chains
parsing, column mapping and :func:`process_import`.

Every operation takes a caller-owned SQLAlchemy ``Session`` and never commits.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from .categories import (
    CategoryNotFoundError,
    create_category,
    find_uncategorized,
    list_categories,
)
from .csv_parser import EmptyCSVError, ParsedCSV, detect_column_mapping, parse_csv
from .importer import (
    ImportContextError,
    UploadNotFoundError,
    analyze_import,
    create_upload,
    import_rows,
    process_import,
)
from .models import ColumnMapping, ImportResult
from .rules_service import (
    RuleConflictError,
    RuleNotFoundError,
    create_rule,
    delete_rule,
    list_rules,
    reapply_rule,
    sweep_default_transactions,
    update_rule,
)
from .transactions import recategorize_transactions, regenerate_merchant_keys


def resolve_mapping(parsed: ParsedCSV, mapping: ColumnMapping | None) -> ColumnMapping:
    """Return ``mapping`` or, when omitted, the detected suggestion.

    Raises ``ValueError`` when a supplied mapping names a header that is not
    in the file, or when detection cannot find the required columns.
    """

    if mapping is None:
        return detect_column_mapping(parsed.headers).suggest()
    headers = set(parsed.headers)
    unknown = [
        h
        for h in (
            mapping.posted_date,
            mapping.description,
            mapping.amount,
            mapping.category,
            mapping.transaction_id,
        )
        if h is not None and h not in headers
    ]
    if unknown:
        raise ValueError("Mapped columns not found in CSV: " + ", ".join(unknown))
    return mapping


def import_csv_text(
    session: Session,
    *,
    upload_id: int,
    csv_text: str,
    mapping: ColumnMapping | None = None,
    account_id: str | None = None,
) -> ImportResult:
    """Parse ``csv_text`` and import it against an existing upload."""

    parsed = parse_csv(csv_text)
    return process_import(
        session,
        upload_id=upload_id,
        rows=parsed.rows,
        mapping=resolve_mapping(parsed, mapping),
        account_id=account_id,
    )


__all__ = [
    # Errors
    "EmptyCSVError",
    "UploadNotFoundError",
    "ImportContextError",
    "RuleConflictError",
    "RuleNotFoundError",
    "CategoryNotFoundError",
    # Parsing
    "parse_csv",
    "detect_column_mapping",
    "resolve_mapping",
    # Import
    "create_upload",
    "import_rows",
    "process_import",
    "import_csv_text",
    "analyze_import",
    # Rules
    "list_rules",
    "create_rule",
    "update_rule",
    "delete_rule",
    "reapply_rule",
    "sweep_default_transactions",
    # Categories
    "list_categories",
    "create_category",
    "find_uncategorized",
    # Maintenance
    "regenerate_merchant_keys",
    "recategorize_transactions",
]
