"""Import orchestration: CSV rows → normalized transactions → the store.

Pipeline per row: validate the mapped fields, normalize date and amount,
derive the merchant key and fingerprint, pick an initial category, and insert
inside a savepoint. The store's ``(user_id, fingerprint_hash)`` uniqueness is
the only duplicate check; a violation of it counts as a duplicate, any other
store failure counts as a row error. Neither aborts the run.

After all rows, one best-effort rule sweep categorizes the newly inserted rows
still at ``default``.

Preparation (everything before the insert) is pure and may run on a bounded
thread pool; inserts are always serialized in file order on the caller's
session.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

from db.models.finance import FINGERPRINT_CONSTRAINT, FiTransaction, FiUpload
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .categories import find_uncategorized, load_category_index, match_category_name
from .fingerprint import compute_fingerprint
from .logging_setup import get_logger
from .merchant import extract_merchant_display_name, generate_merchant_key
from .models import (
    DEFAULT_CONFIDENCE,
    MANUAL_CONFIDENCE,
    AnalyzedTransaction,
    AnalyzeResult,
    ClassificationSource,
    ColumnMapping,
    CSVRow,
    ImportResult,
    Matched,
    PreparedTransaction,
    RowError,
)
from .normalizers import infer_day_first, parse_amount, parse_date, transaction_type
from .parallel import bounded_map, default_concurrency
from .rules_service import sweep_default_transactions

logger = get_logger("financial_import.importer")

MAX_ERROR_DETAILS = 20
MAX_PREVIEW_DETAILS = 50
_FINGERPRINT_BATCH = 100


class UploadNotFoundError(LookupError):
    """The upload record an import refers to does not exist."""


class ImportContextError(RuntimeError):
    """Category context for an import could not be loaded."""


@dataclass(frozen=True, slots=True)
class ImportContext:
    user_id: str
    account_id: str | None
    category_index: Mapping[str, int]
    uncategorized_id: int | None


# ---------------------------------------------------------------------------
# Preparation (pure)
# ---------------------------------------------------------------------------


def _cell(row: CSVRow, header: str | None) -> str | None:
    if header is None:
        return None
    value = row.get(header)
    if value is None:
        return None
    value = value.strip()
    return value or None


def prepare_row(
    row: CSVRow,
    mapping: ColumnMapping,
    *,
    row_number: int,
    account_id: str | None = None,
    day_first: bool = False,
) -> PreparedTransaction | RowError:
    """Validate and normalize one CSV row.

    Returns a :class:`RowError` instead of raising so a bad row never stops
    the batch.
    """

    raw_date = _cell(row, mapping.posted_date)
    description = _cell(row, mapping.description)
    raw_amount = _cell(row, mapping.amount)
    if raw_date is None or description is None or raw_amount is None:
        return RowError(row_number, "Missing date, description, or amount")

    try:
        posted_date = parse_date(raw_date, day_first=day_first)
        amount = parse_amount(raw_amount)
    except ValueError as exc:
        return RowError(row_number, str(exc))

    return PreparedTransaction(
        row_number=row_number,
        posted_date=posted_date,
        description=description,
        amount=amount,
        type=transaction_type(amount),
        merchant_key=generate_merchant_key(description),
        fingerprint_hash=compute_fingerprint(
            posted_date=posted_date,
            amount=amount,
            description=description,
            account_id=account_id,
        ),
        category_name=_cell(row, mapping.category),
        transaction_id=_cell(row, mapping.transaction_id),
    )


def prepare_rows(
    rows: Sequence[CSVRow],
    mapping: ColumnMapping,
    *,
    account_id: str | None = None,
    concurrency: int | None = None,
) -> list[PreparedTransaction | RowError]:
    """Prepare every row, preserving order. Row numbers are 1-based."""

    day_first = infer_day_first(_cell(r, mapping.posted_date) for r in rows)

    def _one(item: tuple[int, CSVRow]) -> PreparedTransaction | RowError:
        i, row = item
        return prepare_row(
            row, mapping, row_number=i + 1, account_id=account_id, day_first=day_first
        )

    return bounded_map(
        enumerate(rows), _one, concurrency=concurrency or default_concurrency()
    )


# ---------------------------------------------------------------------------
# Store interaction
# ---------------------------------------------------------------------------


def load_import_context(
    session: Session, *, user_id: str, account_id: str | None = None
) -> ImportContext:
    """Load category lookups for ``user_id``.

    Raises :class:`ImportContextError` when the store cannot be read; the
    failed reads are rolled back to a savepoint so the session stays usable.
    """

    try:
        with session.begin_nested():
            index = load_category_index(session, user_id=user_id)
            uncategorized_id = find_uncategorized(session, user_id=user_id)
    except SQLAlchemyError as exc:
        raise ImportContextError(f"Failed to load categories for user {user_id}") from exc
    return ImportContext(
        user_id=user_id,
        account_id=account_id,
        category_index=index,
        uncategorized_id=uncategorized_id,
    )


def _initial_classification(
    tx: PreparedTransaction, ctx: ImportContext
) -> tuple[int | None, ClassificationSource, float]:
    match = match_category_name(tx.category_name, ctx.category_index)
    if isinstance(match, Matched):
        return match.value, "manual", MANUAL_CONFIDENCE
    return ctx.uncategorized_id, "default", DEFAULT_CONFIDENCE


def is_fingerprint_violation(exc: IntegrityError) -> bool:
    """Whether ``exc`` was raised by the per-user fingerprint constraint."""

    orig = exc.orig
    diag = getattr(orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint:
        return constraint == FINGERPRINT_CONSTRAINT
    message = str(orig).lower()
    return FINGERPRINT_CONSTRAINT in message or "fingerprint_hash" in message


type InsertOutcome = Literal["imported", "duplicate", "error"]


def _insert(
    session: Session,
    ctx: ImportContext,
    tx: PreparedTransaction,
    *,
    upload_id: int | None,
) -> tuple[InsertOutcome, FiTransaction | None, str | None]:
    category_id, source, confidence = _initial_classification(tx, ctx)
    row = FiTransaction(
        user_id=ctx.user_id,
        account_id=ctx.account_id,
        upload_id=upload_id,
        transaction_id=tx.transaction_id,
        posted_date=tx.posted_on,
        description=tx.description,
        amount=tx.amount,
        type=tx.type,
        merchant_key=tx.merchant_key,
        fingerprint_hash=tx.fingerprint_hash,
        category_id=category_id,
        classification_source=source,
        classification_confidence=confidence,
    )
    try:
        with session.begin_nested():
            session.add(row)
    except IntegrityError as exc:
        if is_fingerprint_violation(exc):
            return "duplicate", None, None
        logger.warning("Row %d rejected by the store: %s", tx.row_number, exc.orig)
        return "error", None, f"database error: {exc.orig}"
    except SQLAlchemyError as exc:
        logger.warning("Row %d failed to insert: %s", tx.row_number, exc)
        return "error", None, f"database error: {exc}"
    return "imported", row, None


def import_rows(
    session: Session,
    *,
    user_id: str,
    rows: Sequence[CSVRow],
    mapping: ColumnMapping,
    account_id: str | None = None,
    upload_id: int | None = None,
    concurrency: int | None = None,
) -> ImportResult:
    """Import ``rows`` for ``user_id`` and return the outcome counters.

    Raises :class:`ImportContextError` before inserting anything when the
    category context cannot be loaded.
    """

    ctx = load_import_context(session, user_id=user_id, account_id=account_id)
    prepared = prepare_rows(rows, mapping, account_id=account_id, concurrency=concurrency)

    imported = duplicates = errors = 0
    error_details: list[str] = []
    default_ids: list[int] = []

    for item in prepared:
        if isinstance(item, RowError):
            errors += 1
            error_details.append(str(item))
            continue
        outcome, row, message = _insert(session, ctx, item, upload_id=upload_id)
        if outcome == "imported":
            imported += 1
            if row is not None and row.classification_source == "default":
                default_ids.append(row.id)
        elif outcome == "duplicate":
            duplicates += 1
        else:
            errors += 1
            error_details.append(str(RowError(item.row_number, message or "insert failed")))

    auto_categorized = 0
    uncategorized = len(default_ids)
    if default_ids:
        try:
            with session.begin_nested():
                sweep = sweep_default_transactions(
                    session, user_id=user_id, transaction_ids=default_ids
                )
            auto_categorized = sweep.categorized
            uncategorized = sweep.uncategorized
        except SQLAlchemyError:
            logger.exception("Rule sweep failed; %d rows stay uncategorized", len(default_ids))

    result = ImportResult(
        imported=imported,
        duplicates=duplicates,
        errors=errors,
        total=len(rows),
        auto_categorized=auto_categorized,
        uncategorized=uncategorized,
        error_details=tuple(error_details[:MAX_ERROR_DETAILS]),
    )
    logger.info(
        "Import for user %s: %d imported, %d duplicates, %d errors of %d rows",
        user_id,
        imported,
        duplicates,
        errors,
        len(rows),
    )
    return result


def create_upload(
    session: Session,
    *,
    user_id: str,
    filename: str,
    account_id: str | None = None,
    total_rows: int | None = None,
) -> FiUpload:
    """Record a pending upload and return it (flushed, with an id)."""

    upload = FiUpload(
        user_id=user_id,
        account_id=account_id,
        filename=filename,
        status="pending",
        total_rows=total_rows,
    )
    session.add(upload)
    session.flush()
    return upload


def process_import(
    session: Session,
    *,
    upload_id: int,
    rows: Sequence[CSVRow],
    mapping: ColumnMapping,
    account_id: str | None = None,
    concurrency: int | None = None,
) -> ImportResult:
    """Import ``rows`` against an existing upload record.

    The user (and, unless overridden, the account) comes from the upload.
    Raises :class:`UploadNotFoundError` when the upload does not exist and
    :class:`ImportContextError` when categories cannot be loaded. In that
    case the upload is flushed as ``failed`` on ``session``; the status only
    persists if the caller commits after catching the error (the CLI does).
    """

    upload = session.get(FiUpload, upload_id)
    if upload is None:
        raise UploadNotFoundError(f"Upload not found: {upload_id}")

    upload.status = "processing"
    upload.column_mapping = mapping.model_dump()
    upload.total_rows = len(rows)
    session.flush()

    try:
        result = import_rows(
            session,
            user_id=upload.user_id,
            rows=rows,
            mapping=mapping,
            account_id=account_id or upload.account_id,
            upload_id=upload.id,
            concurrency=concurrency,
        )
    except ImportContextError:
        upload.status = "failed"
        upload.completed_at = datetime.now(UTC)
        session.flush()
        raise

    upload.status = "completed"
    upload.imported_count = result.imported
    upload.duplicate_count = result.duplicates
    upload.error_count = result.errors
    upload.error_details = list(result.error_details)
    upload.completed_at = datetime.now(UTC)
    session.flush()
    return result


# ---------------------------------------------------------------------------
# Dry run
# ---------------------------------------------------------------------------


def _existing_fingerprints(
    session: Session, *, user_id: str, fingerprints: Iterable[str]
) -> set[str]:
    wanted = list(dict.fromkeys(fingerprints))
    found: set[str] = set()
    for i in range(0, len(wanted), _FINGERPRINT_BATCH):
        batch = wanted[i : i + _FINGERPRINT_BATCH]
        stmt = select(FiTransaction.fingerprint_hash).where(
            FiTransaction.user_id == user_id, FiTransaction.fingerprint_hash.in_(batch)
        )
        found.update(session.execute(stmt).scalars())
    return found


def analyze_import(
    session: Session,
    *,
    user_id: str,
    rows: Sequence[CSVRow],
    mapping: ColumnMapping,
    account_id: str | None = None,
    concurrency: int | None = None,
) -> AnalyzeResult:
    """Preview an import without writing anything.

    A row is a duplicate when its fingerprint is already stored for the user
    or appeared earlier in the same file.
    """

    prepared = prepare_rows(rows, mapping, account_id=account_id, concurrency=concurrency)
    valid = [p for p in prepared if isinstance(p, PreparedTransaction)]
    existing = _existing_fingerprints(
        session, user_id=user_id, fingerprints=(p.fingerprint_hash for p in valid)
    )

    seen: set[str] = set()
    new_details: list[AnalyzedTransaction] = []
    duplicate_details: list[AnalyzedTransaction] = []
    for p in valid:
        is_dup = p.fingerprint_hash in existing or p.fingerprint_hash in seen
        seen.add(p.fingerprint_hash)
        detail = AnalyzedTransaction(
            posted_date=p.posted_date,
            description=p.description,
            merchant_name=extract_merchant_display_name(p.description),
            amount=p.amount,
            fingerprint_hash=p.fingerprint_hash,
            is_duplicate=is_dup,
        )
        (duplicate_details if is_dup else new_details).append(detail)

    errors = [str(p) for p in prepared if isinstance(p, RowError)]
    dates = sorted(p.posted_date for p in valid)
    return AnalyzeResult(
        total_rows=len(rows),
        new_transactions=len(new_details),
        duplicates=len(duplicate_details),
        errors=len(errors),
        earliest=dates[0] if dates else None,
        latest=dates[-1] if dates else None,
        new_details=tuple(new_details[:MAX_PREVIEW_DETAILS]),
        duplicate_details=tuple(duplicate_details[:MAX_PREVIEW_DETAILS]),
        error_details=tuple(errors[:MAX_ERROR_DETAILS]),
    )


__all__ = [
    "MAX_ERROR_DETAILS",
    "UploadNotFoundError",
    "ImportContextError",
    "ImportContext",
    "prepare_row",
    "prepare_rows",
    "load_import_context",
    "is_fingerprint_violation",
    "import_rows",
    "create_upload",
    "process_import",
    "analyze_import",
]
