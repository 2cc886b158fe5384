"""CLI for the ``financial_import`` package.

A Typer console interface over :mod:`financial_import.api`. Environment
variables (``DATABASE_URL``, ``FINANCIAL_IMPORT_LOG_LEVEL``,
``FI_PREPARE_CONCURRENCY``) are loaded from a local ``.env`` with
``python-dotenv`` before any command runs. Each command opens one session
scope, so a command either commits all of its writes or none.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Annotated

import typer
from db.client import create_db_engine, make_session_factory, session_scope
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .logging_setup import configure_logging

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Import bank CSV exports, detect duplicates, and categorize transactions.",
)
rules_app = typer.Typer(no_args_is_help=True, help="Manage categorization rules.")
categories_app = typer.Typer(no_args_is_help=True, help="Manage categories.")
app.add_typer(rules_app, name="rules")
app.add_typer(categories_app, name="categories")


# ---- Shared options -----------------------------------------------------------

CsvPathOpt = Annotated[
    Path,
    typer.Option("--csv-path", help="Path to the bank CSV export.", dir_okay=False),
]
UserIdOpt = Annotated[str, typer.Option("--user-id", help="Owner of the data.")]
AccountOpt = Annotated[
    str | None, typer.Option("--account-id", help="Optional account identifier.")
]
DateColOpt = Annotated[
    str | None, typer.Option("--date-column", help="Header holding the posted date.")
]
DescColOpt = Annotated[
    str | None, typer.Option("--description-column", help="Header holding the description.")
]
AmountColOpt = Annotated[
    str | None, typer.Option("--amount-column", help="Header holding the amount.")
]
CategoryColOpt = Annotated[
    str | None, typer.Option("--category-column", help="Optional header holding a category.")
]
TxIdColOpt = Annotated[
    str | None,
    typer.Option("--transaction-id-column", help="Optional header holding a bank reference."),
]


# ---- Small helpers --------------------------------------------------------------


def _console() -> Console:
    return Console(highlight=False)


def _fail(message: str) -> typer.Exit:
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(1)


@contextmanager
def _session(ctx: typer.Context) -> Iterator[Session]:
    """Open a committed-on-success session for the configured database."""

    url = (ctx.obj or {}).get("database_url")
    try:
        engine = create_db_engine(database_url_override=url)
    except RuntimeError as e:
        raise _fail(str(e)) from e
    try:
        with session_scope(make_session_factory(engine)) as session:
            yield session
    finally:
        engine.dispose()


def _read_csv(csv_path: Path):
    from .csv_parser import EmptyCSVError, parse_csv

    try:
        text = csv_path.read_text(encoding="utf-8-sig")
    except FileNotFoundError as e:
        raise _fail(f"File not found: {csv_path}") from e
    except (PermissionError, UnicodeDecodeError) as e:
        raise _fail(f"Cannot read {csv_path}: {e}") from e
    try:
        return parse_csv(text)
    except EmptyCSVError as e:
        raise _fail(str(e)) from e


def _mapping(
    parsed,
    *,
    date_column: str | None,
    description_column: str | None,
    amount_column: str | None,
    category_column: str | None,
    transaction_id_column: str | None,
):
    """Explicit columns when all required ones are given, else detection."""

    from pydantic import ValidationError

    from .api import resolve_mapping
    from .models import ColumnMapping

    explicit = None
    if date_column and description_column and amount_column:
        try:
            explicit = ColumnMapping(
                posted_date=date_column,
                description=description_column,
                amount=amount_column,
                category=category_column,
                transaction_id=transaction_id_column,
            )
        except ValidationError as e:
            raise _fail(f"Invalid column mapping: {e}") from e
    elif date_column or description_column or amount_column:
        raise _fail("--date-column, --description-column and --amount-column go together")
    try:
        return resolve_mapping(parsed, explicit)
    except ValueError as e:
        raise _fail(str(e)) from e


def _decimal(raw: str | None, name: str) -> Decimal | None:
    from .normalizers import parse_amount

    if raw is None:
        return None
    try:
        return parse_amount(raw)
    except ValueError as e:
        raise _fail(f"{name}: {e}") from e


def _rules_table(rows) -> Table:
    table = Table("id", "pattern", "category", "min", "max", "priority", "active", "matches")
    for r in rows:
        table.add_row(
            str(r.id),
            r.merchant_pattern,
            str(r.category_id),
            "" if r.amount_min is None else str(r.amount_min),
            "" if r.amount_max is None else str(r.amount_max),
            str(r.priority),
            "yes" if r.is_active else "no",
            str(r.match_count),
        )
    return table


# ---- Import commands ------------------------------------------------------------


@app.command("detect-columns")
def detect_columns_cmd(csv_path: CsvPathOpt) -> None:
    """Show which CSV headers would be used for each field."""

    from .csv_parser import detect_column_mapping
    from .models import Matched

    parsed = _read_csv(csv_path)
    detected = detect_column_mapping(parsed.headers)
    table = Table("field", "header")
    for name in ("posted_date", "description", "amount", "category", "transaction_id"):
        m = getattr(detected, name)
        table.add_row(name, m.value if isinstance(m, Matched) else "-")
    console = _console()
    console.print(table)
    missing = detected.missing_required()
    if missing:
        console.print("Missing required columns: " + ", ".join(missing))
        raise typer.Exit(1)


@app.command("analyze")
def analyze_cmd(
    ctx: typer.Context,
    csv_path: CsvPathOpt,
    user_id: UserIdOpt,
    account_id: AccountOpt = None,
    date_column: DateColOpt = None,
    description_column: DescColOpt = None,
    amount_column: AmountColOpt = None,
    category_column: CategoryColOpt = None,
    transaction_id_column: TxIdColOpt = None,
) -> None:
    """Preview an import: new rows, duplicates, errors and date range."""

    from .importer import analyze_import

    parsed = _read_csv(csv_path)
    mapping = _mapping(
        parsed,
        date_column=date_column,
        description_column=description_column,
        amount_column=amount_column,
        category_column=category_column,
        transaction_id_column=transaction_id_column,
    )
    with _session(ctx) as session:
        result = analyze_import(
            session, user_id=user_id, rows=parsed.rows, mapping=mapping, account_id=account_id
        )

    console = _console()
    summary = Table("total", "new", "duplicates", "errors", "earliest", "latest")
    summary.add_row(
        str(result.total_rows),
        str(result.new_transactions),
        str(result.duplicates),
        str(result.errors),
        result.earliest or "-",
        result.latest or "-",
    )
    console.print(summary)
    if result.new_details:
        details = Table("date", "merchant", "amount", title="New transactions")
        for d in result.new_details:
            details.add_row(d.posted_date, d.merchant_name, str(d.amount))
        console.print(details)
    for line in result.error_details:
        console.print(line)


@app.command("import")
def import_cmd(
    ctx: typer.Context,
    csv_path: CsvPathOpt,
    user_id: UserIdOpt,
    account_id: AccountOpt = None,
    date_column: DateColOpt = None,
    description_column: DescColOpt = None,
    amount_column: AmountColOpt = None,
    category_column: CategoryColOpt = None,
    transaction_id_column: TxIdColOpt = None,
) -> None:
    """Import a CSV: record an upload, insert new rows, then run the rule sweep."""

    from .importer import ImportContextError, create_upload, process_import

    parsed = _read_csv(csv_path)
    mapping = _mapping(
        parsed,
        date_column=date_column,
        description_column=description_column,
        amount_column=amount_column,
        category_column=category_column,
        transaction_id_column=transaction_id_column,
    )

    failure: ImportContextError | None = None
    with _session(ctx) as session:
        upload = create_upload(
            session,
            user_id=user_id,
            filename=csv_path.name,
            account_id=account_id,
            total_rows=parsed.total_rows,
        )
        try:
            result = process_import(
                session, upload_id=upload.id, rows=parsed.rows, mapping=mapping
            )
        except ImportContextError as e:
            # Keep the upload's failed status: let the scope commit.
            failure = e
        upload_id = upload.id
    if failure is not None:
        raise _fail(str(failure))

    console = _console()
    table = Table("upload", "imported", "duplicates", "errors", "total", "auto", "uncategorized")
    table.add_row(
        str(upload_id),
        str(result.imported),
        str(result.duplicates),
        str(result.errors),
        str(result.total),
        str(result.auto_categorized),
        str(result.uncategorized),
    )
    console.print(table)
    for line in result.error_details:
        console.print(line)


# ---- Maintenance commands -------------------------------------------------------


@app.command("regenerate-merchant-keys")
def regenerate_merchant_keys_cmd(ctx: typer.Context, user_id: UserIdOpt) -> None:
    """Recompute merchant keys for all of a user's transactions."""

    from .transactions import regenerate_merchant_keys

    with _session(ctx) as session:
        result = regenerate_merchant_keys(session, user_id=user_id)
    typer.echo(
        f"Regenerated merchant keys: {result.updated} updated, "
        f"{result.unchanged} unchanged, {result.total} total"
    )


@app.command("recategorize")
def recategorize_cmd(
    ctx: typer.Context,
    user_id: UserIdOpt,
    transaction_ids: Annotated[
        list[int], typer.Option("--transaction-id", help="Transaction id (repeatable).")
    ],
    category_id: Annotated[int, typer.Option("--category-id", help="Target category.")],
    create_rule: Annotated[
        bool, typer.Option("--create-rule", help="Also create a rule for this merchant.")
    ] = False,
    pattern: Annotated[
        str | None, typer.Option("--pattern", help="Rule pattern (default: merchant key).")
    ] = None,
) -> None:
    """Manually categorize transactions, optionally creating a rule."""

    from .categories import CategoryNotFoundError
    from .transactions import recategorize_transactions

    try:
        with _session(ctx) as session:
            result = recategorize_transactions(
                session,
                user_id=user_id,
                transaction_ids=transaction_ids,
                category_id=category_id,
                create_rule_for_merchant=create_rule,
                merchant_pattern=pattern,
            )
    except (CategoryNotFoundError, ValueError) as e:
        raise _fail(str(e)) from e

    msg = f"Updated {result.updated} transaction(s)"
    if result.rule_created:
        msg += f"; created rule, applied to {result.additional_updated} more"
    typer.echo(msg)


# ---- Rules ----------------------------------------------------------------------


@rules_app.command("list")
def rules_list_cmd(ctx: typer.Context, user_id: UserIdOpt) -> None:
    """List rules in evaluation order."""

    from .rules_service import list_rules

    with _session(ctx) as session:
        table = _rules_table(list_rules(session, user_id=user_id))
    _console().print(table)


@rules_app.command("add")
def rules_add_cmd(
    ctx: typer.Context,
    user_id: UserIdOpt,
    pattern: Annotated[str, typer.Option("--pattern", help="Merchant pattern (substring).")],
    category_id: Annotated[int, typer.Option("--category-id", help="Category to assign.")],
    priority: Annotated[int, typer.Option("--priority", help="Higher runs first.")] = 100,
    amount_min: Annotated[
        str | None, typer.Option("--amount-min", help="Signed lower bound (debits are negative).")
    ] = None,
    amount_max: Annotated[
        str | None, typer.Option("--amount-max", help="Signed upper bound, e.g. -100.")
    ] = None,
    apply: Annotated[
        bool, typer.Option("--apply", help="Apply to existing non-manual transactions.")
    ] = False,
) -> None:
    """Create a categorization rule."""

    from pydantic import ValidationError

    from .categories import CategoryNotFoundError
    from .models import RuleInput
    from .rules_service import RuleConflictError, create_rule

    try:
        rule = RuleInput(
            merchant_pattern=pattern,
            category_id=category_id,
            priority=priority,
            amount_min=_decimal(amount_min, "--amount-min"),
            amount_max=_decimal(amount_max, "--amount-max"),
        )
    except ValidationError as e:
        raise _fail(f"Invalid rule: {e}") from e

    try:
        with _session(ctx) as session:
            row, applied = create_rule(
                session, user_id=user_id, rule=rule, apply_to_existing=apply
            )
            rule_id = row.id
    except (RuleConflictError, CategoryNotFoundError) as e:
        raise _fail(str(e)) from e

    msg = f"Created rule {rule_id} for {rule.merchant_pattern!r}"
    if apply:
        msg += f"; applied to {applied} transaction(s)"
    typer.echo(msg)


@rules_app.command("update")
def rules_update_cmd(
    ctx: typer.Context,
    rule_id: Annotated[int, typer.Argument(help="Rule id.")],
    user_id: UserIdOpt,
    pattern: Annotated[str | None, typer.Option("--pattern")] = None,
    category_id: Annotated[int | None, typer.Option("--category-id")] = None,
    priority: Annotated[int | None, typer.Option("--priority")] = None,
    amount_min: Annotated[str | None, typer.Option("--amount-min")] = None,
    amount_max: Annotated[str | None, typer.Option("--amount-max")] = None,
    active: Annotated[bool | None, typer.Option("--active/--inactive")] = None,
    reapply: Annotated[
        bool, typer.Option("--reapply", help="Re-apply to existing non-manual transactions.")
    ] = False,
) -> None:
    """Update fields of a rule; unspecified fields keep their values."""

    from pydantic import ValidationError

    from .categories import CategoryNotFoundError
    from .models import RuleUpdate
    from .rules_service import RuleConflictError, RuleNotFoundError, update_rule

    fields: dict[str, object] = {}
    if pattern is not None:
        fields["merchant_pattern"] = pattern
    if category_id is not None:
        fields["category_id"] = category_id
    if priority is not None:
        fields["priority"] = priority
    if amount_min is not None:
        fields["amount_min"] = _decimal(amount_min, "--amount-min")
    if amount_max is not None:
        fields["amount_max"] = _decimal(amount_max, "--amount-max")
    if active is not None:
        fields["is_active"] = active
    try:
        changes = RuleUpdate(**fields)
    except ValidationError as e:
        raise _fail(f"Invalid rule update: {e}") from e

    try:
        with _session(ctx) as session:
            _, applied = update_rule(
                session, user_id=user_id, rule_id=rule_id, changes=changes, reapply=reapply
            )
    except (RuleNotFoundError, RuleConflictError, CategoryNotFoundError, ValueError) as e:
        raise _fail(str(e)) from e

    msg = f"Updated rule {rule_id}"
    if reapply:
        msg += f"; applied to {applied} transaction(s)"
    typer.echo(msg)


@rules_app.command("delete")
def rules_delete_cmd(
    ctx: typer.Context,
    rule_id: Annotated[int, typer.Argument(help="Rule id.")],
    user_id: UserIdOpt,
) -> None:
    """Delete a rule. Categorized transactions keep their category."""

    from .rules_service import RuleNotFoundError, delete_rule

    try:
        with _session(ctx) as session:
            delete_rule(session, user_id=user_id, rule_id=rule_id)
    except RuleNotFoundError as e:
        raise _fail(str(e)) from e
    typer.echo(f"Deleted rule {rule_id}")


# ---- Categories -----------------------------------------------------------------


@categories_app.command("list")
def categories_list_cmd(ctx: typer.Context, user_id: UserIdOpt) -> None:
    """List system and user categories."""

    from .categories import list_categories

    table = Table("id", "name", "type", "system")
    with _session(ctx) as session:
        for c in list_categories(session, user_id=user_id):
            table.add_row(str(c.id), c.name, c.type, "yes" if c.is_system else "no")
    _console().print(table)


@categories_app.command("add")
def categories_add_cmd(
    ctx: typer.Context,
    user_id: UserIdOpt,
    name: Annotated[str, typer.Option("--name", help="Category name.")],
    type_: Annotated[
        str, typer.Option("--type", help="income, expense or transfer.")
    ] = "expense",
) -> None:
    """Create a category (no-op when a visible one has the same name)."""

    from .categories import create_category

    try:
        with _session(ctx) as session:
            row, created = create_category(session, user_id=user_id, name=name, type=type_)
            category_id = row.id
    except ValueError as e:
        raise _fail(str(e)) from e
    verb = "Created" if created else "Exists"
    typer.echo(f"{verb}: category {category_id} {name!r}")


# ---- Root -----------------------------------------------------------------------


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    *,
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
    log_level: str | None = typer.Option(
        None, help="Log level (falls back to FINANCIAL_IMPORT_LOG_LEVEL, then INFO)."
    ),
) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level)
    ctx.obj = {"database_url": database_url}

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


def main() -> None:  # pragma: no cover - console script shim
    try:
        app()
    except SQLAlchemyError as e:
        typer.echo(f"Error: database failure: {e}", err=True)
        raise SystemExit(1) from e


if __name__ == "__main__":  # pragma: no cover
    main()
