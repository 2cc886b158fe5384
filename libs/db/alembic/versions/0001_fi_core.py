# ruff: noqa: I001
"""Import pipeline core tables and the system Uncategorized category.

Revision ID: 0001_fi_core
Revises: None
Create Date: 2026-09-14
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_fi_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # fi_categories
    op.create_table(
        "fi_categories",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Text(), nullable=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("type", sa.Text(), nullable=False, server_default=sa.text("'expense'")),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.CheckConstraint(
            "type in ('income','expense','transfer')",
            name="ck_fi_categories_type",
        ),
    )
    op.create_index("ix_fi_categories_user_id", "fi_categories", ["user_id"], unique=False)
    # Category names are unique per owner (system rows share the '__system__' owner).
    op.create_index(
        "uq_fi_categories_owner_name",
        "fi_categories",
        [sa.text("coalesce(user_id, '__system__')"), sa.text("lower(name)")],
        unique=True,
    )

    # Seed the shared fallback category used for unmatched imports
    op.bulk_insert(
        sa.table(
            "fi_categories",
            sa.column("user_id", sa.Text()),
            sa.column("name", sa.Text()),
            sa.column("type", sa.Text()),
            sa.column("is_system", sa.Boolean()),
        ),
        [{"user_id": None, "name": "Uncategorized", "type": "expense", "is_system": True}],
    )

    # fi_uploads
    op.create_table(
        "fi_uploads",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("account_id", sa.Text(), nullable=True),
        sa.Column("filename", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("column_mapping", sa.JSON(), nullable=True),
        sa.Column("total_rows", sa.Integer(), nullable=True),
        sa.Column("imported_count", sa.Integer(), nullable=True),
        sa.Column("duplicate_count", sa.Integer(), nullable=True),
        sa.Column("error_count", sa.Integer(), nullable=True),
        sa.Column("error_details", sa.JSON(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status in ('pending','processing','completed','failed')",
            name="ck_fi_uploads_status",
        ),
    )

    # fi_transactions
    op.create_table(
        "fi_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("account_id", sa.Text(), nullable=True),
        sa.Column("upload_id", sa.BigInteger(), nullable=True),
        sa.Column("transaction_id", sa.Text(), nullable=True),
        sa.Column("posted_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("merchant_key", sa.Text(), nullable=False),
        sa.Column("fingerprint_hash", sa.String(64), nullable=False),
        sa.Column("category_id", sa.BigInteger(), nullable=True),
        sa.Column(
            "classification_source",
            sa.Text(),
            nullable=False,
            server_default=sa.text("'default'"),
        ),
        sa.Column("classification_confidence", sa.Float(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.ForeignKeyConstraint(
            ["upload_id"],
            ["fi_uploads.id"],
            name="fk_fi_tx_upload",
            ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["category_id"],
            ["fi_categories.id"],
            name="fk_fi_tx_category",
            ondelete="SET NULL",
        ),
        sa.UniqueConstraint("user_id", "fingerprint_hash", name="uq_fi_tx_user_fingerprint"),
        sa.CheckConstraint("type in ('credit','debit')", name="ck_fi_tx_type"),
        sa.CheckConstraint(
            "classification_source in ('default','rule','manual')",
            name="ck_fi_tx_classification_source",
        ),
        sa.CheckConstraint(
            (
                "classification_confidence IS NULL OR "
                "(classification_confidence >= 0 AND classification_confidence <= 1)"
            ),
            name="ck_fi_tx_classification_confidence",
        ),
    )

    op.create_index(
        "ix_fi_tx_user_merchant_key", "fi_transactions", ["user_id", "merchant_key"], unique=False
    )
    op.create_index(
        "ix_fi_tx_user_classification_source",
        "fi_transactions",
        ["user_id", "classification_source"],
        unique=False,
    )
    op.create_index("ix_fi_tx_posted_date", "fi_transactions", ["posted_date"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_fi_tx_posted_date", table_name="fi_transactions")
    op.drop_index("ix_fi_tx_user_classification_source", table_name="fi_transactions")
    op.drop_index("ix_fi_tx_user_merchant_key", table_name="fi_transactions")
    op.drop_table("fi_transactions")
    op.drop_table("fi_uploads")
    op.drop_index("uq_fi_categories_owner_name", table_name="fi_categories")
    op.drop_index("ix_fi_categories_user_id", table_name="fi_categories")
    op.drop_table("fi_categories")
