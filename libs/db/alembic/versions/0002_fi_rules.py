# ruff: noqa: I001
"""Categorization rules table.

Revision ID: 0002_fi_rules
Revises: 0001_fi_core
Create Date: 2026-09-21
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0002_fi_rules"
down_revision: str | None = "0001_fi_core"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "fi_categorization_rules",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("merchant_pattern", sa.Text(), nullable=False),
        sa.Column("category_id", sa.BigInteger(), nullable=False),
        sa.Column("amount_min", sa.Numeric(18, 2), nullable=True),
        sa.Column("amount_max", sa.Numeric(18, 2), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("match_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
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
            ["category_id"],
            ["fi_categories.id"],
            name="fk_fi_rules_category",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("user_id", "merchant_pattern", name="uq_fi_rules_user_pattern"),
        sa.CheckConstraint(
            "amount_min IS NULL OR amount_max IS NULL OR amount_min <= amount_max",
            name="ck_fi_rules_amount_bounds",
        ),
    )
    op.create_index(
        "ix_fi_rules_user_priority",
        "fi_categorization_rules",
        ["user_id", "priority"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_fi_rules_user_priority", table_name="fi_categorization_rules")
    op.drop_table("fi_categorization_rules")
