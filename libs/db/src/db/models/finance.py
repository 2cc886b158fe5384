from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns; Postgres gets BIGINT.
_PK = BigInteger().with_variant(Integer(), "sqlite")

# Name of the per-user uniqueness constraint on transaction fingerprints. The
# import seam inspects constraint violations for this name to tell duplicates
# apart from other integrity failures.
FINGERPRINT_CONSTRAINT = "uq_fi_tx_user_fingerprint"


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: fi_categories
# ---------------------------


class FiCategory(Base):
    __tablename__ = "fi_categories"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    # NULL for system categories shared by every user (e.g. "Uncategorized").
    user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'expense'"))
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "type in ('income','expense','transfer')",
            name="ck_fi_categories_type",
        ),
        Index("ix_fi_categories_user_id", "user_id"),
    )


# ---------------------------
# Ingestion: fi_uploads
# ---------------------------


class FiUpload(Base):
    __tablename__ = "fi_uploads"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    account_id: Mapped[str | None] = mapped_column(String, nullable=True)
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'pending'"))
    column_mapping: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    total_rows: Mapped[int | None] = mapped_column(Integer, nullable=True)
    imported_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duplicate_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_details: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status in ('pending','processing','completed','failed')",
            name="ck_fi_uploads_status",
        ),
    )


# ---------------------------
# Core: fi_transactions
# ---------------------------


class FiTransaction(Base):
    __tablename__ = "fi_transactions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    account_id: Mapped[str | None] = mapped_column(String, nullable=True)
    upload_id: Mapped[int | None] = mapped_column(
        ForeignKey("fi_uploads.id", ondelete="SET NULL"), nullable=True
    )
    # Bank-provided reference, when the export has one. Informational only:
    # duplicate detection relies on ``fingerprint_hash`` alone.
    transaction_id: Mapped[str | None] = mapped_column(String, nullable=True)
    posted_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    merchant_key: Mapped[str] = mapped_column(Text, nullable=False)
    # Durable identity of the economic event; written once at insert time.
    fingerprint_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    category_id: Mapped[int | None] = mapped_column(
        ForeignKey("fi_categories.id", ondelete="SET NULL"), nullable=True
    )
    classification_source: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'default'")
    )
    classification_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "fingerprint_hash", name=FINGERPRINT_CONSTRAINT),
        CheckConstraint("type in ('credit','debit')", name="ck_fi_tx_type"),
        CheckConstraint(
            "classification_source in ('default','rule','manual')",
            name="ck_fi_tx_classification_source",
        ),
        CheckConstraint(
            (
                "classification_confidence IS NULL OR "
                "(classification_confidence >= 0 AND classification_confidence <= 1)"
            ),
            name="ck_fi_tx_classification_confidence",
        ),
        Index("ix_fi_tx_user_merchant_key", "user_id", "merchant_key"),
        Index("ix_fi_tx_user_classification_source", "user_id", "classification_source"),
        Index("ix_fi_tx_posted_date", "posted_date"),
    )


# ---------------------------
# Rules: fi_categorization_rules
# ---------------------------


class FiCategorizationRule(Base):
    __tablename__ = "fi_categorization_rules"

    # Monotonic id doubles as the creation-order tie-break for equal priorities.
    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    # Stored lowercased and trimmed.
    merchant_pattern: Mapped[str] = mapped_column(Text, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("fi_categories.id", ondelete="CASCADE"), nullable=False
    )
    amount_min: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    amount_max: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("100"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    match_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "merchant_pattern", name="uq_fi_rules_user_pattern"),
        CheckConstraint(
            "amount_min IS NULL OR amount_max IS NULL OR amount_min <= amount_max",
            name="ck_fi_rules_amount_bounds",
        ),
        Index("ix_fi_rules_user_priority", "user_id", "priority"),
    )


__all__ = [
    "Base",
    "FINGERPRINT_CONSTRAINT",
    "FiCategory",
    "FiCategorizationRule",
    "FiTransaction",
    "FiUpload",
]
