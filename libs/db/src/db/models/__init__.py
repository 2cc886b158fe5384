"""Shared SQLAlchemy models registry for the import pipeline database."""

from .finance import (
    FINGERPRINT_CONSTRAINT,
    Base,
    FiCategorizationRule,
    FiCategory,
    FiTransaction,
    FiUpload,
)

__all__ = [
    "Base",
    "FINGERPRINT_CONSTRAINT",
    "FiCategory",
    "FiCategorizationRule",
    "FiTransaction",
    "FiUpload",
]
