"""Transaction fingerprints for duplicate detection.

A fingerprint is a SHA-256 digest over the canonical identity of a transaction:
posted date, signed amount, normalized description and account. It is computed
once at import time and stored; the store rejects a second transaction with
the same ``(user_id, fingerprint_hash)``.

The description is normalized independently of merchant-key cleanup so that
improving the merchant algorithm never changes stored fingerprints.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date
from decimal import Decimal

from .normalizers import format_amount

DEFAULT_ACCOUNT = "default"


def normalize_description(description: str) -> str:
    """Casefold and single-space a description for fingerprinting."""

    return " ".join(description.split()).casefold()


def compute_fingerprint(
    *,
    posted_date: str | date,
    amount: Decimal,
    description: str,
    account_id: str | None = None,
) -> str:
    """Compute a 64-character lowercase hex fingerprint.

    Fields used: date (YYYY-MM-DD), amount (signed, 2dp string), description
    (whitespace-collapsed, casefolded), account (``"default"`` when absent).
    The payload is serialized as sorted-key JSON so the digest does not depend
    on dict ordering.
    """

    iso = posted_date.isoformat() if isinstance(posted_date, date) else posted_date
    payload = {
        "account": (account_id or "").strip() or DEFAULT_ACCOUNT,
        "amount": format_amount(amount),
        "date": iso,
        "description": normalize_description(description),
    }
    blob = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


__all__ = ["DEFAULT_ACCOUNT", "normalize_description", "compute_fingerprint"]
