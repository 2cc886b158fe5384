"""Merchant-name cleanup and merchant keys.

A merchant key is a coarse identifier for the counterparty of a transaction,
derived only from its description. The same merchant should produce the same
key across the many shapes banks print it in (``AMAZON.COM*TM0QZ6HK3``,
``AMAZON MKTPL*1A2B3``, ``AMAZON MARK PLACE``); different merchants should
not collide. Both properties are best-effort.

Everything here is pure: no I/O, no configuration, and the same description
always yields the same key. Keys are never empty.
"""

from __future__ import annotations

import re

_MAX_KEY_LEN = 100
FALLBACK_KEY = "UNKNOWN_MERCHANT"

# ---------------------------------------------------------------------------
# Noise patterns (applied in order to an upper-cased description)
# ---------------------------------------------------------------------------

_TYPE_PREFIX_RE = re.compile(
    r"^(?:(?:PURCHASE|PAYMENT|DEBIT|CREDIT|ACH|CHECKCARD|CHECK|TRANSFER|POS|ONLINE"
    r"|RECURRING|CARD|VISA|DBT|PREAUTHORIZED|AUTHORIZED)\s+)+"
)

# Payment processors that print "<PROCESSOR> *<MERCHANT>".
_PROCESSOR_PREFIX_RE = re.compile(
    r"^(?:SQ|SQU|TST|PAYPAL|PP|SP|DD|IC|PY|GOOGLE|APL|CKO|BT|FS)\s*\*\s*"
)

# "*TM0QZ6HK3", "* 1A2B3": asterisk followed by a code containing a digit.
_STAR_CODE_RE = re.compile(r"\*\s*(?=[A-Z]*\d)[A-Z0-9]{3,}")

# Long mixed letter/digit tokens such as "EBHM6M1B" or "3ZAD0U74GLQ".
_REFERENCE_TOKEN_RE = re.compile(r"\b(?=[A-Z]*\d)(?=\d*[A-Z])[A-Z0-9]{8,}\b")

_STORE_NUMBER_RE = re.compile(
    r"(?:#\s*|\bNO\.?\s*|\b(?:STORE|STR|STE|UNIT|LOC|LOCATION)\s*#?\s*)\d+\b"
)
_PHONE_RE = re.compile(r"\b\d{3}[-.]\d{3}[-.]\d{4}\b")
_DATE_RE = re.compile(r"\b\d{1,2}[/-]\d{1,2}(?:[/-]\d{2,4})?\b")
_ZIP_RE = re.compile(r"\b[A-Z]{2}\s*\d{5}(?:-\d{4})?\b")
_LONG_NUMBER_RE = re.compile(r"\b\d{4,}\b")
_DOMAIN_RE = re.compile(r"\.(?:COM|NET|ORG|IO|CO)\b")
_ENTITY_RE = re.compile(r"\b(?:INC|LLC|LTD|CORP|CO)\b\.?")

_VARIATIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bMARK\s+PLACE\b"), "MARKETPLACE"),
    (re.compile(r"\b(?:MKTPL|MKTPLACE|MKTP)\b"), "MARKETPLACE"),
    (re.compile(r"\bAMZN\b"), "AMAZON"),
    (re.compile(r"\bSBUX\b"), "STARBUCKS"),
    (re.compile(r"\bPYMT\b"), "PAYMENT"),
    (re.compile(r"\bPMTS\b"), "PAYMENTS"),
    (re.compile(r"\bWAL\s*-?\s*MART\b"), "WALMART"),
)

_NOISE_WORDS_RE = re.compile(
    r"\b(?:POS|ONLINE|RECURRING|PAYMENT|PURCHASE|DEBIT|CREDIT|ACH|CHECKCARD|THE|AND|OF)\b"
)

_US_STATES = frozenset(
    "AL AK AZ AR CA CO CT DE DC FL GA HI ID IL IN IA KS KY LA ME MD MA MI MN MS MO MT "
    "NE NV NH NJ NM NY NC ND OH OK OR PA RI SC SD TN TX UT VT VA WA WV WI WY".split()
)

# Known merchants whose descriptions vary too much for the generic rules.
# Checked in order; the first hit replaces the whole name.
_KNOWN_MERCHANTS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bAMAZON"), "AMAZON"),
    (re.compile(r"\b(?:PAYPAL|PYPL)\b"), "PAYPAL"),
    (re.compile(r"\bSTARBUCKS\b"), "STARBUCKS"),
    (re.compile(r"\b(?:WALMART|WMT|WM SUPERCENTER)\b"), "WALMART"),
    (re.compile(r"\bTARGET\b"), "TARGET"),
    (re.compile(r"\bUBER\s*EATS\b"), "UBER EATS"),
    (re.compile(r"\bUBER\b"), "UBER"),
    (re.compile(r"\bLYFT\b"), "LYFT"),
    (re.compile(r"\b(?:DOORDASH|DOOR DASH)\b"), "DOORDASH"),
    (re.compile(r"\bCASH\s*APP\b"), "CASH APP"),
    (re.compile(r"\bVENMO\b"), "VENMO"),
    (re.compile(r"\bSPOTIFY\b"), "SPOTIFY"),
    (re.compile(r"\bNETFLIX\b"), "NETFLIX"),
    (re.compile(r"\bAPPLE\b"), "APPLE"),
    (re.compile(r"\b(?:GOOGLE|GOOG)\b"), "GOOGLE"),
    (re.compile(r"\b(?:BATHANDBODYWORKS|BATH AND BODY WORKS|BATH BODY WORKS)\b"), "BATH BODY WORKS"),
)


def _collapse(s: str) -> str:
    return " ".join(s.split())


def _strip_trailing_state(s: str) -> str:
    tokens = s.split()
    if len(tokens) >= 2 and tokens[-1] in _US_STATES:
        tokens = tokens[:-1]
    return " ".join(tokens)


def _fold_known(name: str) -> str:
    for pattern, canonical in _KNOWN_MERCHANTS:
        if pattern.search(name):
            return canonical
    return name


def clean_merchant_name(description: str) -> str:
    """Reduce a raw description to an upper-case merchant name.

    Returns an empty string when nothing identifying survives (for example a
    purely numeric description); :func:`generate_merchant_key` handles that
    case.
    """

    s = _collapse(description.replace("_", " ").upper())

    # Known merchants first: their noise often hides the name from later steps.
    for pattern, replacement in _VARIATIONS:
        s = pattern.sub(replacement, s)
    known = _fold_known(s)
    if known != s and not _PROCESSOR_PREFIX_RE.match(s):
        return known

    s = _TYPE_PREFIX_RE.sub("", s)
    rest = _PROCESSOR_PREFIX_RE.sub("", s, count=1)
    if rest.strip():
        s = rest

    s = _STAR_CODE_RE.sub(" ", s)
    s = s.replace("*", " ")
    s = _REFERENCE_TOKEN_RE.sub(" ", s)
    s = _STORE_NUMBER_RE.sub(" ", s)
    s = s.replace("#", " ")
    s = _PHONE_RE.sub(" ", s)
    s = _DATE_RE.sub(" ", s)
    s = _ZIP_RE.sub(" ", s)
    s = _LONG_NUMBER_RE.sub(" ", s)
    s = _DOMAIN_RE.sub(" ", s)
    s = _ENTITY_RE.sub(" ", s)
    s = _NOISE_WORDS_RE.sub(" ", s)

    s = s.replace("'", "")
    s = re.sub(r"[^A-Z0-9& ]", " ", s)
    s = _strip_trailing_state(_collapse(s))

    return _fold_known(s) if s else ""


def _truncate_words(words: list[str]) -> list[str]:
    out: list[str] = []
    length = 0
    for w in words:
        extra = len(w) + (1 if out else 0)
        if length + extra > _MAX_KEY_LEN:
            break
        out.append(w)
        length += extra
    if not out and words:
        out = [words[0][:_MAX_KEY_LEN]]
    return out


def _to_key(name: str, *, strip_state: bool) -> str:
    words = _truncate_words(re.sub(r"[^A-Z0-9 ]", "", name.upper()).split())
    joined = " ".join(words)
    if strip_state:
        joined = _strip_trailing_state(joined)
    return "_".join(joined.split())


def generate_merchant_key(description: str) -> str:
    """Return the merchant key for ``description`` (``A-Z0-9`` joined by ``_``).

    When cleanup strips everything, the description's own alphanumerics are
    used instead so short or numeric-only descriptions pass through close to
    unchanged; :data:`FALLBACK_KEY` is the last resort. Applying the function
    to its own output returns that output.
    """

    key = _to_key(clean_merchant_name(description), strip_state=True)
    if key:
        return key
    key = _to_key(re.sub(r"[^A-Za-z0-9]", " ", description), strip_state=False)
    return key or FALLBACK_KEY


def extract_merchant_display_name(description: str) -> str:
    """Human-friendly merchant label: at most five title-cased words."""

    words = clean_merchant_name(description).split()
    if not words:
        return "Unknown"
    return " ".join(w[:1] + w[1:].lower() for w in words[:5])


__all__ = [
    "FALLBACK_KEY",
    "clean_merchant_name",
    "generate_merchant_key",
    "extract_merchant_display_name",
]
