"""Normalization functions for construction-feed ingestion.

Cells arrive loosely typed: strings from CSV exports, ints/floats/datetimes
from Excel workbooks.  Every function here accepts any of those (or None)
and returns a canonical scalar or None.  None of them raise on bad input.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

# Values pandas / Excel exports write for "no value".
_SENTINELS = frozenset({"nat", "nan", "none", "null", "n/a", "0000-00-00", "0000-00-00 00:00:00"})

# Excel serial 25569 == 1970-01-01.
_EXCEL_EPOCH_OFFSET = 25569
_EXCEL_SERIAL_MAX = 2958465  # 9999-12-31

_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%d-%b-%y",
)


# ---------------------------------------------------------------------------
# Rule 1: trim / clean_string
# ---------------------------------------------------------------------------

def trim(value: Any) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None.

    Non-string scalars are coerced with str() first.
    """
    if value is None:
        return None
    v = value.strip() if isinstance(value, str) else str(value).strip()
    return v if v else None


def clean_string(value: Any) -> str:
    """Trimmed string; None → ''."""
    return trim(value) or ""


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: Any) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


def normalize_key_part(value: Any) -> str:
    """Lowercase + trim with whitespace runs collapsed.  None → ''."""
    return (normalize_space(value) or "").lower()


# ---------------------------------------------------------------------------
# Rule 3: parse_money
# ---------------------------------------------------------------------------

_MONEY_STRIP = re.compile(r"[$€£,\s]")
_MONEY_RANGE = re.compile(r"^(-?\d+(?:\.\d+)?)[-–](-?\d+(?:\.\d+)?)$")


def parse_money(value: Any) -> Decimal | None:
    """Parse a money cell into a Decimal.

    '$ 4,500,000' → Decimal('4500000').  A range such as
    '$ 4,500,000 - $ 5,000,000' yields the upper bound: valuations are
    estimated high.  Anything non-numeric → None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            d = Decimal(str(value))
        except InvalidOperation:
            return None
        return d if d.is_finite() else None

    v = trim(value)
    if v is None or v.lower() in _SENTINELS:
        return None
    cleaned = _MONEY_STRIP.sub("", v)
    if not cleaned:
        return None

    m = _MONEY_RANGE.match(cleaned)
    if m:
        cleaned = m.group(2)
    try:
        d = Decimal(cleaned)
    except InvalidOperation:
        return None
    return d if d.is_finite() else None


# ---------------------------------------------------------------------------
# Rule 4: parse_date
# ---------------------------------------------------------------------------

def _from_excel_serial(serial: float) -> date | None:
    if not (0 < serial <= _EXCEL_SERIAL_MAX):
        return None
    epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (epoch + timedelta(days=int(serial) - _EXCEL_EPOCH_OFFSET)).date()


def parse_date(value: Any) -> date | None:
    """Parse a date cell.

    Accepts, first match wins:
      - date / datetime objects (openpyxl hands these over directly)
      - Excel serial numbers, as numbers or all-digit strings
      - 'YYYY-MM-DD' with an optional ' HH:MM:SS' or 'THH:MM:SS' suffix
      - 'MM/DD/YYYY'
      - 'DD-Mon-YY'  e.g. '05-Mar-25'
    Sentinels ('NaT', 'nan', '') and anything else → None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return _from_excel_serial(value)

    v = trim(value)
    if v is None or v.lower() in _SENTINELS:
        return None

    if re.fullmatch(r"\d+(?:\.\d+)?", v):
        return _from_excel_serial(float(v))

    candidate = v.replace("T", " ", 1) if re.match(r"^\d{4}-\d{2}-\d{2}T", v) else v
    # Drop fractional seconds / tz suffixes from ISO timestamps.
    candidate = re.sub(r"^(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}).*$", r"\1", candidate)
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue
    return None


# ---------------------------------------------------------------------------
# Rule 5: normalize_category
# ---------------------------------------------------------------------------

DEFAULT_CATEGORY = "commercial"

# Ordered: the first bucket with a matching keyword wins.
_CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("industrial", ("industrial", "warehouse", "manufacturing", "plant",
                    "water", "sewer", "utility", "utilities", "power", "energy")),
    ("residential", ("residential", "housing", "apartment", "condo", "single family",
                     "multi-family", "multifamily", "dwelling")),
    ("equipment", ("equipment", "machinery")),
    ("commercial", ("commercial", "office", "retail", "school", "university",
                    "college", "hospital", "medical", "hotel", "restaurant")),
)


def normalize_category(value: Any) -> str:
    """Map free-text project type onto the category enum.

    Keyword containment, case-insensitive; unmatched or blank → 'commercial'.
    """
    v = normalize_key_part(value)
    if not v:
        return DEFAULT_CATEGORY
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(k in v for k in keywords):
            return category
    return DEFAULT_CATEGORY


# ---------------------------------------------------------------------------
# Rule 6: normalize_status_hint
# ---------------------------------------------------------------------------

# Checked in order; the first bucket with a keyword at a word start wins.
# Pre-construction phrases go first so "construction" does not claim them.
_STATUS_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("planning", ("pre-construction", "preconstruction", "new construction", "new project")),
    ("completed", ("complete", "finished", "done", "closed out")),
    ("pending", ("pending", "review", "approval", "on hold", "deferred")),
    ("active", ("active", "construction", "building", "under way", "underway",
                "renovation", "addition", "alteration", "remodel", "started")),
    ("planning", ("planning", "design", "permit", "pre-bid",
                  "bidding", "proposed", "conceptual")),
)
_STATUS_PATTERNS = tuple(
    (status, re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + ")"))
    for status, keywords in _STATUS_KEYWORDS
)


def normalize_status_hint(value: Any) -> str | None:
    """Map free-text status or work type onto a status hint, or None."""
    v = normalize_key_part(value)
    if not v:
        return None
    for status, pattern in _STATUS_PATTERNS:
        if pattern.search(v):
            return status
    return None


# ---------------------------------------------------------------------------
# Rule 7: company names (sales-activity feed)
# ---------------------------------------------------------------------------

_CORP_SUFFIX = re.compile(r"\b(INC|LLC|CORP|CO|LTD)\.?$", re.IGNORECASE)


def normalize_company_name(value: Any) -> str | None:
    """Uppercase alnum company key: '(ANVIL)' → 'ANVIL', 'Acme Co.' → 'ACME'.

    Parenthesised asides in the middle of a name are dropped, as are trailing
    corporate suffixes.
    """
    v = trim(value)
    if v is None:
        return None
    v = re.sub(r"^\(([^)]+)\)$", r"\1", v)
    v = re.sub(r"\s*\([^)]+\)\s*", " ", v)
    v = v.upper().strip()
    v = _CORP_SUFFIX.sub("", v)
    v = re.sub(r"[^\w\s]", "", v)
    v = re.sub(r"\s+", " ", v).strip()
    return v if v else None
