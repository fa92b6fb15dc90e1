"""salestrack_etl.keys

Identity for feed rows: the feed-assigned external id, and the derived
dedupe key used when no external id matches.
"""

from __future__ import annotations

from typing import Any

from salestrack_etl.feed_profile import pick
from salestrack_etl.normalize import clean_string, normalize_key_part, trim


def build_full_address(
    street: Any,
    city: Any = None,
    state: Any = None,
    zip_code: Any = None,
) -> str:
    """Join the non-empty address parts with ', '."""
    parts = [trim(p) for p in (street, city, state, zip_code)]
    return ", ".join(p for p in parts if p)


def build_dedupe_key(name: Any, address: Any, county: Any) -> str:
    """name|address|county, each lowercased and trimmed.

    Two rows with the same key are the same real-world project.
    """
    return "|".join(normalize_key_part(p) for p in (name, address, county))


def extract_external_id(row: dict[str, Any], columns: dict[str, list[str]]) -> str | None:
    """Feed identifier from the profile's id columns; blank → None.

    Excel hands numeric ids over as floats; 1234.0 becomes '1234'.
    """
    raw = pick(row, columns, "external_id")
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    return clean_string(raw) or None
