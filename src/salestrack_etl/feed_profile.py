"""salestrack_etl.feed_profile

YAML feed profiles: which spreadsheet headers feed which logical field.

Export versions of the same feed rename columns ("Project Value" in one
export, "Valuation" or "High Value" in the next).  A profile lists, per
logical field, the accepted header aliases in priority order; the first
alias present in the file with a non-blank cell wins for each row.

Usage:
    from pathlib import Path
    from salestrack_etl.feed_profile import load_feed_profile

    profile = load_feed_profile(Path("config/feeds/dodge.yml"))
    columns = profile.resolve_columns(headers)
    value = pick(row, columns, "project_value")
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from salestrack_etl.normalize import trim

REQUIRED_YAML_KEYS = frozenset({"feed", "version", "required_columns", "columns"})

_DEFAULT_PROFILES_DIR = Path(__file__).parent.parent.parent / "config" / "feeds"


def default_profile_path(feed: str) -> Path:
    return _DEFAULT_PROFILES_DIR / f"{feed}.yml"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class FeedProfileValidationError(ValueError):
    """Raised when a YAML feed profile fails schema validation."""


# ---------------------------------------------------------------------------
# FeedProfile dataclass
# ---------------------------------------------------------------------------

@dataclass
class FeedProfile:
    """Parsed, validated column-alias profile loaded from a YAML file."""

    feed: str
    version: str
    yaml_hash: str
    columns: dict[str, list[str]]
    required_columns: list[str] = field(default_factory=list)
    external_id_columns: list[str] = field(default_factory=list)
    jurisdiction_states: frozenset[str] = frozenset()
    raw_yaml: str = field(repr=False, default="")

    def resolve_columns(self, headers: list[str]) -> dict[str, list[str]]:
        """Map each logical field to the headers present in this file.

        Matching is exact after trimming, then case-insensitive.  Order
        follows the profile's alias order.  The pseudo-field 'external_id'
        is resolved from external_id_columns.
        """
        present = [h.strip() for h in headers if h is not None]
        exact = set(present)
        folded: dict[str, str] = {}
        for h in present:
            folded.setdefault(h.casefold(), h)

        def _match(aliases: list[str]) -> list[str]:
            out: list[str] = []
            for alias in aliases:
                hit = alias if alias in exact else folded.get(alias.casefold())
                if hit is not None and hit not in out:
                    out.append(hit)
            return out

        resolved = {name: _match(aliases) for name, aliases in self.columns.items()}
        resolved["external_id"] = _match(self.external_id_columns)
        return resolved

    def missing_required(self, headers: list[str]) -> list[str]:
        """Logical required fields with no alias present in headers."""
        resolved = self.resolve_columns(headers)
        return [f for f in self.required_columns if not resolved.get(f)]

    def in_jurisdiction(self, state: str | None) -> bool:
        """True when the state passes the pre-filter.

        An empty allow-list accepts everything; a row without a state is
        accepted (the feed did not say it is out of area).
        """
        if not self.jurisdiction_states or state is None:
            return True
        return state.strip().upper() in self.jurisdiction_states


def pick(row: dict[str, Any], columns: dict[str, list[str]], name: str) -> Any:
    """Return the first non-blank cell among the field's resolved headers."""
    for header in columns.get(name, ()):
        value = row.get(header)
        if value is None:
            continue
        if isinstance(value, str) and trim(value) is None:
            continue
        return value
    return None


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_feed_profile(yaml_path: Path) -> FeedProfile:
    """Load, validate, and return a FeedProfile from a YAML file.

    Raises:
        FeedProfileValidationError: If any required field is missing or invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    data: dict[str, Any] = yaml.safe_load(raw)
    validate_feed_profile(data)
    jurisdiction = data.get("jurisdiction") or {}
    return FeedProfile(
        feed=str(data["feed"]),
        version=str(data["version"]),
        yaml_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest(),
        columns={k: [str(a) for a in v] for k, v in data["columns"].items()},
        required_columns=list(data.get("required_columns") or []),
        external_id_columns=[str(a) for a in data.get("external_id_columns") or []],
        jurisdiction_states=frozenset(
            str(s).strip().upper() for s in jurisdiction.get("states") or []
        ),
        raw_yaml=raw,
    )


def validate_feed_profile(data: Any) -> None:
    """Raise FeedProfileValidationError if data does not match the schema.

    Validates:
      - Required top-level keys present
      - columns is a non-empty mapping of field → non-empty alias list
      - every required column is a declared field
      - jurisdiction.states, when given, is a list
    """
    if not isinstance(data, dict):
        raise FeedProfileValidationError("YAML root must be a mapping.")

    missing_keys = REQUIRED_YAML_KEYS - set(data.keys())
    if missing_keys:
        raise FeedProfileValidationError(f"Missing required YAML keys: {sorted(missing_keys)}")

    columns = data.get("columns")
    if not isinstance(columns, dict) or not columns:
        raise FeedProfileValidationError("'columns' must be a non-empty mapping.")
    for name, aliases in columns.items():
        if not isinstance(aliases, list) or not aliases:
            raise FeedProfileValidationError(
                f"Column '{name}' must list at least one header alias."
            )

    required = data.get("required_columns") or []
    if not isinstance(required, list):
        raise FeedProfileValidationError("'required_columns' must be a list.")
    undeclared = [c for c in required if c not in columns]
    if undeclared:
        raise FeedProfileValidationError(
            f"Required columns not declared under 'columns': {undeclared}"
        )

    ext = data.get("external_id_columns")
    if ext is not None and not isinstance(ext, list):
        raise FeedProfileValidationError("'external_id_columns' must be a list.")

    jurisdiction = data.get("jurisdiction")
    if jurisdiction is not None:
        if not isinstance(jurisdiction, dict):
            raise FeedProfileValidationError("'jurisdiction' must be a mapping.")
        states = jurisdiction.get("states")
        if states is not None and not isinstance(states, list):
            raise FeedProfileValidationError("'jurisdiction.states' must be a list.")
