"""salestrack_etl.models

In-memory shapes shared by the import engine and the record store.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from typing import Any

JOB_STATUSES = ("planning", "active", "completed", "pending")
JOB_TYPES = ("commercial", "residential", "industrial", "equipment", "other", "office")

# Content fields a feed row may supply, in report order.  Identity and
# governance columns (id, external_id, dedupe_key, locked_fields,
# last_imported_at, user_id) are handled separately by the merge step.
IMPORT_FIELDS = (
    "name",
    "description",
    "address",
    "county",
    "type",
    "project_value",
    "start_date",
    "end_date",
    "contractor",
    "contractor_phone",
    "contractor_email",
    "contractor_contact",
    "owner",
    "owner_phone",
    "architect",
    "construction_manager",
    "phone",
    "email",
    "project_number",
    "project_url",
    "work_type",
    "delivery_system",
)

GOVERNANCE_FIELDS = frozenset({"locked_fields"})


@dataclass
class Job:
    name: str
    address: str = ""
    id: str | None = None
    user_id: str | None = None
    external_id: str | None = None
    dedupe_key: str | None = None
    description: str | None = None
    county: str | None = None
    type: str = "commercial"
    status: str = "planning"
    project_value: Decimal | None = None
    start_date: date | None = None
    end_date: date | None = None
    contractor: str | None = None
    contractor_phone: str | None = None
    contractor_email: str | None = None
    contractor_contact: str | None = None
    owner: str | None = None
    owner_phone: str | None = None
    architect: str | None = None
    construction_manager: str | None = None
    phone: str | None = None
    email: str | None = None
    project_number: str | None = None
    project_url: str | None = None
    work_type: str | None = None
    delivery_system: str | None = None
    locked_fields: set[str] = field(default_factory=set)
    last_imported_at: datetime | None = None

    def apply(self, patch: dict[str, Any]) -> None:
        """Apply a merge patch in place.  Lock state is not patchable."""
        bad = GOVERNANCE_FIELDS & patch.keys()
        if bad:
            raise ValueError(f"patch may not touch {sorted(bad)}")
        for key, value in patch.items():
            setattr(self, key, value)

    def to_dict(self) -> dict[str, Any]:
        d = {f.name: getattr(self, f.name) for f in fields(self)}
        d["locked_fields"] = sorted(self.locked_fields)
        return d


@dataclass
class FeedRecord:
    """One feed row after normalization, ready for matching."""

    row_index: int
    values: dict[str, Any]
    external_id: str | None
    dedupe_key: str
    status_hint: str | None = None
    state: str | None = None

    @property
    def name(self) -> str:
        return self.values.get("name") or ""
