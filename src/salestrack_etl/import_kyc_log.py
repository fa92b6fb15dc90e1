"""salestrack_etl.import_kyc_log

Import the master KYC sales log: one row per customer touch, with columns
Date, Type, Customer, Contact, Role, Notes.

Each row resolves (or creates) a company by normalized name and a contact
by company + name, then records one interaction.  After the batch, every
touched contact and company gets its most recent interaction rolled up
into last_interaction_at / last_interaction_type.

Dry run: lookups against the store still happen, nothing is written, and
companies/contacts that would be created get provisional 'dry-run-' ids
so repeats within the file are counted once.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Any

from salestrack_etl.feed_profile import FeedProfile, pick
from salestrack_etl.normalize import clean_string, normalize_company_name, parse_date
from salestrack_etl.row_source import FeedTable, check_required_columns
from salestrack_etl.shared import RejectWriter
from salestrack_etl.store import KycStore

log = logging.getLogger(__name__)

PROVISIONAL_PREFIX = "dry-run-"

# Placeholder contact names; the Role column stands in for them.
GENERIC_CONTACTS = frozenset({"front desk", "?", "no", "unknown", "n/a", ""})

# Next "Name:" or "First Last:" segment inside a contact cell.
_NEXT_CONTACT = re.compile(r"\s+(?=[A-Z][\w.'-]*(?:\s+[A-Z][\w.'-]*)?:)")
_LEADING_PARENS = re.compile(r"^\s*\(([^)]+)\)\s*")


@dataclass
class KycImportResult:
    dry_run: bool = False
    rows_read: int = 0
    companies_created: int = 0
    contacts_created: int = 0
    interactions_created: int = 0
    duplicates_skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows_read": self.rows_read,
            "companies_created": self.companies_created,
            "contacts_created": self.contacts_created,
            "interactions_created": self.interactions_created,
            "duplicates_skipped": self.duplicates_skipped,
            "errors": list(self.errors),
            "dry_run": self.dry_run,
        }


# ---------------------------------------------------------------------------
# Cell parsing
# ---------------------------------------------------------------------------

def map_interaction_type(value: Any) -> str:
    t = clean_string(value).lower()
    if t in ("call", "phone call"):
        return "call"
    if t == "in person":
        return "site_visit"
    if t == "email":
        return "email"
    if t == "text":
        return "text"
    return "note"


def parse_contact(contact: Any, role: Any) -> tuple[str, str]:
    """Return (full_name, role) from the Contact and Role cells.

    'Gloria: Front Desk Dannelle Graham: Purchasing' → ('Gloria', 'Front Desk').
    Placeholder contacts fall back to the role, then 'Unknown'.
    """
    c = clean_string(contact)
    r = clean_string(role)
    if c.lower() in GENERIC_CONTACTS:
        return (r or "Unknown", r or "Unknown")

    colon = c.find(":")
    if colon > 0:
        name = c[:colon].strip()
        after = c[colon + 1:].strip()
        first_role = _NEXT_CONTACT.split(after, maxsplit=1)[0].strip()
        return (name, first_role or r or "Unknown")

    return (c, r or "Unknown")


def name_key(full_name: str) -> str:
    return re.sub(r"\s", "", full_name.lower())


def contact_key(full_name: str, company_normalized: str) -> str:
    return f"{company_normalized}|{name_key(full_name)}"


def company_display_name(value: Any) -> str:
    """'(ANVIL) Builders' → 'ANVIL Builders'."""
    return _LEADING_PARENS.sub(r"\1", clean_string(value), count=1).strip()


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

def run_kyc_import(
    store: KycStore,
    table: FeedTable,
    profile: FeedProfile,
    owner_id: str | None = None,
    dry_run: bool = False,
    run_at: datetime | None = None,
    rejects: RejectWriter | None = None,
) -> KycImportResult:
    check_required_columns(table.headers, profile)
    run_at = run_at or datetime.now(timezone.utc)
    columns = profile.resolve_columns(table.headers)
    result = KycImportResult(dry_run=dry_run)

    company_ids: dict[str, str] = {}   # normalized name → id
    contact_ids: dict[str, str] = {}   # contact_key → id
    last_by_contact: dict[str, tuple[datetime, str]] = {}
    last_by_company: dict[str, tuple[datetime, str]] = {}

    for i, row in enumerate(table.rows):
        row_num = i + 2
        result.rows_read += 1
        try:
            company_name = company_display_name(pick(row, columns, "customer"))
            normalized = normalize_company_name(company_name)
            if not normalized:
                result.duplicates_skipped += 1
                if rejects is not None:
                    rejects.write(row, "missing_customer")
                continue

            full_name, role = parse_contact(
                pick(row, columns, "contact"), pick(row, columns, "role")
            )
            key = contact_key(full_name, normalized)
            itype = map_interaction_type(pick(row, columns, "type"))
            notes = clean_string(pick(row, columns, "notes")) or None
            day = parse_date(pick(row, columns, "date"))
            occurred_at = datetime.combine(day, time.min) if day else run_at

            new_company = new_contact = False
            with store.savepoint():
                company_id = company_ids.get(normalized)
                if company_id is None:
                    company_id = store.find_company_id(owner_id, normalized)
                if company_id is None:
                    new_company = True
                    if dry_run:
                        company_id = f"{PROVISIONAL_PREFIX}{normalized}"
                    else:
                        company_id = store.create_company(owner_id, company_name, normalized)

                contact_id = contact_ids.get(key)
                if contact_id is None and not company_id.startswith(PROVISIONAL_PREFIX):
                    contact_id = store.find_contact_id(owner_id, company_id, name_key(full_name))
                if contact_id is None:
                    new_contact = True
                    if dry_run:
                        contact_id = f"{PROVISIONAL_PREFIX}{key}"
                    else:
                        contact_id = store.create_contact(owner_id, company_id, full_name, role)

                if not dry_run:
                    store.create_interaction(owner_id, contact_id, company_id, itype, notes, occurred_at)

            # Only a row that made it through the savepoint is remembered.
            company_ids[normalized] = company_id
            contact_ids[key] = contact_id
            result.companies_created += new_company
            result.contacts_created += new_contact
            result.interactions_created += 1
            _keep_latest(last_by_contact, contact_id, occurred_at, itype)
            _keep_latest(last_by_company, company_id, occurred_at, itype)

        except Exception as exc:
            log.warning("row %d failed: %s", row_num, exc)
            result.errors.append(f"Row {row_num}: {exc}")

    if not dry_run:
        for contact_id, (at, itype) in last_by_contact.items():
            try:
                with store.savepoint():
                    store.touch_contact(contact_id, at, itype)
            except Exception as exc:
                log.warning("rollup for contact %s failed: %s", contact_id, exc)
                result.errors.append(f"Rollup contact {contact_id}: {exc}")
        for company_id, (at, itype) in last_by_company.items():
            try:
                with store.savepoint():
                    store.touch_company(company_id, at, itype)
            except Exception as exc:
                log.warning("rollup for company %s failed: %s", company_id, exc)
                result.errors.append(f"Rollup company {company_id}: {exc}")

    log.info("kyc import %s: %s", "dry-run" if dry_run else "live", result.to_dict())
    return result


def _keep_latest(
    latest: dict[str, tuple[datetime, str]],
    key: str,
    at: datetime,
    itype: str,
) -> None:
    prev = latest.get(key)
    if prev is None or _sortable(at) > _sortable(prev[0]):
        latest[key] = (at, itype)


def _sortable(dt: datetime) -> datetime:
    # Sheet dates are naive; the run-time fallback is aware.
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def build_kyc_report(result: KycImportResult) -> str:
    lines = [
        "=" * 60,
        "KYC Sales Log Import Report",
        f"  dry_run: {result.dry_run}",
        "=" * 60,
        f"  rows read:             {result.rows_read}",
        f"  companies created:     {result.companies_created}",
        f"  contacts created:      {result.contacts_created}",
        f"  interactions created:  {result.interactions_created}",
        f"  rows skipped:          {result.duplicates_skipped}",
        f"Row errors:              {len(result.errors)}",
    ]
    if result.errors:
        lines.append(f"\nErrors ({len(result.errors)}):")
        for e in result.errors[:20]:
            lines.append(f"  {e}")
        if len(result.errors) > 20:
            lines.append(f"  ... and {len(result.errors) - 20} more")
    lines.append("=" * 60)
    return "\n".join(lines)
