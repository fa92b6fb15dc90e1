"""salestrack_etl.import_runner

Reconcile one batch of feed rows against the job registry.

Per row, in file order:
  1. normalize cells into a FeedRecord (typed values, address, keys)
  2. skip rows with no usable name or outside the profile's jurisdiction
  3. match by external id, then dedupe key
  4. no match  → build a new job (status inferred, hint as seed), create
     it unless dry-run, index it                              → imported
  5. match     → diff against the stored job honouring locked_fields,
     re-infer status when writable, finalize the patch:
       patch non-empty                                      → updated
       only locked fields differ                            → skipped (locked)
       nothing differs                                      → unchanged
  6. any exception is recorded as "Row N: message"; the batch continues.

A dry run takes exactly the same path and keeps its own creates and
patches in the in-memory index (created jobs get provisional ids), so
counts match a live run on the same store state.  It never calls
store.create or store.update.

Usage:
    store = PostgresJobStore(conn)
    table = read_rows(Path("dodge_export.xlsx"))
    result = run_job_import(store, table, profile, owner_id="u1", dry_run=True)
    print(result.summary_message())
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

from salestrack_etl.dedupe_index import DedupeIndex
from salestrack_etl.feed_profile import FeedProfile, pick
from salestrack_etl.field_locks import (
    can_write,
    compute_merge,
    finalize_patch,
    merge_status,
)
from salestrack_etl.keys import build_dedupe_key, build_full_address, extract_external_id
from salestrack_etl.models import FeedRecord, Job
from salestrack_etl.normalize import (
    DEFAULT_CATEGORY,
    normalize_category,
    normalize_space,
    normalize_status_hint,
    parse_date,
    parse_money,
    trim,
)
from salestrack_etl.row_source import FeedTable, check_required_columns
from salestrack_etl.shared import RejectWriter
from salestrack_etl.status import infer_status
from salestrack_etl.store import RecordStore

log = logging.getLogger(__name__)

# Free-text fields copied through trimmed.
_TEXT_FIELDS = (
    "description",
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

BUCKETS = ("imported", "updated", "unchanged", "skipped")


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class ImportResult:
    dry_run: bool = False
    rows_read: int = 0
    imported: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    # Subset of skipped: matched rows whose only differences were locked.
    skipped_locked: int = 0
    skip_reasons: Counter = field(default_factory=Counter)
    errors: list[str] = field(default_factory=list)
    details: dict[str, list[dict[str, Any]]] = field(
        default_factory=lambda: {b: [] for b in BUCKETS}
    )

    def record(self, bucket: str, entry: dict[str, Any]) -> None:
        setattr(self, bucket, getattr(self, bucket) + 1)
        self.details[bucket].append(entry)

    def to_dict(self, include_details: bool = False) -> dict[str, Any]:
        out: dict[str, Any] = {
            "imported": self.imported,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "dry_run": self.dry_run,
            "rows_read": self.rows_read,
            "skip_reasons": dict(self.skip_reasons),
        }
        if include_details:
            out["details"] = {b: list(v) for b, v in self.details.items()}
        return out

    def counts(self) -> dict[str, int]:
        """Counts only: the part of to_dict() a dry run must reproduce."""
        return {
            "imported": self.imported,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "errors": len(self.errors),
        }

    def summary_message(self) -> str:
        if self.dry_run:
            return (
                f"Dry-run completed: {self.imported} would be imported, "
                f"{self.updated} would be updated, {self.unchanged} unchanged, "
                f"{self.skipped} skipped"
            )
        return (
            f"Import completed: {self.imported} new jobs, {self.updated} updated, "
            f"{self.unchanged} unchanged, {self.skipped} skipped"
        )


# ---------------------------------------------------------------------------
# Row normalization
# ---------------------------------------------------------------------------

def _text(value: Any) -> str | None:
    # Excel hands whole numbers (bid numbers, phone numbers) over as floats.
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return normalize_space(value)


def normalize_row(
    row: dict[str, Any],
    columns: dict[str, list[str]],
    row_index: int,
) -> FeedRecord:
    """Turn one raw feed row into a FeedRecord.

    Values that the feed leaves blank come out as None, which the merge
    treats as "feed silent".
    """
    def get(name: str) -> Any:
        return pick(row, columns, name)

    name = _text(get("name"))
    state = _text(get("state"))
    address = build_full_address(get("street"), get("city"), state, _text(get("zip")))
    county = _text(get("county"))
    raw_type = get("type")

    values: dict[str, Any] = {
        "name": name,
        "address": address or None,
        "county": county,
        "type": normalize_category(raw_type) if trim(raw_type) else None,
        "project_value": parse_money(get("project_value")),
        "start_date": parse_date(get("start_date")),
        "end_date": parse_date(get("end_date")),
    }
    for f in _TEXT_FIELDS:
        values[f] = _text(get(f))

    hint = normalize_status_hint(get("status")) or normalize_status_hint(get("work_type"))
    return FeedRecord(
        row_index=row_index,
        values=values,
        external_id=extract_external_id(row, columns),
        dedupe_key=build_dedupe_key(name, address, county),
        status_hint=hint,
        state=state,
    )


def build_job(rec: FeedRecord, owner_id: str | None, today: date, run_at: datetime) -> Job:
    """New job from a feed record; status inferred with the feed hint as seed."""
    v = rec.values
    job = Job(
        name=v["name"],
        address=v.get("address") or "",
        user_id=owner_id,
        external_id=rec.external_id,
        dedupe_key=rec.dedupe_key,
        type=v.get("type") or DEFAULT_CATEGORY,
        status=infer_status(v.get("start_date"), v.get("end_date"), rec.status_hint, today),
        last_imported_at=run_at,
    )
    for key, value in v.items():
        if key in ("name", "address", "type") or value is None:
            continue
        setattr(job, key, value)
    return job


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

def _detail(rec: FeedRecord, job: Job, **extra: Any) -> dict[str, Any]:
    return {
        "row": rec.row_index,
        "id": job.id,
        "external_id": job.external_id,
        "name": job.name,
        "status": job.status,
        **extra,
    }


def run_job_import(
    store: RecordStore,
    table: FeedTable,
    profile: FeedProfile,
    owner_id: str | None = None,
    dry_run: bool = False,
    today: date | None = None,
    run_at: datetime | None = None,
    rejects: RejectWriter | None = None,
) -> ImportResult:
    """Reconcile a batch of feed rows against the store.

    Raises:
        FeedParseError: the table lacks a required column (nothing is read
            or written in that case).
    """
    check_required_columns(table.headers, profile)
    today = today or date.today()
    run_at = run_at or datetime.now(timezone.utc)
    columns = profile.resolve_columns(table.headers)

    result = ImportResult(dry_run=dry_run)
    index = DedupeIndex.build(store.list_owned(owner_id))
    provisional = 0

    for i, raw in enumerate(table.rows):
        row_num = i + 2  # header is row 1
        result.rows_read += 1
        try:
            rec = normalize_row(raw, columns, row_num)

            reason = None
            if not rec.name:
                reason = "missing_name"
            elif not profile.in_jurisdiction(rec.state):
                reason = "out_of_jurisdiction"
            if reason:
                result.skip_reasons[reason] += 1
                result.record("skipped", {"row": row_num, "reason": reason, "name": rec.name})
                if rejects is not None:
                    rejects.write(raw, reason)
                continue

            job = index.match(rec.external_id, rec.dedupe_key)

            if job is None:
                job = build_job(rec, owner_id, today, run_at)
                if dry_run:
                    provisional += 1
                    job.id = f"dry-run-{provisional}"
                else:
                    with store.savepoint():
                        job = store.create(job)
                index.add(job)
                result.record("imported", _detail(rec, job))
                log.debug("row %d: imported %s", row_num, job.dedupe_key)
                continue

            merge = compute_merge(job, rec.values)
            if can_write(job, "status"):
                start = merge.patch.get("start_date", job.start_date)
                end = merge.patch.get("end_date", job.end_date)
                inferred = infer_status(start, end, rec.status_hint, today, current=job.status)
                merge_status(job, inferred, merge)
            patch = finalize_patch(job, merge, rec.external_id, run_at)

            if patch:
                if not dry_run:
                    with store.savepoint():
                        store.update(job.id, patch)
                job.apply(patch)
                if "dedupe_key" in patch or "external_id" in patch:
                    index.add(job)
                result.record(
                    "updated",
                    _detail(rec, job, changed=list(merge.changed), locked=list(merge.locked)),
                )
                log.debug("row %d: updated %s %s", row_num, job.id, merge.changed)
            elif merge.locked:
                result.skipped_locked += 1
                result.skip_reasons["locked"] += 1
                result.record("skipped", _detail(rec, job, reason="locked", locked=list(merge.locked)))
                log.debug("row %d: skipped, locked %s", row_num, merge.locked)
            else:
                result.record("unchanged", _detail(rec, job))

        except Exception as exc:
            log.warning("row %d failed: %s", row_num, exc)
            result.errors.append(f"Row {row_num}: {exc}")

    log.info(
        "job import %s: %s",
        "dry-run" if dry_run else "live",
        result.counts(),
    )
    return result


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------

def build_import_report(result: ImportResult, profile: FeedProfile | None = None) -> str:
    lines = [
        "=" * 60,
        "Job Import Report",
        f"  dry_run: {result.dry_run}",
    ]
    if profile is not None:
        lines.append(f"  feed: {profile.feed} {profile.version} ({profile.yaml_hash[:12]})")
    lines += [
        "=" * 60,
        f"  rows read:               {result.rows_read}",
        f"  imported:                {result.imported}",
        f"  updated:                 {result.updated}",
        f"  unchanged:               {result.unchanged}",
        f"  skipped:                 {result.skipped}",
    ]
    for reason, n in sorted(result.skip_reasons.items()):
        lines.append(f"    {reason + ':':<22} {n}")
    lines.append(f"Row errors:                {len(result.errors)}")
    if result.errors:
        lines.append(f"\nErrors ({len(result.errors)}):")
        for e in result.errors[:20]:
            lines.append(f"  {e}")
        if len(result.errors) > 20:
            lines.append(f"  ... and {len(result.errors) - 20} more")
    lines.append(result.summary_message())
    lines.append("=" * 60)
    return "\n".join(lines)
