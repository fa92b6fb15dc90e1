"""salestrack_etl.field_locks

Which fields an import may overwrite on an existing job.

A user editing a job locks the edited fields; from then on the feed may
still fill in other fields but never touches the locked ones.  The import
path reads locked_fields and never writes it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from salestrack_etl.keys import build_dedupe_key
from salestrack_etl.models import IMPORT_FIELDS, Job


@dataclass
class MergeResult:
    patch: dict[str, Any] = field(default_factory=dict)
    # Writable fields whose value differs (the keys of patch, in order).
    changed: list[str] = field(default_factory=list)
    # Fields that differ but are locked; reported, never written.
    locked: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.patch)


def can_write(job: Job, field_name: str) -> bool:
    return field_name not in job.locked_fields


def compute_merge(
    job: Job,
    incoming: dict[str, Any],
    fields: tuple[str, ...] = IMPORT_FIELDS,
) -> MergeResult:
    """Diff incoming feed values against the stored job.

    An incoming None means the feed said nothing about the field; it never
    blanks a stored value.  Never mutates job.
    """
    result = MergeResult()
    for name in fields:
        if name not in incoming:
            continue
        new = incoming[name]
        if new is None:
            continue
        if getattr(job, name) == new:
            continue
        if can_write(job, name):
            result.patch[name] = new
            result.changed.append(name)
        else:
            result.locked.append(name)
    return result


def merge_status(job: Job, inferred: str, result: MergeResult) -> None:
    """Add a re-inferred status to the patch when status is writable.

    A locked status is left alone without being reported as a locked diff;
    callers skip inference for it entirely.
    """
    if not can_write(job, "status"):
        return
    if inferred != job.status:
        result.patch["status"] = inferred
        result.changed.append("status")


def finalize_patch(
    job: Job,
    result: MergeResult,
    external_id: str | None,
    run_at: datetime,
) -> dict[str, Any]:
    """Complete a merge patch with identity and import bookkeeping.

    - external_id is backfilled when the job has none, regardless of locks.
    - dedupe_key is recomputed when name, address or county changed.
    - last_imported_at is stamped only when something else is written, so
      an unchanged row produces no write at all.
    """
    patch = dict(result.patch)
    if external_id and not job.external_id:
        patch["external_id"] = external_id
        result.changed.append("external_id")
    if not patch:
        return patch
    if patch.keys() & {"name", "address", "county"}:
        new_key = build_dedupe_key(
            patch.get("name", job.name),
            patch.get("address", job.address),
            patch.get("county", job.county),
        )
        if new_key != job.dedupe_key:
            patch["dedupe_key"] = new_key
    patch["last_imported_at"] = run_at
    return patch
