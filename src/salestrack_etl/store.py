"""salestrack_etl.store

Record store contracts and their PostgreSQL implementation.

The import engine only ever sees the RecordStore protocol: list the jobs a
user owns, create one, patch one.  Lock management (lock_fields,
unlock_fields, record_user_edit) belongs to user actions and is never
called from the import path.

PostgresJobStore runs every statement on the connection it is given; the
caller owns the transaction (commit on success, rollback for dry runs).
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, ContextManager, Iterable, Iterator, Protocol

import psycopg

from salestrack_etl.keys import build_dedupe_key
from salestrack_etl.models import IMPORT_FIELDS, Job

log = logging.getLogger(__name__)

# Fields a user may lock.  Identity columns are not user-authored content.
LOCKABLE_FIELDS = frozenset(IMPORT_FIELDS) | {"status"}

_JOB_COLUMNS = (
    "id", "user_id", "external_id", "dedupe_key",
    *IMPORT_FIELDS,
    "status", "locked_fields", "last_imported_at",
)
_PATCHABLE_COLUMNS = frozenset(IMPORT_FIELDS) | {
    "status", "external_id", "dedupe_key", "last_imported_at",
}


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------

class RecordStore(Protocol):
    def list_owned(self, owner_id: str | None = None) -> list[Job]: ...

    def create(self, job: Job) -> Job: ...

    def update(self, job_id: str, patch: dict[str, Any]) -> None: ...

    def savepoint(self) -> ContextManager[None]: ...


class KycStore(Protocol):
    def find_company_id(self, owner_id: str | None, normalized_name: str) -> str | None: ...

    def create_company(self, owner_id: str | None, name: str, normalized_name: str) -> str: ...

    def find_contact_id(self, owner_id: str | None, company_id: str, name_key: str) -> str | None: ...

    def create_contact(
        self,
        owner_id: str | None,
        company_id: str,
        full_name: str,
        role: str,
    ) -> str: ...

    def create_interaction(
        self,
        owner_id: str | None,
        contact_id: str,
        company_id: str,
        interaction_type: str,
        notes: str | None,
        occurred_at: datetime,
    ) -> str: ...

    def touch_contact(self, contact_id: str, at: datetime, interaction_type: str) -> None: ...

    def touch_company(self, company_id: str, at: datetime, interaction_type: str) -> None: ...

    def savepoint(self) -> ContextManager[None]: ...


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

def _row_to_job(row: tuple) -> Job:
    data = dict(zip(_JOB_COLUMNS, row))
    data["id"] = str(data["id"])
    locked = data.pop("locked_fields") or []
    if isinstance(locked, str):
        locked = json.loads(locked)
    job = Job(**data, locked_fields=set(locked))
    if not job.dedupe_key:
        job.dedupe_key = build_dedupe_key(job.name, job.address, job.county)
    return job


def _check_lockable(fields: Iterable[str]) -> list[str]:
    out = sorted(set(fields))
    unknown = [f for f in out if f not in LOCKABLE_FIELDS]
    if unknown:
        raise ValueError(f"not lockable: {unknown}")
    return out


# ---------------------------------------------------------------------------
# PostgreSQL implementation
# ---------------------------------------------------------------------------

class PostgresJobStore:
    """RecordStore + KycStore over the schema in migrations/0001_jobs.sql."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self.conn = conn

    # -- jobs ---------------------------------------------------------------

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """Scope one row's writes so a failing row does not abort the batch."""
        self.conn.execute("SAVEPOINT import_row")
        try:
            yield
        except Exception:
            self.conn.execute("ROLLBACK TO SAVEPOINT import_row")
            raise
        self.conn.execute("RELEASE SAVEPOINT import_row")

    def list_owned(self, owner_id: str | None = None) -> list[Job]:
        cols = ", ".join(_JOB_COLUMNS)
        if owner_id is None:
            rows = self.conn.execute(
                f"SELECT {cols} FROM jobs ORDER BY created_at ASC, id ASC"
            ).fetchall()
        else:
            rows = self.conn.execute(
                f"SELECT {cols} FROM jobs WHERE user_id = %s ORDER BY created_at ASC, id ASC",
                (owner_id,),
            ).fetchall()
        return [_row_to_job(r) for r in rows]

    def get(self, job_id: str) -> Job | None:
        cols = ", ".join(_JOB_COLUMNS)
        row = self.conn.execute(
            f"SELECT {cols} FROM jobs WHERE id = %s", (job_id,)
        ).fetchone()
        return _row_to_job(row) if row else None

    def create(self, job: Job) -> Job:
        insert_cols = [c for c in _JOB_COLUMNS if c != "id"]
        values = [getattr(job, c) for c in insert_cols]
        values[insert_cols.index("locked_fields")] = json.dumps(sorted(job.locked_fields))
        placeholders = ", ".join(
            "%s::jsonb" if c == "locked_fields" else "%s" for c in insert_cols
        )
        row = self.conn.execute(
            f"INSERT INTO jobs ({', '.join(insert_cols)}) VALUES ({placeholders}) RETURNING id",
            values,
        ).fetchone()
        job.id = str(row[0])
        log.debug("created job %s (%s)", job.id, job.dedupe_key)
        return job

    def update(self, job_id: str, patch: dict[str, Any]) -> None:
        """Apply a merge patch in a single UPDATE.

        locked_fields is not patchable here; use lock_fields/unlock_fields.
        """
        if not patch:
            return
        bad = sorted(set(patch) - _PATCHABLE_COLUMNS)
        if bad:
            raise ValueError(f"cannot patch columns: {bad}")
        set_clauses = ", ".join(f"{c} = %s" for c in patch)
        cur = self.conn.execute(
            f"UPDATE jobs SET {set_clauses}, updated_at = now() WHERE id = %s",
            (*patch.values(), job_id),
        )
        if cur.rowcount == 0:
            raise LookupError(f"job {job_id} not found")

    def lock_fields(self, job_id: str, fields: Iterable[str]) -> list[str]:
        """Union fields into locked_fields; returns the resulting lock set."""
        add = _check_lockable(fields)
        row = self.conn.execute(
            """
            UPDATE jobs SET
              locked_fields = (
                SELECT COALESCE(jsonb_agg(DISTINCT f ORDER BY f), '[]'::jsonb)
                FROM jsonb_array_elements_text(jobs.locked_fields || %s::jsonb) AS f
              ),
              updated_at = now()
            WHERE id = %s
            RETURNING locked_fields
            """,
            (json.dumps(add), job_id),
        ).fetchone()
        if row is None:
            raise LookupError(f"job {job_id} not found")
        return list(row[0])

    def unlock_fields(self, job_id: str, fields: Iterable[str] | None = None) -> list[str]:
        """Remove the given fields from locked_fields, or all of them."""
        if fields is None:
            row = self.conn.execute(
                """
                UPDATE jobs SET locked_fields = '[]'::jsonb, updated_at = now()
                WHERE id = %s
                RETURNING locked_fields
                """,
                (job_id,),
            ).fetchone()
        else:
            drop = sorted(set(fields))
            row = self.conn.execute(
                """
                UPDATE jobs SET
                  locked_fields = (
                    SELECT COALESCE(jsonb_agg(f ORDER BY f), '[]'::jsonb)
                    FROM jsonb_array_elements_text(jobs.locked_fields) AS f
                    WHERE f <> ALL(%s::text[])
                  ),
                  updated_at = now()
                WHERE id = %s
                RETURNING locked_fields
                """,
                (drop, job_id),
            ).fetchone()
        if row is None:
            raise LookupError(f"job {job_id} not found")
        return list(row[0])

    def record_user_edit(self, job_id: str, changes: dict[str, Any]) -> list[str]:
        """Apply a user's edit and lock every edited field."""
        locked = _check_lockable(changes)
        self.update(job_id, changes)
        return self.lock_fields(job_id, locked)

    # -- sales activity -----------------------------------------------------

    def find_company_id(self, owner_id: str | None, normalized_name: str) -> str | None:
        row = self.conn.execute(
            """
            SELECT id FROM companies
            WHERE normalized_name = %s AND user_id IS NOT DISTINCT FROM %s
            ORDER BY created_at ASC, id ASC
            LIMIT 1
            """,
            (normalized_name, owner_id),
        ).fetchone()
        return str(row[0]) if row else None

    def create_company(self, owner_id: str | None, name: str, normalized_name: str) -> str:
        row = self.conn.execute(
            """
            INSERT INTO companies (user_id, name, normalized_name, type)
            VALUES (%s, %s, %s, 'contractor')
            RETURNING id
            """,
            (owner_id, name, normalized_name),
        ).fetchone()
        return str(row[0])

    def find_contact_id(self, owner_id: str | None, company_id: str, name_key: str) -> str | None:
        """Match on full name, or first+last, lowercased with whitespace removed."""
        row = self.conn.execute(
            r"""
            SELECT id FROM contacts
            WHERE company_id = %s
              AND user_id IS NOT DISTINCT FROM %s
              AND (
                regexp_replace(lower(COALESCE(full_name, '')), '\s', '', 'g') = %s
                OR regexp_replace(
                     lower(COALESCE(first_name, '') || COALESCE(last_name, '')),
                     '\s', '', 'g') = %s
              )
            ORDER BY created_at ASC, id ASC
            LIMIT 1
            """,
            (company_id, owner_id, name_key, name_key),
        ).fetchone()
        return str(row[0]) if row else None

    def create_contact(
        self,
        owner_id: str | None,
        company_id: str,
        full_name: str,
        role: str,
    ) -> str:
        parts = full_name.split()
        first = parts[0] if parts else None
        last = " ".join(parts[1:]) if len(parts) > 1 else None
        row = self.conn.execute(
            """
            INSERT INTO contacts
              (user_id, company_id, first_name, last_name, full_name, role, source)
            VALUES (%s, %s, %s, %s, %s, %s, 'kyc_import')
            RETURNING id
            """,
            (owner_id, company_id, first, last, full_name, role),
        ).fetchone()
        return str(row[0])

    def create_interaction(
        self,
        owner_id: str | None,
        contact_id: str,
        company_id: str,
        interaction_type: str,
        notes: str | None,
        occurred_at: datetime,
    ) -> str:
        row = self.conn.execute(
            """
            INSERT INTO interactions
              (user_id, contact_id, company_id, type, direction, notes, occurred_at)
            VALUES (%s, %s, %s, %s, 'outbound', %s, %s)
            RETURNING id
            """,
            (owner_id, contact_id, company_id, interaction_type, notes, occurred_at),
        ).fetchone()
        return str(row[0])

    def touch_contact(self, contact_id: str, at: datetime, interaction_type: str) -> None:
        self.conn.execute(
            """
            UPDATE contacts
            SET last_interaction_at = %s, last_interaction_type = %s, updated_at = now()
            WHERE id = %s
            """,
            (at, interaction_type, contact_id),
        )

    def touch_company(self, company_id: str, at: datetime, interaction_type: str) -> None:
        self.conn.execute(
            """
            UPDATE companies
            SET last_interaction_at = %s, last_interaction_type = %s, updated_at = now()
            WHERE id = %s
            """,
            (at, interaction_type, company_id),
        )
