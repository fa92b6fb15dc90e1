"""salestrack_etl.cli

Unified CLI entrypoint for feed imports and field-lock user actions.

Modes (--mode):
  dodge_import   — reconcile a Dodge project export (CSV/XLSX) into jobs (default)
  kyc_import     — import the KYC sales log into companies/contacts/interactions
  lock_fields    — lock fields on one job (as a user edit would)
  unlock_fields  — unlock fields on one job (all of them when no --field given)

Usage (dodge_import, preview first):
    salestrack-etl \\
        --mode dodge_import \\
        --db-dsn "$DB_DSN" \\
        --csv-path "exports/dodge_2025-06.xlsx" \\
        --owner-id "$USER_ID" \\
        --dry-run

Usage (unlock_fields):
    salestrack-etl --mode unlock_fields --db-dsn "$DB_DSN" \\
        --job-id 6f1c... --field project_value --field status
"""

from __future__ import annotations

import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import click
import psycopg

from salestrack_etl.feed_profile import (
    FeedProfileValidationError,
    default_profile_path,
    load_feed_profile,
)
from salestrack_etl.import_kyc_log import build_kyc_report, run_kyc_import
from salestrack_etl.import_runner import build_import_report, run_job_import
from salestrack_etl.row_source import read_rows
from salestrack_etl.shared import FeedParseError, RejectWriter, write_run_report
from salestrack_etl.store import LOCKABLE_FIELDS, PostgresJobStore

_DEFAULT_FEED = {"dodge_import": "dodge", "kyc_import": "kyc_log"}


@click.command()
@click.option(
    "--mode",
    default="dodge_import",
    type=click.Choice(["dodge_import", "kyc_import", "lock_fields", "unlock_fields"]),
    show_default=True,
    help="Run mode",
)
@click.option("--db-dsn", required=True, help="PostgreSQL DSN")
# import flags
@click.option("--csv-path", default=None, type=click.Path(), help="[dodge_import|kyc_import] Input CSV or XLSX")
@click.option("--profile", "profile_path", default=None, type=click.Path(), help="Feed profile YAML (default: config/feeds/<feed>.yml)")
@click.option("--owner-id", default=None, help="Owning user id; omit to match against all jobs")
@click.option("--today", default=None, type=click.DateTime(formats=["%Y-%m-%d"]), help="Override the run date used for status inference")
# lock flags
@click.option("--job-id", default=None, help="[lock_fields|unlock_fields] Target job id")
@click.option("--field", "fields", multiple=True, help="[lock_fields|unlock_fields] Field name (repeatable)")
# shared flags
@click.option("--dry-run", is_flag=True, default=False)
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/salestrack_rejects.csv",
    show_default=True,
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Debug logging")
def main(
    mode: str,
    db_dsn: str,
    csv_path: str | None,
    profile_path: str | None,
    owner_id: str | None,
    today: datetime | None,
    job_id: str | None,
    fields: tuple[str, ...],
    dry_run: bool,
    rejects_path: str,
    run_id: str | None,
    verbose: bool,
) -> None:
    """Construction sales-tracker ingestion CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    if mode in ("lock_fields", "unlock_fields"):
        _validate_lock_flags(mode, job_id, fields, run_id)
        _run_lock_action(run_id, db_dsn, mode, job_id, fields, dry_run)  # type: ignore[arg-type]
        return

    _validate_import_flags(mode, csv_path, run_id)
    profile_file = Path(profile_path) if profile_path else default_profile_path(_DEFAULT_FEED[mode])
    try:
        profile = load_feed_profile(profile_file)
        table = read_rows(Path(csv_path))  # type: ignore[arg-type]
    except (FileNotFoundError, FeedProfileValidationError, FeedParseError) as exc:
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)
    click.echo(
        f"[{run_id}] feed={profile.feed} version={profile.version} "
        f"rows={len(table)} owner_id={owner_id}"
    )

    rejects = RejectWriter(Path(rejects_path))
    conn = psycopg.connect(db_dsn, autocommit=False)
    try:
        store = PostgresJobStore(conn)
        if mode == "dodge_import":
            result = run_job_import(
                store, table, profile,
                owner_id=owner_id,
                dry_run=dry_run,
                today=today.date() if today else None,
                rejects=rejects,
            )
            click.echo(build_import_report(result, profile))
        else:
            result = run_kyc_import(
                store, table, profile,
                owner_id=owner_id,
                dry_run=dry_run,
                rejects=rejects,
            )
            click.echo(build_kyc_report(result))

        if dry_run:
            conn.rollback()
            click.echo(f"[{run_id}] DRY RUN — rolled back.")
        else:
            conn.commit()
            click.echo(f"[{run_id}] Committed.")
    except FeedParseError as exc:
        conn.rollback()
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
        rejects.close()

    report_path = write_run_report(
        run_id, started_at, mode, dry_run,
        {
            "csv_path": csv_path,
            "profile_path": str(profile_file),
            "profile_version": profile.version,
            "profile_yaml_hash": profile.yaml_hash,
            "owner_id": owner_id,
        },
        result,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")

    if result.errors and not dry_run:
        click.echo(
            f"[{run_id}] {len(result.errors)} row errors — successful rows were committed.",
            err=True,
        )
        sys.exit(1)


# ---------------------------------------------------------------------------
# Lock actions
# ---------------------------------------------------------------------------

def _run_lock_action(
    run_id: str,
    db_dsn: str,
    mode: str,
    job_id: str,
    fields: tuple[str, ...],
    dry_run: bool,
) -> None:
    conn = psycopg.connect(db_dsn, autocommit=False)
    try:
        store = PostgresJobStore(conn)
        try:
            if mode == "lock_fields":
                locked = store.lock_fields(job_id, fields)
            else:
                locked = store.unlock_fields(job_id, fields or None)
        except (LookupError, ValueError, psycopg.DataError) as exc:
            conn.rollback()
            click.echo(f"[{run_id}] FATAL: {exc}", err=True)
            sys.exit(1)
        click.echo(f"[{run_id}] job {job_id} locked_fields={locked}")
        if dry_run:
            conn.rollback()
            click.echo(f"[{run_id}] DRY RUN — rolled back.")
        else:
            conn.commit()
            click.echo(f"[{run_id}] Committed.")
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Flag validation
# ---------------------------------------------------------------------------

def _validate_import_flags(mode: str, csv_path: str | None, run_id: str) -> None:
    if not csv_path:
        click.echo(f"[{run_id}] FATAL: {mode} mode requires: --csv-path", err=True)
        sys.exit(1)


def _validate_lock_flags(
    mode: str,
    job_id: str | None,
    fields: tuple[str, ...],
    run_id: str,
) -> None:
    missing = []
    if not job_id:
        missing.append("--job-id")
    if mode == "lock_fields" and not fields:
        missing.append("--field")
    if missing:
        click.echo(f"[{run_id}] FATAL: {mode} mode requires: {', '.join(missing)}", err=True)
        sys.exit(1)
    unknown = sorted(set(fields) - LOCKABLE_FIELDS)
    if mode == "lock_fields" and unknown:
        click.echo(f"[{run_id}] FATAL: unknown fields: {unknown}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
