"""Integration tests for the KYC sales-log import against PostgreSQL."""

from __future__ import annotations

import csv
from datetime import datetime, timezone
from pathlib import Path

import pytest
from click.testing import CliRunner

from salestrack_etl.cli import main
from salestrack_etl.feed_profile import default_profile_path, load_feed_profile
from salestrack_etl.import_kyc_log import run_kyc_import
from salestrack_etl.row_source import read_rows
from salestrack_etl.store import PostgresJobStore

RUN_AT = datetime(2025, 6, 15, 9, 0, tzinfo=timezone.utc)

HEADER = ["Date", "Type", "Customer", "Contact", "Role", "Notes"]
ROWS = [
    ["2025-03-05", "Call", "(ANVIL) Builders", "Gloria: Front Desk Dannelle Graham: Purchasing", "", "Left message"],
    ["2025-03-10", "Email", "Anvil Builders", "Gloria", "Front Desk", "Sent line card"],
    ["", "In Person", "Acme Co.", "?", "Estimator", ""],
    ["2025-03-11", "Call", "", "Nobody", "", ""],
]


def _write_csv(path: Path, rows=ROWS) -> Path:
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(HEADER)
        writer.writerows(rows)
    return path


@pytest.fixture
def profile():
    return load_feed_profile(default_profile_path("kyc_log"))


def _counts(conn) -> tuple[int, int, int]:
    return tuple(
        conn.execute(f"SELECT count(*) FROM {t}").fetchone()[0]
        for t in ("companies", "contacts", "interactions")
    )


class TestKycImport:
    def test_live(self, db_conn, profile, tmp_path):
        conn, _ = db_conn
        store = PostgresJobStore(conn)
        table = read_rows(_write_csv(tmp_path / "kyc.csv"))

        result = run_kyc_import(store, table, profile, owner_id="u1", run_at=RUN_AT)
        conn.commit()
        assert result.companies_created == 2
        assert result.contacts_created == 2
        assert result.interactions_created == 3
        assert result.duplicates_skipped == 1
        assert result.errors == []
        assert _counts(conn) == (2, 2, 3)

        row = conn.execute(
            "SELECT name, type, last_interaction_type FROM companies WHERE normalized_name = 'ANVIL BUILDERS'"
        ).fetchone()
        assert row == ("ANVIL Builders", "contractor", "email")

        row = conn.execute(
            "SELECT full_name, role, source FROM contacts WHERE full_name = 'Gloria'"
        ).fetchone()
        assert row == ("Gloria", "Front Desk", "kyc_import")

        directions = {r[0] for r in conn.execute("SELECT direction FROM interactions").fetchall()}
        assert directions == {"outbound"}

    def test_rerun_reuses_companies_and_contacts(self, db_conn, profile, tmp_path):
        conn, _ = db_conn
        store = PostgresJobStore(conn)
        table = read_rows(_write_csv(tmp_path / "kyc.csv"))
        run_kyc_import(store, table, profile, owner_id="u1", run_at=RUN_AT)
        conn.commit()

        again = run_kyc_import(store, table, profile, owner_id="u1", run_at=RUN_AT)
        conn.commit()
        assert again.companies_created == 0
        assert again.contacts_created == 0
        assert again.interactions_created == 3
        assert _counts(conn) == (2, 2, 6)

    def test_dry_run_via_cli(self, db_conn, tmp_path, monkeypatch):
        conn, dsn = db_conn
        monkeypatch.chdir(tmp_path)
        feed = _write_csv(tmp_path / "kyc.csv")
        result = CliRunner().invoke(main, [
            "--db-dsn", dsn,
            "--mode", "kyc_import",
            "--csv-path", str(feed),
            "--owner-id", "u1",
            "--dry-run",
        ])
        assert result.exit_code == 0, result.output
        assert "KYC Sales Log Import Report" in result.output
        assert "rolled back" in result.output
        assert _counts(conn) == (0, 0, 0)

    def test_live_via_cli(self, db_conn, tmp_path, monkeypatch):
        conn, dsn = db_conn
        monkeypatch.chdir(tmp_path)
        feed = _write_csv(tmp_path / "kyc.csv")
        result = CliRunner().invoke(main, [
            "--db-dsn", dsn,
            "--mode", "kyc_import",
            "--csv-path", str(feed),
            "--owner-id", "u1",
        ])
        assert result.exit_code == 0, result.output
        assert "Committed." in result.output
        assert _counts(conn) == (2, 2, 3)
        rejects = tmp_path / "artifacts" / "rejects" / "salestrack_rejects.csv"
        assert "missing_customer" in rejects.read_text(encoding="utf-8")
