"""salestrack_etl.row_source

Extract header-keyed rows from a feed file.

CSV exports are read with csv.DictReader (utf-8-sig, so Excel's BOM is
dropped); workbooks with openpyxl in read-only, cached-value mode from the
first sheet, first row as headers.  Cells keep their native types: CSV
gives strings, workbooks give str/int/float/datetime.  Typing them is the
normalizer's job.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import openpyxl

from salestrack_etl.feed_profile import FeedProfile
from salestrack_etl.shared import FeedParseError, normalize_headers

log = logging.getLogger(__name__)

CSV_SUFFIXES = frozenset({".csv", ".txt"})
EXCEL_SUFFIXES = frozenset({".xlsx", ".xlsm"})


@dataclass
class FeedTable:
    headers: list[str]
    rows: list[dict[str, Any]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)


def read_rows(path: Path) -> FeedTable:
    """Read a CSV or Excel feed file.

    Raises:
        FeedParseError: missing file, unsupported type, unreadable content,
            or no header row.
    """
    if not path.exists():
        raise FeedParseError(f"input file not found: {path}")
    suffix = path.suffix.lower()
    if suffix in CSV_SUFFIXES:
        table = _read_csv(path)
    elif suffix in EXCEL_SUFFIXES:
        table = _read_excel(path)
    else:
        raise FeedParseError(
            f"unsupported file type {suffix!r}; expected one of "
            f"{sorted(CSV_SUFFIXES | EXCEL_SUFFIXES)}"
        )
    log.info("read %d rows from %s", len(table), path)
    return table


def _read_csv(path: Path) -> FeedTable:
    try:
        with path.open(encoding="utf-8-sig", newline="") as fh:
            reader = csv.DictReader(fh)
            headers = [h.strip() for h in (reader.fieldnames or []) if h and h.strip()]
            if not headers:
                raise FeedParseError(f"no header row in {path}")
            rows = [normalize_headers(raw) for raw in reader]
    except (UnicodeDecodeError, csv.Error) as exc:
        raise FeedParseError(f"cannot parse {path} as CSV: {exc}") from exc
    return FeedTable(headers=headers, rows=rows)


def _read_excel(path: Path) -> FeedTable:
    try:
        wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    except Exception as exc:
        raise FeedParseError(f"cannot open {path} as a workbook: {exc}") from exc
    try:
        ws = wb.worksheets[0] if wb.worksheets else None
        if ws is None:
            raise FeedParseError(f"workbook {path} has no sheets")
        rows_iter = ws.iter_rows(values_only=True)
        header_values = next(rows_iter, None)
        if not header_values:
            raise FeedParseError(f"no header row in {path}")
        columns = [str(h).strip() if h is not None else "" for h in header_values]
        headers = [h for h in columns if h]
        if not headers:
            raise FeedParseError(f"no header row in {path}")

        rows: list[dict[str, Any]] = []
        for values in rows_iter:
            if not values or all(v is None for v in values):
                continue
            raw = {columns[i]: v for i, v in enumerate(values) if i < len(columns)}
            rows.append(normalize_headers(raw))
    finally:
        wb.close()
    return FeedTable(headers=headers, rows=rows)


def check_required_columns(headers: list[str], profile: FeedProfile) -> None:
    """Raise FeedParseError when a required field has no alias in headers."""
    missing = profile.missing_required(headers)
    if missing:
        raise FeedParseError(
            f"missing required columns for feed {profile.feed!r}: {missing} "
            f"(headers: {headers})"
        )
