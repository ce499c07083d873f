"""Serialise reconciliation results for display and download."""

from __future__ import annotations

import csv
import io
import json
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import structlog

from libraries.reconcile.comparator import ReconciliationResult
from libraries.reconcile.records import REPORT_FIELDS, DiscrepancyRecord

log = structlog.get_logger(__name__)

DEFAULT_REPORT_NAME = "mismatches.csv"


def select_records(
    result: ReconciliationResult, *, show_matches: bool = False
) -> list[DiscrepancyRecord]:
    """Return the records a view should show.

    By default only records with at least one mismatch are returned; with
    *show_matches* every compared record is included.
    """

    if show_matches:
        return list(result.records)
    return result.discrepancies


def _cell(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


def record_rows(records: Iterable[DiscrepancyRecord]) -> list[dict[str, str]]:
    """Flatten records into string rows keyed by the report column names."""

    rows: list[dict[str, str]] = []
    for record in records:
        data = record.model_dump(by_alias=True)
        rows.append({name: _cell(data.get(name)) for name in REPORT_FIELDS})
    return rows


def rows_to_csv(
    rows: Sequence[Mapping[str, Any]], fieldnames: Sequence[str] | None = None
) -> str:
    """Render *rows* as CSV text with a header row.

    Column order follows *fieldnames*, or first appearance across *rows*.
    """

    if fieldnames is None:
        seen: dict[str, None] = {}
        for row in rows:
            for key in row:
                seen.setdefault(key, None)
        fieldnames = list(seen)

    buffer = io.StringIO(newline="")
    writer = csv.DictWriter(buffer, fieldnames=list(fieldnames), lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({name: _cell(row.get(name)) for name in fieldnames})
    return buffer.getvalue()


def render_csv(records: Iterable[DiscrepancyRecord]) -> str:
    return rows_to_csv(record_rows(records), REPORT_FIELDS)


def render_json(records: Iterable[DiscrepancyRecord]) -> str:
    payload = [record.model_dump(mode="json", by_alias=True) for record in records]
    return json.dumps(payload, indent=2)


def write_csv_report(path: Path, records: Iterable[DiscrepancyRecord]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_csv(records), encoding="utf-8", newline="")
    log.info("reconcile.report.csv_written", path=str(path))


def write_json_report(path: Path, records: Iterable[DiscrepancyRecord]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_json(records), encoding="utf-8")
    log.info("reconcile.report.json_written", path=str(path))


__all__ = [
    "DEFAULT_REPORT_NAME",
    "record_rows",
    "render_csv",
    "render_json",
    "rows_to_csv",
    "select_records",
    "write_csv_report",
    "write_json_report",
]
