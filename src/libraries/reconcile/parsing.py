"""Parse Salesforce and incoming policy exports into typed records."""

from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Generic, List, Sequence, TypeVar

import structlog

from libraries.reconcile.errors import FileReadError, ParseError, ValidationWarning
from libraries.reconcile.headers import (
    DEFAULT_MAX_HEADER_ROWS,
    ExactSetDetector,
    FingerprintDetector,
    HeaderDetector,
    is_blank_row,
    locate_header_row,
)
from libraries.reconcile.records import AuthoritativeRecord, IncomingRecord

log = structlog.get_logger(__name__)

Row = Dict[str, str]
ColumnMatcher = Callable[[str], bool]
RecordT = TypeVar("RecordT", AuthoritativeRecord, IncomingRecord)

_COMPACT_PATTERN = re.compile(r"[^0-9a-z#]")


def _compact(value: str) -> str:
    return _COMPACT_PATTERN.sub("", value.lower())


@dataclass(frozen=True, slots=True)
class ColumnSpec:
    """Map observed header text onto a canonical column name."""

    canonical: str
    matcher: ColumnMatcher

    @classmethod
    def named(cls, canonical: str, *aliases: str) -> "ColumnSpec":
        """Match headers equal to *canonical* or an alias, ignoring case and spacing."""

        accepted = frozenset(_compact(name) for name in (canonical, *aliases))
        return cls(canonical, lambda header: _compact(header) in accepted)

    @classmethod
    def containing(cls, canonical: str, *fragments: str) -> "ColumnSpec":
        """Match headers that contain every fragment, ignoring case and spacing."""

        wanted = tuple(_compact(fragment) for fragment in fragments)
        return cls(
            canonical,
            lambda header: all(part in _compact(header) for part in wanted),
        )


@dataclass(frozen=True, slots=True)
class TableShape:
    """Declarative description of one side's CSV layout."""

    name: str
    detector: HeaderDetector
    columns: tuple[ColumnSpec, ...] = ()
    key_column: str = ""
    skip_blank_lines: bool = True

    def normalise_headers(self, headers: Sequence[str]) -> list[str]:
        """Return canonical names for *headers*; unmatched headers are only trimmed."""

        used: set[str] = set()
        result: list[str] = []
        for header in headers:
            text = (header or "").strip()
            canonical = text
            for spec in self.columns:
                if spec.canonical in used or not text:
                    continue
                if spec.matcher(text):
                    canonical = spec.canonical
                    used.add(canonical)
                    break
            result.append(canonical)
        return result


@dataclass(slots=True)
class ParsedTable:
    """Generic rows decoded from a payload together with parse diagnostics."""

    shape: str
    header_index: int
    columns: List[str]
    rows: List[Row]
    warnings: List[ValidationWarning] = field(default_factory=list)


@dataclass(slots=True)
class LoadedTable(Generic[RecordT]):
    """Typed records for one side of the comparison."""

    records: List[RecordT]
    header_index: int
    warnings: List[ValidationWarning] = field(default_factory=list)


SALESFORCE_SHAPE = TableShape(
    name="salesforce",
    detector=FingerprintDetector(("policy", "#")),
    columns=(
        ColumnSpec.containing("Policy #", "policy", "#"),
        ColumnSpec.containing("ApplicationStatus", "application status"),
        ColumnSpec.containing("PremiumIssued", "premium issued"),
        ColumnSpec.containing("ProductIssued", "product issued"),
    ),
    key_column="Policy #",
)

INCOMING_SHAPE = TableShape(
    name="incoming",
    detector=ExactSetDetector(
        [("PolicyId", "ApplicationID"), "Status", "PremiumAmount", "ProductType"]
    ),
    columns=(
        ColumnSpec.named("PolicyId", "ApplicationID"),
        ColumnSpec.named("Status"),
        ColumnSpec.named("PremiumAmount"),
        ColumnSpec.named("ProductType"),
        ColumnSpec.named("TieredRisk"),
    ),
    key_column="PolicyId",
)


def _decode_text(content: str | bytes) -> str:
    if isinstance(content, bytes):
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ParseError(f"Payload is not valid UTF-8 text: {exc}") from exc
    else:
        text = content[1:] if content.startswith("\ufeff") else content
    if "\x00" in text:
        raise ParseError("Payload contains NUL bytes and is not delimited text")
    return text


def _read_rows(text: str) -> tuple[list[tuple[int, list[str]]], list[ValidationWarning]]:
    """Decode every CSV record, keeping the line each one started on."""

    reader = csv.reader(io.StringIO(text, newline=""), strict=True)
    rows: list[tuple[int, list[str]]] = []
    warnings: list[ValidationWarning] = []
    while True:
        start_line = reader.line_num + 1
        try:
            row = next(reader)
        except StopIteration:
            break
        except csv.Error as exc:
            warnings.append(ValidationWarning(start_line, f"malformed row: {exc}"))
            continue
        rows.append((start_line, row))
    return rows, warnings


def _build_row(
    columns: Sequence[str],
    cells: Sequence[str],
    *,
    line: int,
    warnings: list[ValidationWarning],
) -> Row:
    values = [cell.strip() for cell in cells]
    if len(values) > len(columns):
        extra = values[len(columns) :]
        if any(extra):
            warnings.append(
                ValidationWarning(
                    line,
                    f"row has {len(values)} cells but header has {len(columns)}; "
                    "extra cells dropped",
                )
            )
        values = values[: len(columns)]
    elif len(values) < len(columns):
        values.extend([""] * (len(columns) - len(values)))

    row: Row = {}
    for name, value in zip(columns, values):
        if not name or name in row:
            continue
        row[name] = value
    return row


def parse_table(
    content: str | bytes,
    shape: TableShape,
    *,
    max_header_rows: int = DEFAULT_MAX_HEADER_ROWS,
) -> ParsedTable:
    """Decode *content* into rows keyed by the canonical column names of *shape*.

    Preamble rows above the detected header are discarded.  Malformed rows are
    reported as :class:`ValidationWarning` entries and skipped.

    Raises:
        ParseError: if the payload cannot be decoded as delimited text.
    """

    text = _decode_text(content)
    raw_rows, warnings = _read_rows(text)
    if not raw_rows:
        if warnings:
            raise ParseError(
                f"Unable to decode any rows from {shape.name} payload: {warnings[0]}"
            )
        log.info("reconcile.parse.empty", shape=shape.name)
        return ParsedTable(shape=shape.name, header_index=0, columns=[], rows=[])

    header_index = locate_header_row(
        [cells for _, cells in raw_rows], shape.detector, max_rows=max_header_rows
    )
    remaining = raw_rows[header_index:]
    if shape.skip_blank_lines:
        remaining = [item for item in remaining if not is_blank_row(item[1])]
    if not remaining:
        return ParsedTable(
            shape=shape.name,
            header_index=header_index,
            columns=[],
            rows=[],
            warnings=warnings,
        )

    columns = shape.normalise_headers(remaining[0][1])
    rows: list[Row] = []
    for line, cells in remaining[1:]:
        rows.append(_build_row(columns, cells, line=line, warnings=warnings))

    for warning in warnings:
        log.warning(
            "reconcile.parse.row_skipped",
            shape=shape.name,
            line=warning.line,
            reason=warning.message,
        )
    log.info(
        "reconcile.parse.complete",
        shape=shape.name,
        header_index=header_index,
        rows=len(rows),
        warnings=len(warnings),
    )
    return ParsedTable(
        shape=shape.name,
        header_index=header_index,
        columns=columns,
        rows=rows,
        warnings=warnings,
    )


def _to_authoritative(row: Row) -> AuthoritativeRecord:
    return AuthoritativeRecord(
        key=row.get("Policy #", ""),
        status=row.get("ApplicationStatus", ""),
        premium=row.get("PremiumIssued", ""),
        product=row.get("ProductIssued", ""),
    )


def _to_incoming(row: Row) -> IncomingRecord:
    return IncomingRecord(
        key=row.get("PolicyId", ""),
        status=row.get("Status", ""),
        premium=row.get("PremiumAmount", ""),
        product=row.get("ProductType", ""),
        secondary=row.get("TieredRisk", ""),
    )


def _load(
    content: str | bytes,
    shape: TableShape,
    factory: Callable[[Row], RecordT],
    *,
    max_header_rows: int,
) -> LoadedTable[RecordT]:
    table = parse_table(content, shape, max_header_rows=max_header_rows)
    warnings = list(table.warnings)
    records: list[RecordT] = []
    keyless = 0
    for row in table.rows:
        if row.get(shape.key_column):
            records.append(factory(row))
        elif any(row.values()):
            keyless += 1

    # Report footers and totals lines carry no key.
    if keyless:
        warnings.append(
            ValidationWarning(
                None,
                f"{keyless} {shape.name} row(s) without {shape.key_column!r} dropped",
            )
        )
        log.warning(
            "reconcile.parse.keyless_rows", shape=shape.name, count=keyless
        )
    return LoadedTable(records=records, header_index=table.header_index, warnings=warnings)


def load_authoritative(
    content: str | bytes, *, max_header_rows: int = DEFAULT_MAX_HEADER_ROWS
) -> LoadedTable[AuthoritativeRecord]:
    """Parse a Salesforce export into :class:`AuthoritativeRecord` values."""

    return _load(
        content, SALESFORCE_SHAPE, _to_authoritative, max_header_rows=max_header_rows
    )


def load_incoming(
    content: str | bytes, *, max_header_rows: int = DEFAULT_MAX_HEADER_ROWS
) -> LoadedTable[IncomingRecord]:
    """Parse an incoming submission into :class:`IncomingRecord` values."""

    return _load(content, INCOMING_SHAPE, _to_incoming, max_header_rows=max_header_rows)


def read_payload(path: Path) -> bytes:
    """Read raw bytes from *path*, wrapping OS failures in :class:`FileReadError`."""

    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise FileReadError(f"Unable to read '{path}': {exc}") from exc


__all__ = [
    "ColumnSpec",
    "INCOMING_SHAPE",
    "LoadedTable",
    "ParsedTable",
    "Row",
    "SALESFORCE_SHAPE",
    "TableShape",
    "load_authoritative",
    "load_incoming",
    "parse_table",
    "read_payload",
]
