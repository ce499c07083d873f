"""Locate the header row inside loosely structured CSV exports.

Exports pulled from CRM reports frequently carry a title, a run date and a
few blank lines before the real column headers.  The helpers in this module
scan the leading rows and return the index at which the table starts.
"""

from __future__ import annotations

from typing import Iterable, Sequence

import structlog

log = structlog.get_logger(__name__)

DEFAULT_MAX_HEADER_ROWS = 20


def _normalise_cells(row: Sequence[str]) -> list[str]:
    return [(cell or "").strip().lower() for cell in row]


def is_blank_row(row: Sequence[str]) -> bool:
    """Return ``True`` when *row* has no cells or only whitespace cells."""

    return not row or all(not (cell or "").strip() for cell in row)


class HeaderDetector:
    """Base class for header-row predicates.

    Subclasses receive the row cells already trimmed and lower-cased.
    """

    name = "detector"

    def matches(self, row: Sequence[str]) -> bool:
        return self._matches(_normalise_cells(row))

    def _matches(self, cells: Sequence[str]) -> bool:
        raise NotImplementedError


class ExactSetDetector(HeaderDetector):
    """Match rows that contain every expected header token as a whole cell.

    Each token may be a string or an iterable of alternative spellings, e.g.
    ``("PolicyId", "ApplicationID")``.  Comparison is case-insensitive and
    never matches on substrings.
    """

    name = "exact-set"

    def __init__(self, tokens: Iterable[str | Iterable[str]]) -> None:
        groups: list[frozenset[str]] = []
        for token in tokens:
            if isinstance(token, str):
                alternatives = [token]
            else:
                alternatives = list(token)
            group = frozenset(alt.strip().lower() for alt in alternatives if alt.strip())
            if not group:
                msg = "header tokens must not be empty"
                raise ValueError(msg)
            groups.append(group)
        if not groups:
            msg = "exact-set detection requires at least one token"
            raise ValueError(msg)
        self.groups = tuple(groups)

    def _matches(self, cells: Sequence[str]) -> bool:
        present = set(cells)
        return all(group & present for group in self.groups)


class FingerprintDetector(HeaderDetector):
    """Match rows holding a cell that contains every marker substring.

    Used for exports whose header wording drifts between downloads but keeps
    a recognisable fingerprint, such as a ``Policy #`` column.
    """

    name = "fingerprint"

    def __init__(self, markers: Iterable[str]) -> None:
        self.markers = tuple(marker.lower() for marker in markers if marker)
        if not self.markers:
            msg = "fingerprint detection requires at least one marker"
            raise ValueError(msg)

    def _matches(self, cells: Sequence[str]) -> bool:
        return any(all(marker in cell for marker in self.markers) for cell in cells)


def locate_header_row(
    rows: Sequence[Sequence[str]],
    detector: HeaderDetector,
    *,
    max_rows: int = DEFAULT_MAX_HEADER_ROWS,
) -> int:
    """Return the zero-based index of the first row accepted by *detector*.

    Only the first *max_rows* rows are inspected and blank rows are skipped.
    When nothing matches the first row is assumed to hold the headers and
    ``0`` is returned.
    """

    if max_rows < 1:
        msg = "max_rows must be at least 1"
        raise ValueError(msg)

    for index, row in enumerate(rows[:max_rows]):
        if is_blank_row(row):
            continue
        if detector.matches(row):
            log.debug("reconcile.headers.found", index=index, detector=detector.name)
            return index

    log.info(
        "reconcile.headers.fallback",
        scanned=min(len(rows), max_rows),
        detector=detector.name,
    )
    return 0


__all__ = [
    "DEFAULT_MAX_HEADER_ROWS",
    "ExactSetDetector",
    "FingerprintDetector",
    "HeaderDetector",
    "is_blank_row",
    "locate_header_row",
]
