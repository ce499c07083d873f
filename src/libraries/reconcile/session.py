"""Hold the current Salesforce and incoming tables and their latest report."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import List

import structlog

from libraries.reconcile.comparator import (
    MatchOptions,
    ReconciliationEngine,
    ReconciliationResult,
)
from libraries.reconcile.errors import ValidationWarning
from libraries.reconcile.headers import DEFAULT_MAX_HEADER_ROWS
from libraries.reconcile.parsing import load_authoritative, load_incoming
from libraries.reconcile.records import AuthoritativeRecord, IncomingRecord
from libraries.reconcile.rules import RuleRepository

log = structlog.get_logger(__name__)


class Side(str, Enum):
    SALESFORCE = "salesforce"
    INCOMING = "incoming"


@dataclass(slots=True)
class UploadOutcome:
    side: Side
    record_count: int
    header_index: int
    warnings: List[ValidationWarning] = field(default_factory=list)
    result: ReconciliationResult | None = None


class ReconciliationSession:
    """Recompute the report each time either side is replaced.

    Payloads are parsed outside the lock; swapping a side and recomputing the
    report happen together under it, so a report always reflects one complete
    table per side.  Once both sides have been uploaded every upload
    recomputes, even when the new table holds no records.  A failed parse
    raises before any state is touched.
    """

    def __init__(
        self,
        repository: RuleRepository,
        *,
        options: MatchOptions | None = None,
        max_header_rows: int = DEFAULT_MAX_HEADER_ROWS,
    ) -> None:
        self.engine = ReconciliationEngine(repository, options=options)
        self.max_header_rows = max_header_rows
        self._lock = Lock()
        self._authoritative: list[AuthoritativeRecord] | None = None
        self._incoming: list[IncomingRecord] | None = None
        self._result: ReconciliationResult | None = None

    @property
    def repository(self) -> RuleRepository:
        return self.engine.repository

    @property
    def authoritative(self) -> list[AuthoritativeRecord]:
        with self._lock:
            return list(self._authoritative or [])

    @property
    def incoming(self) -> list[IncomingRecord]:
        with self._lock:
            return list(self._incoming or [])

    @property
    def result(self) -> ReconciliationResult | None:
        with self._lock:
            return self._result

    def upload(self, side: Side, content: str | bytes) -> UploadOutcome:
        """Replace *side* with the records parsed from *content*.

        Raises:
            ParseError: if *content* is not delimited text; nothing changes.
            RuleStoreError: if the rules cannot be loaded; nothing changes.
        """

        side = Side(side)
        loader = load_authoritative if side is Side.SALESFORCE else load_incoming
        loaded = loader(content, max_header_rows=self.max_header_rows)

        records = list(loaded.records)
        with self._lock:
            authoritative, incoming = self._authoritative, self._incoming
            if side is Side.SALESFORCE:
                authoritative = records
            else:
                incoming = records
            result = self._compute(authoritative, incoming)
            self._authoritative, self._incoming = authoritative, incoming
            self._result = result

        log.info(
            "reconcile.session.uploaded",
            side=side.value,
            records=len(loaded.records),
            warnings=len(loaded.warnings),
        )
        return UploadOutcome(
            side=side,
            record_count=len(loaded.records),
            header_index=loaded.header_index,
            warnings=list(loaded.warnings),
            result=result,
        )

    def refresh(self) -> ReconciliationResult | None:
        """Recompute against the current tables, e.g. after rules change."""

        with self._lock:
            self._result = self._compute(self._authoritative, self._incoming)
            return self._result

    def clear(self) -> None:
        with self._lock:
            self._authoritative = None
            self._incoming = None
            self._result = None

    def _compute(
        self,
        authoritative: list[AuthoritativeRecord] | None,
        incoming: list[IncomingRecord] | None,
    ) -> ReconciliationResult | None:
        if authoritative is None or incoming is None:
            return None
        return self.engine.run(authoritative, incoming)


__all__ = ["ReconciliationSession", "Side", "UploadOutcome"]
