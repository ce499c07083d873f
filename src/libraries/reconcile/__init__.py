"""Policy reconciliation between Salesforce exports and incoming submissions."""

from libraries.reconcile.comparator import (
    MatchOptions,
    ProductMode,
    ReconciliationEngine,
    ReconciliationResult,
    ReconciliationSummary,
    UnmatchedPolicy,
    reconcile,
)
from libraries.reconcile.errors import (
    FileReadError,
    ParseError,
    ReconcileError,
    RuleStoreError,
    ValidationWarning,
)
from libraries.reconcile.headers import (
    ExactSetDetector,
    FingerprintDetector,
    HeaderDetector,
    locate_header_row,
)
from libraries.reconcile.parsing import (
    INCOMING_SHAPE,
    SALESFORCE_SHAPE,
    ColumnSpec,
    TableShape,
    load_authoritative,
    load_incoming,
    parse_table,
    read_payload,
)
from libraries.reconcile.records import (
    AuthoritativeRecord,
    DiscrepancyRecord,
    IncomingRecord,
)
from libraries.reconcile.rules import (
    JsonFileStore,
    MemoryStore,
    ProductEquivalenceRule,
    RuleKind,
    RuleRepository,
    StatusEquivalenceRule,
)
from libraries.reconcile.session import ReconciliationSession, Side

__all__ = [
    "AuthoritativeRecord",
    "ColumnSpec",
    "DiscrepancyRecord",
    "ExactSetDetector",
    "FileReadError",
    "FingerprintDetector",
    "HeaderDetector",
    "INCOMING_SHAPE",
    "IncomingRecord",
    "JsonFileStore",
    "MatchOptions",
    "MemoryStore",
    "ParseError",
    "ProductEquivalenceRule",
    "ProductMode",
    "ReconcileError",
    "ReconciliationEngine",
    "ReconciliationResult",
    "ReconciliationSession",
    "ReconciliationSummary",
    "RuleKind",
    "RuleRepository",
    "RuleStoreError",
    "SALESFORCE_SHAPE",
    "Side",
    "StatusEquivalenceRule",
    "TableShape",
    "UnmatchedPolicy",
    "ValidationWarning",
    "load_authoritative",
    "load_incoming",
    "locate_header_row",
    "parse_table",
    "read_payload",
    "reconcile",
]
