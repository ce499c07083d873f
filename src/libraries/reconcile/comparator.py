"""Compare incoming policy records against the Salesforce export."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Iterable, List, Sequence, TypeVar

import structlog

from libraries.reconcile.records import (
    NOT_FOUND,
    AuthoritativeRecord,
    DiscrepancyRecord,
    IncomingRecord,
)
from libraries.reconcile.rules import (
    ProductEquivalenceRule,
    RuleRepository,
    StatusEquivalenceRule,
)

log = structlog.get_logger(__name__)

PREMIUM_TOLERANCE = Decimal("0.01")
_PREMIUM_NOISE = str.maketrans("", "", "$, \t")

RecordT = TypeVar("RecordT", AuthoritativeRecord, IncomingRecord)


class UnmatchedPolicy(str, Enum):
    """What to do with incoming records whose key is absent from Salesforce."""

    SKIP = "skip"
    FLAG = "flag"


class ProductMode(str, Enum):
    """How product values are compared."""

    EXACT_THEN_RULES = "exact_then_rules"
    RULES_ONLY = "rules_only"


@dataclass(frozen=True, slots=True)
class MatchOptions:
    on_unmatched: UnmatchedPolicy = UnmatchedPolicy.SKIP
    product_mode: ProductMode = ProductMode.EXACT_THEN_RULES
    status_case_sensitive: bool = True


@dataclass(frozen=True, slots=True)
class ReconciliationSummary:
    total_incoming: int
    mismatched: int
    not_found: int
    matched: int


@dataclass(slots=True)
class ReconciliationResult:
    """Every compared record plus the keys that had no Salesforce counterpart.

    :attr:`records` holds one entry per compared incoming record, including
    clean ones, so views can choose whether to show matches.
    """

    records: List[DiscrepancyRecord] = field(default_factory=list)
    unmatched_keys: List[str] = field(default_factory=list)
    total_incoming: int = 0

    @property
    def discrepancies(self) -> list[DiscrepancyRecord]:
        return [record for record in self.records if record.has_mismatch]

    @property
    def summary(self) -> ReconciliationSummary:
        return ReconciliationSummary(
            total_incoming=self.total_incoming,
            mismatched=sum(1 for record in self.records if record.has_mismatch),
            not_found=len(self.unmatched_keys),
            matched=sum(
                1 for record in self.records if record.found and not record.has_mismatch
            ),
        )


def parse_premium(value: str | None) -> Decimal:
    """Return the numeric value of a currency string such as ``"$1,234.56"``.

    Blank, unparsable and non-finite values count as zero.
    """

    cleaned = (value or "").translate(_PREMIUM_NOISE)
    if not cleaned:
        return Decimal(0)
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return Decimal(0)
    if not amount.is_finite():
        return Decimal(0)
    return amount


def premium_mismatch(authoritative: str, incoming: str) -> bool:
    difference = abs(parse_premium(authoritative) - parse_premium(incoming))
    return difference > PREMIUM_TOLERANCE


def status_mismatch(
    authoritative: str,
    incoming: str,
    rules: Iterable[StatusEquivalenceRule],
    *,
    case_sensitive: bool = True,
) -> bool:
    if case_sensitive:
        equal = authoritative == incoming
    else:
        equal = authoritative.casefold() == incoming.casefold()
    if equal:
        return False
    return not any(
        rule.matches(authoritative, incoming, case_sensitive=case_sensitive)
        for rule in rules
    )


def product_mismatch(
    authoritative: str,
    incoming: IncomingRecord,
    rules: Iterable[ProductEquivalenceRule],
    *,
    mode: ProductMode = ProductMode.EXACT_THEN_RULES,
) -> bool:
    if mode is ProductMode.EXACT_THEN_RULES and authoritative == incoming.effective_product:
        return False
    return not any(rule.matches(authoritative, incoming) for rule in rules)


def _index_authoritative(
    records: Iterable[AuthoritativeRecord],
) -> dict[str, AuthoritativeRecord]:
    index: dict[str, AuthoritativeRecord] = {}
    for record in records:
        key = record.key.strip()
        if key in index:
            log.warning("reconcile.compare.duplicate_key", key=key)
            continue
        index[key] = record
    return index


def _not_found(record: IncomingRecord) -> DiscrepancyRecord:
    return DiscrepancyRecord(
        policy_id=record.key,
        salesforce_status=NOT_FOUND,
        incoming_status=record.status,
        salesforce_premium=NOT_FOUND,
        incoming_premium=record.premium,
        salesforce_product=NOT_FOUND,
        incoming_product=record.effective_product,
        status_mismatch=True,
        premium_mismatch=True,
        product_mismatch=True,
        found=False,
    )


def _trimmed(record: RecordT) -> RecordT:
    return replace(
        record,
        **{item.name: getattr(record, item.name).strip() for item in fields(record)},
    )


def compare_pair(
    authoritative: AuthoritativeRecord,
    incoming: IncomingRecord,
    status_rules: Sequence[StatusEquivalenceRule],
    product_rules: Sequence[ProductEquivalenceRule],
    *,
    options: MatchOptions = MatchOptions(),
) -> DiscrepancyRecord:
    """Compare one joined pair; the three flags are evaluated independently.

    Field values are trimmed before comparison.
    """

    authoritative = _trimmed(authoritative)
    incoming = _trimmed(incoming)
    return DiscrepancyRecord(
        policy_id=incoming.key,
        salesforce_status=authoritative.status,
        incoming_status=incoming.status,
        salesforce_premium=authoritative.premium,
        incoming_premium=incoming.premium,
        salesforce_product=authoritative.product,
        incoming_product=incoming.effective_product,
        status_mismatch=status_mismatch(
            authoritative.status,
            incoming.status,
            status_rules,
            case_sensitive=options.status_case_sensitive,
        ),
        premium_mismatch=premium_mismatch(authoritative.premium, incoming.premium),
        product_mismatch=product_mismatch(
            authoritative.product, incoming, product_rules, mode=options.product_mode
        ),
    )


def reconcile(
    authoritative: Iterable[AuthoritativeRecord],
    incoming: Iterable[IncomingRecord],
    status_rules: Sequence[StatusEquivalenceRule],
    product_rules: Sequence[ProductEquivalenceRule],
    *,
    options: MatchOptions = MatchOptions(),
) -> ReconciliationResult:
    """Join *incoming* to *authoritative* by policy key and compare fields.

    Output order follows *incoming*.  Every incoming record pairs with the
    first Salesforce record sharing its key, so repeated incoming keys are
    each compared against that same record.
    """

    index = _index_authoritative(authoritative)
    result = ReconciliationResult()

    for record in incoming:
        result.total_incoming += 1
        counterpart = index.get(record.key.strip())
        if counterpart is None:
            result.unmatched_keys.append(record.key)
            if options.on_unmatched is UnmatchedPolicy.FLAG:
                result.records.append(_not_found(record))
            continue
        result.records.append(
            compare_pair(
                counterpart, record, status_rules, product_rules, options=options
            )
        )

    summary = result.summary
    log.info(
        "reconcile.compare.complete",
        incoming=summary.total_incoming,
        mismatches=summary.mismatched,
        not_found=summary.not_found,
    )
    return result


class ReconciliationEngine:
    """Run :func:`reconcile` with rules fetched from a repository at call time."""

    def __init__(
        self,
        repository: RuleRepository,
        *,
        options: MatchOptions | None = None,
    ) -> None:
        self.repository = repository
        self.options = options or MatchOptions()

    def run(
        self,
        authoritative: Iterable[AuthoritativeRecord],
        incoming: Iterable[IncomingRecord],
    ) -> ReconciliationResult:
        return reconcile(
            authoritative,
            incoming,
            self.repository.load_status(),
            self.repository.load_product(),
            options=self.options,
        )


__all__ = [
    "MatchOptions",
    "PREMIUM_TOLERANCE",
    "ProductMode",
    "ReconciliationEngine",
    "ReconciliationResult",
    "ReconciliationSummary",
    "UnmatchedPolicy",
    "compare_pair",
    "parse_premium",
    "premium_mismatch",
    "product_mismatch",
    "reconcile",
    "status_mismatch",
]
