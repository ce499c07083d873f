from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from libraries.reconcile.comparator import MatchOptions, UnmatchedPolicy
from libraries.reconcile.errors import ParseError, RuleStoreError
from libraries.reconcile.rules import MemoryStore, RuleKind, RuleRepository
from libraries.reconcile.session import ReconciliationSession, Side


class _UnreadableStore(MemoryStore):
    def __init__(self) -> None:
        super().__init__()
        self.broken = False

    def get(self, key: str):
        if self.broken:
            raise RuleStoreError("rule store is unreadable")
        return super().get(key)


def test_report_appears_once_both_sides_are_loaded(
    repository: RuleRepository, salesforce_csv: str, incoming_csv: str
) -> None:
    session = ReconciliationSession(repository)

    first = session.upload(Side.SALESFORCE, salesforce_csv)
    assert first.result is None
    assert first.record_count == 3
    assert first.header_index == 3
    assert session.result is None

    second = session.upload("incoming", incoming_csv.encode("utf-8"))

    assert second.side is Side.INCOMING
    assert second.result is session.result
    assert [record.policy_id for record in second.result.discrepancies] == ["P3"]


def test_replacing_a_side_recomputes(
    repository: RuleRepository, salesforce_csv: str, incoming_csv: str
) -> None:
    session = ReconciliationSession(repository)
    session.upload(Side.SALESFORCE, salesforce_csv)
    session.upload(Side.INCOMING, incoming_csv)

    fixed = incoming_csv.replace("P3,Approved", "P3,Declined")
    outcome = session.upload(Side.INCOMING, fixed)

    assert outcome.result.discrepancies == []
    assert len(session.incoming) == 4


def test_failed_upload_leaves_state_untouched(
    repository: RuleRepository, salesforce_csv: str, incoming_csv: str
) -> None:
    session = ReconciliationSession(repository)
    session.upload(Side.SALESFORCE, salesforce_csv)
    session.upload(Side.INCOMING, incoming_csv)
    before = session.result

    with pytest.raises(ParseError):
        session.upload(Side.SALESFORCE, b"\xff\xfe\x00\x00")

    assert len(session.authoritative) == 3
    assert session.result is before


def test_empty_reupload_replaces_the_previous_report(
    repository: RuleRepository, salesforce_csv: str, incoming_csv: str
) -> None:
    session = ReconciliationSession(repository)
    session.upload(Side.SALESFORCE, salesforce_csv)
    session.upload(Side.INCOMING, incoming_csv)
    assert len(session.result.discrepancies) == 1

    outcome = session.upload(
        Side.INCOMING, "PolicyId,Status,PremiumAmount,ProductType\n"
    )

    assert outcome.record_count == 0
    assert outcome.result is session.result
    assert session.result.summary.total_incoming == 0
    assert session.result.discrepancies == []
    assert session.incoming == []


def test_empty_salesforce_upload_flags_every_incoming_record(
    repository: RuleRepository, incoming_csv: str
) -> None:
    session = ReconciliationSession(
        repository, options=MatchOptions(on_unmatched=UnmatchedPolicy.FLAG)
    )
    session.upload(Side.INCOMING, incoming_csv)

    outcome = session.upload(
        Side.SALESFORCE, "Policy #,Application Status,Premium Issued,Product Issued\n"
    )

    assert outcome.result is not None
    assert outcome.result.unmatched_keys == ["P1", "P2", "P3", "P9"]
    assert len(outcome.result.discrepancies) == 4
    assert not any(record.found for record in outcome.result.records)


def test_rule_store_failure_leaves_state_untouched(
    salesforce_csv: str, incoming_csv: str
) -> None:
    store = _UnreadableStore()
    session = ReconciliationSession(RuleRepository(store))
    session.upload(Side.SALESFORCE, salesforce_csv)
    session.upload(Side.INCOMING, incoming_csv)
    before = session.result

    store.broken = True
    with pytest.raises(RuleStoreError):
        session.upload(Side.INCOMING, "PolicyId,Status,PremiumAmount,ProductType\n")

    assert len(session.incoming) == 4
    assert session.result is before


def test_upload_reports_row_warnings(repository: RuleRepository) -> None:
    session = ReconciliationSession(repository)

    outcome = session.upload(
        Side.INCOMING,
        "PolicyId,Status,PremiumAmount,ProductType\n"
        'P1,"Appro"ved,1,GAWL\n'
        "P2,Approved,1,GAWL\n",
    )

    assert outcome.record_count == 1
    assert len(outcome.warnings) == 1


def test_refresh_applies_rule_changes(
    repository: RuleRepository, salesforce_csv: str, incoming_csv: str
) -> None:
    session = ReconciliationSession(repository)
    session.upload(Side.SALESFORCE, salesforce_csv)
    session.upload(Side.INCOMING, incoming_csv)

    session.repository.save(
        RuleKind.STATUS,
        [
            {"authoritative": "Policy Issued", "incoming": "Approved"},
            {"authoritative": "Declined", "incoming": "Approved"},
        ],
    )
    result = session.refresh()

    assert result is not None
    assert result.discrepancies == []


def test_clear_forgets_everything(
    repository: RuleRepository, salesforce_csv: str, incoming_csv: str
) -> None:
    session = ReconciliationSession(repository)
    session.upload(Side.SALESFORCE, salesforce_csv)
    session.upload(Side.INCOMING, incoming_csv)

    session.clear()

    assert session.result is None
    assert session.authoritative == []
    assert session.refresh() is None


def test_concurrent_uploads_leave_a_consistent_report(
    repository: RuleRepository, salesforce_csv: str, incoming_csv: str
) -> None:
    session = ReconciliationSession(repository)
    session.upload(Side.SALESFORCE, salesforce_csv)
    payloads = [
        incoming_csv if index % 2 else incoming_csv.replace("P3,Approved", "P3,Declined")
        for index in range(20)
    ]

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(lambda payload: session.upload(Side.INCOMING, payload), payloads))

    result = session.result
    assert result is not None
    assert result.summary.total_incoming == 4
    assert len(result.discrepancies) in (0, 1)
