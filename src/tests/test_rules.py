from __future__ import annotations

import json
from pathlib import Path

import pytest

from libraries.reconcile.errors import RuleStoreError
from libraries.reconcile.records import IncomingRecord
from libraries.reconcile.rules import (
    DEFAULT_PRODUCT_RULES,
    DEFAULT_STATUS_RULES,
    JsonFileStore,
    MemoryStore,
    ProductEquivalenceRule,
    RuleKind,
    RuleRepository,
    StatusEquivalenceRule,
    dump_rule_file,
    load_rule_file,
)


def test_defaults_apply_when_nothing_is_stored(repository: RuleRepository) -> None:
    assert repository.load(RuleKind.STATUS) == list(DEFAULT_STATUS_RULES)
    assert repository.load(RuleKind.PRODUCT) == list(DEFAULT_PRODUCT_RULES)
    assert repository.load_status()
    assert repository.load_product()


def test_save_replaces_whole_list(repository: RuleRepository) -> None:
    repository.save(
        RuleKind.STATUS,
        [
            {"authoritative": "Issued", "incoming": "Approved"},
            StatusEquivalenceRule(authoritative="Declined", incoming="Rejected"),
        ],
    )
    repository.save(RuleKind.STATUS, [{"authoritative": "Pending", "incoming": "Open"}])

    assert repository.load(RuleKind.STATUS) == [
        StatusEquivalenceRule(authoritative="Pending", incoming="Open")
    ]
    assert repository.load(RuleKind.PRODUCT) == list(DEFAULT_PRODUCT_RULES)


def test_stored_empty_list_is_respected(repository: RuleRepository) -> None:
    repository.save(RuleKind.PRODUCT, [])

    assert repository.load(RuleKind.PRODUCT) == []


def test_reset_restores_defaults(repository: RuleRepository) -> None:
    repository.save(RuleKind.STATUS, [{"authoritative": "A", "incoming": "B"}])
    repository.reset(RuleKind.STATUS)

    assert repository.load(RuleKind.STATUS) == list(DEFAULT_STATUS_RULES)


def test_json_store_persists_across_instances(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "rules.json"
    RuleRepository(JsonFileStore(path)).save(
        "product",
        [
            {
                "authoritative": "Plan A",
                "incoming": "A",
                "constrain_secondary": True,
                "secondary_value": "Good Risk",
            }
        ],
    )

    reloaded = RuleRepository(JsonFileStore(path)).load(RuleKind.PRODUCT)

    assert reloaded == [
        ProductEquivalenceRule(
            authoritative="Plan A",
            incoming="A",
            constrain_secondary=True,
            secondary_value="Good Risk",
        )
    ]
    stored = json.loads(path.read_text(encoding="utf-8"))
    assert set(stored) == {"productMappings"}


def test_json_store_defaults_to_environment_path(tmp_path: Path) -> None:
    store = JsonFileStore()

    assert store.path == tmp_path / "rules.json"


def test_legacy_browser_payload_is_accepted() -> None:
    store = MemoryStore(
        {
            "productMappings": [
                {
                    "salesforce": "TAWL - Preferred",
                    "incoming": "TAWL",
                    "includeTieredRisk": True,
                    "tieredRiskValue": "Good Risk",
                },
                {"salesforce": "GAWL Plan", "incoming": "GAWL", "tieredRiskValue": None},
            ],
            "statusMappings": [{"salesforce": "Policy Issued", "incoming": "Approved"}],
        }
    )
    repository = RuleRepository(store)

    products = repository.load_product()

    assert products[0].constrain_secondary is True
    assert products[0].secondary_value == "Good Risk"
    assert products[1].constrain_secondary is False
    assert products[1].secondary_value == ""
    assert repository.load_status()[0].authoritative == "Policy Issued"


def test_invalid_stored_value_falls_back_to_defaults() -> None:
    repository = RuleRepository(
        MemoryStore({"statusMappings": [{"incoming": "missing authoritative"}]})
    )

    assert repository.load(RuleKind.STATUS) == list(DEFAULT_STATUS_RULES)


def test_corrupt_store_file_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "rules.json"
    path.write_text("{not json", encoding="utf-8")

    repository = RuleRepository(JsonFileStore(path))

    assert repository.load(RuleKind.PRODUCT) == list(DEFAULT_PRODUCT_RULES)


def test_saving_invalid_rules_raises(repository: RuleRepository) -> None:
    with pytest.raises(RuleStoreError):
        repository.save(RuleKind.STATUS, [{"authoritative": "only one side"}])


def test_status_rules_are_directional() -> None:
    rule = StatusEquivalenceRule(authoritative="Policy Issued", incoming="Approved")

    assert rule.matches("Policy Issued", "Approved") is True
    assert rule.matches("Approved", "Policy Issued") is False
    assert rule.matches("policy issued", "APPROVED") is False
    assert rule.matches("policy issued", "APPROVED", case_sensitive=False) is True


def test_product_rule_secondary_constraint() -> None:
    rule = ProductEquivalenceRule(
        authoritative="TAWL - Preferred",
        incoming="TAWL",
        constrain_secondary=True,
        secondary_value="Good Risk",
    )
    good = IncomingRecord(key="P1", product="TAWL", secondary="Good Risk")
    moderate = IncomingRecord(key="P1", product="TAWL", secondary="Moderate Risk")

    assert rule.matches("TAWL - Preferred", good) is True
    assert rule.matches("TAWL - Preferred", moderate) is False
    assert rule.matches("TAWL - Standard", good) is False


def test_unconstrained_product_rule_ignores_secondary() -> None:
    rule = ProductEquivalenceRule(authoritative="GAWL Plan", incoming="GAWL")

    assert rule.matches("GAWL Plan", IncomingRecord(key="P", product="GAWL"))
    assert rule.matches(
        "GAWL Plan", IncomingRecord(key="P", product="GAWL", secondary="Good Risk")
    )


def test_product_rule_can_name_the_combined_product() -> None:
    rule = ProductEquivalenceRule(authoritative="TAWL Pref", incoming="TAWL + Good Risk")

    assert rule.matches(
        "TAWL Pref", IncomingRecord(key="P", product="TAWL", secondary="Good Risk")
    )


def test_rule_files_round_trip_through_yaml(tmp_path: Path) -> None:
    target = tmp_path / "exports" / "product.yaml"

    dump_rule_file(target, DEFAULT_PRODUCT_RULES)

    assert load_rule_file(target, RuleKind.PRODUCT) == list(DEFAULT_PRODUCT_RULES)
    assert target.read_text(encoding="utf-8").startswith("rules:")


def test_rule_file_accepts_bare_json_list(tmp_path: Path) -> None:
    source = tmp_path / "status.json"
    source.write_text(
        json.dumps([{"salesforce": "Issued", "incoming": "Approved"}]), encoding="utf-8"
    )

    assert load_rule_file(source, RuleKind.STATUS) == [
        StatusEquivalenceRule(authoritative="Issued", incoming="Approved")
    ]


@pytest.mark.parametrize("content", ["rules: nope\n", "42\n", "rules: [\n"])
def test_invalid_rule_files_raise(tmp_path: Path, content: str) -> None:
    source = tmp_path / "rules.yaml"
    source.write_text(content, encoding="utf-8")

    with pytest.raises(RuleStoreError):
        load_rule_file(source, RuleKind.STATUS)


def test_missing_rule_file_raises(tmp_path: Path) -> None:
    with pytest.raises(RuleStoreError):
        load_rule_file(tmp_path / "missing.yaml", RuleKind.STATUS)
