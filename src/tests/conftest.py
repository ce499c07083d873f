"""Shared fixtures for the policycheck test-suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from libraries.reconcile.rules import MemoryStore, RuleRepository

SALESFORCE_CSV = """Policy Activity Report,,,
Generated 2024-05-01,,,
,,,
Policy #,Application Status,Premium Issued,Product Issued
P1,Policy Issued,$500.00,TruStage Guaranteed Whole Life (GAWL)
P2,Policy Issued,"$1,200.00",TruStage Advantage Whole Life (TAWL) - Preferred
P3,Declined,$300.00,TruStage Term Band 1
"""

INCOMING_CSV = """PolicyId,Status,PremiumAmount,ProductType,TieredRisk
P1,Approved,500,GAWL,
P2,Approved,1200.004,TAWL,Good Risk
P3,Approved,300,SI Term Band 1,
P9,Approved,100,GAWL,
"""


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    home = tmp_path / "home"
    home.mkdir()
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    monkeypatch.delenv("POLICYCHECK_PROFILE", raising=False)
    monkeypatch.setenv("POLICYCHECK_PROJECT_ROOT", str(project))
    monkeypatch.setenv("POLICYCHECK_RULES_PATH", str(tmp_path / "rules.json"))


@pytest.fixture
def salesforce_csv() -> str:
    return SALESFORCE_CSV


@pytest.fixture
def incoming_csv() -> str:
    return INCOMING_CSV


@pytest.fixture
def repository() -> RuleRepository:
    return RuleRepository(MemoryStore())


@pytest.fixture
def csv_files(tmp_path: Path) -> tuple[Path, Path]:
    salesforce = tmp_path / "salesforce.csv"
    incoming = tmp_path / "incoming.csv"
    salesforce.write_text(SALESFORCE_CSV, encoding="utf-8")
    incoming.write_text(INCOMING_CSV, encoding="utf-8")
    return salesforce, incoming
