"""Typer commands for viewing and editing equivalence rules."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.table import Table

from apps.policycheck.compare import fail
from apps.policycheck.config import load_settings
from apps.policycheck.utils.errors import (
    PolicyCheckError,
    PolicyCheckIOError,
    PolicyCheckValidationError,
)
from libraries.reconcile.errors import RuleStoreError
from libraries.reconcile.rules import (
    EquivalenceRule,
    ProductEquivalenceRule,
    RuleKind,
    RuleRepository,
    dump_rule_file,
    load_rule_file,
)

log = structlog.get_logger(__name__)

app = typer.Typer(name="rules", help="Manage status and product equivalence rules.")

KindArgument = typer.Argument(..., case_sensitive=False, help="Rule list to use.")
RulesOption = typer.Option(None, "--rules", help="Rule store JSON file to use.")
ProfileOption = typer.Option(None, "--profile", help="Configuration profile name.")


def _repository(rules_path: Optional[Path], profile: Optional[str]) -> RuleRepository:
    try:
        return load_settings(profile=profile).rule_repository(rules_path)
    except PolicyCheckError as exc:
        fail(exc)


def _render(kind: RuleKind, rules: list[EquivalenceRule]) -> None:
    table = Table(title=f"{kind.value.title()} rules ({len(rules)})")
    table.add_column("Salesforce")
    table.add_column("Incoming")
    if kind is RuleKind.PRODUCT:
        table.add_column("Tiered risk")
    for rule in rules:
        cells = [rule.authoritative, rule.incoming]
        if isinstance(rule, ProductEquivalenceRule):
            cells.append(rule.secondary_value if rule.constrain_secondary else "any")
        table.add_row(*cells)
    Console().print(table)


@app.command("show")
def show(
    kind: RuleKind = KindArgument,
    rules_path: Optional[Path] = RulesOption,
    profile: Optional[str] = ProfileOption,
) -> None:
    """Print the active rules for KIND."""

    repository = _repository(rules_path, profile)
    try:
        rules = repository.load(kind)
    except RuleStoreError as exc:
        fail(PolicyCheckIOError(str(exc)))
    _render(kind, rules)


@app.command("import")
def import_rules(
    kind: RuleKind = KindArgument,
    source: Path = typer.Argument(..., help="YAML or JSON rule file."),
    rules_path: Optional[Path] = RulesOption,
    profile: Optional[str] = ProfileOption,
) -> None:
    """Replace the stored KIND rules with the contents of SOURCE."""

    repository = _repository(rules_path, profile)
    try:
        rules = load_rule_file(source, kind)
        repository.save(kind, rules)
    except RuleStoreError as exc:
        log.error("policycheck.rules.import_failed", kind=kind.value, error=str(exc))
        fail(PolicyCheckValidationError(str(exc)))
    typer.secho(
        f"Saved {len(rules)} {kind.value} rule(s) from {source}",
        fg=typer.colors.GREEN,
    )


@app.command("export")
def export_rules(
    kind: RuleKind = KindArgument,
    destination: Path = typer.Argument(..., help="YAML file to write."),
    rules_path: Optional[Path] = RulesOption,
    profile: Optional[str] = ProfileOption,
) -> None:
    """Write the active KIND rules to DESTINATION."""

    repository = _repository(rules_path, profile)
    try:
        rules = repository.load(kind)
        dump_rule_file(destination, rules)
    except RuleStoreError as exc:
        fail(PolicyCheckIOError(str(exc)))
    typer.secho(
        f"Wrote {len(rules)} {kind.value} rule(s) to {destination}",
        fg=typer.colors.BLUE,
    )


@app.command("reset")
def reset_rules(
    kind: RuleKind = KindArgument,
    rules_path: Optional[Path] = RulesOption,
    profile: Optional[str] = ProfileOption,
) -> None:
    """Discard stored KIND rules so the built-in defaults apply."""

    repository = _repository(rules_path, profile)
    try:
        repository.reset(kind)
    except RuleStoreError as exc:
        fail(PolicyCheckIOError(str(exc)))
    typer.secho(f"Restored default {kind.value} rules", fg=typer.colors.GREEN)


__all__ = ["app"]
