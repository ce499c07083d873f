"""Typer command comparing a Salesforce export with an incoming submission."""

from __future__ import annotations

from pathlib import Path
from typing import NoReturn, Optional, Sequence

import structlog
import typer
from rich.console import Console
from rich.table import Table
from rich.text import Text

from apps.policycheck.config import load_settings
from apps.policycheck.utils.errors import (
    ExitCode,
    PolicyCheckError,
    PolicyCheckIOError,
)
from libraries.reconcile.comparator import ProductMode, UnmatchedPolicy
from libraries.reconcile.errors import FileReadError, ParseError, RuleStoreError
from libraries.reconcile.parsing import read_payload
from libraries.reconcile.records import DiscrepancyRecord
from libraries.reconcile.report import (
    select_records,
    write_csv_report,
    write_json_report,
)
from libraries.reconcile.session import ReconciliationSession, Side

log = structlog.get_logger(__name__)


def fail(exc: PolicyCheckError) -> NoReturn:
    """Report *exc* on stderr and exit with its code."""

    typer.secho(f"{exc.heading}: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=int(exc.exit_code)) from exc


def _cell(lhs: str, rhs: str, mismatch: bool) -> Text:
    return Text(f"{lhs} / {rhs}", style="red" if mismatch else "")


def render_records(console: Console, records: Sequence[DiscrepancyRecord]) -> None:
    """Print *records* as a table with mismatched cells highlighted."""

    table = Table(title=f"Policies shown: {len(records)}", show_lines=False)
    table.add_column("Policy ID", no_wrap=True)
    table.add_column("Status (SF/Incoming)")
    table.add_column("Premium (SF/Incoming)")
    table.add_column("Product (SF/Incoming)")
    table.add_column("Mismatches")
    for record in records:
        flags = [
            label
            for label, flagged in (
                ("Status", record.status_mismatch),
                ("Premium", record.premium_mismatch),
                ("Product", record.product_mismatch),
            )
            if flagged
        ]
        table.add_row(
            record.policy_id,
            _cell(record.salesforce_status, record.incoming_status, record.status_mismatch),
            _cell(
                record.salesforce_premium,
                record.incoming_premium,
                record.premium_mismatch,
            ),
            _cell(
                record.salesforce_product,
                record.incoming_product,
                record.product_mismatch,
            ),
            ", ".join(flags) or "-",
        )
    console.print(table)


def _upload(session: ReconciliationSession, side: Side, path: Path) -> None:
    try:
        outcome = session.upload(side, read_payload(path))
    except (FileReadError, ParseError) as exc:
        log.error("policycheck.compare.load_failed", side=side.value, error=str(exc))
        fail(PolicyCheckIOError(f"{side.value} file '{path}': {exc}"))
    for warning in outcome.warnings:
        typer.secho(f"{side.value}: {warning}", fg=typer.colors.YELLOW, err=True)
    typer.secho(
        f"Loaded {outcome.record_count} {side.value} record(s) from {path}",
        fg=typer.colors.CYAN,
    )


def compare(
    salesforce: Path = typer.Argument(..., help="Salesforce export (CSV)."),
    incoming: Path = typer.Argument(..., help="Incoming submission (CSV)."),
    csv_report: Optional[Path] = typer.Option(
        None, "--csv", help="Path to write a CSV report of the shown records."
    ),
    json_report: Optional[Path] = typer.Option(
        None, "--json", help="Path to write a JSON report of the shown records."
    ),
    show_matches: bool = typer.Option(
        False,
        "--show-matches/--mismatches-only",
        help="Include policies without discrepancies in the output.",
    ),
    on_unmatched: Optional[UnmatchedPolicy] = typer.Option(
        None,
        "--on-unmatched",
        case_sensitive=False,
        help="Skip incoming policies missing from Salesforce, or flag them.",
    ),
    product_mode: Optional[ProductMode] = typer.Option(
        None,
        "--product-mode",
        case_sensitive=False,
        help="Compare products exactly before rules, or by rules only.",
    ),
    status_case_insensitive: bool = typer.Option(
        False,
        "--status-case-insensitive",
        help="Ignore letter case when comparing statuses.",
    ),
    rules_path: Optional[Path] = typer.Option(
        None, "--rules", help="Rule store JSON file to use."
    ),
    profile: Optional[str] = typer.Option(
        None, "--profile", help="Configuration profile name."
    ),
) -> None:
    """Report status, premium and product discrepancies between two files."""

    try:
        settings = load_settings(profile=profile)
    except PolicyCheckError as exc:
        fail(exc)

    updates: dict[str, object] = {}
    if on_unmatched is not None:
        updates["on_unmatched"] = on_unmatched
    if product_mode is not None:
        updates["product_mode"] = product_mode
    if status_case_insensitive:
        updates["status_case_sensitive"] = False
    settings = settings.model_copy(update=updates)

    log.info(
        "policycheck.compare.start",
        salesforce=str(salesforce),
        incoming=str(incoming),
        on_unmatched=settings.on_unmatched.value,
        product_mode=settings.product_mode.value,
    )

    session = ReconciliationSession(
        settings.rule_repository(rules_path),
        options=settings.match_options(),
        max_header_rows=settings.header_scan_limit,
    )
    try:
        _upload(session, Side.SALESFORCE, salesforce)
        _upload(session, Side.INCOMING, incoming)
    except RuleStoreError as exc:
        fail(PolicyCheckIOError(str(exc)))

    result = session.result
    if result is None:
        fail(PolicyCheckIOError("both files must be loaded before comparing"))
    if not session.authoritative or not session.incoming:
        typer.secho(
            "One of the files has no policy records.", fg=typer.colors.YELLOW
        )

    records = select_records(result, show_matches=show_matches)
    if records:
        render_records(Console(), records)

    summary = result.summary
    typer.secho(
        f"Checked {summary.total_incoming} incoming policies", fg=typer.colors.CYAN
    )
    if summary.mismatched:
        typer.secho("Discrepancies detected:", fg=typer.colors.YELLOW)
        typer.secho(f"  mismatched: {summary.mismatched}", fg=typer.colors.YELLOW)
    else:
        typer.secho("All policies are consistent", fg=typer.colors.GREEN)
    if summary.not_found:
        typer.secho(
            f"  not found in Salesforce: {summary.not_found}", fg=typer.colors.YELLOW
        )

    if csv_report:
        write_csv_report(csv_report, records)
        typer.secho(f"Wrote CSV report to {csv_report}", fg=typer.colors.BLUE)
    if json_report:
        write_json_report(json_report, records)
        typer.secho(f"Wrote JSON report to {json_report}", fg=typer.colors.BLUE)

    if summary.mismatched:
        raise typer.Exit(code=int(ExitCode.DISCREPANCIES))


__all__ = ["compare", "fail", "render_records"]
