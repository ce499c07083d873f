from __future__ import annotations

import csv
import io
import json
from pathlib import Path

from libraries.reconcile.comparator import MatchOptions, UnmatchedPolicy, reconcile
from libraries.reconcile.parsing import (
    INCOMING_SHAPE,
    load_authoritative,
    load_incoming,
    parse_table,
)
from libraries.reconcile.records import REPORT_FIELDS
from libraries.reconcile.report import (
    record_rows,
    render_csv,
    render_json,
    rows_to_csv,
    select_records,
    write_csv_report,
    write_json_report,
)
from libraries.reconcile.rules import DEFAULT_PRODUCT_RULES, DEFAULT_STATUS_RULES


def _result(salesforce_csv: str, incoming_csv: str, **options):
    return reconcile(
        load_authoritative(salesforce_csv).records,
        load_incoming(incoming_csv).records,
        DEFAULT_STATUS_RULES,
        DEFAULT_PRODUCT_RULES,
        options=MatchOptions(**options),
    )


def test_select_records_hides_matches_by_default(
    salesforce_csv: str, incoming_csv: str
) -> None:
    result = _result(salesforce_csv, incoming_csv)

    assert [r.policy_id for r in select_records(result)] == ["P3"]
    assert [r.policy_id for r in select_records(result, show_matches=True)] == [
        "P1",
        "P2",
        "P3",
    ]


def test_csv_report_columns_and_flags(salesforce_csv: str, incoming_csv: str) -> None:
    result = _result(salesforce_csv, incoming_csv, on_unmatched=UnmatchedPolicy.FLAG)

    text = render_csv(select_records(result))
    rows = list(csv.DictReader(io.StringIO(text)))

    assert text.splitlines()[0] == ",".join(REPORT_FIELDS)
    assert [row["policyId"] for row in rows] == ["P3", "P9"]
    assert rows[0]["statusMismatch"] == "true"
    assert rows[0]["premiumMismatch"] == "false"
    assert rows[1]["salesforceStatus"] == "Not Found"
    assert "found" not in rows[0]


def test_record_rows_keep_values_verbatim(salesforce_csv: str, incoming_csv: str) -> None:
    result = _result(salesforce_csv, incoming_csv)

    rows = record_rows(select_records(result, show_matches=True))

    assert rows[1]["salesforcePremium"] == "$1,200.00"
    assert rows[1]["incomingPremium"] == "1200.004"
    assert rows[1]["incomingProduct"] == "TAWL + Good Risk"


def test_parsed_rows_survive_csv_round_trip() -> None:
    content = (
        "PolicyId,Status,PremiumAmount,ProductType,TieredRisk\n"
        'P1,"Approved, pending","$1,200.00","Term\nBand 1",Good Risk\n'
        'P2,"Says ""hi""",0012.50,GAWL,\n'
    )
    table = parse_table(content, INCOMING_SHAPE)

    reparsed = parse_table(rows_to_csv(table.rows, table.columns), INCOMING_SHAPE)

    assert reparsed.columns == table.columns
    assert reparsed.rows == table.rows
    assert reparsed.rows[1]["PremiumAmount"] == "0012.50"


def test_rows_to_csv_infers_columns_in_first_seen_order() -> None:
    text = rows_to_csv([{"b": 1, "a": True}, {"c": None, "a": False}])

    assert text == "b,a,c\n1,true,\n,false,\n"


def test_json_report_uses_camel_case(salesforce_csv: str, incoming_csv: str) -> None:
    result = _result(salesforce_csv, incoming_csv)

    payload = json.loads(render_json(select_records(result)))

    assert payload == [
        {
            "policyId": "P3",
            "salesforceStatus": "Declined",
            "incomingStatus": "Approved",
            "salesforcePremium": "$300.00",
            "incomingPremium": "300",
            "salesforceProduct": "TruStage Term Band 1",
            "incomingProduct": "SI Term Band 1",
            "statusMismatch": True,
            "premiumMismatch": False,
            "productMismatch": False,
        }
    ]


def test_reports_are_written_to_disk(
    tmp_path: Path, salesforce_csv: str, incoming_csv: str
) -> None:
    records = select_records(_result(salesforce_csv, incoming_csv))
    csv_path = tmp_path / "out" / "mismatches.csv"
    json_path = tmp_path / "out" / "mismatches.json"

    write_csv_report(csv_path, records)
    write_json_report(json_path, records)

    assert csv_path.read_text(encoding="utf-8").count("\n") == 2
    assert json.loads(json_path.read_text(encoding="utf-8"))[0]["policyId"] == "P3"
