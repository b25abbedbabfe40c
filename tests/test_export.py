from __future__ import annotations

import csv
import io
import json
from pathlib import Path

from rich.console import Console

from license_inventory.export.csv import write_csv
from license_inventory.export.jsonl import write_jsonl
from license_inventory.export.table import build_table, render_table
from license_inventory.normalize.schema import REPORT_FIELDS, ReportRecord


def _records() -> list[ReportRecord]:
    licensed = ReportRecord(System="HOST-B", Type="Windows Server 2022", Version="10.0.20348")
    licensed.LicenseStatus = "1 (Licensed)"
    licensed.LicenseProduct = "Windows Server Std"
    licensed.KMSServer = "kms01.corp.example"
    return [licensed, ReportRecord(System="HOST-A")]


def test_write_csv_to_stream_keeps_input_order() -> None:
    buf = io.StringIO()

    count = write_csv(_records(), buf)

    assert count == 2
    rows = list(csv.reader(io.StringIO(buf.getvalue())))
    assert rows[0] == REPORT_FIELDS
    assert [r[0] for r in rows[1:]] == ["HOST-B", "HOST-A"]
    assert rows[1][4] == "1 (Licensed)"
    assert rows[2][4] == "-1"
    assert rows[2][1] == "Unknown"


def test_write_csv_to_path_with_delimiter(tmp_path: Path) -> None:
    path = tmp_path / "out" / "report.csv"

    write_csv(_records(), path, delimiter=";")

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == ";".join(REPORT_FIELDS)
    assert lines[1].startswith("HOST-B;Windows Server 2022;10.0.20348;Windows Server Std;1 (Licensed)")


def test_write_jsonl(tmp_path: Path) -> None:
    path = tmp_path / "report.jsonl"

    assert write_jsonl(_records(), path) == 2

    objs = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert list(objs[0].keys()) == REPORT_FIELDS
    assert objs[0]["KMSServer"] == "kms01.corp.example"
    assert objs[1]["LicenseStatus"] == -1


def test_table_has_report_columns_and_rows() -> None:
    table = build_table(_records())
    assert [c.header for c in table.columns] == REPORT_FIELDS
    assert table.row_count == 2

    console = Console(file=io.StringIO(), width=250, color_system=None)
    render_table(_records(), console)
    text = console.file.getvalue()
    assert "HOST-A" in text
    assert "1 (Licensed)" in text
