from __future__ import annotations

from typing import Iterable, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..normalize.schema import REPORT_FIELDS, UNKNOWN, UNKNOWN_CODE, ReportRecord


def _cell(value: object) -> str:
    if value == UNKNOWN or value == UNKNOWN_CODE:
        return f"[dim]{value}[/dim]"
    return escape(str(value))


def build_table(records: Iterable[ReportRecord]) -> Table:
    table = Table(title="License Inventory", show_header=True, header_style="bold")
    for name in REPORT_FIELDS:
        table.add_column(name, style="cyan" if name == "System" else None, overflow="fold")
    for rec in records:
        table.add_row(*(_cell(v) for v in rec.as_dict().values()))
    return table


def render_table(records: Iterable[ReportRecord], console: Optional[Console] = None) -> None:
    (console or Console()).print(build_table(records))
