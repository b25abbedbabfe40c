from __future__ import annotations

import csv
from pathlib import Path
from typing import IO, Iterable, Union

from ..normalize.schema import REPORT_FIELDS, ReportRecord
from ..util.errors import ExportError


def _write_rows(records: Iterable[ReportRecord], stream: IO[str], delimiter: str) -> int:
    writer = csv.DictWriter(stream, fieldnames=REPORT_FIELDS, delimiter=delimiter, lineterminator="\n")
    writer.writeheader()
    count = 0
    for rec in records:
        writer.writerow(rec.as_dict())
        count += 1
    return count


def write_csv(records: Iterable[ReportRecord], target: Union[Path, IO[str]], *, delimiter: str = ",") -> int:
    """
    Write the report as delimited text with a header row.
    Rows keep the order of `records` (the input host order); returns the row count.
    """
    if not isinstance(target, Path):
        return _write_rows(records, target, delimiter)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("w", encoding="utf-8", newline="") as f:
            return _write_rows(records, f, delimiter)
    except OSError as e:
        raise ExportError(f"Failed to write {target}: {e}") from e
