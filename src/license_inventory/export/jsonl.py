from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable

from ..normalize.schema import ReportRecord
from ..util.errors import ExportError


def write_jsonl(records: Iterable[ReportRecord], path: Path) -> int:
    """
    Write one JSON object per host; keys follow the report column order.
    """
    count = 0
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            for rec in records:
                f.write(json.dumps(rec.as_dict(), ensure_ascii=False))
                f.write("\n")
                count += 1
    except OSError as e:
        raise ExportError(f"Failed to write {path}: {e}") from e
    return count
