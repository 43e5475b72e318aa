from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional

from crawl_reports.dates import ReportDate

Row = Dict[str, Any]


def load_rows(text: str) -> List[Row]:
    """Parse a report document; reports are JSON arrays of row objects."""
    if not text.strip():
        return []
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Report document is not valid JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise ValueError("Report document must be a JSON array.")
    return payload


def max_date(rows: Iterable[Row]) -> Optional[ReportDate]:
    dates = [
        parsed
        for parsed in (
            ReportDate.try_parse(row.get("date"))
            for row in rows
            if isinstance(row, dict)
        )
        if parsed is not None
    ]
    return max(dates) if dates else None


def concat_rows(new_rows: List[Row], existing_rows: List[Row]) -> List[Row]:
    # No dedup by date: a rerun over an already covered window repeats rows.
    return list(new_rows) + list(existing_rows)


def dump_rows(rows: List[Row]) -> str:
    return json.dumps(rows, indent=2, default=str)


__all__ = ["Row", "concat_rows", "dump_rows", "load_rows", "max_date"]
