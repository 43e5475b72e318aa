from __future__ import annotations

import re
from typing import Optional

from crawl_reports.dates import ReportDate

DATE_PLACEHOLDER = "${YYYY-MM-DD}"
MONTH_PLACEHOLDER = "${YYYYMM}"

_WHERE_RE = re.compile(r"\bWHERE\b", re.IGNORECASE)
_GROUP_BY_RE = re.compile(r"\bGROUP\s+BY\b", re.IGNORECASE)


class TemplateRewriteError(ValueError):
    """Raised when a filter cannot be placed into a query template."""


def substitute_dates(sql: str, report_date: Optional[ReportDate]) -> str:
    if report_date is None:
        return sql
    return sql.replace(DATE_PLACEHOLDER, report_date.dash).replace(
        MONTH_PLACEHOLDER, report_date.yyyymm
    )


def inject_predicate(sql: str, predicate: str) -> str:
    """Add ``predicate`` to the first WHERE clause, or open one before GROUP BY.

    This is keyword matching, not parsing: templates are expected to carry a
    single top-level WHERE or GROUP BY.
    """
    where = _WHERE_RE.search(sql)
    if where:
        return f"{sql[: where.end()]} {predicate} AND{sql[where.end():]}"
    group_by = _GROUP_BY_RE.search(sql)
    if group_by:
        start = group_by.start()
        return f"{sql[:start]}WHERE {predicate} {sql[start:]}"
    raise TemplateRewriteError(
        "Template has neither a WHERE nor a GROUP BY clause to attach a filter to."
    )


def inject_join(sql: str, join: str, table_pattern: str) -> str:
    """Append ``join`` after each backtick-quoted table named ``table_pattern*``."""
    table_re = re.compile(rf"(`{re.escape(table_pattern)}[^`]*`)")
    return table_re.sub(lambda match: f"{match.group(1)} {join}", sql)


def combine_predicates(*predicates: Optional[str]) -> Optional[str]:
    parts = [predicate for predicate in predicates if predicate]
    if not parts:
        return None
    return " AND ".join(parts)


def incremental_boundary(
    after: Optional[ReportDate], until: Optional[ReportDate]
) -> Optional[str]:
    """Date window for a timeseries run: ``date > after`` and/or ``date <= until``."""
    return combine_predicates(
        f"date > '{after.dash}'" if after is not None else None,
        f"date <= '{until.dash}'" if until is not None else None,
    )


def build_query(
    template: str,
    *,
    report_date: Optional[ReportDate] = None,
    predicate: Optional[str] = None,
    join: Optional[str] = None,
    table_pattern: str = "chrome-ux-report",
) -> str:
    sql = template
    if predicate:
        sql = inject_predicate(sql, predicate)
    if join:
        sql = inject_join(sql, join, table_pattern)
    return substitute_dates(sql, report_date)


__all__ = [
    "DATE_PLACEHOLDER",
    "MONTH_PLACEHOLDER",
    "TemplateRewriteError",
    "build_query",
    "combine_predicates",
    "incremental_boundary",
    "inject_join",
    "inject_predicate",
    "substitute_dates",
]
