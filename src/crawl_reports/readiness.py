from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from crawl_reports.dates import ReportDate
from crawl_reports.warehouse import Warehouse

DEFAULT_TABLES = ("httparchive.crawl.pages", "httparchive.crawl.requests")
DEFAULT_CLIENTS = ("desktop", "mobile")


@dataclass(frozen=True)
class Partition:
    table: str
    client: str
    root_page: bool

    @property
    def label(self) -> str:
        kind = "root" if self.root_page else "non-root"
        return f"{self.client.capitalize()} {kind} {self.table.rsplit('.', 1)[-1]}"

    def probe_sql(self, report_date: ReportDate) -> str:
        root_clause = "is_root_page" if self.root_page else "NOT is_root_page"
        return (
            f"SELECT true FROM `{self.table}` "
            f"WHERE date = '{report_date.dash}' AND client = '{self.client}' "
            f"AND {root_clause} LIMIT 1"
        )


def required_partitions(
    tables: Sequence[str] = DEFAULT_TABLES,
    clients: Sequence[str] = DEFAULT_CLIENTS,
) -> List[Partition]:
    return [
        Partition(table=table, client=client, root_page=root_page)
        for table in tables
        for client in clients
        for root_page in (True, False)
    ]


class NotReadyError(RuntimeError):
    def __init__(self, report: "ReadinessReport") -> None:
        super().__init__(
            f"The warehouse tables for {report.date.dash} are not available."
        )
        self.report = report


@dataclass
class ReadinessReport:
    date: ReportDate
    statuses: List[Tuple[Partition, bool]] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return bool(self.statuses) and all(ok for _, ok in self.statuses)

    def lines(self) -> List[str]:
        return [
            f"{partition.label} ready: {str(ok).lower()}"
            for partition, ok in self.statuses
        ]


def check_readiness(
    warehouse: Warehouse,
    report_date: ReportDate,
    partitions: Sequence[Partition],
) -> ReadinessReport:
    """Probe every partition; no short-circuit so the report lists them all."""
    report = ReadinessReport(date=report_date)
    for partition in partitions:
        ok = warehouse.probe(partition.probe_sql(report_date))
        report.statuses.append((partition, ok))
    return report


__all__ = [
    "NotReadyError",
    "Partition",
    "ReadinessReport",
    "check_readiness",
    "required_partitions",
]
