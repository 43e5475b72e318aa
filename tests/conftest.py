from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import pytest

from crawl_reports.lenses import LensResolver
from crawl_reports.pipeline import ReportPipeline
from crawl_reports.storage import JSON_CONTENT_TYPE, ObjectStore
from crawl_reports.templates import TemplateStore
from crawl_reports.warehouse import QueryError, QueryResult, Warehouse

SQL_FILES: Dict[str, str] = {
    "histograms/bytesTotal.sql": (
        "#standardSQL\n"
        "SELECT client, COUNT(0) AS volume\n"
        "FROM `httparchive.crawl.pages`\n"
        "WHERE date = '${YYYY-MM-DD}'\n"
        "GROUP BY client\n"
    ),
    "histograms/reqTotal.sql": (
        "SELECT client, COUNT(0) AS volume\n"
        "FROM `httparchive.crawl.requests`\n"
        "GROUP BY client\n"
    ),
    "histograms/cruxFcp.sql": (
        "SELECT bin, SUM(density) AS volume\n"
        "FROM `chrome-ux-report.all.${YYYYMM}`\n"
        "GROUP BY bin\n"
    ),
    "timeseries/bytesTotal.sql": (
        "SELECT date, client, COUNT(0) AS pages\n"
        "FROM `httparchive.crawl.pages`\n"
        "GROUP BY date, client\n"
    ),
    "timeseries/cruxFcp.sql": (
        "SELECT yyyymm AS date, SUM(fast) AS fast\n"
        "FROM `chrome-ux-report.materialized.device_summary`\n"
        "GROUP BY date\n"
    ),
    "lens/top1k/histograms.sql": "rank <= 1000\n",
    "lens/top1k/timeseries.sql": "rank <= 1000\n",
    "lens/top1k/crux_histograms.sql": "JOIN popular\nUSING (origin)\n",
    "lens/wordpress/histograms.sql": "'WordPress' IN UNNEST(technologies)\n",
    "lens/wordpress/timeseries.sql": "'WordPress' IN UNNEST(technologies)\n",
}

ProbeAnswer = Union[bool, Callable[[str], bool]]


class FakeWarehouse(Warehouse):
    """Records every query; answers with canned rows."""

    def __init__(
        self,
        rows: Optional[List[dict]] = None,
        probe: ProbeAnswer = True,
        fail_on: Tuple[str, ...] = (),
    ) -> None:
        self.rows = rows if rows is not None else [{"date": "2024_02_01", "value": 1}]
        self.probe_answer = probe
        self.fail_on = fail_on
        self.queries: List[str] = []
        self.probes: List[str] = []

    def query(self, sql: str) -> QueryResult:
        self.queries.append(sql)
        for marker in self.fail_on:
            if marker in sql:
                raise QueryError(
                    "bq exited with status 1", output="Error in query string"
                )
        return QueryResult(text=json.dumps(self.rows), elapsed_s=0.5)

    def probe(self, sql: str) -> bool:
        self.probes.append(sql)
        if callable(self.probe_answer):
            return self.probe_answer(sql)
        return self.probe_answer


class MemoryStore(ObjectStore):
    def __init__(self, objects: Optional[Dict[str, str]] = None) -> None:
        self.objects: Dict[str, str] = dict(objects or {})
        self.writes: List[Tuple[str, str]] = []

    def exists(self, path: str) -> bool:
        return path in self.objects

    def read_text(self, path: str) -> str:
        return self.objects[path]

    def write_text(
        self, path: str, text: str, content_type: str = JSON_CONTENT_TYPE
    ) -> None:
        self.objects[path] = text
        self.writes.append((path, content_type))


def write_sql_tree(root: Path, files: Optional[Dict[str, str]] = None) -> Path:
    for relative, content in (files or SQL_FILES).items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def sql_root(tmp_path: Path) -> Path:
    return write_sql_tree(tmp_path / "sql")


@pytest.fixture
def make_pipeline(sql_root: Path):
    def _make(warehouse: Warehouse, store: ObjectStore) -> ReportPipeline:
        templates = TemplateStore(sql_root)
        return ReportPipeline(
            templates,
            LensResolver(templates.lens_root),
            warehouse,
            store,
        )

    return _make
