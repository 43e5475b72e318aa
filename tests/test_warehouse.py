from __future__ import annotations

import json
import subprocess

import pytest

pytest.importorskip("duckdb")
pytest.importorskip("polars")

from crawl_reports.warehouse import (  # noqa: E402
    BigQueryCliWarehouse,
    DuckDBWarehouse,
    QueryError,
)


def _completed(returncode: int, stdout: str, stderr: str = ""):
    def _run(command, **kwargs):
        _run.calls.append({"command": command, **kwargs})
        return subprocess.CompletedProcess(
            command, returncode, stdout=stdout, stderr=stderr
        )

    _run.calls = []
    return _run


def test_bq_query_pipes_sql_with_row_cap_and_json_format(monkeypatch) -> None:
    fake = _completed(0, '[{"client": "desktop"}]')
    monkeypatch.setattr(subprocess, "run", fake)

    result = BigQueryCliWarehouse("httparchive").query("SELECT 1")

    call = fake.calls[0]
    assert call["command"] == [
        "bq",
        "--format",
        "prettyjson",
        "--project_id",
        "httparchive",
        "query",
        "--max_rows",
        "1000000",
    ]
    assert call["input"] == "SELECT 1"
    assert call["stderr"] == subprocess.PIPE
    assert result.rows() == [{"client": "desktop"}]


def test_bq_query_failure_carries_output(monkeypatch) -> None:
    monkeypatch.setattr(subprocess, "run", _completed(1, "Error in query string"))

    with pytest.raises(QueryError) as exc:
        BigQueryCliWarehouse("httparchive").query("SELECT broken")

    assert exc.value.output == "Error in query string"


def test_bq_stderr_chatter_stays_out_of_successful_result(monkeypatch) -> None:
    rows = '[{"date": "2024_02_01"}]\n'
    warning = "WARNING: Python 3.8 is deprecated\n"
    monkeypatch.setattr(subprocess, "run", _completed(0, rows, stderr=warning))

    result = BigQueryCliWarehouse("httparchive").query("SELECT 1")

    assert json.loads(result.text) == [{"date": "2024_02_01"}]
    assert result.rows() == [{"date": "2024_02_01"}]


def test_bq_failure_output_includes_both_streams(monkeypatch) -> None:
    fake = _completed(2, "Waiting on job ... (0s)\n", stderr="Error in query string\n")
    monkeypatch.setattr(subprocess, "run", fake)

    with pytest.raises(QueryError) as exc:
        BigQueryCliWarehouse("httparchive").query("SELECT broken")

    assert exc.value.output == "Waiting on job ... (0s)\nError in query string"


def test_bq_probe_reads_last_csv_line(monkeypatch) -> None:
    fake = _completed(0, "f0_\ntrue\n")
    monkeypatch.setattr(subprocess, "run", fake)

    assert BigQueryCliWarehouse("httparchive").probe("SELECT true")
    assert fake.calls[0]["command"][:3] == ["bq", "query", "--nouse_legacy_sql"]

    monkeypatch.setattr(subprocess, "run", _completed(0, "f0_\n"))
    assert not BigQueryCliWarehouse("httparchive").probe("SELECT true")


def _seeded_duckdb() -> DuckDBWarehouse:
    warehouse = DuckDBWarehouse.open()
    warehouse.conn.execute(
        'CREATE TABLE "httparchive.crawl.pages" '
        "(date VARCHAR, client VARCHAR, is_root_page BOOLEAN, rank INTEGER)"
    )
    warehouse.conn.execute(
        'INSERT INTO "httparchive.crawl.pages" VALUES '
        "('2024-01-01', 'desktop', true, 1000), "
        "('2024-02-01', 'desktop', true, 5000), "
        "('2024-02-01', 'mobile', true, 100)"
    )
    return warehouse


def test_duckdb_runs_bigquery_style_templates() -> None:
    warehouse = _seeded_duckdb()

    result = warehouse.query(
        "#standardSQL\n"
        "SELECT client, COUNT(0) AS volume\n"
        "FROM `httparchive.crawl.pages`\n"
        "WHERE date = '2024-02-01'\n"
        "GROUP BY client\n"
        "ORDER BY client\n"
    )

    assert json.loads(result.text) == [
        {"client": "desktop", "volume": 1},
        {"client": "mobile", "volume": 1},
    ]


def test_duckdb_probe_and_errors() -> None:
    warehouse = _seeded_duckdb()

    assert warehouse.probe(
        "SELECT true FROM `httparchive.crawl.pages` WHERE client = 'mobile' LIMIT 1"
    )
    assert not warehouse.probe(
        "SELECT true FROM `httparchive.crawl.pages` WHERE client = 'tablet' LIMIT 1"
    )
    assert not warehouse.probe("SELECT true FROM `httparchive.crawl.missing`")
    with pytest.raises(QueryError):
        warehouse.query("SELECT * FROM `httparchive.crawl.missing`")
