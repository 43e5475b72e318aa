from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import duckdb

from crawl_reports.config import WarehouseConfig
from crawl_reports.merge import Row, dump_rows, load_rows
from crawl_reports.utils.duck import (
    attach_parquet_dir,
    open_db,
    safe_query,
    to_duckdb_dialect,
)

logger = logging.getLogger("crawl_reports.warehouse")


class QueryError(RuntimeError):
    """Raised when the warehouse rejects a query; ``output`` holds what it printed."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


@dataclass
class QueryResult:
    text: str
    elapsed_s: float = 0.0

    def rows(self) -> List[Row]:
        return load_rows(self.text)


class Warehouse:
    """Abstract warehouse interface."""

    def query(self, sql: str) -> QueryResult:  # pragma: no cover - interface
        raise NotImplementedError

    def probe(self, sql: str) -> bool:  # pragma: no cover - interface
        raise NotImplementedError


class BigQueryCliWarehouse(Warehouse):
    """Runs queries through the ``bq`` command-line tool."""

    def __init__(
        self,
        project_id: str,
        max_rows: int = 1_000_000,
        command: str = "bq",
    ) -> None:
        self.project_id = project_id
        self.max_rows = max_rows
        self.command = command

    def query_command(self) -> List[str]:
        return [
            self.command,
            "--format",
            "prettyjson",
            "--project_id",
            self.project_id,
            "query",
            "--max_rows",
            str(self.max_rows),
        ]

    def probe_command(self, sql: str) -> List[str]:
        return [
            self.command,
            "query",
            "--nouse_legacy_sql",
            "--format",
            "csv",
            "--headless",
            "-q",
            sql,
        ]

    def query(self, sql: str) -> QueryResult:
        started = time.monotonic()
        try:
            proc = _run(self.query_command(), stdin_text=sql)
        except OSError as exc:
            raise QueryError(
                f"Unable to run {self.command}: {exc}", output=str(exc)
            ) from exc
        elapsed = time.monotonic() - started
        if proc.returncode != 0:
            raise QueryError(
                f"bq exited with status {proc.returncode}", output=_tool_output(proc)
            )
        return QueryResult(text=proc.stdout, elapsed_s=elapsed)

    def probe(self, sql: str) -> bool:
        try:
            proc = _run(self.probe_command(sql))
        except OSError as exc:
            logger.warning("Readiness probe could not run: %s", exc)
            return False
        if proc.returncode != 0:
            logger.warning("Readiness probe failed: %s", _tool_output(proc))
            return False
        lines = [line.strip() for line in proc.stdout.splitlines() if line.strip()]
        return bool(lines) and lines[-1].lower() == "true"


class DuckDBWarehouse(Warehouse):
    """Local DuckDB warehouse, optionally backed by a parquet export directory."""

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self.conn = conn

    @classmethod
    def open(
        cls,
        db_path: Optional[Path] = None,
        parquet_dir: Optional[Path] = None,
    ) -> "DuckDBWarehouse":
        conn = open_db(db_path)
        if parquet_dir is not None:
            tables = attach_parquet_dir(conn, parquet_dir)
            logger.debug("Attached parquet tables: %s", ", ".join(tables))
        return cls(conn)

    def _execute(self, sql: str):
        try:
            return safe_query(self.conn, to_duckdb_dialect(sql))
        except (duckdb.Error, ValueError) as exc:
            raise QueryError(f"duckdb query failed: {exc}", output=str(exc)) from exc

    def query(self, sql: str) -> QueryResult:
        started = time.monotonic()
        frame = self._execute(sql)
        elapsed = time.monotonic() - started
        return QueryResult(text=dump_rows(frame.to_dicts()), elapsed_s=elapsed)

    def probe(self, sql: str) -> bool:
        try:
            frame = self._execute(sql)
        except QueryError as exc:
            logger.warning("Readiness probe failed: %s", exc.output)
            return False
        if frame.height == 0:
            return False
        return frame.row(0)[0] is True


def _run(
    command: Sequence[str], stdin_text: Optional[str] = None
) -> subprocess.CompletedProcess:
    return subprocess.run(
        list(command),
        input=stdin_text,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )


def _tool_output(proc: subprocess.CompletedProcess) -> str:
    """stdout and stderr of a failed tool run, for error messages."""
    parts = (proc.stdout or "", proc.stderr or "")
    return "\n".join(part.strip() for part in parts if part.strip())


def build_warehouse(config: WarehouseConfig) -> Warehouse:
    if config.backend == "duckdb":
        return DuckDBWarehouse.open(
            db_path=Path(config.duckdb_path) if config.duckdb_path else None,
            parquet_dir=Path(config.parquet_dir) if config.parquet_dir else None,
        )
    return BigQueryCliWarehouse(
        project_id=config.project_id,
        max_rows=config.max_rows,
        command=config.command,
    )


__all__ = [
    "BigQueryCliWarehouse",
    "DuckDBWarehouse",
    "QueryError",
    "QueryResult",
    "Warehouse",
    "build_warehouse",
]
