from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, List, Optional

import duckdb
import polars as pl

_FORBIDDEN_RE = re.compile(r"\b(copy|attach|install|load)\b", re.IGNORECASE)
_BACKTICK_RE = re.compile(r"`([^`]*)`")
_DIRECTIVE_RE = re.compile(r"^\s*#.*$", re.MULTILINE)


def open_db(db_path_or_none: Optional[Path]) -> duckdb.DuckDBPyConnection:
    if db_path_or_none is None:
        return duckdb.connect(database=":memory:")
    Path(db_path_or_none).parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(database=str(db_path_or_none))


def quote_identifier(name: str) -> str:
    if not name:
        raise ValueError("Identifier cannot be empty.")
    return '"' + name.replace('"', '""') + '"'


def attach_parquet_dir(conn: duckdb.DuckDBPyConnection, dir_path: Path) -> List[str]:
    """Expose each ``*.parquet`` file as a view named after its stem.

    ``httparchive.crawl.pages.parquet`` becomes the view
    ``"httparchive.crawl.pages"`` so warehouse table names resolve unchanged.
    """
    directory = Path(dir_path)
    if not directory.exists():
        raise FileNotFoundError(f"Parquet directory not found: {dir_path}")

    parquet_files = sorted(directory.glob("*.parquet"))
    if not parquet_files:
        raise FileNotFoundError(f"No parquet files found in {dir_path}")

    names: List[str] = []
    for file_path in parquet_files:
        source = str(file_path).replace("'", "''")
        view = quote_identifier(file_path.stem)
        conn.execute(
            f"CREATE OR REPLACE VIEW {view} AS SELECT * FROM read_parquet('{source}')"
        )
        names.append(file_path.stem)
    return names


def to_duckdb_dialect(sql: str) -> str:
    """Strip ``#standardSQL`` directives and quote backtick table names."""
    without_directives = _DIRECTIVE_RE.sub("", sql)
    return _BACKTICK_RE.sub(
        lambda match: quote_identifier(match.group(1)), without_directives
    ).strip()


def safe_query(
    conn: duckdb.DuckDBPyConnection,
    sql: str,
    params: Optional[Iterable] = None,
) -> pl.DataFrame:
    """Run one read-only statement and return its rows as a polars frame."""
    _guard_sql(sql)
    cursor = conn.execute(sql, list(params or ()))
    columns = [desc[0] for desc in cursor.description or ()]
    rows = cursor.fetchall()
    if not rows:
        return pl.DataFrame(schema=columns)
    return pl.DataFrame(rows, schema=columns, orient="row")


def _guard_sql(sql: str) -> None:
    if ";" in sql.rstrip().rstrip(";"):
        raise ValueError("Multiple statements are not permitted in safe_query.")
    if _FORBIDDEN_RE.search(sql):
        raise ValueError("Potentially unsafe SQL detected.")


__all__ = [
    "attach_parquet_dir",
    "open_db",
    "quote_identifier",
    "safe_query",
    "to_duckdb_dialect",
]
