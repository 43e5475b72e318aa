from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, cast

import typer
from pydantic import ValidationError

from crawl_reports import __version__
from crawl_reports.config import DEFAULT_CONFIG_PATH, AppConfig, load_config
from crawl_reports.dates import ReportDate
from crawl_reports.lenses import LensConfigError
from crawl_reports.pipeline import ReportPipeline, RunOptions, template_sources
from crawl_reports.readiness import (
    NotReadyError,
    check_readiness,
    required_partitions,
)
from crawl_reports.storage import build_store
from crawl_reports.templates import ReportKind
from crawl_reports.utils.logging import init_logger, run_context
from crawl_reports.warehouse import build_warehouse

app = typer.Typer(
    add_completion=False,
    help="Generate crawl report JSON from the warehouse and publish it to storage.",
)

USAGE_HINT = (
    "You must provide one or both -t or -h flags.\n"
    "For example: crawl-reports generate -t -h 2017_08_01"
)


def _version_callback(ctx: typer.Context, value: Optional[bool]) -> Optional[bool]:
    if not value or ctx.resilient_parsing:
        return value
    typer.echo(__version__)
    raise typer.Exit()


def _context(ctx: typer.Context) -> tuple[AppConfig, Optional[logging.Logger]]:
    ctx_obj = ctx.obj or {}
    config = cast(AppConfig, ctx_obj.get("config"))
    if config is None:
        config = load_config(
            default_path=DEFAULT_CONFIG_PATH,
            override_yaml_path_or_none=None,
            env=os.environ,
            cli_overrides={},
        )
    return config, ctx_obj.get("logger")


def _parse_date(raw: str, logger: Optional[logging.Logger]) -> ReportDate:
    try:
        return ReportDate.parse(raw)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        if logger:
            logger.error("Invalid date %s", raw)
        raise typer.Exit(code=1) from exc


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        callback=_version_callback,
        expose_value=False,
        is_flag=True,
        flag_value=True,
        is_eager=True,
        help="Show the application version and exit.",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Path to an alternate YAML configuration file.",
        is_flag=False,
    ),
    warehouse: Optional[str] = typer.Option(
        None,
        "--warehouse",
        help="Override the warehouse backend (bq or duckdb).",
        is_flag=False,
    ),
    storage: Optional[str] = typer.Option(
        None,
        "--storage",
        help="Override the object storage backend (gcs or local).",
        is_flag=False,
    ),
) -> None:
    cli_overrides: dict[str, object] = {}
    if warehouse is not None:
        cli_overrides["warehouse.backend"] = warehouse.lower()
    if storage is not None:
        cli_overrides["storage.backend"] = storage.lower()

    try:
        config = load_config(
            default_path=DEFAULT_CONFIG_PATH,
            override_yaml_path_or_none=config_path,
            env=os.environ,
            cli_overrides=cli_overrides,
        )
    except (FileNotFoundError, ValueError, ValidationError) as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    context_obj = ctx.ensure_object(dict)
    context_obj["config"] = config

    logger = init_logger("crawl_reports", config.logging.level)
    context_obj["logger"] = logger

    if ctx.invoked_subcommand is not None:
        run_cm = run_context(logger)
        run_id = run_cm.__enter__()
        context_obj["run_id"] = run_id

        def _close() -> None:
            run_cm.__exit__(None, None, None)

        ctx.call_on_close(_close)

    if ctx.invoked_subcommand is None:
        typer.echo(
            "Usage: crawl-reports [OPTIONS] COMMAND [ARGS]...\n\n"
            "Use 'crawl-reports --help' for more information."
        )
        raise typer.Exit()


@app.command("init")
def init_cmd(ctx: typer.Context) -> None:
    """Scaffold the query template directories and default config file."""
    config, logger = _context(ctx)

    created_items: list[tuple[str, Path]] = []
    sql_dir = Path(config.paths.sql_dir)
    for raw in (config.paths.histograms, config.paths.timeseries, config.paths.lens):
        dir_path = sql_dir / raw
        if not dir_path.exists():
            dir_path.mkdir(parents=True, exist_ok=True)
            created_items.append(("directory", dir_path))

    target_config_path = Path("configs") / "default.yaml"
    if not target_config_path.exists():
        target_config_path.parent.mkdir(parents=True, exist_ok=True)
        target_config_path.write_text(
            DEFAULT_CONFIG_PATH.read_text(encoding="utf-8"),
            encoding="utf-8",
        )
        created_items.append(("file", target_config_path))

    if created_items:
        for item_type, path in created_items:
            label = "directory" if item_type == "directory" else "file"
            typer.echo(f"Created {label}: {path}")
            if logger:
                logger.info("Created %s %s", label, path)
    else:
        typer.echo("Report assets already initialized.")
        if logger:
            logger.info("Report assets already initialized.")


@app.command("generate")
def generate_cmd(
    ctx: typer.Context,
    histogram_date: Optional[str] = typer.Option(
        None,
        "-h",
        "--histogram",
        help="Generate histograms for this crawl date (YYYY_MM_DD).",
        is_flag=False,
    ),
    timeseries: bool = typer.Option(
        False, "-t", "--timeseries", help="Generate timeseries reports."
    ),
    force: bool = typer.Option(
        False, "-f", "--force", help="Regenerate even if the data already exists."
    ),
    lens: str = typer.Option(
        "",
        "-l",
        "--lens",
        help="Lens to generate, eg 'top10k', or ALL for base plus every lens.",
        is_flag=False,
    ),
    reports: str = typer.Option(
        "*",
        "-r",
        "--reports",
        help="Glob of report files to generate, eg '*crux*'.",
        is_flag=False,
    ),
    verbose: bool = typer.Option(
        False, "-v", "--verbose", help="Print each query before running it."
    ),
) -> None:
    """Generate histogram and/or timeseries reports."""
    config, logger = _context(ctx)

    if histogram_date is None and not timeseries:
        typer.echo(USAGE_HINT, err=True)
        raise typer.Exit(code=1)

    report_date = (
        _parse_date(histogram_date, logger) if histogram_date is not None else None
    )
    options = RunOptions(
        report_date=report_date,
        timeseries=timeseries,
        force=force,
        lens=lens,
        reports=reports,
        verbose=verbose,
    )

    try:
        pipeline = ReportPipeline.from_config(
            config,
            build_warehouse(config.warehouse),
            build_store(config.storage),
        )
        summary = pipeline.run(options)
    except NotReadyError as exc:
        typer.echo(str(exc), err=True)
        for line in exc.report.lines():
            typer.echo(line, err=True)
        raise typer.Exit(code=1) from exc
    except (LensConfigError, FileNotFoundError) as exc:
        typer.echo(str(exc), err=True)
        if logger:
            logger.error("Aborting run: %s", exc)
        raise typer.Exit(code=1) from exc

    typer.echo(
        f"Done: {len(summary.generated)} generated, "
        f"{len(summary.skipped)} skipped, {len(summary.failed)} failed"
    )
    for label in summary.failed:
        typer.echo(f"Failed: {label}", err=True)


@app.command("check-ready")
def check_ready_cmd(
    ctx: typer.Context,
    date: str = typer.Argument(..., help="Crawl date to check (YYYY_MM_DD)."),
) -> None:
    """Check that every warehouse partition for a crawl date is populated."""
    config, logger = _context(ctx)
    report_date = _parse_date(date, logger)
    partitions = required_partitions(
        config.readiness.tables, config.readiness.clients
    )

    try:
        warehouse = build_warehouse(config.warehouse)
    except FileNotFoundError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    report = check_readiness(warehouse, report_date, partitions)
    for line in report.lines():
        typer.echo(line)
    if not report.ready:
        typer.echo(
            f"The warehouse tables for {report_date.dash} are not available.",
            err=True,
        )
        raise typer.Exit(code=1)
    typer.echo(f"Tables for {report_date.dash} are ready.")


@app.command("list-reports")
def list_reports_cmd(
    ctx: typer.Context,
    reports: str = typer.Option(
        "*", "-r", "--reports", help="Glob of report files to list.", is_flag=False
    ),
) -> None:
    """List report metrics per kind and the available lenses."""
    config, _ = _context(ctx)
    templates, lens_resolver = template_sources(config)

    for kind in ReportKind:
        metrics = templates.metrics(kind, reports)
        typer.echo(f"{kind.value} ({len(metrics)}):")
        for metric in metrics:
            typer.echo(f"  {metric.name}")

    lenses = lens_resolver.available()
    typer.echo(f"lenses ({len(lenses)}):")
    for name in lenses:
        typer.echo(f"  {name}")


if __name__ == "__main__":
    app()
