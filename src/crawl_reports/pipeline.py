from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from crawl_reports.config import AppConfig
from crawl_reports.dates import ReportDate
from crawl_reports.lenses import Lens, LensFilter, LensResolver
from crawl_reports.merge import concat_rows, dump_rows, load_rows, max_date
from crawl_reports.readiness import (
    NotReadyError,
    Partition,
    check_readiness,
    required_partitions,
)
from crawl_reports.rewrite import (
    TemplateRewriteError,
    build_query,
    combine_predicates,
    incremental_boundary,
)
from crawl_reports.storage import (
    JSON_CONTENT_TYPE,
    ObjectStore,
    StorageError,
    artifact_path,
)
from crawl_reports.templates import ReportKind, ReportMetric, TemplateStore
from crawl_reports.warehouse import QueryError, QueryResult, Warehouse

_LOGGER = logging.getLogger("crawl_reports.pipeline")


@dataclass
class RunOptions:
    report_date: Optional[ReportDate] = None
    timeseries: bool = False
    force: bool = False
    lens: str = ""
    reports: str = "*"
    verbose: bool = False

    @property
    def histogram(self) -> bool:
        return self.report_date is not None


@dataclass
class RunSummary:
    generated: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class TimeseriesPlan:
    skip: bool = False
    boundary: Optional[str] = None
    merge: bool = False
    incremental: bool = False


def plan_timeseries(
    *,
    has_existing: bool,
    existing_max: Optional[ReportDate],
    target: Optional[ReportDate],
    force: bool,
    special: bool,
) -> TimeseriesPlan:
    """Decide how a timeseries artifact gets refreshed.

    Special family metrics never take a date boundary; they re-run in full and
    replace the artifact.
    """
    merge = has_existing and not force and not special
    if has_existing and not force and existing_max is not None:
        if target is None or existing_max >= target:
            return TimeseriesPlan(skip=True)
        boundary = None if special else incremental_boundary(existing_max, target)
        return TimeseriesPlan(boundary=boundary, merge=merge, incremental=True)
    boundary = None
    if target is not None and not special:
        boundary = incremental_boundary(None, target)
    return TimeseriesPlan(boundary=boundary, merge=merge)


def template_sources(config: AppConfig) -> Tuple[TemplateStore, LensResolver]:
    templates = TemplateStore(
        Path(config.paths.sql_dir),
        histograms=config.paths.histograms,
        timeseries=config.paths.timeseries,
        lens=config.paths.lens,
    )
    lenses = LensResolver(
        templates.lens_root,
        all_sentinel=config.lenses.all_sentinel,
        special_prefix=config.lenses.special_prefix,
    )
    return templates, lenses


def _label(metric: ReportMetric, lens: str, report_date: Optional[ReportDate]) -> str:
    parts = [lens] if lens else []
    if report_date is not None:
        parts.append(report_date.underscore)
    parts.append(metric.name)
    return f"{metric.kind.value}:{'/'.join(parts)}"


class ReportPipeline:
    def __init__(
        self,
        templates: TemplateStore,
        lenses: LensResolver,
        warehouse: Warehouse,
        store: ObjectStore,
        *,
        partitions: Optional[Sequence[Partition]] = None,
        prefix: str = "reports",
        content_type: str = JSON_CONTENT_TYPE,
        special_table_pattern: str = "chrome-ux-report",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.templates = templates
        self.lenses = lenses
        self.warehouse = warehouse
        self.store = store
        self.partitions = (
            list(partitions) if partitions is not None else required_partitions()
        )
        self.prefix = prefix
        self.content_type = content_type
        self.special_table_pattern = special_table_pattern
        self.logger = logger or _LOGGER

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        warehouse: Warehouse,
        store: ObjectStore,
        logger: Optional[logging.Logger] = None,
    ) -> "ReportPipeline":
        templates, lenses = template_sources(config)
        return cls(
            templates,
            lenses,
            warehouse,
            store,
            partitions=required_partitions(
                config.readiness.tables, config.readiness.clients
            ),
            prefix=config.storage.prefix,
            content_type=config.storage.content_type,
            special_table_pattern=config.lenses.special_table_pattern,
            logger=logger,
        )

    def run(self, options: RunOptions) -> RunSummary:
        """Histogram pass then timeseries pass.

        Raises ``NotReadyError`` before any report query when histogram
        partitions are missing, and ``LensConfigError`` for a broken lens.
        """
        summary = RunSummary()
        if options.histogram:
            self.ensure_ready(options.report_date)
            self.logger.info(
                "Generating histograms for date %s", options.report_date.dash
            )
            self._run_histograms(options, summary)
        else:
            self.logger.info("Skipping histograms")

        if options.timeseries:
            self.logger.info("Generating timeseries")
            self._run_timeseries(options, summary)
        else:
            self.logger.info("Skipping timeseries")
        return summary

    def ensure_ready(self, report_date: ReportDate) -> None:
        self.logger.info("Checking if tables are ready for %s...", report_date.dash)
        report = check_readiness(self.warehouse, report_date, self.partitions)
        if not report.ready:
            missing = sum(1 for _, ready in report.statuses if not ready)
            self.logger.error(
                "%d of %d partitions missing for %s",
                missing,
                len(report.statuses),
                report_date.dash,
            )
            raise NotReadyError(report)
        self.logger.info("Tables for %s are ready", report_date.dash)

    def _metrics(self, kind: ReportKind, pattern: str) -> List[ReportMetric]:
        metrics = self.templates.metrics(kind, pattern)
        if not metrics:
            self.logger.info(
                "Nothing to do for %s reports matching %r", kind.value, pattern
            )
        return metrics

    def _lens_names(self, metric: ReportMetric, lens_arg: str) -> List[str]:
        names = self.lenses.expand(lens_arg)
        if lens_arg == self.lenses.all_sentinel:
            self.logger.info(
                "Generating %s report for base and all lenses", metric.name
            )
        elif lens_arg:
            self.logger.info("Generating %s report for one lens", metric.name)
        else:
            self.logger.info("Generating %s report for base", metric.name)
        return names

    def _run_histograms(self, options: RunOptions, summary: RunSummary) -> None:
        report_date = options.report_date
        for metric in self._metrics(ReportKind.HISTOGRAM, options.reports):
            for lens_name in self._lens_names(metric, options.lens):
                lens = self.lenses.load(lens_name)
                label = _label(metric, lens_name, report_date)
                path = artifact_path(metric.name, lens_name, report_date, self.prefix)

                try:
                    if self.store.exists(path) and not options.force:
                        self.logger.info("Skipping %s as already exists", label)
                        summary.skipped.append(label)
                        continue

                    lens_filter = self._resolve(lens, metric, label, summary)
                    if lens_filter is None:
                        continue

                    sql = build_query(
                        metric.read_template(),
                        report_date=report_date,
                        predicate=lens_filter.predicate,
                        join=lens_filter.join,
                        table_pattern=self.special_table_pattern,
                    )
                    result = self._execute(sql, label, options.verbose)
                    self.store.write_text(path, result.text, self.content_type)
                except (QueryError, TemplateRewriteError, StorageError, OSError) as exc:
                    self._record_failure(label, exc, summary)
                    continue

                self.logger.info("Uploaded %s", self.store.describe(path))
                summary.generated.append(label)

    def _run_timeseries(self, options: RunOptions, summary: RunSummary) -> None:
        target = options.report_date
        for metric in self._metrics(ReportKind.TIMESERIES, options.reports):
            special = self.lenses.is_special(metric)
            for lens_name in self._lens_names(metric, options.lens):
                lens = self.lenses.load(lens_name)
                label = _label(metric, lens_name, None)
                path = artifact_path(metric.name, lens_name, None, self.prefix)

                try:
                    existing_rows = None
                    if self.store.exists(path):
                        existing_rows = load_rows(self.store.read_text(path))

                    existing_max = max_date(existing_rows or [])
                    plan = plan_timeseries(
                        has_existing=existing_rows is not None,
                        existing_max=existing_max,
                        target=target,
                        force=options.force,
                        special=special,
                    )
                    if plan.skip:
                        self.logger.info(
                            "Skipping %s as %s already covered (latest %s). "
                            "Run in force mode (-f) to rerun.",
                            label,
                            target.underscore if target else "the latest date",
                            existing_max.underscore if existing_max else "-",
                        )
                        summary.skipped.append(label)
                        continue
                    self._log_plan(
                        label, plan, existing_rows, existing_max, target, options
                    )

                    lens_filter = self._resolve(lens, metric, label, summary)
                    if lens_filter is None:
                        continue

                    sql = build_query(
                        metric.read_template(),
                        report_date=target,
                        predicate=combine_predicates(
                            lens_filter.predicate, plan.boundary
                        ),
                        join=lens_filter.join,
                        table_pattern=self.special_table_pattern,
                    )
                    result = self._execute(sql, label, options.verbose)

                    if plan.merge and existing_rows is not None:
                        text = dump_rows(concat_rows(result.rows(), existing_rows))
                    else:
                        text = result.text
                    self.store.write_text(path, text, self.content_type)
                except (QueryError, StorageError, OSError, ValueError) as exc:
                    self._record_failure(label, exc, summary)
                    continue

                self.logger.info("Uploaded %s", self.store.describe(path))
                summary.generated.append(label)

    def _log_plan(
        self,
        label: str,
        plan: TimeseriesPlan,
        existing_rows: Optional[list],
        existing_max: Optional[ReportDate],
        target: Optional[ReportDate],
        options: RunOptions,
    ) -> None:
        until = target.underscore if target else "latest"
        if plan.incremental:
            self.logger.info(
                "Generating %s in incremental mode from %s to %s",
                label,
                existing_max.underscore if existing_max else "-",
                until,
            )
        elif existing_rows is not None:
            self.logger.info(
                "Force mode=%s. Generating %s from start until %s",
                options.force,
                label,
                until,
            )
        else:
            self.logger.info(
                "Timeseries does not exist. Generating %s from start until %s",
                label,
                until,
            )

    def _resolve(
        self,
        lens: Optional[Lens],
        metric: ReportMetric,
        label: str,
        summary: RunSummary,
    ) -> Optional[LensFilter]:
        lens_filter = self.lenses.resolve(lens, metric)
        if lens_filter is None:
            self.logger.info(
                "%s has no join fragment for lens %s; skipping",
                metric.name,
                lens.name if lens else "",
            )
            summary.skipped.append(label)
        elif lens_filter.join:
            self.logger.info("Using alternative lens join for %s", label)
        return lens_filter

    def _execute(self, sql: str, label: str, verbose: bool) -> QueryResult:
        if verbose:
            self.logger.info("Running this query:\n%s\n", sql)
        result = self.warehouse.query(sql)
        self.logger.info("%s took %.0f seconds", label, result.elapsed_s)
        return result

    def _record_failure(self, label: str, exc: Exception, summary: RunSummary) -> None:
        output = getattr(exc, "output", "")
        if output:
            self.logger.error("%s failed: %s\n%s", label, exc, output)
        else:
            self.logger.error("%s failed: %s", label, exc)
        summary.failed.append(label)


__all__ = [
    "ReportPipeline",
    "RunOptions",
    "RunSummary",
    "TimeseriesPlan",
    "plan_timeseries",
    "template_sources",
]
