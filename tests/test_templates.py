from pathlib import Path

from crawl_reports.templates import ReportKind, TemplateStore, metric_name


def test_metrics_are_listed_in_lexical_order(sql_root: Path) -> None:
    store = TemplateStore(sql_root)

    names = [metric.name for metric in store.metrics(ReportKind.HISTOGRAM)]

    assert names == ["bytesTotal", "cruxFcp", "reqTotal"]


def test_metrics_respect_report_glob(sql_root: Path) -> None:
    store = TemplateStore(sql_root)

    metrics = store.metrics(ReportKind.TIMESERIES, "*crux*")

    assert [metric.name for metric in metrics] == ["cruxFcp"]
    assert metrics[0].kind is ReportKind.TIMESERIES
    assert "chrome-ux-report" in metrics[0].read_template()


def test_missing_kind_directory_yields_nothing(tmp_path: Path) -> None:
    store = TemplateStore(tmp_path / "empty")

    assert store.metrics(ReportKind.HISTOGRAM) == []


def test_metric_name_stops_at_first_dot() -> None:
    assert metric_name(Path("sql/histograms/bytesJs.v2.sql")) == "bytesJs"
