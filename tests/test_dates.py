from datetime import date

import pytest

from crawl_reports.dates import ReportDate


def test_parse_accepts_underscore_and_dash_forms() -> None:
    assert ReportDate.parse("2024_02_01") == ReportDate(date(2024, 2, 1))
    assert ReportDate.parse("2024-02-01") == ReportDate(date(2024, 2, 1))


def test_renders_storage_query_and_month_forms() -> None:
    report_date = ReportDate.parse("2017_08_01")

    assert report_date.underscore == "2017_08_01"
    assert report_date.dash == "2017-08-01"
    assert report_date.yyyymm == "201708"
    assert str(report_date) == "2017_08_01"


@pytest.mark.parametrize("raw", ["2024/02/01", "20240201", "2024_13_01", ""])
def test_parse_rejects_malformed_dates(raw: str) -> None:
    with pytest.raises(ValueError):
        ReportDate.parse(raw)


def test_try_parse_ignores_non_strings() -> None:
    assert ReportDate.try_parse(None) is None
    assert ReportDate.try_parse(20240201) is None
    assert ReportDate.try_parse("2024_02_01") == ReportDate.parse("2024-02-01")


def test_dates_order_chronologically() -> None:
    assert ReportDate.parse("2024_01_01") < ReportDate.parse("2024_02_01")
