import pytest

from crawl_reports.dates import ReportDate
from crawl_reports.rewrite import (
    TemplateRewriteError,
    build_query,
    combine_predicates,
    incremental_boundary,
    inject_join,
    inject_predicate,
    substitute_dates,
)

WITH_WHERE = (
    "SELECT client, COUNT(0) AS volume\n"
    "FROM `httparchive.crawl.pages`\n"
    "WHERE date = '${YYYY-MM-DD}'\n"
    "GROUP BY client\n"
)
WITHOUT_WHERE = (
    "SELECT client, COUNT(0) AS volume\n"
    "FROM `httparchive.crawl.requests`\n"
    "GROUP BY client\n"
)


def test_dates_are_substituted_everywhere() -> None:
    sql = "SELECT '${YYYY-MM-DD}', '${YYYY-MM-DD}' FROM `t.${YYYYMM}`"

    result = substitute_dates(sql, ReportDate.parse("2024_02_01"))

    assert result == "SELECT '2024-02-01', '2024-02-01' FROM `t.202402`"


def test_missing_placeholders_or_date_are_a_no_op() -> None:
    report_date = ReportDate.parse("2024_02_01")
    assert substitute_dates(WITHOUT_WHERE, report_date) == WITHOUT_WHERE
    assert substitute_dates(WITH_WHERE, None) == WITH_WHERE


def test_predicate_without_where_opens_clause_before_group_by() -> None:
    result = inject_predicate(WITHOUT_WHERE, "rank <= 1000")

    head, tail = WITHOUT_WHERE.split("GROUP BY")
    assert result == f"{head}WHERE rank <= 1000 GROUP BY{tail}"


def test_predicate_with_where_is_and_combined_right_after_keyword() -> None:
    result = inject_predicate(WITH_WHERE, "rank <= 1000")

    assert "WHERE rank <= 1000 AND date = '${YYYY-MM-DD}'" in result
    assert result.replace(" rank <= 1000 AND", "", 1) == WITH_WHERE


def test_predicate_matches_lowercase_keywords() -> None:
    sql = "select client from t group by client"

    assert inject_predicate(sql, "rank <= 10") == (
        "select client from t WHERE rank <= 10 group by client"
    )


def test_predicate_needs_an_anchor() -> None:
    with pytest.raises(TemplateRewriteError):
        inject_predicate("SELECT 1", "rank <= 10")


def test_join_follows_every_matching_table_reference() -> None:
    sql = (
        "SELECT * FROM `chrome-ux-report.all.202402` a "
        "UNION ALL SELECT * FROM `chrome-ux-report.all.202401` b "
        "JOIN `httparchive.crawl.pages` USING (origin)"
    )

    result = inject_join(sql, "JOIN popular USING (origin)", "chrome-ux-report")

    assert result.count("JOIN popular USING (origin)") == 2
    assert "`chrome-ux-report.all.202402` JOIN popular USING (origin) a" in result
    assert "`httparchive.crawl.pages` JOIN popular" not in result


def test_incremental_boundary_forms() -> None:
    after = ReportDate.parse("2024_01_01")
    until = ReportDate.parse("2024_02_01")

    assert incremental_boundary(after, until) == (
        "date > '2024-01-01' AND date <= '2024-02-01'"
    )
    assert incremental_boundary(None, until) == "date <= '2024-02-01'"
    assert incremental_boundary(after, None) == "date > '2024-01-01'"
    assert incremental_boundary(None, None) is None


def test_combine_predicates_skips_empty_parts() -> None:
    assert combine_predicates("rank <= 1000", None, "date <= '2024-02-01'") == (
        "rank <= 1000 AND date <= '2024-02-01'"
    )
    assert combine_predicates(None, "") is None


def test_build_query_applies_filter_then_dates() -> None:
    result = build_query(
        WITH_WHERE,
        report_date=ReportDate.parse("2024_02_01"),
        predicate="rank <= 1000",
    )

    assert "WHERE rank <= 1000 AND date = '2024-02-01'" in result
    assert "${" not in result
