from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from crawl_reports.templates import ReportKind, ReportMetric

HISTOGRAM_FILTER_FILE = "histograms.sql"
TIMESERIES_FILTER_FILE = "timeseries.sql"
SPECIAL_HISTOGRAM_JOIN_FILE = "crux_histograms.sql"
SPECIAL_TIMESERIES_JOIN_FILE = "crux_timeseries.sql"


class LensConfigError(RuntimeError):
    """Raised when a lens directory lacks its required filter fragments."""


@dataclass(frozen=True)
class Lens:
    name: str
    histogram_filter: str
    timeseries_filter: str
    special_histogram_join: Optional[str] = None
    special_timeseries_join: Optional[str] = None


@dataclass(frozen=True)
class LensFilter:
    """Fragments to inject for one (metric, lens) pair."""

    predicate: Optional[str] = None
    join: Optional[str] = None


NO_FILTER = LensFilter()


def read_fragment(path: Path) -> Optional[str]:
    if not path.is_file():
        return None
    return path.read_text(encoding="utf-8").replace("\n", " ").strip()


class LensResolver:
    def __init__(
        self,
        lens_root: Path,
        all_sentinel: str = "ALL",
        special_prefix: str = "crux",
    ) -> None:
        self.lens_root = Path(lens_root)
        self.all_sentinel = all_sentinel
        self.special_prefix = special_prefix

    def available(self) -> List[str]:
        if not self.lens_root.is_dir():
            return []
        return sorted(
            path.name
            for path in self.lens_root.iterdir()
            if path.is_dir() and not path.name.startswith(".")
        )

    def expand(self, lens_arg: str) -> List[str]:
        """Lens names to process; ``""`` is the unfiltered base report."""
        if not lens_arg:
            return [""]
        if lens_arg == self.all_sentinel:
            return [""] + self.available()
        return [lens_arg]

    def load(self, name: str) -> Optional[Lens]:
        if not name:
            return None
        lens_dir = self.lens_root / name
        histogram_filter = read_fragment(lens_dir / HISTOGRAM_FILTER_FILE)
        timeseries_filter = read_fragment(lens_dir / TIMESERIES_FILTER_FILE)
        if histogram_filter is None or timeseries_filter is None:
            raise LensConfigError(
                f"Lens histogram/timeseries files not found in {lens_dir}."
            )
        return Lens(
            name=name,
            histogram_filter=histogram_filter,
            timeseries_filter=timeseries_filter,
            special_histogram_join=read_fragment(
                lens_dir / SPECIAL_HISTOGRAM_JOIN_FILE
            ),
            special_timeseries_join=read_fragment(
                lens_dir / SPECIAL_TIMESERIES_JOIN_FILE
            ),
        )

    def is_special(self, metric: ReportMetric) -> bool:
        return bool(self.special_prefix) and metric.name.startswith(
            self.special_prefix
        )

    def resolve(
        self, lens: Optional[Lens], metric: ReportMetric
    ) -> Optional[LensFilter]:
        """Return the fragments for ``metric`` under ``lens``.

        ``None`` means the pair is unsupported and should be skipped: special
        family metrics cannot take a WHERE predicate and need the lens to ship
        a dedicated join fragment instead.
        """
        if lens is None:
            return NO_FILTER
        if self.is_special(metric):
            if metric.kind is ReportKind.HISTOGRAM:
                join = lens.special_histogram_join
            else:
                join = lens.special_timeseries_join
            if not join:
                return None
            return LensFilter(join=join)
        if metric.kind is ReportKind.HISTOGRAM:
            return LensFilter(predicate=lens.histogram_filter)
        return LensFilter(predicate=lens.timeseries_filter)


__all__ = [
    "Lens",
    "LensConfigError",
    "LensFilter",
    "LensResolver",
    "NO_FILTER",
]
