from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List


class ReportKind(str, Enum):
    HISTOGRAM = "histogram"
    TIMESERIES = "timeseries"


@dataclass(frozen=True)
class ReportMetric:
    name: str
    kind: ReportKind
    path: Path

    def read_template(self) -> str:
        return self.path.read_text(encoding="utf-8")


def metric_name(path: Path) -> str:
    """``histograms/bytesJs.sql`` -> ``bytesJs``."""
    return path.name.split(".", 1)[0]


class TemplateStore:
    """Templates under ``<root>/<kind dir>/<metric>.sql`` plus a lens root."""

    def __init__(
        self,
        root: Path,
        histograms: str = "histograms",
        timeseries: str = "timeseries",
        lens: str = "lens",
    ) -> None:
        self.root = Path(root)
        self._kind_dirs = {
            ReportKind.HISTOGRAM: self.root / histograms,
            ReportKind.TIMESERIES: self.root / timeseries,
        }
        self.lens_root = self.root / lens

    def kind_dir(self, kind: ReportKind) -> Path:
        return self._kind_dirs[kind]

    def metrics(self, kind: ReportKind, pattern: str = "*") -> List[ReportMetric]:
        directory = self.kind_dir(kind)
        if not directory.is_dir():
            return []
        return [
            ReportMetric(name=metric_name(path), kind=kind, path=path)
            for path in sorted(directory.glob(f"{pattern}.sql"))
            if path.is_file()
        ]


__all__ = ["ReportKind", "ReportMetric", "TemplateStore", "metric_name"]
