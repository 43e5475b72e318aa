from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

_DATE_RE = re.compile(r"^(\d{4})[_-](\d{2})[_-](\d{2})$")


@dataclass(frozen=True, order=True)
class ReportDate:
    """A crawl date, rendered ``YYYY_MM_DD`` for storage and ``YYYY-MM-DD`` for SQL."""

    value: date

    @classmethod
    def parse(cls, text: str) -> "ReportDate":
        match = _DATE_RE.match(text.strip())
        if not match:
            raise ValueError(
                f"Invalid date {text!r}; expected YYYY_MM_DD or YYYY-MM-DD."
            )
        year, month, day = (int(part) for part in match.groups())
        return cls(date(year, month, day))

    @classmethod
    def try_parse(cls, text: object) -> Optional["ReportDate"]:
        if not isinstance(text, str):
            return None
        try:
            return cls.parse(text)
        except ValueError:
            return None

    @property
    def underscore(self) -> str:
        return self.value.strftime("%Y_%m_%d")

    @property
    def dash(self) -> str:
        return self.value.isoformat()

    @property
    def yyyymm(self) -> str:
        return self.value.strftime("%Y%m")

    def __str__(self) -> str:
        return self.underscore


__all__ = ["ReportDate"]
