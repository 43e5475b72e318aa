from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from crawl_reports.config import StorageConfig
from crawl_reports.dates import ReportDate
from crawl_reports.utils.io import read_text, write_text_atomic

logger = logging.getLogger("crawl_reports.storage")

JSON_CONTENT_TYPE = "application/json"


class StorageError(RuntimeError):
    """Raised when an artifact cannot be read from or written to the object store."""


def artifact_path(
    metric: str,
    lens: str = "",
    report_date: Optional[ReportDate] = None,
    prefix: str = "reports",
) -> str:
    """``reports/[<lens>/][<YYYY_MM_DD>/]<metric>.json``."""
    parts: List[str] = [prefix] if prefix else []
    if lens:
        parts.append(lens)
    if report_date is not None:
        parts.append(report_date.underscore)
    parts.append(f"{metric}.json")
    return "/".join(parts)


class ObjectStore:
    """Abstract object store interface."""

    def exists(self, path: str) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    def read_text(self, path: str) -> str:  # pragma: no cover - interface
        raise NotImplementedError

    def write_text(
        self, path: str, text: str, content_type: str = JSON_CONTENT_TYPE
    ) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def describe(self, path: str) -> str:
        return path


class GcsObjectStore(ObjectStore):
    """Google Cloud Storage through ``gsutil``."""

    def __init__(self, bucket: str, command: str = "gsutil") -> None:
        self.bucket = bucket
        self.command = command

    def url(self, path: str) -> str:
        return f"gs://{self.bucket}/{path}"

    def describe(self, path: str) -> str:
        return self.url(path)

    def exists(self, path: str) -> bool:
        try:
            proc = subprocess.run(
                [self.command, "ls", self.url(path)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            )
        except OSError as exc:
            raise StorageError(f"Unable to run {self.command}: {exc}") from exc
        return proc.returncode == 0

    def read_text(self, path: str) -> str:
        proc = self._run([self.command, "cat", self.url(path)])
        return proc.stdout

    def write_text(
        self, path: str, text: str, content_type: str = JSON_CONTENT_TYPE
    ) -> None:
        self._run(
            [
                self.command,
                "-h",
                f"Content-Type:{content_type}",
                "cp",
                "-",
                self.url(path),
            ],
            stdin_text=text,
        )

    def _run(
        self, command: Sequence[str], stdin_text: Optional[str] = None
    ) -> subprocess.CompletedProcess:
        try:
            proc = subprocess.run(
                list(command),
                input=stdin_text,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise StorageError(f"Unable to run {self.command}: {exc}") from exc
        if proc.returncode != 0:
            raise StorageError(
                f"{' '.join(command[:2])} failed with status {proc.returncode}: "
                f"{proc.stderr.strip()}"
            )
        return proc


class LocalObjectStore(ObjectStore):
    """Artifacts kept under a local directory, same relative paths as the bucket."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _target(self, path: str) -> Path:
        return self.root / path

    def describe(self, path: str) -> str:
        return str(self._target(path))

    def exists(self, path: str) -> bool:
        return self._target(path).is_file()

    def read_text(self, path: str) -> str:
        try:
            return read_text(self._target(path))
        except OSError as exc:
            raise StorageError(f"Unable to read {self._target(path)}: {exc}") from exc

    def write_text(
        self, path: str, text: str, content_type: str = JSON_CONTENT_TYPE
    ) -> None:
        logger.debug("Writing %s (%s)", self._target(path), content_type)
        try:
            write_text_atomic(self._target(path), text)
        except OSError as exc:
            raise StorageError(f"Unable to write {self._target(path)}: {exc}") from exc


def build_store(config: StorageConfig) -> ObjectStore:
    if config.backend == "local":
        return LocalObjectStore(Path(config.local_root))
    return GcsObjectStore(bucket=config.bucket, command=config.command)


__all__ = [
    "GcsObjectStore",
    "JSON_CONTENT_TYPE",
    "LocalObjectStore",
    "ObjectStore",
    "StorageError",
    "artifact_path",
    "build_store",
]
