"""Serialization of a LibraryReport as one CSV table per crate."""

from __future__ import annotations

import csv
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

from .models import UNAVAILABLE, LibraryReport, LibraryVersion, MetricValue, MetricVector

MISSING_VALUE = "NA"
KEY_COLUMNS = ("version", "timestamp")

_INTEGER_RE = re.compile(r"^-?\d+$")


def table_path(results_dir: Path, name: str) -> Path:
    return results_dir / f"{name}.csv"


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def format_value(value: MetricValue) -> str:
    if value is UNAVAILABLE:
        return MISSING_VALUE
    if isinstance(value, float):
        return repr(value)
    return str(value)


def parse_value(text: str) -> MetricValue:
    if text == MISSING_VALUE or text == "":
        return UNAVAILABLE
    if _INTEGER_RE.match(text):
        return int(text)
    return float(text)


def write_report(report: LibraryReport, results_dir: Path, metric_names: Sequence[str]) -> Path:
    """Write the report atomically, replacing any table from an earlier run."""
    columns = list(KEY_COLUMNS) + list(metric_names)
    rows: List[Dict[str, str]] = []
    for version, vector in report.rows:
        if list(vector.names) != list(metric_names):
            raise ValueError(f"metric columns of {version.version} do not match the table header")
        row = {"version": version.version, "timestamp": format_timestamp(version.published_at)}
        row.update({name: format_value(vector[name]) for name in metric_names})
        rows.append(row)

    results_dir.mkdir(parents=True, exist_ok=True)
    destination = table_path(results_dir, report.name)
    fd, temporary = tempfile.mkstemp(prefix=f".{report.name}.", suffix=".csv.tmp", dir=results_dir)
    try:
        with os.fdopen(fd, "w", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=columns)
            writer.writeheader()
            writer.writerows(rows)
        os.replace(temporary, destination)
    except BaseException:
        Path(temporary).unlink(missing_ok=True)
        raise
    return destination


def read_report(path: Path, name: str | None = None) -> LibraryReport:
    """Read a table written by ``write_report`` back into a LibraryReport."""
    crate = name or path.stem
    rows: List[Tuple[LibraryVersion, MetricVector]] = []
    with path.open("r", newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        fieldnames = list(reader.fieldnames or [])
        if fieldnames[: len(KEY_COLUMNS)] != list(KEY_COLUMNS):
            raise ValueError(f"{path} is not a modernity table")
        metric_columns = fieldnames[len(KEY_COLUMNS):]
        for raw in reader:
            published_at = datetime.fromisoformat(raw["timestamp"].replace("Z", "+00:00"))
            version = LibraryVersion(name=crate, version=raw["version"], published_at=published_at)
            vector = MetricVector([(column, parse_value(raw[column])) for column in metric_columns])
            rows.append((version, vector))
    return LibraryReport(name=crate, rows=rows)


__all__ = ["MISSING_VALUE", "format_value", "parse_value", "read_report", "table_path", "write_report"]
