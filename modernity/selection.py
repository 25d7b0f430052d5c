"""Time-spread sampling of a crate's release history."""

from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Iterable, List, Optional

from .config import DEFAULT_SAMPLE_SIZE
from .errors import NoPublishedVersions
from .logging import get_logger
from .models import Release
from .registry import Registry

logger = get_logger("selection")


@dataclass(frozen=True)
class TimeRange:
    """Inclusive bounds on release timestamps; either side may be open."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def contains(self, moment: datetime) -> bool:
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True

    def __str__(self) -> str:
        start = self.start.isoformat() if self.start else ""
        end = self.end.isoformat() if self.end else ""
        return f"{start}..{end}"


def parse_time_range(text: str) -> TimeRange:
    """Parse ``START..END``; dates cover whole days, datetimes without a zone are UTC."""
    if ".." not in text:
        raise ValueError(f"time range must look like START..END, got {text!r}")
    start_text, end_text = text.split("..", 1)
    start = _parse_bound(start_text.strip(), end_of_day=False)
    end = _parse_bound(end_text.strip(), end_of_day=True)
    if start is not None and end is not None and start > end:
        raise ValueError(f"time range starts after it ends: {text!r}")
    return TimeRange(start=start, end=end)


def _parse_bound(text: str, *, end_of_day: bool) -> Optional[datetime]:
    if not text:
        return None
    if "T" not in text and " " not in text:
        day = date.fromisoformat(text)
        return datetime.combine(day, time.max if end_of_day else time.min, tzinfo=timezone.utc)
    moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def select_versions(
    name: str,
    releases: Iterable[Release],
    count: int = DEFAULT_SAMPLE_SIZE,
    time_range: Optional[TimeRange] = None,
) -> List[Release]:
    """Pick up to ``count`` releases spread evenly over the release timeline."""
    if count < 1:
        raise ValueError("sample size must be at least 1")
    candidates = sorted(
        (
            release
            for release in releases
            if not release.yanked and (time_range is None or time_range.contains(release.published_at))
        ),
        key=lambda release: (release.published_at, release.version),
    )
    distinct: List[Release] = []
    for release in candidates:
        if distinct and distinct[-1].published_at == release.published_at:
            continue
        distinct.append(release)
    if not distinct:
        detail = f"within {time_range}" if time_range is not None else None
        raise NoPublishedVersions(name, detail)

    if len(distinct) <= count:
        return distinct
    if count == 1:
        return [distinct[-1]]

    times = [release.published_at for release in distinct]
    start, span = times[0], times[-1] - times[0]
    chosen: List[int] = []
    for step in range(count):
        boundary = start + span * step / (count - 1)
        index = _nearest(times, boundary)
        if index not in chosen:
            chosen.append(index)
    selected = [distinct[index] for index in sorted(chosen)]
    logger.debug("Selected %d of %d releases of %s", len(selected), len(distinct), name)
    return selected


def _nearest(times: List[datetime], boundary: datetime) -> int:
    index = bisect_left(times, boundary)
    if index == 0:
        return 0
    if index == len(times):
        return len(times) - 1
    before, after = times[index - 1], times[index]
    # Ties go to the earlier release.
    return index - 1 if boundary - before <= after - boundary else index


class VersionSelector:
    """Fetches release history from a registry and samples it."""

    def __init__(self, registry: Registry) -> None:
        self._registry = registry

    def select(
        self,
        name: str,
        count: int = DEFAULT_SAMPLE_SIZE,
        time_range: Optional[TimeRange] = None,
    ) -> List[Release]:
        releases = self._registry.releases(name)
        if not releases:
            raise NoPublishedVersions(name)
        return select_versions(name, releases, count, time_range)


__all__ = ["TimeRange", "VersionSelector", "parse_time_range", "select_versions"]
