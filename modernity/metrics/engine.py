"""Computes the metric vector of a parsed crate version."""

from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple

from ..logging import get_logger
from ..models import UNAVAILABLE, MetricValue, MetricVector, SyntaxForest
from ..stdlib.index import StdIndex
from .base import COUNT, RATIO, SCORE, Metric
from .definitions import METRIC_SET_VERSION, default_metrics
from .tally import SyntaxTally, TallyCollector

logger = get_logger("metrics")


class MetricEngine:
    """Applies a fixed, ordered metric set to SyntaxForests."""

    version = METRIC_SET_VERSION

    def __init__(self, index: StdIndex, metrics: Optional[Sequence[Metric]] = None) -> None:
        self._index = index
        self._metrics: Tuple[Metric, ...] = tuple(metrics if metrics is not None else default_metrics())
        names = [metric.name for metric in self._metrics]
        if len(set(names)) != len(names):
            raise ValueError("metric names must be unique")

    @property
    def metrics(self) -> Tuple[Metric, ...]:
        return self._metrics

    @property
    def names(self) -> List[str]:
        return [metric.name for metric in self._metrics]

    def tally(self, forest: SyntaxForest) -> SyntaxTally:
        return TallyCollector(self._index).collect(forest)

    def compute(self, forest: SyntaxForest) -> MetricVector:
        tally = self.tally(forest)
        values: List[Tuple[str, MetricValue]] = []
        for metric in self._metrics:
            try:
                value = metric.compute(tally, forest)
            except (ArithmeticError, LookupError, TypeError, ValueError) as exc:
                logger.debug("Metric %s unavailable for %s: %s", metric.name, forest.version.version, exc)
                value = UNAVAILABLE
            values.append((metric.name, _checked(metric, value)))
        return MetricVector(values)


def _checked(metric: Metric, value: MetricValue) -> MetricValue:
    if value is UNAVAILABLE or isinstance(value, bool):
        return UNAVAILABLE
    if metric.kind == COUNT:
        if isinstance(value, int) and value >= 0:
            return value
        return UNAVAILABLE
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return UNAVAILABLE
    if metric.kind == RATIO:
        return float(value) if 0.0 <= value <= 1.0 else UNAVAILABLE
    if metric.kind == SCORE:
        return float(value) if value >= 0 else UNAVAILABLE
    return UNAVAILABLE


__all__ = ["MetricEngine"]
