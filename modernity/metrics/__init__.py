"""Metric set computed for every analyzed crate version."""

from .base import Metric
from .definitions import METRIC_SET_VERSION, default_metrics, metric_names
from .engine import MetricEngine

__all__ = ["METRIC_SET_VERSION", "Metric", "MetricEngine", "default_metrics", "metric_names"]
