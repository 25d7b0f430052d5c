"""Base classes for metric plugins."""

from abc import ABC, abstractmethod

from ..models import MetricValue, SyntaxForest
from .tally import SyntaxTally

RATIO = "ratio"
COUNT = "count"
SCORE = "score"


class Metric(ABC):
    """Contract for a single column of the metric vector."""

    name: str = ""
    kind: str = COUNT
    description: str = ""

    @abstractmethod
    def compute(self, tally: SyntaxTally, forest: SyntaxForest) -> MetricValue:
        """Reduce the tally of syntax facts to this metric's value."""
