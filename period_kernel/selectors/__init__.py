"""Read-only selectors."""

from period_kernel.selectors.base import BaseSelector
from period_kernel.selectors.history_selector import HistoryAggregator

__all__ = ["BaseSelector", "HistoryAggregator"]
