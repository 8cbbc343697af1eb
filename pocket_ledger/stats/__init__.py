"""Statistics package."""

from pocket_ledger.stats.aggregator import UNCATEGORIZED, StatisticsAggregator

__all__ = ["StatisticsAggregator", "UNCATEGORIZED"]
