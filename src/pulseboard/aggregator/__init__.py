"""Aggregation of raw backend rows into display state."""

from pulseboard.aggregator.logs import aggregate_logs, filter_logs, find_correlation_id
from pulseboard.aggregator.timeseries import DEFAULT_FACET, aggregate_timeseries

__all__ = [
    "DEFAULT_FACET",
    "aggregate_logs",
    "aggregate_timeseries",
    "filter_logs",
    "find_correlation_id",
]
