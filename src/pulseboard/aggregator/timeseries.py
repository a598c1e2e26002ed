"""Turns TIMESERIES rows into per-facet point series.

pure function, no state - workers for different queries call it concurrently.
"""

from pulseboard.models.dataset import Bounds, Dataset, Point
from pulseboard.models.payload import NoDataPayload, TimeseriesPayload
from pulseboard.models.results import TimeseriesRow

DEFAULT_FACET = "value"


def group_by_facet(rows: list[TimeseriesRow]) -> dict[str, list[Point]]:
    """Bucket rows into one point series per facet label.

    the first point of each facet is plotted at begin_time, every later one at
    end_time. that anchors the line at the left edge of the query window
    instead of starting one bucket in.
    """
    facets: dict[str, list[Point]] = {}
    for row in rows:
        label = row.facet if row.facet is not None else DEFAULT_FACET
        if label not in facets:
            facets[label] = [(row.begin_time, row.value)]
        else:
            facets[label].append((row.end_time, row.value))
    return facets


def compute_bounds(rows: list[TimeseriesRow]) -> Bounds:
    """Axis bounds over (end_time, value) for the full result set."""
    return Bounds.from_points([(row.end_time, row.value) for row in rows])


def aggregate_timeseries(
    query: str, rows: list[TimeseriesRow]
) -> TimeseriesPayload | NoDataPayload:
    """Build the payload for one poll of a time-series query."""
    if not rows:
        return NoDataPayload(query=query)

    facets = group_by_facet(rows)
    dataset = Dataset(facets=facets, bounds=compute_bounds(rows), has_data=True)
    return TimeseriesPayload(query=query, dataset=dataset, facets=list(facets))
