"""Pydantic models for what the consumer displays.

both Dataset and LogCollection get replaced wholesale on every successful
poll. I tried merging points incrementally early on and it was a mess -
buckets shift under you as the SINCE window slides.
"""

from enum import Enum

from pydantic import BaseModel, Field

Point = tuple[float, float]


class Severity(str, Enum):
    """Histogram bins for log records."""

    INFO = "Info"
    ERROR = "Error"
    DEBUG = "Debug"


class Bounds(BaseModel):
    """Axis extents, (x, y) for both ends."""

    mins: Point = (0.0, 0.0)
    maxes: Point = (0.0, 0.0)

    @classmethod
    def from_points(cls, points: list[Point]) -> "Bounds":
        """Fold points into component-wise min/max.

        both ends start at infinity (of the right sign) so negative values
        don't get clamped to zero. no points means default zero bounds rather
        than leaking infinities into the axis code.
        """
        if not points:
            return cls()

        min_x = min_y = float("inf")
        max_x = max_y = float("-inf")
        for x, y in points:
            min_x = min(min_x, x)
            min_y = min(min_y, y)
            max_x = max(max_x, x)
            max_y = max(max_y, y)

        return cls(mins=(min_x, min_y), maxes=(max_x, max_y))


class Dataset(BaseModel):
    """Current chart state for one time-series query."""

    facets: dict[str, list[Point]] = Field(default_factory=dict)
    bounds: Bounds = Field(default_factory=Bounds)
    alias: str | None = None  # display name set by the operator
    has_data: bool = False


class LogCollection(BaseModel):
    """Current browse state for one log query."""

    logs: dict[str, str] = Field(default_factory=dict)  # timestamp -> formatted record
    histogram: dict[Severity, list[Point]] = Field(
        default_factory=lambda: {severity: [] for severity in Severity}
    )
    bounds: Bounds = Field(default_factory=Bounds)
    filters: list[str] = Field(default_factory=list)

    def count(self, severity: Severity) -> int:
        """Number of records in one histogram bin."""
        return len(self.histogram.get(severity, []))
