"""Pydantic models for rows coming back from the telemetry backend.

field names follow the backend's camelCase json. rows are short-lived - they
get folded into a Dataset or LogCollection straight away.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TimeseriesRow(BaseModel):
    """One bucket of a TIMESERIES result."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    begin_time: float = Field(alias="beginTimeSeconds")
    end_time: float = Field(alias="endTimeSeconds")
    facet: str | None = None
    value: float

    @field_validator("facet", mode="before")
    @classmethod
    def join_multi_facet(cls, v: Any) -> Any:
        """Multi-attribute facets come back as a list, flatten to one label."""
        if isinstance(v, list):
            return ", ".join(str(part) for part in v)
        return v


class LogRecord(BaseModel):
    """One log record plus the severity level pulled out of it."""

    timestamp: float
    payload: dict[str, Any]
    level: str
