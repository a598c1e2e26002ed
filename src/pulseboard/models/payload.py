"""Tagged messages carried by the result and control buses.

every variant carries its own literal type tag, so pydantic can pick the
right class straight from the json via a discriminated union.
"""

from typing import Annotated, Literal

from pydantic import BaseModel, Field

from pulseboard.models.dataset import Dataset, LogCollection

# --- result bus payloads ---


class TimeseriesPayload(BaseModel):
    """A fresh Dataset for one time-series query."""

    type: Literal["timeseries"] = "timeseries"
    query: str  # identity - the raw text the operator submitted
    dataset: Dataset
    facets: list[str] = Field(default_factory=list)


class LogPayload(BaseModel):
    """A fresh LogCollection for one log query."""

    type: Literal["log"] = "log"
    query: str
    logs: LogCollection


class NoDataPayload(BaseModel):
    """The query ran (or tried to) and there is nothing to show this cycle."""

    type: Literal["no_data"] = "no_data"
    query: str


class ErrorPayload(BaseModel):
    """Something the operator should see as a failure banner."""

    type: Literal["error"] = "error"
    query: str
    message: str


Payload = Annotated[
    TimeseriesPayload | LogPayload | NoDataPayload | ErrorPayload,
    Field(discriminator="type"),
]

# --- control bus commands ---


class AddQuery(BaseModel):
    type: Literal["add"] = "add"
    text: str


class DeleteQuery(BaseModel):
    type: Literal["delete"] = "delete"
    text: str


class RefreshQuery(BaseModel):
    type: Literal["refresh"] = "refresh"


Command = Annotated[AddQuery | DeleteQuery | RefreshQuery, Field(discriminator="type")]
