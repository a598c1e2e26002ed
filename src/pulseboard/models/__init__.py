"""Pydantic models for Pulseboard."""

from pulseboard.models.dataset import Bounds, Dataset, LogCollection, Point, Severity
from pulseboard.models.payload import (
    AddQuery,
    Command,
    DeleteQuery,
    ErrorPayload,
    LogPayload,
    NoDataPayload,
    Payload,
    RefreshQuery,
    TimeseriesPayload,
)
from pulseboard.models.query import ActiveQuery, ParsedQuery, QueryKind
from pulseboard.models.results import LogRecord, TimeseriesRow

__all__ = [
    "ActiveQuery",
    "AddQuery",
    "Bounds",
    "Command",
    "Dataset",
    "DeleteQuery",
    "ErrorPayload",
    "LogCollection",
    "LogPayload",
    "LogRecord",
    "NoDataPayload",
    "ParsedQuery",
    "Payload",
    "Point",
    "QueryKind",
    "RefreshQuery",
    "Severity",
    "TimeseriesPayload",
    "TimeseriesRow",
]
