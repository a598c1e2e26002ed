"""Turns raw log records into a browsable LogCollection plus a severity histogram.

the backend hands log rows back as arbitrary json objects so there's no row
model to validate against - we pull out timestamp and level and keep the rest
as-is for display.
"""

import json
import string
from datetime import datetime, timezone
from typing import Any

from pulseboard.models.dataset import Bounds, LogCollection, Point, Severity
from pulseboard.models.payload import LogPayload, NoDataPayload
from pulseboard.models.results import LogRecord

LEVEL_FIELD = "level"
FALLBACK_LEVEL_FIELD = "log.level"
DEFAULT_LEVEL = "Information"
CORRELATION_FIELD = "CorrelationId"

_ERROR_LEVELS = {"error", "err", "fatal", "critical", "severe"}
_DEBUG_LEVELS = {"debug", "trace", "verbose"}


def extract_level(payload: dict[str, Any]) -> str:
    """Severity level from the primary field, then the fallback, then the default."""
    for field in (LEVEL_FIELD, FALLBACK_LEVEL_FIELD):
        value = payload.get(field)
        if value is not None and str(value).strip():
            return str(value)
    return DEFAULT_LEVEL


def severity_of(level: str) -> Severity:
    """Map a free-form level string onto one of the three histogram bins."""
    normalized = level.strip().lower()
    if normalized in _ERROR_LEVELS:
        return Severity.ERROR
    if normalized in _DEBUG_LEVELS:
        return Severity.DEBUG
    return Severity.INFO


def to_record(raw: dict[str, Any]) -> LogRecord:
    """Wrap one raw backend row. Missing or junk timestamps become 0."""
    try:
        timestamp = float(raw.get("timestamp", 0))
    except (TypeError, ValueError):
        timestamp = 0.0
    return LogRecord(timestamp=timestamp, payload=raw, level=extract_level(raw))


def format_timestamp(timestamp: float) -> str:
    """Epoch milliseconds to a sortable UTC string."""
    try:
        moment = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return str(timestamp)
    return moment.strftime("%Y-%m-%d %H:%M:%S.") + f"{moment.microsecond // 1000:03d}"


def format_record(record: LogRecord) -> str:
    """Pretty json for the detail view."""
    return json.dumps(record.payload, indent=2, sort_keys=True, default=str)


def build_collection(records: list[LogRecord]) -> LogCollection:
    """Index records by timestamp and bin them by severity."""
    logs: dict[str, str] = {}
    histogram: dict[Severity, list[Point]] = {severity: [] for severity in Severity}
    points: list[Point] = []

    for record in sorted(records, key=lambda r: r.timestamp):
        key = format_timestamp(record.timestamp)
        # records in the same millisecond are common, don't let them clobber each other
        if key in logs:
            n = 2
            while f"{key} #{n}" in logs:
                n += 1
            key = f"{key} #{n}"
        logs[key] = format_record(record)

        point = (record.timestamp, 1.0)
        histogram[severity_of(record.level)].append(point)
        points.append(point)

    return LogCollection(logs=logs, histogram=histogram, bounds=Bounds.from_points(points))


def aggregate_logs(query: str, rows: list[dict[str, Any]]) -> LogPayload | NoDataPayload:
    """Build the payload for one execution of a log query."""
    if not rows:
        return NoDataPayload(query=query)
    collection = build_collection([to_record(row) for row in rows])
    return LogPayload(query=query, logs=collection)


def filter_logs(collection: LogCollection, terms: list[str]) -> LogCollection:
    """Keep records containing every term (case-insensitive).

    returns a new collection - the histogram and bounds stay those of the full
    result set so the chart doesn't jump around while the operator types.
    """
    active = [term for term in (t.strip() for t in terms) if term]
    if not active:
        return collection.model_copy(update={"filters": []})

    lowered = [term.lower() for term in active]
    kept = {
        key: text
        for key, text in collection.logs.items()
        if all(term in text.lower() for term in lowered)
    }
    return collection.model_copy(update={"logs": kept, "filters": active})


def correlation_token(line: str) -> str | None:
    """Last word of a detail line, with surrounding punctuation trimmed off."""
    words = line.split()
    if not words:
        return None
    return words[-1].strip(string.punctuation) or None


def find_correlation_id(record: str, field: str = CORRELATION_FIELD) -> str | None:
    """Pull the id out of the first line of a formatted record that mentions field.

    works on the pretty json from format_record, so `"CorrelationId": "abc-1",`
    gives abc-1. returns None when no line mentions the field.
    """
    for line in record.splitlines():
        if field in line:
            return correlation_token(line)
    return None
