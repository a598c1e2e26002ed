"""Exception hierarchy for Pulseboard.

everything the engine raises on purpose derives from PulseboardError so the
cli can catch one thing. the telemetry errors are split in two because the
scheduler treats them differently - a flaky network is "no data this cycle",
a garbage response is something the operator should see.
"""


class PulseboardError(Exception):
    """Base class for all Pulseboard errors."""


class QueryParseError(PulseboardError):
    """Query text doesn't have the SELECT ... FROM ... structure."""

    def __init__(self, text: str, reason: str) -> None:
        self.text = text
        self.reason = reason
        super().__init__(f"Cannot parse query {text!r}: {reason}")


class TelemetryError(PulseboardError):
    """Something went wrong talking to the telemetry backend."""


class TransportError(TelemetryError):
    """Network failure, timeout or non-2xx status."""


class ResponseFormatError(TelemetryError):
    """The backend answered but the response envelope was not what we expect."""


class BusClosedError(PulseboardError):
    """Publishing to a bus that has been closed."""


class SessionError(PulseboardError):
    """Session file exists but can't be read back."""


class ConfigError(PulseboardError):
    """Required configuration is missing or invalid."""
