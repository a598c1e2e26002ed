"""Telemetry backend access."""

from pulseboard.client.telemetry import TelemetryClient, TelemetrySource

__all__ = ["TelemetryClient", "TelemetrySource"]
