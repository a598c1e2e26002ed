"""Pulseboard - live NRQL time series and log browsing for the terminal."""

from pulseboard.config import Settings
from pulseboard.dashboard import Dashboard

__all__ = ["Dashboard", "Settings"]
