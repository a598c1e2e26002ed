"""Pytest fixtures for Pulseboard tests."""

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from pulseboard.config import Settings
from pulseboard.parser.nrql import resolve


class FakeTelemetryClient:
    """In-memory stand-in for the NerdGraph client.

    responses are registered against the raw query text and stored under the
    text the scheduler will actually send. a response can be a list of rows,
    an exception to raise, or a callable producing either.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight: dict[str, int] = {}
        self.max_in_flight: dict[str, int] = {}
        self._responses: dict[str, Any] = {}

    def respond(self, raw: str, response: Any) -> None:
        _, effective = resolve(raw)
        self._responses[effective] = response

    def call_count(self, raw: str) -> int:
        _, effective = resolve(raw)
        return self.calls.count(effective)

    async def execute(self, query_text: str, row_type: Any = None) -> list[Any]:
        self.calls.append(query_text)
        self.in_flight[query_text] = self.in_flight.get(query_text, 0) + 1
        self.max_in_flight[query_text] = max(
            self.max_in_flight.get(query_text, 0), self.in_flight[query_text]
        )
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            response = self._responses.get(query_text, [])
            if callable(response):
                response = response()
            if isinstance(response, Exception):
                raise response
            if row_type is not None:
                return [row_type.model_validate(row) for row in response]
            return list(response)
        finally:
            self.in_flight[query_text] -= 1


@pytest.fixture
def fake_client() -> FakeTelemetryClient:
    return FakeTelemetryClient()


@pytest.fixture
def wait_until() -> Callable:
    """Async helper: poll a predicate until it holds or the timeout expires."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if predicate():
                return True
            await asyncio.sleep(0.005)
        return predicate()

    return _wait


@pytest.fixture
def timeseries_rows() -> list[dict]:
    """Three buckets for one facet, shaped like the backend returns them."""
    return [
        {"beginTimeSeconds": 0, "endTimeSeconds": 10, "facet": "A", "value": 1},
        {"beginTimeSeconds": 10, "endTimeSeconds": 20, "facet": "A", "value": 5},
        {"beginTimeSeconds": 20, "endTimeSeconds": 30, "facet": "A", "value": 3},
    ]


@pytest.fixture
def log_rows() -> list[dict]:
    """Raw log records with a mix of level fields."""
    return [
        {"timestamp": 1700000000000, "level": "ERROR", "message": "payment failed"},
        {"timestamp": 1700000001000, "log.level": "debug", "message": "cache miss"},
        {"timestamp": 1700000002000, "message": "request served"},
        {"timestamp": 1700000003000, "level": "info", "message": "payment retried"},
    ]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with fast timings and a throwaway session file."""
    return Settings(
        account_id=12345,
        api_key="NRAK-TEST",
        poll_interval=0.01,
        refresh_interval=None,
        max_consecutive_failures=3,
        session_path=tmp_path / "session.yaml",
    )
