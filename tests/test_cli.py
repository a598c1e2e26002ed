"""Tests for CLI commands."""

import io
from pathlib import Path

import pytest
import yaml
from rich.console import Console
from typer.testing import CliRunner

from pulseboard.cli.main import _render, app
from pulseboard.client.telemetry import TelemetryClient
from pulseboard.consumer import DatasetStore
from pulseboard.errors import TransportError
from pulseboard.models import NoDataPayload

runner = CliRunner()

TIMESERIES_QUERY = "SELECT count(*) FROM Transaction TIMESERIES"
LOG_QUERY = "SELECT * FROM Log"


@pytest.fixture
def env(monkeypatch, tmp_path: Path) -> Path:
    """Credentials in the environment and a throwaway session file."""
    session_path = tmp_path / "session.yaml"
    monkeypatch.setenv("NR_ACCOUNT", "12345")
    monkeypatch.setenv("NR_API_KEY", "NRAK-TEST")
    monkeypatch.setenv("PULSEBOARD_SESSION", str(session_path))
    monkeypatch.setenv("PULSEBOARD_REFRESH_INTERVAL", "off")
    return session_path


@pytest.fixture
def backend(monkeypatch, timeseries_rows, log_rows):
    """Patch the client so commands never leave the process."""
    responses = {"timeseries": timeseries_rows, "log": log_rows}

    async def execute(self, query_text, row_type=None):
        if "TIMESERIES" in query_text:
            return [row_type.model_validate(row) for row in responses["timeseries"]]
        return responses["log"]

    monkeypatch.setattr(TelemetryClient, "execute", execute)
    return responses


class TestCLIParse:
    def test_parse_timeseries(self):
        """Shows the clauses and the wire text."""
        result = runner.invoke(app, ["parse", "SELECT count(*) FROM Transaction TIMESERIES"])
        assert result.exit_code == 0
        assert "parsed query (timeseries)" in result.stdout.lower()
        assert "count(*) as value" in result.stdout

    def test_parse_log(self):
        result = runner.invoke(app, ["parse", "SELECT * FROM Log WHERE level = 'error'"])
        assert result.exit_code == 0
        assert "parsed query (log)" in result.stdout.lower()

    def test_parse_fallback(self):
        """Unparseable text shows the log search it becomes."""
        result = runner.invoke(app, ["parse", "banana soup"])
        assert result.exit_code == 0
        assert "falling back" in result.stdout.lower()
        assert "allColumnSearch" in result.stdout


class TestCLIQuery:
    def test_missing_config(self, monkeypatch):
        """Missing credentials are reported, not a traceback."""
        monkeypatch.delenv("NR_ACCOUNT", raising=False)
        monkeypatch.delenv("NR_API_KEY", raising=False)

        result = runner.invoke(app, ["query", LOG_QUERY])
        assert result.exit_code == 1
        assert "configuration error" in result.stdout.lower()

    def test_query_timeseries(self, env, backend):
        result = runner.invoke(app, ["query", TIMESERIES_QUERY])
        assert result.exit_code == 0
        assert "time series" in result.stdout.lower()

    def test_query_logs(self, env, backend):
        result = runner.invoke(app, ["query", LOG_QUERY])
        assert result.exit_code == 0
        assert "logs (4 records" in result.stdout.lower()

    def test_query_json(self, env, backend):
        result = runner.invoke(app, ["query", TIMESERIES_QUERY, "--output", "json"])
        assert result.exit_code == 0
        assert '"type": "timeseries"' in result.stdout

    def test_query_no_data(self, env, backend):
        backend["log"] = []
        result = runner.invoke(app, ["query", LOG_QUERY])
        assert result.exit_code == 0
        assert "no data" in result.stdout.lower()

    def test_query_error(self, env, monkeypatch):
        """A backend failure exits non-zero with the message."""

        async def execute(self, query_text, row_type=None):
            raise RuntimeError("kaboom")

        monkeypatch.setattr(TelemetryClient, "execute", execute)

        result = runner.invoke(app, ["query", LOG_QUERY])
        assert result.exit_code == 1
        assert "kaboom" in result.stdout

    def test_query_transport_error_is_no_data(self, env, monkeypatch):
        """One flaky request on its own is just no data."""

        async def execute(self, query_text, row_type=None):
            raise TransportError("connection refused")

        monkeypatch.setattr(TelemetryClient, "execute", execute)

        result = runner.invoke(app, ["query", LOG_QUERY])
        assert result.exit_code == 0
        assert "no data" in result.stdout.lower()


class TestCLIWatch:
    def test_watch_saves_session(self, env, backend):
        """watch --session writes the queries it was given."""
        result = runner.invoke(
            app, ["watch", TIMESERIES_QUERY, "--duration", "0.3", "--interval", "0.05", "--session"]
        )
        assert result.exit_code == 0

        saved = yaml.safe_load(env.read_text())
        assert saved == {"queries": [{"query": TIMESERIES_QUERY}]}


class TestCLIHistory:
    def test_history_empty(self, tmp_path: Path):
        result = runner.invoke(app, ["history", "--path", str(tmp_path / "none.yaml")])
        assert result.exit_code == 0
        assert "no saved queries" in result.stdout.lower()

    def test_history_lists_entries(self, tmp_path: Path):
        path = tmp_path / "session.yaml"
        path.write_text(
            yaml.safe_dump({"queries": [{"query": LOG_QUERY, "alias": "all-logs"}]})
        )

        result = runner.invoke(app, ["history", "--path", str(path)])
        assert result.exit_code == 0
        assert "all-logs" in result.stdout

    def test_history_from_env(self, env):
        env.write_text(yaml.safe_dump({"queries": ["banana soup"]}))

        result = runner.invoke(app, ["history"])
        assert result.exit_code == 0
        assert "banana soup" in result.stdout

    def test_history_invalid_file(self, tmp_path: Path):
        path = tmp_path / "session.yaml"
        path.write_text("queries: [unclosed")

        result = runner.invoke(app, ["history", "--path", str(path)])
        assert result.exit_code == 1
        assert "error loading session" in result.stdout.lower()


class TestRender:
    def rendered(self, store: DatasetStore) -> str:
        console = Console(width=200, record=True, file=io.StringIO())
        console.print(_render(store))
        return console.export_text().lower()

    def test_empty_first_poll_shows_no_data(self):
        """A query that came back empty says so instead of waiting forever."""
        store = DatasetStore()
        store.track(TIMESERIES_QUERY)
        store.ingest(NoDataPayload(query=TIMESERIES_QUERY))

        assert "no data" in self.rendered(store)

    def test_unpolled_query_is_waiting(self):
        store = DatasetStore()
        store.track(TIMESERIES_QUERY)

        text = self.rendered(store)
        assert "waiting" in text
        assert "no data" not in text


class TestCLIHelp:
    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "parse" in result.stdout
        assert "watch" in result.stdout
