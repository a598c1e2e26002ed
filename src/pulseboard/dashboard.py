"""Main Dashboard interface for Pulseboard."""

import logging

from pulseboard.aggregator.logs import CORRELATION_FIELD, find_correlation_id
from pulseboard.bus import ControlBus, ResultBus
from pulseboard.client.telemetry import TelemetryClient, TelemetrySource
from pulseboard.config import Settings
from pulseboard.consumer import DatasetStore
from pulseboard.models.payload import AddQuery, DeleteQuery, Payload
from pulseboard.parser.nrql import fallback_query
from pulseboard.scheduler import Scheduler, SchedulerConfig
from pulseboard.session import SessionEntry, SessionStore

logger = logging.getLogger(__name__)


class Dashboard:
    """Main interface for Pulseboard.

    wires the client, both buses, the scheduler and the display store
    together. the ui layer only ever talks to this.
    """

    def __init__(self, settings: Settings, client: TelemetrySource | None = None) -> None:
        """Initialize the dashboard.

        Args:
            settings: Runtime settings.
            client: Telemetry client to use, or None to build one from settings.
        """
        self.settings = settings
        self._owns_client = client is None
        self.client = client or TelemetryClient(
            endpoint=settings.endpoint,
            account_id=settings.account_id,
            api_key=settings.api_key,
            timeout=settings.request_timeout,
        )
        self.results = ResultBus()
        self.control = ControlBus()
        self.scheduler = Scheduler(
            self.client,
            self.results,
            self.control,
            SchedulerConfig(
                poll_interval=settings.poll_interval,
                max_consecutive_failures=settings.max_consecutive_failures,
            ),
        )
        self.store = DatasetStore()
        self.session = SessionStore(settings.session_path)

    async def start(self) -> None:
        """Start the scheduler and, if configured, the refresh ticker."""
        self.scheduler.start()
        if self.settings.refresh_interval is not None:
            self.scheduler.start_refresh(self.settings.refresh_interval)

    def add_query(self, text: str) -> None:
        """Submit a query. Its payloads show up on the next pump()."""
        text = text.strip()
        if not text:
            return
        self.store.track(text)
        self.control.publish(AddQuery(text=text))

    def delete_query(self, text: str) -> None:
        """Stop a query and drop what it was displaying."""
        self.store.forget(text)
        self.control.publish(DeleteQuery(text=text))

    def rename(self, text: str, alias: str | None) -> None:
        self.store.rename(text, alias)

    def drill_down(self, identity: str, key: str, field: str = CORRELATION_FIELD) -> str:
        """Open a log search for the correlation id in one displayed record.

        Returns the query that was added.

        Raises:
            KeyError: the query has no record under that key.
            ValueError: the record doesn't mention the field.
        """
        collection = self.store.logs.get(identity)
        if collection is None or key not in collection.logs:
            raise KeyError(f"No log record {key!r} for query: {identity}")
        token = find_correlation_id(collection.logs[key], field)
        if token is None:
            raise ValueError(f"Log record {key!r} has no {field}")

        query = fallback_query(token)
        logger.info(f"Drilling down into {field} {token!r}")
        self.add_query(query)
        return query

    def pump(self) -> int:
        """Move waiting payloads from the result bus into the display store."""
        return self.store.drain(self.results)

    async def run_once(self, text: str) -> Payload:
        """Execute a query a single time, outside the polling machinery."""
        return await self.scheduler.execute_once(text)

    def load_session(self) -> int:
        """Re-submit every query from the session file. Returns how many."""
        entries = self.session.load()
        for entry in entries:
            # the store keys on the stripped text, so the alias has to as well
            text = entry.query.strip()
            self.add_query(text)
            if text and entry.alias:
                self.rename(text, entry.alias)
        return len(entries)

    def save_session(self) -> None:
        """Write the currently tracked queries and their aliases."""
        entries = [
            SessionEntry(query=identity, alias=alias)
            for identity, alias in self.store.aliases().items()
        ]
        self.session.save(entries)

    async def close(self) -> None:
        """Stop everything and release the http session."""
        await self.scheduler.close()
        self.results.close()
        self.control.close()
        if self._owns_client and isinstance(self.client, TelemetryClient):
            await self.client.close()

    async def __aenter__(self) -> "Dashboard":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
