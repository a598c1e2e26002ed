"""Display state fed from the result bus.

DatasetStore is the one and only writer of the dataset map - it's mutated by
draining the result bus and by operator actions on the same thread, so no
locking. payloads from different queries arrive in any order, so everything
is keyed by query identity and overwritten, never appended.
"""

import logging

from pulseboard.aggregator.logs import filter_logs
from pulseboard.bus import ResultBus
from pulseboard.models.dataset import Dataset, LogCollection
from pulseboard.models.payload import (
    ErrorPayload,
    LogPayload,
    NoDataPayload,
    Payload,
    TimeseriesPayload,
)

logger = logging.getLogger(__name__)


class DatasetStore:
    """Keyed map of datasets and log collections for display."""

    def __init__(self) -> None:
        self.datasets: dict[str, Dataset] = {}
        self.logs: dict[str, LogCollection] = {}
        self.errors: dict[str, str] = {}  # identity -> failure banner text
        self.no_data: set[str] = set()  # identities whose last result was empty
        self.facet_labels: set[str] = set()  # every facet seen, for legend/colour keys
        self._tracked: dict[str, None] = {}  # insertion-ordered set
        # unfiltered log collections so filters can be changed or cleared
        self._raw_logs: dict[str, LogCollection] = {}

    # --- tracking ---

    def track(self, identity: str) -> None:
        """Start accepting payloads for a query."""
        self._tracked.setdefault(identity, None)

    def forget(self, identity: str) -> None:
        """Stop accepting payloads for a query and drop its state."""
        self._tracked.pop(identity, None)
        self.datasets.pop(identity, None)
        self.logs.pop(identity, None)
        self._raw_logs.pop(identity, None)
        self.no_data.discard(identity)
        self.errors.pop(identity, None)

    def is_tracked(self, identity: str) -> bool:
        return identity in self._tracked

    @property
    def tracked(self) -> list[str]:
        return list(self._tracked)

    # --- ingestion ---

    def ingest(self, payload: Payload) -> bool:
        """Merge one payload. Returns False if it was dropped as stale."""
        identity = payload.query
        if identity not in self._tracked:
            logger.debug(f"Dropping {payload.type} payload for inactive query {identity!r}")
            return False

        if isinstance(payload, TimeseriesPayload):
            alias = self.datasets[identity].alias if identity in self.datasets else None
            self.datasets[identity] = payload.dataset.model_copy(update={"alias": alias})
            self.facet_labels.update(payload.facets)
            self.no_data.discard(identity)
            self.errors.pop(identity, None)

        elif isinstance(payload, LogPayload):
            self._raw_logs[identity] = payload.logs
            previous = self.logs.get(identity)
            active_filters = previous.filters if previous else []
            self.logs[identity] = filter_logs(payload.logs, active_filters)
            self.no_data.discard(identity)
            self.errors.pop(identity, None)

        elif isinstance(payload, NoDataPayload):
            # keep the alias around, just flag that there's nothing to draw.
            # a first poll can be empty too, so create the placeholder if needed
            dataset = self.datasets.get(identity, Dataset())
            self.datasets[identity] = dataset.model_copy(update={"has_data": False, "facets": {}})
            self.no_data.add(identity)

        elif isinstance(payload, ErrorPayload):
            self.errors[identity] = payload.message

        return True

    def drain(self, bus: ResultBus) -> int:
        """Ingest everything currently waiting on the bus. Returns how many were kept."""
        return sum(1 for payload in bus.drain() if self.ingest(payload))

    # --- operator actions ---

    def rename(self, identity: str, alias: str | None) -> None:
        """Set a display alias for a time-series query.

        works before the first payload lands too - the empty dataset is a
        placeholder that the first real payload fills in.
        """
        dataset = self.datasets.get(identity, Dataset())
        self.datasets[identity] = dataset.model_copy(update={"alias": alias or None})

    def filter_logs(self, identity: str, terms: list[str]) -> LogCollection:
        """Apply text filters to a log query's records.

        Raises:
            KeyError: no log records for that query yet.
        """
        if identity not in self._raw_logs:
            raise KeyError(f"No logs for query: {identity}")
        self.logs[identity] = filter_logs(self._raw_logs[identity], terms)
        return self.logs[identity]

    def display_name(self, identity: str) -> str:
        """Alias if one was set, otherwise the query text itself."""
        dataset = self.datasets.get(identity)
        if dataset is not None and dataset.alias:
            return dataset.alias
        return identity

    def aliases(self) -> dict[str, str | None]:
        """identity -> alias for every tracked query, in the order they were added."""
        return {
            identity: self.datasets[identity].alias if identity in self.datasets else None
            for identity in self.tracked
        }
