"""Query history persisted between runs.

the session file is yaml - an ordered list of queries with optional aliases:

    queries:
      - query: SELECT count(*) FROM Transaction TIMESERIES
        alias: throughput
      - query: SELECT * FROM Log WHERE level = 'error'

order matters, it's the order the operator added them in.
"""

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ValidationError

from pulseboard.errors import SessionError
from pulseboard.parser.nrql import strip_value_alias

logger = logging.getLogger(__name__)


class SessionEntry(BaseModel):
    """One saved query."""

    query: str
    alias: str | None = None


class SessionStore:
    """Loads and saves the session file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> list[SessionEntry]:
        """Read saved queries, oldest first.

        a missing or empty file is just an empty history - first run.
        the "as value" annotation added on the way to the backend is stripped
        so reloading doesn't keep stacking it.

        Raises:
            SessionError: the file exists but isn't a valid session.
        """
        if not self.path.exists():
            return []

        try:
            with open(self.path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise SessionError(f"Could not parse session file {self.path}: {e}") from e

        if data is None:
            return []
        if not isinstance(data, dict) or not isinstance(data.get("queries", []), list):
            raise SessionError(f"Session file {self.path} must contain a 'queries' list")

        entries = []
        for item in data.get("queries", []):
            # bare strings are accepted too, handy when editing by hand
            if isinstance(item, str):
                item = {"query": item}
            try:
                entry = SessionEntry.model_validate(item)
            except ValidationError as e:
                raise SessionError(f"Invalid session entry {item!r}: {e}") from e
            entries.append(entry.model_copy(update={"query": strip_value_alias(entry.query)}))

        logger.info(f"Loaded {len(entries)} queries from {self.path}")
        return entries

    def queries(self) -> list[str]:
        """Just the query strings, in order."""
        return [entry.query for entry in self.load()]

    def save(self, entries: list[SessionEntry]) -> None:
        """Overwrite the session file with these entries."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {"queries": [entry.model_dump(exclude_none=True) for entry in entries]}
        with open(self.path, "w") as f:
            yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
        logger.info(f"Saved {len(entries)} queries to {self.path}")
