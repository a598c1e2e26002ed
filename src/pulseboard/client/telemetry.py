"""NerdGraph telemetry client for Pulseboard.

the backend is a graphql endpoint that runs nrql for us - we wrap the query
text into a fixed request envelope and dig the rows out of a fixed, fairly
deep response envelope. everything about the query itself is opaque here.

the query text travels as a graphql variable rather than being spliced into
the document, so quotes in a log search can't break the request.
"""

import asyncio
import logging
from typing import Any, Protocol, TypeVar

import aiohttp
from pydantic import BaseModel, TypeAdapter, ValidationError

from pulseboard.errors import ResponseFormatError, TransportError

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT", bound=BaseModel)

NRQL_DOCUMENT = (
    "query($accountId: Int!, $nrql: Nrql!) "
    "{ actor { account(id: $accountId) { nrql(query: $nrql) { results } } } }"
)

# path to the rows inside the response document
RESULTS_PATH = ("data", "actor", "account", "nrql", "results")


class TelemetrySource(Protocol):
    """Anything that can execute query text and hand back rows.

    the scheduler only depends on this, which keeps the tests off the network.
    """

    async def execute(self, query_text: str, row_type: type[RowT] | None = None) -> list[Any]:
        ...


def build_request_body(account_id: int, query_text: str) -> dict[str, Any]:
    """Wrap query text and account into the graphql request envelope."""
    return {
        "query": NRQL_DOCUMENT,
        "variables": {"accountId": account_id, "nrql": query_text},
    }


def unwrap_results(document: Any) -> list[Any]:
    """Pull the result rows out of a response document.

    graphql reports query errors with a 200 and an "errors" array, so those
    get treated as a malformed response too - the envelope isn't what we
    asked for either way.

    Raises:
        ResponseFormatError: errors reported, or the envelope is missing pieces.
    """
    if not isinstance(document, dict):
        raise ResponseFormatError(f"Expected a json object, got {type(document).__name__}")

    errors = document.get("errors")
    if errors:
        messages = "; ".join(
            str(err.get("message", err)) if isinstance(err, dict) else str(err) for err in errors
        )
        raise ResponseFormatError(f"Backend reported errors: {messages}")

    node: Any = document
    for key in RESULTS_PATH:
        if not isinstance(node, dict) or node.get(key) is None:
            raise ResponseFormatError(f"Response envelope missing '{key}'")
        node = node[key]

    if not isinstance(node, list):
        raise ResponseFormatError(f"Expected results to be a list, got {type(node).__name__}")
    return node


class TelemetryClient:
    """Executes queries against the NerdGraph api.

    one aiohttp session is shared by every worker - it carries no per-query
    state, so there's nothing to lock. it's created lazily because aiohttp wants a running event loop when it's built.
    """

    def __init__(
        self,
        endpoint: str,
        account_id: int,
        api_key: str,
        timeout: float = 30.0,
    ) -> None:
        self.endpoint = endpoint
        self.account_id = account_id
        self.timeout = timeout
        self._api_key = api_key
        self._session: aiohttp.ClientSession | None = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Content-Type": "application/json", "API-Key": self._api_key},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def execute(self, query_text: str, row_type: type[RowT] | None = None) -> list[Any]:
        """Run query text and return its rows.

        with row_type the rows are validated into that model, otherwise the
        raw dicts come back (log queries have no fixed shape).

        Raises:
            TransportError: network trouble, timeout or a non-2xx status.
            ResponseFormatError: the response doesn't unwrap or validate.
        """
        document = await self._post(build_request_body(self.account_id, query_text))
        rows = unwrap_results(document)

        if row_type is None:
            return rows

        try:
            return TypeAdapter(list[row_type]).validate_python(rows)
        except ValidationError as e:
            raise ResponseFormatError(
                f"Rows don't match {row_type.__name__}: {e.error_count()} validation errors"
            ) from e

    async def _post(self, body: dict[str, Any]) -> Any:
        """Send one request and decode the json body."""
        try:
            async with self.session.post(self.endpoint, json=body) as response:
                if response.status >= 400:
                    detail = (await response.text())[:200]
                    raise TransportError(f"HTTP {response.status} from {self.endpoint}: {detail}")
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    # json.JSONDecodeError is a ValueError
                    raise ResponseFormatError(f"Response body is not json: {e}") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Request to {self.endpoint} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransportError(f"Request to {self.endpoint} timed out") from e

    async def close(self) -> None:
        """Close the http session."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "TelemetryClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
