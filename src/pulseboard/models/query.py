"""Pydantic models for parsed queries and the queries the scheduler is running.

ParsedQuery is the structured form of one query string. it's frozen because
the same parsed object gets shared between the scheduler and its worker and
nobody should be editing it after the fact.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class QueryKind(str, Enum):
    """How a query is serviced.

    timeseries queries get a polling worker, log queries run once.
    """

    TIMESERIES = "timeseries"
    LOG = "log"


class ParsedQuery(BaseModel):
    """One query broken into its clauses.

    only select and from are required. where is optional here even though the
    log fallback always has one - plenty of real metric queries don't filter.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    select: str
    from_: str = Field(alias="from")
    where: str | None = None
    facet: str | None = None
    since: str | None = None
    until: str | None = None
    limit: str | None = None
    mode: str | None = None  # "TIMESERIES" plus any args, presence is the whole signal

    @property
    def kind(self) -> QueryKind:
        """TIMESERIES if the mode clause is present, LOG otherwise."""
        return QueryKind.TIMESERIES if self.mode is not None else QueryKind.LOG


class ActiveQuery(BaseModel):
    """A query the scheduler is currently servicing.

    identity is the raw text the caller submitted - deletes and refreshes
    correlate on that exact string. effective_text is what actually goes over
    the wire, which differs when the raw text fell back to a log search or got
    the value alias appended.
    """

    identity: str
    effective_text: str
    kind: QueryKind
    parsed: ParsedQuery
    cancelled: bool = False

    def cancel(self) -> bool:
        """Mark as cancelled. Returns False if it already was."""
        if self.cancelled:
            return False
        self.cancelled = True
        return True
