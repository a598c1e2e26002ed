"""Parser and serializer for the NRQL-style query language.

the grammar is deliberately narrow - a handful of named clauses:

    SELECT <select> FROM <from> [WHERE ..] [FACET ..] [SINCE ..] [UNTIL ..]
        [LIMIT ..] [TIMESERIES [args]]

we don't try to understand the clause contents, the backend does that. all we
need is to split the text into clauses, decide whether it's a time series or
a log query, and put it back together in canonical order.

keywords are only recognised at paren depth 0 and outside quotes, otherwise
things like filter(count(*), WHERE error IS true) or a LIKE '%from%' pattern
would split the query in the wrong place.
"""

import logging
import re

from pulseboard.errors import QueryParseError
from pulseboard.models.query import ParsedQuery, QueryKind

logger = logging.getLogger(__name__)

# canonical clause order, also the order serialize() emits them in
CLAUSES = ("SELECT", "FROM", "WHERE", "FACET", "SINCE", "UNTIL", "LIMIT", "TIMESERIES")

# pydantic field name for each clause keyword
_FIELDS = {
    "SELECT": "select",
    "FROM": "from_",
    "WHERE": "where",
    "FACET": "facet",
    "SINCE": "since",
    "UNTIL": "until",
    "LIMIT": "limit",
    "TIMESERIES": "mode",
}

# dotted attribute segments like request.limit are not keywords
_KEYWORD_RE = re.compile(r"(?<![\w.])(" + "|".join(CLAUSES) + r")(?![\w.])", re.IGNORECASE)

# trailing "AS name" on the select clause - quoted, backticked or bare
_ALIAS_RE = re.compile(r"\bAS\s+('[^']*'|\"[^\"]*\"|`[^`]*`|[\w.]+)\s*$", re.IGNORECASE)
_VALUE_ALIAS_RE = re.compile(r"\s+AS\s+value\s*$", re.IGNORECASE)

VALUE_ALIAS = "value"

FALLBACK_TEMPLATE = "SELECT * FROM Log WHERE allColumnSearch('{text}', insensitive: true)"


def _top_level_mask(text: str) -> list[bool]:
    """Flag each character that sits outside quotes and parentheses."""
    mask = [False] * len(text)
    depth = 0
    quote: str | None = None
    escaped = False

    for i, ch in enumerate(text):
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue

        if ch in ("'", '"', "`"):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(depth - 1, 0)
        else:
            mask[i] = depth == 0

    return mask


def _find_keywords(text: str) -> list[tuple[str, int, int]]:
    """Return (KEYWORD, start, end) for each clause keyword at the top level."""
    mask = _top_level_mask(text)
    hits = []
    for match in _KEYWORD_RE.finditer(text):
        if mask[match.start()]:
            hits.append((match.group(1).upper(), match.start(), match.end()))
    return hits


def parse(text: str) -> ParsedQuery:
    """Split query text into clauses.

    SELECT and FROM must lead (either order - the backend takes both).
    the remaining clauses may come in any order but each at most once;
    serialize() puts them back in canonical order.

    Raises:
        QueryParseError: if the text has no SELECT/FROM structure.
    """
    stripped = text.strip()
    if not stripped:
        raise QueryParseError(text, "query is empty")

    hits = _find_keywords(stripped)
    if not hits or hits[0][1] != 0:
        raise QueryParseError(text, "query must start with SELECT or FROM")

    leading = {hit[0] for hit in hits[:2]}
    if leading != {"SELECT", "FROM"}:
        raise QueryParseError(text, "SELECT and FROM clauses are required")

    values: dict[str, str] = {}
    for i, (keyword, _, end) in enumerate(hits):
        if keyword in values:
            raise QueryParseError(text, f"duplicate {keyword} clause")
        next_start = hits[i + 1][1] if i + 1 < len(hits) else len(stripped)
        value = stripped[end:next_start].strip()
        # TIMESERIES is allowed to be bare, everything else needs a body
        if not value and keyword != "TIMESERIES":
            raise QueryParseError(text, f"empty {keyword} clause")
        values[keyword] = value

    fields: dict[str, str] = {}
    for keyword, value in values.items():
        if keyword == "TIMESERIES":
            # normalise the keyword itself, keep whatever bucket args followed
            value = f"TIMESERIES {value}".strip()
        fields[_FIELDS[keyword]] = value

    return ParsedQuery(**fields)


def classify(parsed: ParsedQuery) -> QueryKind:
    """TIMESERIES token present means a time series, anything else is a log query."""
    return parsed.kind


def has_alias(select: str) -> bool:
    """Whether the select clause already ends in an AS alias."""
    return _ALIAS_RE.search(select.strip()) is not None


def serialize(parsed: ParsedQuery) -> str:
    """Rebuild canonical query text from the structured form.

    time-series selects get "as value" appended so the aggregator can count
    on a predictable field name. skipped when the select already has its own
    alias, which also keeps this idempotent across parse/serialize cycles.
    """
    select = parsed.select
    if parsed.kind == QueryKind.TIMESERIES and not has_alias(select):
        select = f"{select} as {VALUE_ALIAS}"

    parts = [f"SELECT {select}", f"FROM {parsed.from_}"]
    if parsed.where:
        parts.append(f"WHERE {parsed.where}")
    if parsed.facet:
        parts.append(f"FACET {parsed.facet}")
    if parsed.since:
        parts.append(f"SINCE {parsed.since}")
    if parsed.until:
        parts.append(f"UNTIL {parsed.until}")
    if parsed.limit:
        parts.append(f"LIMIT {parsed.limit}")
    if parsed.mode:
        parts.append(parsed.mode)

    return " ".join(parts)


def escape_literal(text: str) -> str:
    """Escape text for use inside a single-quoted NRQL string."""
    return text.replace("\\", "\\\\").replace("'", "\\'")


def fallback_query(text: str) -> str:
    """Wrap arbitrary text into a case-insensitive search across all log columns."""
    return FALLBACK_TEMPLATE.format(text=escape_literal(text.strip()))


def fallback_parsed(text: str) -> ParsedQuery:
    """Structured form of fallback_query() - built directly so it can't fail."""
    return ParsedQuery(
        select="*",
        from_="Log",
        where=f"allColumnSearch('{escape_literal(text.strip())}', insensitive: true)",
    )


def resolve(text: str) -> tuple[ParsedQuery, str]:
    """Parse text, degrading to the log search fallback when it doesn't parse.

    never raises for string input. returns the parsed form along with the
    text that should actually be sent to the backend.
    """
    try:
        parsed = parse(text)
    except QueryParseError as e:
        logger.info(f"Falling back to log search: {e.reason}")
        parsed = fallback_parsed(text)
    return parsed, serialize(parsed)


def strip_value_alias(text: str) -> str:
    """Remove an "as value" annotation from the select clause.

    saved sessions store the text as it went over the wire, so without this
    loading a session and re-serializing would stack up annotations. text
    that doesn't parse is returned untouched.
    """
    try:
        parsed = parse(text)
    except QueryParseError:
        return text

    select = _VALUE_ALIAS_RE.sub("", parsed.select)
    if select == parsed.select:
        return text

    parts = [f"SELECT {select}", f"FROM {parsed.from_}"]
    for keyword in CLAUSES[2:]:
        value = getattr(parsed, _FIELDS[keyword])
        if value is None:
            continue
        parts.append(value if keyword == "TIMESERIES" else f"{keyword} {value}")
    return " ".join(parts)
