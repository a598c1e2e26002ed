"""Query language parsing."""

from pulseboard.parser.nrql import classify, fallback_query, parse, resolve, serialize

__all__ = ["classify", "fallback_query", "parse", "resolve", "serialize"]
