"""Utility functions for handling ticker symbols.

Snapshots and transaction exports do not agree on spacing or case, so
every join by symbol goes through ``normalize_symbol``.
"""

import re

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_symbol(symbol: str | None) -> str:
    """Strip all whitespace and upper-case a symbol.

    Blank or non-string values normalize to the empty string.
    """
    if not symbol or not isinstance(symbol, str):
        return ""
    return _WHITESPACE_RE.sub("", symbol).upper()


def symbols_match(first: str | None, second: str | None) -> bool:
    """Check if two symbols refer to the same security."""
    return normalize_symbol(first) == normalize_symbol(second)
