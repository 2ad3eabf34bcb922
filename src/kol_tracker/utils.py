"""
Shared utilities for the KOL Trade Tracker.

Small, dependency-free helpers used by the classifier, the external
clients and the aggregation layer:

- ``safe_float``: lenient numeric coercion for loosely-typed API payloads
- ``parse_amount``: numbers as they appear in Helius descriptions ("1,234.5")
- ``chunked``: fixed-size batching for bulk API calls
"""

from __future__ import annotations

import re
from typing import Any, Iterator, Optional, Sequence, TypeVar

T = TypeVar("T")

_THOUSANDS_SEP_RE = re.compile(r",")


def safe_float(val: Any, default: Optional[float] = None) -> Optional[float]:
    """Try to cast *val* to float, returning *default* on failure.

    Helius and DexScreener return numbers either as JSON numbers or as
    strings (``"1500000000"``); both are accepted.  ``NaN`` is treated as
    a failure.
    """
    if val is None or isinstance(val, bool):
        return default
    try:
        result = float(val)
    except (TypeError, ValueError):
        return default
    if result != result:  # NaN
        return default
    return result


def parse_amount(text: str) -> float:
    """Parse a description amount such as ``"1,234.56"``.

    Returns ``0.0`` when the text is not a number (e.g. ``"..."``).
    """
    return safe_float(_THOUSANDS_SEP_RE.sub("", text or ""), 0.0) or 0.0


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of *items* with at most *size* elements."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])
