"""
KOL Trade Tracker package initializer.

This package exposes the transaction classifier and the validity filter
for external usage.  The API, ingestion pipeline and store should be
imported explicitly from their respective modules.
"""

from .classifier import classify  # noqa: F401
from .trade_filter import is_valid_trade  # noqa: F401

__all__ = ["classify", "is_valid_trade"]
