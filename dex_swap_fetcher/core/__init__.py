"""
Core functionality for subgraph swap harvesting and ingestion.
"""

from dex_swap_fetcher.core.errors import (
    ConfigError,
    MalformedRecordError,
    SinkError,
    SourceQueryError,
)
from dex_swap_fetcher.core.models import CanonicalTrade, Cursor

__all__ = [
    "CanonicalTrade",
    "ConfigError",
    "Cursor",
    "MalformedRecordError",
    "SinkError",
    "SourceQueryError",
]
