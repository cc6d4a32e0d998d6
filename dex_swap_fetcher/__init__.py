"""
DEX Swap Fetcher

Incremental, checkpointed ingestion of DEX swaps from The Graph subgraphs
into a Redis buffer and a PostgreSQL raw-trade store.
"""

__version__ = "1.0.0"

from dex_swap_fetcher.core.models import CanonicalTrade, Cursor, LatestBlock
from dex_swap_fetcher.core.normalizer import normalize_swap

__all__ = [
    "__version__",
    "CanonicalTrade",
    "Cursor",
    "LatestBlock",
    "normalize_swap",
]
