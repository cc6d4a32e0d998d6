"""
Data harvesting modules for swap subgraphs.
"""

from dex_swap_fetcher.core.harvesters.subgraph_harvester import SubgraphHarvester

__all__ = [
    "SubgraphHarvester",
]
