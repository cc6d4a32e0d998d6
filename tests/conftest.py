import itertools
from typing import Any, Dict, List, Optional

import pytest

from dex_swap_fetcher.core.errors import SinkError
from dex_swap_fetcher.core.graph_client import GraphQLError

TOKEN0 = "0x4200000000000000000000000000000000000006"
TOKEN1 = "0x940181a94a35a4569e4529a3cdfb74e38fd98631"

_counter = itertools.count(1)


def make_swap(
    timestamp: int,
    log_index: Optional[int] = None,
    tx_hash: Optional[str] = None,
    amount0_in: str = "1.5",
    amount0_out: str = "0",
    amount1_in: str = "0",
    amount1_out: str = "3000.25",
    block_number: int = 20_000_000,
) -> Dict[str, Any]:
    n = next(_counter)
    tx_hash = tx_hash or "0x" + f"{n:064x}"
    log_index = n if log_index is None else log_index
    return {
        "id": f"{tx_hash}-{log_index}",
        "transaction": {"id": tx_hash, "blockNumber": str(block_number)},
        "timestamp": str(timestamp),
        "pool": {
            "id": "0xcdac0d6c6c59727a65f871236188350531885c43",
            "token0": {"id": TOKEN0, "symbol": "WETH", "decimals": "18"},
            "token1": {"id": TOKEN1, "symbol": "AERO", "decimals": "18"},
        },
        "sender": "0x6cb442acf35158d5eda88fe602669b7ac5ce2800",
        "to": "0x6cb442acf35158d5eda88fe602669b7ac5ce2800",
        "amount0In": amount0_in,
        "amount0Out": amount0_out,
        "amount1In": amount1_in,
        "amount1Out": amount1_out,
        "logIndex": str(log_index),
    }


class FakeSubgraph:
    """
    In-memory stand-in for a swap subgraph: `timestamp_gte` filter, ascending
    timestamp order (stable within a timestamp) and an optional `skip` ceiling
    enforced the way graph-node does, with a GraphQL error.
    """

    def __init__(self, swaps: List[Dict[str, Any]], max_skip: Optional[int] = None, latest=(21_000_000, 1_700_000_000)):
        self.swaps = sorted(swaps, key=lambda s: int(s["timestamp"]))
        self.max_skip = max_skip
        self.latest = latest
        self.calls: List[Dict[str, Any]] = []
        self.fail_on_call: Optional[int] = None

    def request(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        variables = variables or {}
        if "_meta" in query:
            return {"_meta": {"block": {"number": self.latest[0], "timestamp": self.latest[1]}}}
        self.calls.append(dict(variables))
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise ConnectionError("gateway timeout")
        skip, first = variables["skip"], variables["first"]
        if self.max_skip is not None and skip > self.max_skip:
            raise GraphQLError([{"message": f"The `skip` argument must be between 0 and {self.max_skip}, but is {skip}"}])
        min_ts = int(variables["minTimestamp"])
        rows = [s for s in self.swaps if int(s["timestamp"]) >= min_ts]
        return {"swaps": rows[skip:skip + first]}


class FakeQueue:
    def __init__(self):
        self.items = []
        self.fail = False

    def push_many(self, trades):
        if self.fail:
            raise SinkError("redis down")
        self.items.extend(trades)
        return len(trades)


class FakeStore:
    """Conflict-ignoring store keyed on (transactionHash, logIndex)."""

    def __init__(self):
        self.rows = {}
        self.fail = False
        self.calls = 0

    def upsert_batch(self, trades):
        self.calls += 1
        if self.fail:
            raise SinkError("postgres down")
        inserted = 0
        for t in trades:
            if t.key not in self.rows:
                self.rows[t.key] = t
                inserted += 1
        return inserted


@pytest.fixture
def swap_factory():
    return make_swap


@pytest.fixture
def fake_queue():
    return FakeQueue()


@pytest.fixture
def fake_store():
    return FakeStore()
