"""
subgraph_harvester.py — offset-paginated swap harvesting with re-anchoring
--------------------------------------------------------------------------
The swap subgraphs only expose `first` / `skip` pagination over swaps ordered
by timestamp ascending and filtered by `timestamp_gte`. Graph nodes cap `skip`
(5000 on the hosted gateway), so a fixed `minTimestamp` cannot be paged
arbitrarily deep. When the ceiling is reached, the harvester *re-anchors*:
`minTimestamp` moves to the timestamp of the last record seen and `skip`
restarts at zero. Records sharing that boundary timestamp come back again
and are filtered against the set of (transactionHash, logIndex) keys already
seen at the boundary.

The ceiling is handled two ways:
  • proactively, when `max_skip` is configured and the next `skip` would
    exceed it;
  • reactively, when the endpoint rejects a request with a `skip` range error
    (unknown or changed ceiling).

Any other failure of a page aborts the whole call with `SourceQueryError`;
trades accumulated so far in that call are discarded.
"""

from __future__ import annotations

import logging
import re
from itertools import islice
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set

from dex_swap_fetcher.core.errors import (
    MalformedPageError,
    MalformedRecordError,
    PaginationStalledError,
    SourceQueryError,
)
from dex_swap_fetcher.core.graph_client import GraphQLError
from dex_swap_fetcher.core.models import CanonicalTrade, LatestBlock, TradeKey
from dex_swap_fetcher.core.normalizer import normalize_swap
from dex_swap_fetcher.core.queries import Q_LATEST_BLOCK, Q_SWAP_PAGE

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_SKIP = 5000

_SKIP_LIMIT_RE = re.compile(r"\bskip\b.*\b(between|exceeds?|maximum)\b", re.IGNORECASE)


def is_skip_limit_error(exc: BaseException) -> bool:
    """True for GraphQL errors rejecting the `skip` argument as out of range."""
    return isinstance(exc, GraphQLError) and bool(_SKIP_LIMIT_RE.search(str(exc)))


class SubgraphHarvester:
    def __init__(
        self,
        client: Any,
        exchange_id: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_skip: Optional[int] = DEFAULT_MAX_SKIP,
        max_malformed_ratio: float = 0.5,
        normalizer: Callable[[Dict[str, Any], str], CanonicalTrade] = normalize_swap,
    ):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.client = client
        self.exchange_id = exchange_id
        self.page_size = int(page_size)
        self.max_skip = None if max_skip is None else int(max_skip)
        self.max_malformed_ratio = float(max_malformed_ratio)
        self.normalizer = normalizer

    # ---------------- Queries ----------------

    def fetch_latest_block(self) -> LatestBlock:
        try:
            d = self.client.request(Q_LATEST_BLOCK, {})
            block = d["_meta"]["block"]
            return LatestBlock(block_number=int(block["number"]), timestamp=int(block["timestamp"]))
        except Exception as exc:
            raise SourceQueryError(f"latest block query failed: {exc}") from exc

    def _page(self, first: int, skip: int, min_ts: int) -> List[Dict[str, Any]]:
        d = self.client.request(Q_SWAP_PAGE, {"first": first, "skip": skip, "minTimestamp": str(min_ts)})
        swaps = d.get("swaps")
        if swaps is None:
            raise KeyError("response has no 'swaps' field")
        return list(swaps)

    # ---------------- Streaming core ----------------

    def _normalize_page(self, page: List[Dict[str, Any]], skip: int, anchor: int) -> List[CanonicalTrade]:
        trades: List[CanonicalTrade] = []
        malformed = 0
        for raw in page:
            try:
                trades.append(self.normalizer(raw, self.exchange_id))
            except MalformedRecordError as exc:
                malformed += 1
                logger.warning(
                    "[%s] skipping swap %s: %s", self.exchange_id, raw.get("id") if isinstance(raw, dict) else "?", exc
                )
        if page and malformed > len(page) * self.max_malformed_ratio:
            raise MalformedPageError(malformed, len(page), skip, anchor)
        return trades

    def iter_trades(self, min_timestamp: int, exclude_keys: Iterable[TradeKey] = ()) -> Iterator[CanonicalTrade]:
        """
        Yield trades with timestamp >= `min_timestamp`, non-decreasing in
        timestamp, each (transactionHash, logIndex) at most once. Keys in
        `exclude_keys` count as already emitted at `min_timestamp`.
        """
        anchor = int(min_timestamp)
        skip = 0
        boundary_ts = anchor
        boundary_keys: Set[TradeKey] = set(exclude_keys)

        while True:
            if self.max_skip is not None and skip > self.max_skip:
                anchor = self._reanchor(anchor, boundary_ts, skip)
                skip = 0

            try:
                page = self._page(self.page_size, skip, anchor)
            except Exception as exc:
                if skip > 0 and is_skip_limit_error(exc):
                    logger.info("[%s] endpoint rejected skip=%d: %s", self.exchange_id, skip, exc)
                    anchor = self._reanchor(anchor, boundary_ts, skip)
                    skip = 0
                    continue
                raise SourceQueryError(
                    f"swap page query failed: {exc}", first=self.page_size, skip=skip, min_timestamp=anchor
                ) from exc

            logger.debug("[%s] page skip=%d minTimestamp=%d -> %d swaps", self.exchange_id, skip, anchor, len(page))
            if not page:
                return

            for trade in self._normalize_page(page, skip, anchor):
                ts = trade.timestamp
                if ts < boundary_ts:
                    # older than what was already emitted; ordering would break
                    if ts >= min_timestamp:
                        logger.warning(
                            "[%s] out-of-order swap %s at %d (boundary %d) dropped",
                            self.exchange_id, trade.key, ts, boundary_ts,
                        )
                    continue
                if ts > boundary_ts:
                    boundary_ts = ts
                    boundary_keys = set()
                elif trade.key in boundary_keys:
                    continue
                boundary_keys.add(trade.key)
                yield trade

            if len(page) < self.page_size:
                return
            skip += self.page_size

    def _reanchor(self, anchor: int, boundary_ts: int, skip: int) -> int:
        if boundary_ts <= anchor:
            raise PaginationStalledError(
                f"every swap up to the offset ceiling shares timestamp {anchor}; cannot re-anchor",
                first=self.page_size,
                skip=skip,
                min_timestamp=anchor,
            )
        logger.info("[%s] offset ceiling at skip=%d, re-anchoring %d -> %d", self.exchange_id, skip, anchor, boundary_ts)
        return boundary_ts

    def iter_window(self, start_timestamp: int, end_timestamp: int) -> Iterator[CanonicalTrade]:
        """Yield trades with start_timestamp <= timestamp <= end_timestamp."""
        if end_timestamp < start_timestamp:
            raise ValueError("end_timestamp must be >= start_timestamp")
        for trade in self.iter_trades(start_timestamp):
            if trade.timestamp > end_timestamp:
                return
            yield trade

    # ---------------- Public API ----------------

    def fetch_since(
        self, min_timestamp: int, max_results: int, exclude_keys: Iterable[TradeKey] = ()
    ) -> List[CanonicalTrade]:
        if max_results <= 0:
            return []
        return list(islice(self.iter_trades(min_timestamp, exclude_keys), max_results))

    def fetch_window(self, start_timestamp: int, end_timestamp: int) -> List[CanonicalTrade]:
        return list(self.iter_window(start_timestamp, end_timestamp))
