"""
Redis list used as the raw-trade buffer between ingestion and aggregation.

Producers LPUSH JSON-encoded trades; consumers RPOP from the tail, so items
come out oldest-first per producer.
"""

from __future__ import annotations

import json
import logging
from typing import List, Optional, Sequence

import redis

from dex_swap_fetcher.core.errors import SinkError
from dex_swap_fetcher.core.models import CanonicalTrade

logger = logging.getLogger(__name__)

RAW_TRADES_BUFFER_KEY = "raw_trades_buffer"


class RedisTradeQueue:
    def __init__(self, client: redis.Redis, key: str = RAW_TRADES_BUFFER_KEY):
        self.client = client
        self.key = key

    @classmethod
    def from_url(cls, url: str, key: str = RAW_TRADES_BUFFER_KEY, timeout: Optional[float] = 10.0) -> "RedisTradeQueue":
        client = redis.Redis.from_url(url, socket_timeout=timeout, socket_connect_timeout=timeout)
        return cls(client, key)

    def push(self, trade: CanonicalTrade) -> None:
        try:
            self.client.lpush(self.key, json.dumps(trade.to_dict()))
        except redis.RedisError as exc:
            raise SinkError(f"redis LPUSH to {self.key!r} failed for {trade.key}: {exc}") from exc

    def push_many(self, trades: Sequence[CanonicalTrade]) -> int:
        """Push a batch in one round trip, preserving order."""
        if not trades:
            return 0
        try:
            pipe = self.client.pipeline(transaction=False)
            for trade in trades:
                pipe.lpush(self.key, json.dumps(trade.to_dict()))
            pipe.execute()
        except redis.RedisError as exc:
            raise SinkError(f"redis LPUSH of {len(trades)} trades to {self.key!r} failed: {exc}") from exc
        logger.debug("Pushed %d trades to %s", len(trades), self.key)
        return len(trades)

    def pop_batch(self, batch_size: int) -> List[CanonicalTrade]:
        trades: List[CanonicalTrade] = []
        try:
            for _ in range(batch_size):
                item = self.client.rpop(self.key)
                if item is None:
                    break
                trades.append(CanonicalTrade.from_dict(json.loads(item)))
        except redis.RedisError as exc:
            raise SinkError(f"redis RPOP from {self.key!r} failed: {exc}") from exc
        return trades

    def length(self) -> int:
        try:
            return int(self.client.llen(self.key))
        except redis.RedisError as exc:
            raise SinkError(f"redis LLEN of {self.key!r} failed: {exc}") from exc

    def close(self) -> None:
        self.client.close()
