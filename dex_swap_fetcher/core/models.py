"""
Canonical data shapes shared by the harvester, the sinks and the checkpoint layer.
"""

from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Tuple

TradeKey = Tuple[str, int]


@dataclass(frozen=True)
class CanonicalTrade:
    transactionHash: str
    logIndex: int
    baseTokenAddress: str
    quoteTokenAddress: str
    exchangeId: str
    tradeTimestamp: _dt.datetime
    blockNumber: int
    traderAddress: Optional[str]
    amountIn: str
    amountOut: str
    tokenInAddress: str
    tokenOutAddress: str
    price: Optional[str]
    sourceData: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def key(self) -> TradeKey:
        return (self.transactionHash, self.logIndex)

    @property
    def timestamp(self) -> int:
        return int(self.tradeTimestamp.timestamp())

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation (ISO-8601 UTC timestamp)."""
        return {
            "transactionHash": self.transactionHash,
            "logIndex": self.logIndex,
            "baseTokenAddress": self.baseTokenAddress,
            "quoteTokenAddress": self.quoteTokenAddress,
            "exchangeId": self.exchangeId,
            "tradeTimestamp": self.tradeTimestamp.isoformat(),
            "blockNumber": self.blockNumber,
            "traderAddress": self.traderAddress,
            "amountIn": self.amountIn,
            "amountOut": self.amountOut,
            "tokenInAddress": self.tokenInAddress,
            "tokenOutAddress": self.tokenOutAddress,
            "price": self.price,
            "sourceData": self.sourceData,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CanonicalTrade":
        ts = _dt.datetime.fromisoformat(payload["tradeTimestamp"])
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=_dt.timezone.utc)
        return cls(
            transactionHash=payload["transactionHash"],
            logIndex=int(payload["logIndex"]),
            baseTokenAddress=payload["baseTokenAddress"],
            quoteTokenAddress=payload["quoteTokenAddress"],
            exchangeId=payload["exchangeId"],
            tradeTimestamp=ts,
            blockNumber=int(payload["blockNumber"]),
            traderAddress=payload.get("traderAddress"),
            amountIn=payload["amountIn"],
            amountOut=payload["amountOut"],
            tokenInAddress=payload["tokenInAddress"],
            tokenOutAddress=payload["tokenOutAddress"],
            price=payload.get("price"),
            sourceData=payload.get("sourceData") or {},
        )


@dataclass(frozen=True)
class Cursor:
    """Ingestion position: a timestamp plus the keys already emitted at it."""

    timestamp: int
    last_seen_keys: FrozenSet[TradeKey] = frozenset()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": int(self.timestamp),
            "last_seen_keys": [[h, i] for h, i in sorted(self.last_seen_keys)],
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Cursor":
        keys = frozenset((str(h), int(i)) for h, i in payload.get("last_seen_keys") or [])
        return cls(timestamp=int(payload["timestamp"]), last_seen_keys=keys)


@dataclass(frozen=True)
class LatestBlock:
    block_number: int
    timestamp: int
