"""
normalizer.py — map a raw subgraph swap onto a CanonicalTrade.

Subgraph swaps carry two token legs, each with an `In` and an `Out` amount.
The inbound leg is the one whose `In` amount is strictly positive; amounts are
kept exactly as the subgraph returned them and only parsed as Decimal to derive
the informational `price` (amountOut / amountIn).
"""

from __future__ import annotations

import datetime as _dt
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping

from dex_swap_fetcher.core.errors import MalformedRecordError
from dex_swap_fetcher.core.models import CanonicalTrade, TradeKey
from dex_swap_fetcher.core.utils import normalize_address


def _field(raw: Mapping[str, Any], path: str) -> Any:
    node: Any = raw
    for part in path.split("."):
        if not isinstance(node, Mapping) or node.get(part) is None:
            raise MalformedRecordError(path, "missing")
        node = node[part]
    return node


def _parse_int(raw: Mapping[str, Any], path: str) -> int:
    value = _field(raw, path)
    if isinstance(value, bool):
        raise MalformedRecordError(path, f"expected base-10 integer, got {value!r}")
    if isinstance(value, int):
        return value
    s = str(value).strip()
    if not s.isdigit():
        raise MalformedRecordError(path, f"expected base-10 integer, got {value!r}")
    return int(s)


def _parse_amount(raw: Mapping[str, Any], path: str) -> Decimal:
    value = _field(raw, path)
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise MalformedRecordError(path, f"not a decimal number: {value!r}") from None
    if not amount.is_finite():
        raise MalformedRecordError(path, f"not a finite number: {value!r}")
    return amount


def swap_key(raw: Mapping[str, Any]) -> TradeKey:
    """Deduplication key of a raw swap: (transaction hash, log index)."""
    return (str(_field(raw, "transaction.id")), _parse_int(raw, "logIndex"))


def normalize_swap(raw: Dict[str, Any], exchange_id: str) -> CanonicalTrade:
    token0 = normalize_address(str(_field(raw, "pool.token0.id")))
    token1 = normalize_address(str(_field(raw, "pool.token1.id")))
    if token0 == token1:
        raise MalformedRecordError("pool.token1.id", "identical to pool.token0.id")

    amount0_in = _parse_amount(raw, "amount0In")
    amount1_in = _parse_amount(raw, "amount1In")

    if amount0_in > 0:
        token_in, token_out = token0, token1
        in_path, out_path = "amount0In", "amount1Out"
    elif amount1_in > 0:
        token_in, token_out = token1, token0
        in_path, out_path = "amount1In", "amount0Out"
    else:
        raise MalformedRecordError("amount0In", "neither leg has a positive inbound amount")

    amount_in = str(_field(raw, in_path))
    amount_out = str(_field(raw, out_path))
    dec_in = amount0_in if in_path == "amount0In" else amount1_in
    dec_out = _parse_amount(raw, out_path)
    price = format(dec_out / dec_in, "f")

    tx_hash, log_index = swap_key(raw)
    ts = _parse_int(raw, "timestamp")
    sender = raw.get("sender")
    if sender is not None and not isinstance(sender, str):
        raise MalformedRecordError("sender", f"expected an address string, got {sender!r}")

    return CanonicalTrade(
        transactionHash=tx_hash,
        logIndex=log_index,
        baseTokenAddress=token0,
        quoteTokenAddress=token1,
        exchangeId=exchange_id,
        tradeTimestamp=_dt.datetime.fromtimestamp(ts, tz=_dt.timezone.utc),
        blockNumber=_parse_int(raw, "transaction.blockNumber"),
        traderAddress=normalize_address(sender) if sender else None,
        amountIn=amount_in,
        amountOut=amount_out,
        tokenInAddress=token_in,
        tokenOutAddress=token_out,
        price=price,
        sourceData=raw,
    )
