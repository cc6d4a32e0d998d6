"""
Small helpers shared across the package: time conversion, atomic JSON
writes and DataFrame export of trades.
"""

from __future__ import annotations

import json
import os
import pickle
import tempfile
from typing import Any, Dict, Iterable, Optional

import numpy as np
import pandas as pd

from dex_swap_fetcher.core.models import CanonicalTrade


def to_unix(ts: Any) -> int:
    """Convert an int, digit string, ISO-8601 string or datetime to UNIX seconds."""
    if isinstance(ts, (int, np.integer)):
        return int(ts)
    if isinstance(ts, str):
        s = ts.strip()
        if s.lstrip("-").isdigit():
            return int(s)
        return int(pd.to_datetime(s, utc=True).value // 10**9)
    return int(pd.to_datetime(ts, utc=True).value // 10**9)


def normalize_address(address: Optional[str]) -> Optional[str]:
    if address is None:
        return None
    return address.strip().lower()


def atomic_write_json(path: str, payload: Dict[str, Any]):
    d = os.path.dirname(os.path.abspath(path)) or "."
    os.makedirs(d, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".ckpt_", dir=d, text=True)
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(payload, f, separators=(",", ":"), sort_keys=True)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


def trades_to_frame(trades: Iterable[CanonicalTrade]) -> pd.DataFrame:
    """
    Flatten trades into a DataFrame. Amount columns stay strings so that no
    precision is lost; `price` is exposed as float for inspection only.
    """
    rows = [t.to_dict() for t in trades]
    columns = [
        "transactionHash", "logIndex", "exchangeId", "tradeTimestamp", "blockNumber",
        "baseTokenAddress", "quoteTokenAddress", "traderAddress",
        "tokenInAddress", "amountIn", "tokenOutAddress", "amountOut", "price", "sourceData",
    ]
    df = pd.DataFrame(rows, columns=columns)
    if not df.empty:
        df["tradeTimestamp"] = pd.to_datetime(df["tradeTimestamp"], utc=True)
        df["price_float"] = pd.to_numeric(df["price"], errors="coerce")
    return df


def pickle_write_trades(df: pd.DataFrame, out_path: str) -> str:
    """Persist a trades DataFrame as a pickle, replacing any previous file."""
    parent = os.path.dirname(os.path.abspath(out_path))
    os.makedirs(parent, exist_ok=True)
    if os.path.exists(out_path):
        os.remove(out_path)
    df.to_pickle(out_path, compression=None, protocol=pickle.HIGHEST_PROTOCOL)
    return out_path
