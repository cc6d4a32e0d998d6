"""
PostgreSQL `raw_trades` store.

Writes are idempotent: the table's primary key is (transaction_hash,
log_index) and inserts use ON CONFLICT DO NOTHING, so re-sending a batch after
a failed cycle never duplicates rows.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence, Tuple

import psycopg
from psycopg.types.json import Jsonb

from dex_swap_fetcher.core.errors import SinkError
from dex_swap_fetcher.core.models import CanonicalTrade

logger = logging.getLogger(__name__)

COLUMNS: Tuple[str, ...] = (
    "transaction_hash",
    "log_index",
    "base_token_address",
    "quote_token_address",
    "dex_id",
    "trade_timestamp",
    "block_number",
    "trader_address",
    "amount_in",
    "token_in_address",
    "amount_out",
    "token_out_address",
    "price",
    "source_data_payload",
)

CREATE_RAW_TRADES = """
CREATE TABLE IF NOT EXISTS raw_trades (
    transaction_hash     TEXT        NOT NULL,
    log_index            INTEGER     NOT NULL,
    base_token_address   TEXT        NOT NULL,
    quote_token_address  TEXT        NOT NULL,
    dex_id               TEXT        NOT NULL,
    trade_timestamp      TIMESTAMPTZ NOT NULL,
    block_number         BIGINT      NOT NULL,
    trader_address       TEXT,
    amount_in            NUMERIC     NOT NULL,
    token_in_address     TEXT        NOT NULL,
    amount_out           NUMERIC     NOT NULL,
    token_out_address    TEXT        NOT NULL,
    price                NUMERIC,
    source_data_payload  JSONB,
    ingested_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (transaction_hash, log_index)
);
CREATE INDEX IF NOT EXISTS raw_trades_dex_ts_idx ON raw_trades (dex_id, trade_timestamp);
"""

INSERT_RAW_TRADE = (
    f"INSERT INTO raw_trades ({', '.join(COLUMNS)}) "
    f"VALUES ({', '.join(['%s'] * len(COLUMNS))}) "
    "ON CONFLICT (transaction_hash, log_index) DO NOTHING"
)


def trade_to_row(trade: CanonicalTrade) -> Tuple[Any, ...]:
    row: Dict[str, Any] = {
        "transaction_hash": trade.transactionHash,
        "log_index": trade.logIndex,
        "base_token_address": trade.baseTokenAddress,
        "quote_token_address": trade.quoteTokenAddress,
        "dex_id": trade.exchangeId,
        "trade_timestamp": trade.tradeTimestamp,
        "block_number": trade.blockNumber,
        "trader_address": trade.traderAddress,
        "amount_in": trade.amountIn,
        "token_in_address": trade.tokenInAddress,
        "amount_out": trade.amountOut,
        "token_out_address": trade.tokenOutAddress,
        "price": trade.price,
        "source_data_payload": Jsonb(trade.sourceData),
    }
    return tuple(row[c] for c in COLUMNS)


class PostgresTradeStore:
    def __init__(self, conninfo: str, connect_timeout: int = 5):
        self.conninfo = conninfo
        self.connect_timeout = connect_timeout

    def _connect(self) -> psycopg.Connection:
        return psycopg.connect(self.conninfo, connect_timeout=self.connect_timeout)

    def ensure_schema(self) -> None:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(CREATE_RAW_TRADES)
        except psycopg.Error as exc:
            raise SinkError(f"cannot create raw_trades schema: {exc}") from exc

    def upsert_batch(self, trades: Sequence[CanonicalTrade]) -> int:
        """Insert trades, ignoring (transaction_hash, log_index) conflicts. Returns rows inserted."""
        if not trades:
            return 0
        rows: List[Tuple[Any, ...]] = [trade_to_row(t) for t in trades]
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.executemany(INSERT_RAW_TRADE, rows)
                    inserted = cur.rowcount
        except psycopg.Error as exc:
            raise SinkError(f"raw_trades batch insert of {len(trades)} trades failed: {exc}") from exc
        logger.debug("Upserted %d trades (%s new)", len(trades), inserted)
        return inserted
