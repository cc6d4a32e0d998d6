"""
Checkpoint helpers: cursor persistence and the pure cursor-advance rule.

A cursor is stored per exchange as a small JSON document written atomically
(temp file + `os.replace`), so a crash mid-write leaves the previous
checkpoint intact.
"""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Callable, Dict, Optional, Sequence, Set

from dex_swap_fetcher.core.errors import CheckpointCorruptError, CheckpointError, PaginationStalledError
from dex_swap_fetcher.core.models import CanonicalTrade, Cursor, TradeKey
from dex_swap_fetcher.core.utils import atomic_write_json

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = "swap_cursor_v1"
DEFAULT_LOOKBACK_S = 24 * 60 * 60
DEFAULT_MAX_CURSOR_KEYS = 5100


class JsonCheckpointStore:
    """One `<exchange_id>.json` file per source inside `checkpoint_dir`."""

    def __init__(self, checkpoint_dir: str):
        self.checkpoint_dir = checkpoint_dir

    def path_for(self, exchange_id: str) -> str:
        return os.path.join(self.checkpoint_dir, f"{exchange_id}.json")

    def load(self, exchange_id: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(exchange_id)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r") as f:
                return json.load(f)
        except json.JSONDecodeError as exc:
            raise CheckpointCorruptError(f"checkpoint {path} is not valid JSON: {exc}") from exc
        except OSError as exc:
            raise CheckpointError(f"cannot read checkpoint {path}: {exc}") from exc

    def save(self, exchange_id: str, payload: Dict[str, Any]) -> None:
        path = self.path_for(exchange_id)
        try:
            atomic_write_json(path, payload)
        except OSError as exc:
            raise CheckpointError(f"cannot write checkpoint {path}: {exc}") from exc

    def delete(self, exchange_id: str) -> bool:
        path = self.path_for(exchange_id)
        if not os.path.exists(path):
            return False
        try:
            os.remove(path)
        except OSError as exc:
            raise CheckpointError(f"cannot delete checkpoint {path}: {exc}") from exc
        return True


def advance_cursor(
    cursor: Cursor, last_batch: Sequence[CanonicalTrade], max_keys: int = DEFAULT_MAX_CURSOR_KEYS
) -> Cursor:
    """
    New cursor after `last_batch` was forwarded. The timestamp becomes that of
    the batch's last trade and never moves backward; the key set holds the
    batch keys sharing that timestamp (merged with the previous keys when the
    timestamp did not move). An empty batch leaves the cursor unchanged.

    Keys are never dropped: a forwarded trade missing from the set would be
    emitted again. More than `max_keys` trades at one timestamp raises
    `PaginationStalledError`.
    """
    if not last_batch:
        return cursor
    last_ts = last_batch[-1].timestamp
    if last_ts < cursor.timestamp:
        return cursor

    keys: Set[TradeKey] = {t.key for t in last_batch if t.timestamp == last_ts}
    if last_ts == cursor.timestamp:
        keys |= cursor.last_seen_keys
    if len(keys) > max_keys:
        raise PaginationStalledError(
            f"{len(keys)} swaps share timestamp {last_ts}, more than max_cursor_keys={max_keys}",
            min_timestamp=last_ts,
        )
    return Cursor(timestamp=last_ts, last_seen_keys=frozenset(keys))


class CheckpointManager:
    def __init__(
        self,
        store: JsonCheckpointStore,
        exchange_id: str,
        lookback_s: int = DEFAULT_LOOKBACK_S,
        max_keys: int = DEFAULT_MAX_CURSOR_KEYS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.exchange_id = exchange_id
        self.lookback_s = int(lookback_s)
        self.max_keys = int(max_keys)
        self.clock = clock

    def default_cursor(self) -> Cursor:
        return Cursor(timestamp=int(self.clock()) - self.lookback_s)

    def load(self) -> Cursor:
        ckpt = self.store.load(self.exchange_id)
        if ckpt is None:
            cursor = self.default_cursor()
            logger.info("[%s] no checkpoint, starting %ds back at %d", self.exchange_id, self.lookback_s, cursor.timestamp)
            return cursor
        if not isinstance(ckpt, dict):
            raise CheckpointCorruptError(f"checkpoint for {self.exchange_id!r} is not a JSON object")
        if ckpt.get("exchange_id") not in (None, self.exchange_id):
            raise CheckpointCorruptError(
                f"checkpoint for {self.exchange_id!r} belongs to {ckpt.get('exchange_id')!r}"
            )
        try:
            cursor = Cursor.from_dict(ckpt["cursor"])
        except (KeyError, TypeError, ValueError) as exc:
            raise CheckpointCorruptError(f"checkpoint for {self.exchange_id!r} is malformed: {exc}") from exc
        logger.info(
            "[%s] resuming from checkpoint at %d (%d boundary keys)",
            self.exchange_id, cursor.timestamp, len(cursor.last_seen_keys),
        )
        return cursor

    def advance(self, cursor: Cursor, last_batch: Sequence[CanonicalTrade]) -> Cursor:
        return advance_cursor(cursor, last_batch, self.max_keys)

    def persist(self, cursor: Cursor) -> None:
        self.store.save(
            self.exchange_id,
            {
                "version": CHECKPOINT_VERSION,
                "exchange_id": self.exchange_id,
                "cursor": cursor.to_dict(),
                "updated_at": int(self.clock()),
            },
        )

    def reset(self) -> bool:
        removed = self.store.delete(self.exchange_id)
        if removed:
            logger.info("[%s] checkpoint reset", self.exchange_id)
        return removed
