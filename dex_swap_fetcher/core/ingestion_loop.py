"""
ingestion_loop.py — per-source polling loop
-------------------------------------------
Each cycle:  IDLE → FETCHING → FORWARDING → CHECKPOINTING → IDLE, then an
interruptible sleep of `poll_interval_s`. A recoverable error anywhere in the
cycle moves the loop to BACKOFF; the in-memory cursor is only replaced after
the checkpoint write succeeded, so the retried cycle refetches the same
trades and the idempotent sinks absorb the repeats. Fatal errors propagate.

Shutdown is cooperative: `stop_event` is checked at the top of each cycle and
interrupts the sleeps, but never a fetch/forward in flight.
"""

from __future__ import annotations

import enum
import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Any, Dict, List, Optional

from dex_swap_fetcher.core.checkpoint import CheckpointManager, JsonCheckpointStore
from dex_swap_fetcher.core.errors import RECOVERABLE_ERRORS, SourceQueryError
from dex_swap_fetcher.core.graph_client import GraphClient
from dex_swap_fetcher.core.harvesters.subgraph_harvester import SubgraphHarvester
from dex_swap_fetcher.core.models import Cursor
from dex_swap_fetcher.core.sinks.postgres_store import PostgresTradeStore
from dex_swap_fetcher.core.sinks.redis_queue import RedisTradeQueue

logger = logging.getLogger(__name__)


class LoopState(enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    FORWARDING = "forwarding"
    CHECKPOINTING = "checkpointing"
    BACKOFF = "backoff"
    STOPPED = "stopped"


class IngestionLoop:
    def __init__(
        self,
        harvester: SubgraphHarvester,
        checkpoints: CheckpointManager,
        queue: Any,
        store: Any,
        batch_size: int = 100,
        poll_interval_s: float = 60.0,
        backoff_s: float = 30.0,
        stop_event: Optional[threading.Event] = None,
    ):
        self.harvester = harvester
        self.checkpoints = checkpoints
        self.queue = queue
        self.store = store
        self.batch_size = int(batch_size)
        self.poll_interval_s = float(poll_interval_s)
        self.backoff_s = float(backoff_s)
        self.stop_event = stop_event or threading.Event()
        self.state = LoopState.IDLE
        self.cursor: Optional[Cursor] = None
        self.cycles = 0
        self.trades_forwarded = 0

    @property
    def exchange_id(self) -> str:
        return self.harvester.exchange_id

    def _set_state(self, state: LoopState) -> None:
        logger.debug("[%s] %s -> %s", self.exchange_id, self.state.value, state.value)
        self.state = state

    def _forward(self, trades) -> None:
        push_many = getattr(self.queue, "push_many", None)
        if push_many is not None:
            push_many(trades)
        else:
            for trade in trades:
                self.queue.push(trade)
        self.store.upsert_batch(trades)

    def run_once(self) -> int:
        """One fetch/forward/checkpoint cycle. Returns the number of trades forwarded."""
        if self.cursor is None:
            self.cursor = self.checkpoints.load()
        cursor = self.cursor

        self._set_state(LoopState.FETCHING)
        trades = self.harvester.fetch_since(cursor.timestamp, self.batch_size, exclude_keys=cursor.last_seen_keys)

        if trades:
            self._set_state(LoopState.FORWARDING)
            self._forward(trades)

            self._set_state(LoopState.CHECKPOINTING)
            new_cursor = self.checkpoints.advance(cursor, trades)
            self.checkpoints.persist(new_cursor)
            self.cursor = new_cursor
            self.trades_forwarded += len(trades)

        self.cycles += 1
        self._set_state(LoopState.IDLE)
        logger.info(
            "[%s] cycle %d: %d trades forwarded, cursor at %d",
            self.exchange_id, self.cycles, len(trades), self.cursor.timestamp,
            extra={"exchange_id": self.exchange_id, "event": "cycle"},
        )
        return len(trades)

    def log_indexing_lag(self) -> None:
        try:
            latest = self.harvester.fetch_latest_block()
        except SourceQueryError as exc:
            logger.warning("[%s] latest block unavailable: %s", self.exchange_id, exc)
            return
        if self.cursor is None:
            self.cursor = self.checkpoints.load()
        logger.info(
            "[%s] latest indexed block %d at %d, cursor lag %ds",
            self.exchange_id, latest.block_number, latest.timestamp, latest.timestamp - self.cursor.timestamp,
        )

    def run(self) -> None:
        logger.info("[%s] ingestion loop starting", self.exchange_id)
        try:
            self.log_indexing_lag()
        except RECOVERABLE_ERRORS as exc:
            logger.warning("[%s] startup check failed: %s", self.exchange_id, exc)

        while not self.stop_event.is_set():
            try:
                self.run_once()
            except RECOVERABLE_ERRORS as exc:
                self._set_state(LoopState.BACKOFF)
                logger.warning(
                    "[%s] %s: %s; backing off %.0fs",
                    self.exchange_id, type(exc).__name__, exc, self.backoff_s,
                    extra={"exchange_id": self.exchange_id, "event": "backoff"},
                )
                if self.stop_event.wait(self.backoff_s):
                    break
                continue
            if self.stop_event.wait(self.poll_interval_s):
                break

        self._set_state(LoopState.STOPPED)
        logger.info("[%s] ingestion loop stopped after %d cycles", self.exchange_id, self.cycles)


def build_loop(
    cfg: Dict[str, Any],
    source: Dict[str, Any],
    stop_event: Optional[threading.Event] = None,
    queue: Any = None,
    store: Any = None,
) -> IngestionLoop:
    """Wire one source's client, harvester, checkpoints and sinks from config."""
    client = GraphClient(source["graph_url"], timeout=cfg["request_timeout_s"])
    harvester = SubgraphHarvester(
        client,
        source["exchange_id"],
        page_size=cfg["page_size"],
        max_skip=cfg["max_skip"],
        max_malformed_ratio=cfg["max_malformed_ratio"],
    )
    checkpoints = CheckpointManager(
        JsonCheckpointStore(cfg["checkpoint_dir"]),
        source["exchange_id"],
        lookback_s=cfg["lookback_s"],
        max_keys=cfg["max_cursor_keys"],
    )
    if queue is None:
        queue = RedisTradeQueue.from_url(cfg["redis_url"], key=cfg["redis_queue_key"])
    if store is None:
        store = PostgresTradeStore(cfg["postgres_url"])
    return IngestionLoop(
        harvester,
        checkpoints,
        queue,
        store,
        batch_size=cfg["batch_size"],
        poll_interval_s=cfg["polling_interval_ms"] / 1000.0,
        backoff_s=cfg["backoff_s"],
        stop_event=stop_event,
    )


def run_sources(
    loops: List[IngestionLoop],
    stop_event: threading.Event,
) -> None:
    """
    Run each loop in its own thread. The first fatal error stops every other
    loop (after its current cycle) and is re-raised.
    """
    if not loops:
        return
    with ThreadPoolExecutor(max_workers=len(loops), thread_name_prefix="ingest") as ex:
        futs = {ex.submit(loop.run): loop for loop in loops}
        done, _ = wait(futs, return_when=FIRST_EXCEPTION)
        failed = [f for f in done if f.exception() is not None]
        if failed:
            stop_event.set()
            loop = futs[failed[0]]
            logger.critical("[%s] fatal error, stopping all sources", loop.exchange_id)
            wait(futs)
            raise failed[0].exception()
