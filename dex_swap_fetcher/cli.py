"""
Command line entry point.

    dex-swap-fetch run                      poll every configured source
    dex-swap-fetch backfill --start ... --end ... [--out trades.pkl]
    dex-swap-fetch latest-block [--source aerodrome]
    dex-swap-fetch reset-checkpoint --source aerodrome

Exit status: 0 on clean shutdown, 2 on configuration errors, 1 on any other
fatal error.
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import List, Optional

from tqdm import tqdm

from dex_swap_fetcher.core.checkpoint import CheckpointManager, JsonCheckpointStore
from dex_swap_fetcher.core.config import load_config, source_config
from dex_swap_fetcher.core.errors import ConfigError, IngestionError
from dex_swap_fetcher.core.graph_client import GraphClient
from dex_swap_fetcher.core.harvesters.subgraph_harvester import SubgraphHarvester
from dex_swap_fetcher.core.ingestion_loop import build_loop, run_sources
from dex_swap_fetcher.core.logger import setup_logging
from dex_swap_fetcher.core.sinks.postgres_store import PostgresTradeStore
from dex_swap_fetcher.core.sinks.redis_queue import RedisTradeQueue
from dex_swap_fetcher.core.utils import pickle_write_trades, to_unix, trades_to_frame

logger = logging.getLogger("dex_swap_fetcher.cli")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="dex-swap-fetch", description="Ingest DEX swaps from subgraphs.")
    p.add_argument("--config", default=None, help="YAML config path (default: $SWAP_INGEST_CONFIG_PATH)")
    sub = p.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="poll all configured sources until interrupted")
    run.add_argument("--init-schema", action="store_true", help="create the raw_trades table first")

    bf = sub.add_parser("backfill", help="fetch a closed time window once")
    bf.add_argument("--source", default=None)
    bf.add_argument("--start", required=True, help="UNIX seconds or ISO-8601")
    bf.add_argument("--end", required=True, help="UNIX seconds or ISO-8601")
    bf.add_argument("--out", default=None, help="write a pickled DataFrame instead of forwarding to sinks")

    lb = sub.add_parser("latest-block", help="print the latest indexed block")
    lb.add_argument("--source", default=None)

    rc = sub.add_parser("reset-checkpoint", help="delete the persisted cursor of a source")
    rc.add_argument("--source", required=True)
    return p


def _harvester(cfg, source) -> SubgraphHarvester:
    client = GraphClient(source["graph_url"], timeout=cfg["request_timeout_s"])
    return SubgraphHarvester(
        client,
        source["exchange_id"],
        page_size=cfg["page_size"],
        max_skip=cfg["max_skip"],
        max_malformed_ratio=cfg["max_malformed_ratio"],
    )


def cmd_run(cfg, args) -> None:
    stop = threading.Event()

    def _handle_signal(signum, frame):
        logger.info("Shutdown signal %s received, finishing current cycle…", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    if args.init_schema:
        PostgresTradeStore(cfg["postgres_url"]).ensure_schema()

    loops = [build_loop(cfg, src, stop_event=stop) for src in cfg["sources"]]
    logger.info("Starting %d source loop(s): %s", len(loops), ", ".join(l.exchange_id for l in loops))
    run_sources(loops, stop)


def cmd_backfill(cfg, args) -> None:
    source = source_config(cfg, args.source)
    start, end = to_unix(args.start), to_unix(args.end)
    if end < start:
        raise ConfigError("end", "must be >= start")
    harvester = _harvester(cfg, source)

    if args.out:
        trades = []
        for trade in tqdm(harvester.iter_window(start, end), desc="Swaps", unit="swap", dynamic_ncols=True):
            trades.append(trade)
        path = pickle_write_trades(trades_to_frame(trades), args.out)
        print(f"  ✓ Wrote {len(trades):,} trades → {path}")
        return

    queue = RedisTradeQueue.from_url(cfg["redis_url"], key=cfg["redis_queue_key"])
    store = PostgresTradeStore(cfg["postgres_url"])
    batch: List = []
    total = 0
    with tqdm(desc="Swaps", unit="swap", dynamic_ncols=True) as pb:
        for trade in harvester.iter_window(start, end):
            batch.append(trade)
            pb.update(1)
            if len(batch) >= cfg["batch_size"]:
                queue.push_many(batch)
                store.upsert_batch(batch)
                total += len(batch)
                batch = []
        if batch:
            queue.push_many(batch)
            store.upsert_batch(batch)
            total += len(batch)
    print(f"  ✓ Forwarded {total:,} trades from {source['exchange_id']}")


def cmd_latest_block(cfg, args) -> None:
    source = source_config(cfg, args.source)
    latest = _harvester(cfg, source).fetch_latest_block()
    print(f"{source['exchange_id']}: block {latest.block_number} at {latest.timestamp}")


def cmd_reset_checkpoint(cfg, args) -> None:
    source = source_config(cfg, args.source)
    manager = CheckpointManager(JsonCheckpointStore(cfg["checkpoint_dir"]), source["exchange_id"])
    if manager.reset():
        print(f"Checkpoint for {source['exchange_id']} removed.")
    else:
        print(f"No checkpoint for {source['exchange_id']}.")


COMMANDS = {
    "run": cmd_run,
    "backfill": cmd_backfill,
    "latest-block": cmd_latest_block,
    "reset-checkpoint": cmd_reset_checkpoint,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging("INFO")
    try:
        cfg = load_config(args.config)
        setup_logging(cfg["log_level"], cfg["log_json"])
        COMMANDS[args.command](cfg, args)
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        return 2
    except IngestionError as exc:
        logger.critical("Fatal: %s: %s", type(exc).__name__, exc, exc_info=True)
        return 1
    return 0
