import threading
import time

import pytest

from dex_swap_fetcher.core.checkpoint import CheckpointManager, JsonCheckpointStore
from dex_swap_fetcher.core.errors import (
    CheckpointCorruptError,
    CheckpointError,
    MalformedPageError,
    SinkError,
)
from dex_swap_fetcher.core.harvesters.subgraph_harvester import SubgraphHarvester
from dex_swap_fetcher.core.ingestion_loop import IngestionLoop, LoopState, build_loop, run_sources
from dex_swap_fetcher.core.models import Cursor
from dex_swap_fetcher.core.normalizer import swap_key
from tests.conftest import FakeSubgraph, make_swap

T0 = 1_729_153_055


def _loop(
    tmp_path, swaps, queue, store, batch_size=100, stop_event=None, max_skip=None,
    poll_interval_s=0.01, backoff_s=0.01, max_keys=5100,
):
    source = FakeSubgraph(swaps)
    harvester = SubgraphHarvester(source, "aerodrome", page_size=50, max_skip=max_skip)
    checkpoints = CheckpointManager(
        JsonCheckpointStore(str(tmp_path)), "aerodrome", lookback_s=60, max_keys=max_keys, clock=lambda: T0 + 60
    )
    loop = IngestionLoop(
        harvester, checkpoints, queue, store,
        batch_size=batch_size, poll_interval_s=poll_interval_s, backoff_s=backoff_s, stop_event=stop_event,
    )
    return loop, source


def test_cycle_forwards_and_checkpoints(tmp_path, fake_queue, fake_store):
    swaps = [make_swap(T0 + i // 3) for i in range(30)]
    loop, source = _loop(tmp_path, swaps, fake_queue, fake_store)

    assert loop.run_once() == 30
    assert loop.state is LoopState.IDLE
    assert [t.key for t in fake_queue.items] == [swap_key(s) for s in source.swaps]
    assert len(fake_store.rows) == 30
    assert loop.cursor.timestamp == T0 + 9
    assert loop.checkpoints.load() == loop.cursor


def test_consecutive_cycles_do_not_reemit_boundary(tmp_path, fake_queue, fake_store):
    swaps = [make_swap(T0 + i // 4) for i in range(40)]
    loop, source = _loop(tmp_path, swaps, fake_queue, fake_store, batch_size=10)

    while loop.run_once():
        pass

    assert [t.key for t in fake_queue.items] == [swap_key(s) for s in source.swaps]
    assert fake_store.calls == 4


def test_cursor_moves_past_crowded_timestamp(tmp_path, fake_queue, fake_store):
    swaps = [make_swap(T0) for _ in range(30)] + [make_swap(T0 + 1) for _ in range(5)]
    loop, source = _loop(tmp_path, swaps, fake_queue, fake_store, batch_size=10, max_keys=30)

    counts = [loop.run_once() for _ in range(6)]

    assert counts == [10, 10, 10, 5, 0, 0]
    assert [t.key for t in fake_queue.items] == [swap_key(s) for s in source.swaps]
    assert loop.cursor.timestamp == T0 + 1
    assert len(fake_store.rows) == 35


def test_restart_resumes_from_persisted_cursor(tmp_path, fake_queue, fake_store):
    swaps = [make_swap(T0 + i // 4) for i in range(40)]
    first, source = _loop(tmp_path, swaps, fake_queue, fake_store, batch_size=14)
    first.run_once()

    second, _ = _loop(tmp_path, source.swaps, fake_queue, fake_store, batch_size=100)
    second.run_once()

    assert [t.key for t in fake_queue.items] == [swap_key(s) for s in source.swaps]


def test_sink_failure_does_not_advance_cursor(tmp_path, fake_queue, fake_store):
    swaps = [make_swap(T0 + i) for i in range(10)]
    loop, _ = _loop(tmp_path, swaps, fake_queue, fake_store)
    fake_store.fail = True

    with pytest.raises(SinkError):
        loop.run_once()
    assert loop.cursor == Cursor(T0)
    assert loop.checkpoints.store.load("aerodrome") is None

    fake_store.fail = False
    assert loop.run_once() == 10
    assert len(fake_store.rows) == 10


def test_persist_failure_keeps_in_memory_cursor(tmp_path, fake_queue, fake_store, monkeypatch):
    swaps = [make_swap(T0 + i) for i in range(5)]
    loop, _ = _loop(tmp_path, swaps, fake_queue, fake_store)

    def broken_save(exchange_id, payload):
        raise CheckpointError("disk full")

    monkeypatch.setattr(loop.checkpoints.store, "save", broken_save)
    with pytest.raises(CheckpointError):
        loop.run_once()
    assert loop.cursor == Cursor(T0)
    assert loop.state is LoopState.CHECKPOINTING


class StopAfter:
    """Store wrapper that requests shutdown after `n` successful batches."""

    def __init__(self, inner, stop_event, n):
        self.inner, self.stop_event, self.n = inner, stop_event, n

    def upsert_batch(self, trades):
        out = self.inner.upsert_batch(trades)
        self.n -= 1
        if self.n <= 0:
            self.stop_event.set()
        return out


def test_run_backs_off_on_recoverable_error_then_recovers(tmp_path, fake_queue, fake_store):
    stop = threading.Event()
    swaps = [make_swap(T0 + i) for i in range(10)]
    loop, source = _loop(tmp_path, swaps, fake_queue, StopAfter(fake_store, stop, 1), stop_event=stop)
    source.fail_on_call = 1

    loop.run()

    assert loop.state is LoopState.STOPPED
    assert len(fake_store.rows) == 10
    assert loop.cursor.timestamp == T0 + 9


def test_run_propagates_fatal_error(tmp_path, fake_queue, fake_store):
    swaps = [make_swap(T0 + i) for i in range(4)]
    for s in swaps:
        s["amount0In"] = "0"
    loop, _ = _loop(tmp_path, swaps, fake_queue, fake_store)

    with pytest.raises(MalformedPageError):
        loop.run()
    assert fake_store.calls == 0


def test_corrupt_checkpoint_stops_loop(tmp_path, fake_queue, fake_store):
    (tmp_path / "aerodrome.json").write_text("garbage")
    loop, _ = _loop(tmp_path, [], fake_queue, fake_store)

    with pytest.raises(CheckpointCorruptError):
        loop.run()


def test_stop_event_set_before_run_exits_immediately(tmp_path, fake_queue, fake_store):
    stop = threading.Event()
    stop.set()
    loop, source = _loop(tmp_path, [make_swap(T0)], fake_queue, fake_store, stop_event=stop)

    loop.run()

    assert loop.cycles == 0
    assert source.calls == []


def test_run_sources_reraises_first_fatal_and_stops_others(tmp_path, fake_queue, fake_store):
    stop = threading.Event()
    healthy, _ = _loop(tmp_path / "a", [make_swap(T0)], fake_queue, fake_store, stop_event=stop)
    bad_swaps = [make_swap(T0, amount0_in="0") for _ in range(3)]
    broken, _ = _loop(tmp_path / "b", bad_swaps, fake_queue, fake_store, stop_event=stop)
    broken.harvester.exchange_id = "velodrome"

    with pytest.raises(MalformedPageError):
        run_sources([healthy, broken], stop)
    assert stop.is_set()
    assert healthy.state is LoopState.STOPPED


def test_build_loop_wires_config(tmp_path, fake_queue, fake_store):
    cfg = {
        "request_timeout_s": 5.0,
        "page_size": 25,
        "max_skip": 5000,
        "max_malformed_ratio": 0.5,
        "checkpoint_dir": str(tmp_path),
        "lookback_s": 600,
        "max_cursor_keys": 10,
        "batch_size": 40,
        "polling_interval_ms": 1500,
        "backoff_s": 2.0,
    }
    source = {"exchange_id": "aerodrome", "graph_url": "http://localhost:8000/subgraphs/name/aero"}

    loop = build_loop(cfg, source, queue=fake_queue, store=fake_store)

    assert loop.harvester.page_size == 25
    assert loop.harvester.client.url == source["graph_url"]
    assert loop.batch_size == 40
    assert loop.poll_interval_s == 1.5
    assert loop.checkpoints.lookback_s == 600


def _start(loop):
    thread = threading.Thread(target=loop.run, daemon=True)
    thread.start()
    return thread


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        assert time.monotonic() < deadline, "condition not reached"
        time.sleep(0.005)


def test_stop_interrupts_poll_sleep(tmp_path, fake_queue, fake_store):
    stop = threading.Event()
    loop, _ = _loop(tmp_path, [make_swap(T0)], fake_queue, fake_store, stop_event=stop, poll_interval_s=60)
    thread = _start(loop)

    _wait_for(lambda: loop.cycles >= 1)
    stop.set()
    thread.join(timeout=1.0)

    assert not thread.is_alive()
    assert loop.state is LoopState.STOPPED
    assert loop.cycles == 1


def test_stop_interrupts_backoff_sleep(tmp_path, fake_queue, fake_store):
    stop = threading.Event()
    loop, source = _loop(tmp_path, [make_swap(T0)], fake_queue, fake_store, stop_event=stop, backoff_s=60)
    source.fail_on_call = 1
    thread = _start(loop)

    _wait_for(lambda: loop.state is LoopState.BACKOFF)
    stop.set()
    thread.join(timeout=1.0)

    assert not thread.is_alive()
    assert loop.state is LoopState.STOPPED
    assert loop.cycles == 0
    assert fake_store.calls == 0
