import threading
from datetime import datetime, timedelta, timezone

import pytest

from conftest import T0, FakeNode, RecordingSink, rpc_block, rpc_tx, tx_hash
from resc.replay import ReplayInvoker
from resc.rpc import BlockNotFound, RpcTransportError
from resc.stats import ExecutionStats, encode
from resc.walker import ChainWalker, ScanContext, TimeWindow, WalkError, WalkerState

START = datetime.fromtimestamp(T0, tz=timezone.utc)
END = START + timedelta(days=1)
WINDOW = TimeWindow(START, END)
PAYLOAD = encode(ExecutionStats(call_depth=2))


def make_walker(node, sink=None, cursor=0, limit=0, window=WINDOW, **kw):
    sink = sink if sink is not None else RecordingSink()
    ctx = ScanContext(cursor=cursor, chain_id=1)
    walker = ChainWalker(node, ReplayInvoker(node, 1), sink, ctx, window=window, limit=limit, **kw)
    return walker, sink


def test_window_is_open_interval():
    assert not WINDOW.contains(START)
    assert not WINDOW.contains(END)
    assert WINDOW.contains(START + timedelta(seconds=1))
    assert WINDOW.contains(END - timedelta(seconds=1))
    assert not WINDOW.contains(START - timedelta(seconds=1))


def test_window_open_bounds():
    assert TimeWindow().contains(START)
    assert TimeWindow(start=START).contains(END)
    assert not TimeWindow(end=START).contains(END)


def test_blocks_on_window_edges_are_skipped():
    node = FakeNode(
        {
            0: rpc_block(0, T0, [rpc_tx(1)]),
            1: rpc_block(1, T0 + 86400, [rpc_tx(2)]),
            2: rpc_block(2, T0 + 10, [rpc_tx(3)]),
        },
        default=PAYLOAD,
    )
    walker, sink = make_walker(node)
    for _ in range(3):
        walker.step()
    assert [r.tx_hash for r in sink.records] == [tx_hash(3)]


def test_cursor_advances_once_per_block():
    node = FakeNode(
        {
            10: rpc_block(10, T0 + 5, []),
            11: rpc_block(11, T0 - 5, [rpc_tx(1)]),
            12: rpc_block(12, T0 + 5, [rpc_tx(2, data="0xdead")]),
            13: rpc_block(13, T0 + 5, [rpc_tx(3)]),
            14: rpc_block(14, T0 + 5, [rpc_tx(4, to=None)]),
        },
        results={"0xdead": RpcTransportError("node down")},
        default=PAYLOAD,
    )
    walker, sink = make_walker(node, cursor=10)
    for n in range(1, 6):
        walker.step()
        assert walker.context.cursor == 10 + n
    assert node.fetched == [10, 11, 12, 13, 14]
    assert [r.tx_hash for r in sink.records] == [tx_hash(3)]
    assert walker.context.replayed == 1


def test_empty_block_makes_no_calls():
    node = FakeNode({0: rpc_block(0, T0 + 5, [])})
    walker, _ = make_walker(node)
    walker.step()
    assert node.calls == []
    assert walker.context.cursor == 1


def test_records_follow_block_then_tx_order():
    node = FakeNode(
        {
            0: rpc_block(0, T0 + 1, [rpc_tx(1), rpc_tx(2)]),
            1: rpc_block(1, T0 + 2, [rpc_tx(3)]),
            2: rpc_block(2, T0 + 3, [rpc_tx(4), rpc_tx(5, data="0x"), rpc_tx(6)]),
        },
        default=PAYLOAD,
    )
    walker, sink = make_walker(node)
    with pytest.raises(WalkError):
        walker.run()
    assert [r.tx_hash for r in sink.records] == [tx_hash(n) for n in (1, 2, 3, 4, 6)]


def _busy_chain(n_blocks, per_block=2):
    blocks = {}
    for b in range(n_blocks):
        blocks[b] = rpc_block(b, T0 + 1 + b, [rpc_tx(b * 10 + i) for i in range(per_block)])
    return FakeNode(blocks, default=PAYLOAD)


def test_limit_checked_before_block_with_strict_comparison():
    walker, sink = make_walker(_busy_chain(5), limit=1)
    assert walker.run() is WalkerState.LIMIT_REACHED
    # block 0 carries the count to 2, block 1 sees 2 > 1 and stops
    assert len(sink.records) == 2
    assert walker.context.cursor == 1


def test_limit_equal_to_count_keeps_scanning():
    walker, sink = make_walker(_busy_chain(5), limit=2)
    assert walker.run() is WalkerState.LIMIT_REACHED
    assert len(sink.records) == 4
    assert walker.context.cursor == 2


def test_non_positive_limit_is_unlimited():
    walker, sink = make_walker(_busy_chain(3), limit=0)
    with pytest.raises(WalkError):
        walker.run()
    assert len(sink.records) == 6


def test_fetch_failure_is_fatal():
    node = FakeNode({0: rpc_block(0, T0 + 1, [rpc_tx(1)]), 1: RpcTransportError("connection refused")}, default=PAYLOAD)
    walker, sink = make_walker(node)
    with pytest.raises(WalkError) as exc:
        walker.run()
    assert exc.value.height == 1
    assert walker.state is WalkerState.FATAL
    assert walker.context.cursor == 1
    assert len(sink.records) == 1


def test_missing_block_is_fatal_without_polling():
    walker, _ = make_walker(FakeNode())
    with pytest.raises(WalkError) as exc:
        walker.step()
    assert isinstance(exc.value.__cause__, BlockNotFound)


def test_missing_block_is_polled_when_configured():
    node = FakeNode(default=PAYLOAD)
    block = rpc_block(0, T0 + 1, [rpc_tx(1)])
    original = node.get_block_by_number

    def appear_on_second_poll(height):
        if len(node.fetched) == 1:
            node.blocks[0] = block
        return original(height)

    node.get_block_by_number = appear_on_second_poll
    walker, sink = make_walker(node, head_poll_interval=0.01)
    walker.step()
    assert node.fetched == [0, 0]
    assert walker.context.cursor == 1
    assert len(sink.records) == 1


def test_stop_while_polling():
    stop = threading.Event()
    node = FakeNode()

    def missing(height):
        node.fetched.append(height)
        stop.set()
        raise BlockNotFound(height)

    node.get_block_by_number = missing
    walker, _ = make_walker(node, head_poll_interval=5, stop_event=stop)
    assert walker.step() is WalkerState.STOPPED
    assert node.fetched == [0]
    assert walker.context.cursor == 0


def test_stop_event_ends_run():
    stop = threading.Event()
    stop.set()
    node = _busy_chain(2)
    walker, sink = make_walker(node, stop_event=stop)
    assert walker.run() is WalkerState.STOPPED
    assert node.fetched == []


def test_rejected_push_stops_walk():
    walker, _ = make_walker(_busy_chain(2), sink=RecordingSink(accept=False))
    assert walker.run() is WalkerState.STOPPED
    assert walker.context.replayed == 0
    assert walker.context.cursor == 0


def test_terminal_state_is_sticky():
    walker, _ = make_walker(_busy_chain(2), limit=1)
    walker.run()
    fetched = list(walker.node.fetched)
    assert walker.step() is WalkerState.LIMIT_REACHED
    assert walker.node.fetched == fetched
