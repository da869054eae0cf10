"""
resc: replay Ethereum smart-contract transactions in a given time period and
record the call-stack depth and per-opcode statistics reported by the node.

Usage:
  resc --start 2020-06-01T00:00:00 --end 2021-07-01T00:00:00 --limit 10
  resc --block 12965000 --format depth --output depth.csv

Env:
  RESC_RPC_URL=http://localhost:8545
"""

import argparse
import logging
import signal
import sys
import threading
import time
from typing import List, Optional

from resc import config
from resc.replay import ReplayInvoker
from resc.rpc import NodeClient, RpcError
from resc.sink import ResultSink, SinkClosed
from resc.stats import InstrumentationFormat
from resc.walker import ChainWalker, ScanContext, TimeWindow, WalkError, WalkerState

logger = logging.getLogger("resc")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="resc",
        description="Replay Ethereum smart contracts in a given time period, and output max depth of call stack.",
    )
    p.add_argument("--block", type=int, default=0, help="block height to start from")
    p.add_argument("--start", type=config.parse_timestamp, help="window start, exclusive (YYYY-MM-DDTHH:MM:SS, UTC)")
    p.add_argument("--end", type=config.parse_timestamp, help="window end, exclusive (YYYY-MM-DDTHH:MM:SS, UTC)")
    p.add_argument("--limit", type=int, default=config.DEFAULT_LIMIT, help="stop after this many replays; <= 0 for no limit")
    p.add_argument(
        "--format",
        dest="fmt",
        choices=[f.value for f in InstrumentationFormat],
        default=InstrumentationFormat.FULL.value,
        help="instrumentation payload layout produced by the node",
    )
    p.add_argument("--output", help="CSV file to append to (default resc-<epoch>.csv)")
    p.add_argument("--rpc-url", default=config.RPC_URL)
    p.add_argument(
        "--poll-interval",
        type=float,
        default=config.HEAD_POLL_INTERVAL,
        help="seconds to wait for a block past the chain head; 0 aborts instead",
    )
    p.add_argument("--log-level", default="INFO")
    p.add_argument("--log-file", help="append log lines here instead of stderr")
    return p


def setup_logging(level: str = "INFO", filename: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
        filename=filename,
        filemode="a",
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def config_from_args(args: argparse.Namespace) -> config.ReplayConfig:
    return config.ReplayConfig(
        start_block=args.block,
        start=args.start,
        end=args.end,
        limit=args.limit,
        fmt=InstrumentationFormat(args.fmt),
        rpc_url=args.rpc_url,
        head_poll_interval=args.poll_interval,
    )


def run(cfg: config.ReplayConfig, output: str, stop_event: Optional[threading.Event] = None) -> int:
    stop_event = stop_event or threading.Event()
    node = NodeClient(cfg.rpc_url, timeout=cfg.rpc_timeout, max_retries=cfg.rpc_max_retries)
    try:
        chain_id = node.chain_id()
    except RpcError as e:
        logger.error("cannot reach node at %s: %s", cfg.rpc_url, e)
        return EXIT_FAILED
    logger.info("connected to %s, chain id %d", cfg.rpc_url, chain_id)

    context = ScanContext(cursor=cfg.start_block, chain_id=chain_id)
    invoker = ReplayInvoker(node, context.chain_id, cfg.fmt)
    try:
        with open(output, "a", encoding="utf-8", newline="") as f:
            with ResultSink(f, cfg.fmt, capacity=cfg.queue_size, stop_event=stop_event) as sink:
                walker = ChainWalker(
                    node,
                    invoker,
                    sink,
                    context,
                    window=TimeWindow(cfg.start, cfg.end),
                    limit=cfg.limit,
                    stop_event=stop_event,
                    head_poll_interval=cfg.head_poll_interval,
                )
                state = walker.run()
    except WalkError as e:
        logger.error("walk aborted at block %d: %s", e.height, e)
        return EXIT_FAILED
    except SinkClosed as e:
        logger.error("writing %s failed: %s", output, e)
        return EXIT_FAILED
    logger.info("output file: %s", output)
    return EXIT_INTERRUPTED if state is WalkerState.STOPPED else EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file)
    try:
        cfg = config_from_args(args)
    except ValueError as e:
        logger.error("invalid configuration: %s", e)
        return EXIT_FAILED
    output = args.output or config.output_path(int(time.time()))

    stop_event = threading.Event()

    def _request_stop(signum, frame):
        logger.warning("signal %d received, stopping after queued results are written", signum)
        stop_event.set()

    previous = {sig: signal.signal(sig, _request_stop) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        return run(cfg, output, stop_event)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


if __name__ == "__main__":
    sys.exit(main())
