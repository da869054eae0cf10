"""
Block-by-block traversal of the chain.

Block height is the only thing the node can be asked by, so the walker moves
a cursor upward one block at a time and filters on each block's timestamp.
Blocks inside the window have their contract calls replayed and the results
pushed into the sink.

The replay limit is checked once per qualifying block, before it is
processed, with a strict "more than" comparison. A busy block can therefore
carry the count past the limit; the run stops at the next qualifying block.
"""

import enum
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from resc.candidates import Block, eligible_transactions
from resc.replay import ReplayInvoker, ResultRecord
from resc.rpc import BlockNotFound, RpcError
from resc.sink import ResultSink

logger = logging.getLogger(__name__)


class WalkerState(enum.Enum):
    SCANNING = "scanning"
    LIMIT_REACHED = "limit_reached"
    FATAL = "fatal"
    STOPPED = "stopped"


class WalkError(RuntimeError):
    def __init__(self, height: int, cause: Exception):
        super().__init__(f"block {height}: {cause}")
        self.height = height


@dataclass(frozen=True)
class TimeWindow:
    """Open interval (start, end); a missing bound leaves that side open."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def contains(self, t: datetime) -> bool:
        if self.start is not None and not t > self.start:
            return False
        if self.end is not None and not t < self.end:
            return False
        return True


@dataclass
class ScanContext:
    cursor: int = 0
    replayed: int = 0
    chain_id: int = 0


class ChainWalker:
    def __init__(
        self,
        node,
        invoker: ReplayInvoker,
        sink: ResultSink,
        context: ScanContext,
        window: TimeWindow = TimeWindow(),
        limit: int = 0,
        stop_event: Optional[threading.Event] = None,
        head_poll_interval: float = 0.0,
    ):
        self.node = node
        self.invoker = invoker
        self.sink = sink
        self.context = context
        self.window = window
        self.limit = limit
        self.head_poll_interval = head_poll_interval
        self.state = WalkerState.SCANNING
        self._stop = stop_event or threading.Event()

    def run(self) -> WalkerState:
        logger.info(
            "walking from block %d, window=(%s, %s), limit=%s",
            self.context.cursor,
            self.window.start,
            self.window.end,
            self.limit if self.limit > 0 else "none",
        )
        while self.state is WalkerState.SCANNING:
            self.step()
        logger.info(
            "walk finished: %s at block %d, %d replayed",
            self.state.value,
            self.context.cursor,
            self.context.replayed,
        )
        return self.state

    def step(self) -> WalkerState:
        """Process the block under the cursor."""
        if self.state is not WalkerState.SCANNING:
            return self.state
        if self._stop.is_set():
            self.state = WalkerState.STOPPED
            return self.state

        block = self._fetch(self.context.cursor)
        if block is None:
            return self.state
        logger.debug("block: %d, %s", block.number, block.time.isoformat())

        if block.transactions and self.window.contains(block.time):
            if self.limit > 0 and self.context.replayed > self.limit:
                self.state = WalkerState.LIMIT_REACHED
                return self.state
            if not self._replay_block(block):
                return self.state

        self.context.cursor += 1
        return self.state

    def _fetch(self, height: int) -> Optional[Block]:
        while True:
            try:
                return Block.from_rpc(self.node.get_block_by_number(height))
            except BlockNotFound as e:
                if self.head_poll_interval <= 0:
                    self._fatal(height, e)
                logger.info("block %d not available yet, polling in %.1fs", height, self.head_poll_interval)
                if self._stop.wait(self.head_poll_interval):
                    self.state = WalkerState.STOPPED
                    return None
            except RpcError as e:
                self._fatal(height, e)

    def _fatal(self, height: int, cause: Exception) -> None:
        self.state = WalkerState.FATAL
        logger.error("fetching block %d failed: %s", height, cause)
        raise WalkError(height, cause) from cause

    def _replay_block(self, block: Block) -> bool:
        for tx in eligible_transactions(block.transactions):
            if self._stop.is_set():
                self.state = WalkerState.STOPPED
                return False
            logger.debug("contract tx: %s", tx.hash)
            outcome = self.invoker.replay(tx, block.number)
            if not isinstance(outcome, ResultRecord):
                continue
            if not self.sink.push(outcome):
                self.state = WalkerState.STOPPED
                return False
            self.context.replayed += 1
        return True
