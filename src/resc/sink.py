"""
Bounded hand-off between the chain walker and the CSV writer.

Records go through a queue.Queue of fixed capacity, so a slow disk makes the
walker wait instead of growing memory. A single writer thread owns the
output stream from start() to close() and writes rows in push order.
"""

import logging
import queue
import threading
from typing import IO, List, Optional

import pandas as pd

from resc import config
from resc.replay import ResultRecord
from resc.stats import InstrumentationFormat, columns

logger = logging.getLogger(__name__)

_CLOSE = object()
_PUT_SLICE = 0.2


class SinkClosed(RuntimeError):
    pass


class ResultSink:
    def __init__(
        self,
        stream: IO[str],
        fmt: InstrumentationFormat = InstrumentationFormat.FULL,
        capacity: int = config.QUEUE_SIZE,
        stop_event: Optional[threading.Event] = None,
    ):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.stream = stream
        self.fmt = fmt
        self.capacity = capacity
        self.header: List[str] = ["tx"] + columns(fmt)
        self.written = 0
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=capacity)
        self._stop = stop_event or threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._closed = False
        self._error: Optional[BaseException] = None

    def __enter__(self) -> "ResultSink":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def start(self) -> None:
        if self._thread is not None:
            return
        pd.DataFrame(columns=self.header).to_csv(self.stream, index=False, lineterminator="\n")
        self._thread = threading.Thread(target=self._drain, name="resc-writer", daemon=True)
        self._thread.start()

    def push(self, record: ResultRecord) -> bool:
        """
        Hand a record to the writer, blocking while the queue is full.
        Returns False when a stop was requested before the record was accepted.
        """
        if self._closed:
            raise SinkClosed("push on closed sink")
        if self._thread is None:
            raise SinkClosed("sink not started")
        while True:
            self._raise_writer_error()
            try:
                self._queue.put(record, timeout=_PUT_SLICE)
                return True
            except queue.Full:
                if self._stop.is_set():
                    logger.warning("stop requested while queue full, tx=%s not queued", record.tx_hash)
                    return False

    def close(self) -> None:
        """Write everything already queued, then flush. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        if self._thread is not None:
            # the end marker goes behind every accepted record
            while self._thread.is_alive():
                try:
                    self._queue.put(_CLOSE, timeout=_PUT_SLICE)
                    break
                except queue.Full:
                    continue
            self._thread.join()
        self.stream.flush()
        logger.info("writer closed, %d rows written", self.written)
        self._raise_writer_error()

    def _raise_writer_error(self) -> None:
        if self._error is not None:
            raise SinkClosed(f"writer failed: {self._error}") from self._error

    # ---------- writer thread ----------
    def _drain(self) -> None:
        try:
            while True:
                item = self._queue.get()
                if item is _CLOSE:
                    return
                self._write(item)
        except Exception as e:
            logger.exception("writer failed")
            self._error = e

    def _write(self, record: ResultRecord) -> None:
        row = [record.tx_hash] + record.stats.as_row(self.fmt)
        pd.DataFrame([row], columns=self.header).to_csv(
            self.stream, header=False, index=False, lineterminator="\n"
        )
        self.written += 1
        logger.debug("tx: %s, stats: %s", record.tx_hash, record.stats)
