from typing import Any, Dict, List, Optional

import pytest

from resc.rpc import BlockNotFound
from resc.stats import CodeStats, ExecutionStats

SENDER = "0x1111111111111111111111111111111111111111"
TARGET = "0x2222222222222222222222222222222222222222"

# 2021-01-01T00:00:00Z
T0 = 1609459200


def tx_hash(n: int) -> str:
    return "0x%064x" % n


def rpc_tx(n: int, *, to: Optional[str] = TARGET, data: str = "0xa9059cbb", **extra) -> Dict[str, Any]:
    tx = {
        "hash": tx_hash(n),
        "from": SENDER,
        "to": to,
        "input": data,
        "gas": "0x5208",
        "value": "0x0",
        "gasPrice": "0x3b9aca00",
        "nonce": hex(n),
        "type": "0x0",
    }
    tx.update(extra)
    return tx


def rpc_block(number: int, timestamp: int, txs: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"number": hex(number), "timestamp": hex(timestamp), "transactions": txs}


class FakeNode:
    """In-memory node: blocks by height, call results by tx call data."""

    def __init__(self, blocks=None, results=None, default=b"", chain=1):
        self.blocks: Dict[int, Any] = dict(blocks or {})
        self.results: Dict[str, Any] = dict(results or {})
        self.default = default
        self.chain = chain
        self.fetched: List[int] = []
        self.calls: List[tuple] = []

    def chain_id(self) -> int:
        if isinstance(self.chain, Exception):
            raise self.chain
        return self.chain

    def get_block_by_number(self, height: int) -> Dict[str, Any]:
        self.fetched.append(height)
        block = self.blocks.get(height)
        if isinstance(block, Exception):
            raise block
        if block is None:
            raise BlockNotFound(height)
        return block

    def call(self, request: Dict[str, Any], block_number: int) -> bytes:
        self.calls.append((request, block_number))
        result = self.results.get(request["data"], self.default)
        if isinstance(result, Exception):
            raise result
        return result


class RecordingSink:
    def __init__(self, accept: bool = True):
        self.records = []
        self.accept = accept

    def push(self, record) -> bool:
        if not self.accept:
            return False
        self.records.append(record)
        return True


@pytest.fixture
def sample_stats() -> ExecutionStats:
    return ExecutionStats(
        call_depth=3,
        create=CodeStats(1, 10, 10),
        create2=CodeStats(0, 0, 0),
        call=CodeStats(2, 50, 5),
        call_code=CodeStats(0, 0, 0),
        delegate_call=CodeStats(1, 8, 8),
    )
