"""
Historical re-execution of a single transaction.

The transaction is turned back into an eth_call request at the height of the
block it was mined in; the node runs it against that state and answers with
an instrumentation payload, which is decoded into ExecutionStats.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from eth_utils import to_hex

from resc.candidates import Transaction
from resc.rpc import RpcError
from resc.stats import DecodeError, ExecutionStats, InstrumentationFormat, decode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResultRecord:
    tx_hash: str
    stats: ExecutionStats


@dataclass(frozen=True)
class Skip:
    tx_hash: str
    reason: str


ReplayOutcome = Union[ResultRecord, Skip]


def build_call_request(tx: Transaction) -> Dict[str, Any]:
    """Mirror the mined transaction as a read-only call message."""
    request: Dict[str, Any] = {
        "from": tx.sender,
        "to": tx.to,
        "gas": hex(tx.gas),
        "value": hex(tx.value),
        "data": to_hex(tx.data),
    }
    # the node refuses gasPrice together with the EIP-1559 fee fields
    if tx.is_dynamic_fee:
        request["maxFeePerGas"] = hex(tx.max_fee_per_gas)
        if tx.max_priority_fee_per_gas is not None:
            request["maxPriorityFeePerGas"] = hex(tx.max_priority_fee_per_gas)
    elif tx.gas_price is not None:
        request["gasPrice"] = hex(tx.gas_price)
    if tx.access_list:
        request["accessList"] = list(tx.access_list)
    return request


class ReplayInvoker:
    def __init__(self, node, chain_id: int, fmt: InstrumentationFormat = InstrumentationFormat.FULL):
        self.node = node
        self.chain_id = chain_id
        self.fmt = fmt

    def _sender_problem(self, tx: Transaction) -> Optional[str]:
        if tx.chain_id is not None and tx.chain_id != self.chain_id:
            return f"signed for chain {tx.chain_id}, node is on chain {self.chain_id}"
        if not tx.sender:
            return "sender not recoverable"
        return None

    def replay(self, tx: Transaction, block_number: int) -> ReplayOutcome:
        problem = self._sender_problem(tx)
        if problem:
            return self._skip(tx, problem)

        request = build_call_request(tx)
        logger.debug("replaying tx=%s to=%s at block %d", tx.hash, tx.to, block_number)
        try:
            payload = self.node.call(request, block_number)
        except RpcError as e:
            return self._skip(tx, f"call failed: {e}")

        try:
            stats = decode(payload, self.fmt)
        except DecodeError as e:
            return self._skip(tx, str(e))

        logger.info("tx=%s stats=%s", tx.hash, stats)
        return ResultRecord(tx.hash, stats)

    @staticmethod
    def _skip(tx: Transaction, reason: str) -> Skip:
        logger.warning("skip tx=%s reason=%s", tx.hash, reason)
        return Skip(tx.hash, reason)
