"""Blocks and transactions as returned by eth_getBlockByNumber, and the replay filter."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from eth_utils import to_bytes, to_checksum_address


def hex_to_int(h: Optional[str]) -> int:
    if not h or h == "0x":
        return 0
    return int(h, 16)


def checksum(addr_hex: Optional[str]) -> Optional[str]:
    if not addr_hex:
        return None
    return to_checksum_address(addr_hex)


def opt_int(h: Optional[str]) -> Optional[int]:
    return None if h is None else hex_to_int(h)


@dataclass(frozen=True)
class Transaction:
    hash: str
    sender: Optional[str]
    to: Optional[str]
    data: bytes
    gas: int
    value: int
    type: int = 0
    nonce: int = 0
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    chain_id: Optional[int] = None
    access_list: Tuple[Dict[str, Any], ...] = ()

    @property
    def is_dynamic_fee(self) -> bool:
        return self.max_fee_per_gas is not None

    @classmethod
    def from_rpc(cls, tx: Dict[str, Any]) -> "Transaction":
        data_hex = tx.get("input") or tx.get("data") or "0x"
        return cls(
            hash=(tx.get("hash") or "").lower(),
            sender=checksum(tx.get("from")),
            to=checksum(tx.get("to")),
            data=to_bytes(hexstr=data_hex),
            gas=hex_to_int(tx.get("gas")),
            value=hex_to_int(tx.get("value")),
            type=hex_to_int(tx.get("type")),
            nonce=hex_to_int(tx.get("nonce")),
            gas_price=opt_int(tx.get("gasPrice")),
            max_fee_per_gas=opt_int(tx.get("maxFeePerGas")),
            max_priority_fee_per_gas=opt_int(tx.get("maxPriorityFeePerGas")),
            chain_id=opt_int(tx.get("chainId")),
            access_list=tuple(tx.get("accessList") or ()),
        )


@dataclass(frozen=True)
class Block:
    number: int
    timestamp: int
    transactions: List[Transaction] = field(default_factory=list)

    @property
    def time(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)

    @classmethod
    def from_rpc(cls, block: Dict[str, Any]) -> "Block":
        return cls(
            number=hex_to_int(block.get("number")),
            timestamp=hex_to_int(block.get("timestamp")),
            transactions=[Transaction.from_rpc(tx) for tx in block.get("transactions") or [] if isinstance(tx, dict)],
        )


def is_eligible(tx: Transaction) -> bool:
    """Only contract calls are replayed: call data present and a destination set."""
    return len(tx.data) > 0 and tx.to is not None


def eligible_transactions(txs: Iterable[Transaction]) -> Iterator[Transaction]:
    for tx in txs:
        if is_eligible(tx):
            yield tx
