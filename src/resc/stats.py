"""
Execution statistics returned by the instrumented node.

The node's eth_call returns an instrumentation payload instead of ordinary
return data. Two layouts are in use:

  FULL   80-byte little-endian frame of 20 int32 words
         [0]      call max depth
         [1..3]   CREATE       (count, code max len, code min len)
         [4..6]   CREATE2      (count, code max len, code min len)
         [7..9]   CALL         (count, code max len, code min len)
         [10..12] CALLCODE     (count, code max len, code min len)
         [13..15] DELEGATECALL (count, code max len, code min len)
         [16..19] reserved, zero
  DEPTH  single little-endian uint32 call max depth

The layout is chosen by configuration; payload length is never used to guess it.
"""

import enum
import struct
from dataclasses import dataclass
from typing import List, Tuple


class DecodeError(ValueError):
    pass


class InstrumentationFormat(enum.Enum):
    FULL = "full"
    DEPTH = "depth"


# opcode families in frame order: (column prefix, ExecutionStats attribute)
OPCODE_FAMILIES: List[Tuple[str, str]] = [
    ("create", "create"),
    ("create2", "create2"),
    ("call", "call"),
    ("call_code", "call_code"),
    ("delegate_call", "delegate_call"),
]

_FULL_FRAME = struct.Struct("<16i16x")
_DEPTH_FRAME = struct.Struct("<I")

FULL_PAYLOAD_SIZE = _FULL_FRAME.size  # 80
DEPTH_PAYLOAD_SIZE = _DEPTH_FRAME.size  # 4


@dataclass(frozen=True)
class CodeStats:
    count: int = 0
    max_len: int = 0
    min_len: int = 0


@dataclass(frozen=True)
class ExecutionStats:
    call_depth: int = 0
    create: CodeStats = CodeStats()
    create2: CodeStats = CodeStats()
    call: CodeStats = CodeStats()
    call_code: CodeStats = CodeStats()
    delegate_call: CodeStats = CodeStats()

    def as_row(self, fmt: InstrumentationFormat = InstrumentationFormat.FULL) -> List[int]:
        """Values in the same order as columns(fmt)."""
        if fmt is InstrumentationFormat.DEPTH:
            return [self.call_depth]
        row = [self.call_depth]
        for _, attr in OPCODE_FAMILIES:
            cs: CodeStats = getattr(self, attr)
            row.extend([cs.count, cs.max_len, cs.min_len])
        return row


def columns(fmt: InstrumentationFormat = InstrumentationFormat.FULL) -> List[str]:
    if fmt is InstrumentationFormat.DEPTH:
        return ["max_depth"]
    cols = ["call_max_depth"]
    for prefix, _ in OPCODE_FAMILIES:
        cols += [f"{prefix}_cnt", f"{prefix}_code_max_len", f"{prefix}_code_min_len"]
    return cols


def payload_size(fmt: InstrumentationFormat) -> int:
    return FULL_PAYLOAD_SIZE if fmt is InstrumentationFormat.FULL else DEPTH_PAYLOAD_SIZE


def decode(payload: bytes, fmt: InstrumentationFormat = InstrumentationFormat.FULL) -> ExecutionStats:
    """
    Decode an instrumentation payload. Bytes past the fixed frame are ignored;
    anything shorter than the frame raises DecodeError.
    """
    need = payload_size(fmt)
    if payload is None or len(payload) < need:
        got = 0 if payload is None else len(payload)
        raise DecodeError(f"{fmt.value} payload too short: need {need} bytes, got {got}")

    if fmt is InstrumentationFormat.DEPTH:
        (depth,) = _DEPTH_FRAME.unpack_from(payload)
        return ExecutionStats(call_depth=depth)

    words = _FULL_FRAME.unpack_from(payload)
    triples = [CodeStats(*words[i : i + 3]) for i in range(1, 16, 3)]
    return ExecutionStats(words[0], *triples)


def encode(stats: ExecutionStats, fmt: InstrumentationFormat = InstrumentationFormat.FULL) -> bytes:
    if fmt is InstrumentationFormat.DEPTH:
        return _DEPTH_FRAME.pack(stats.call_depth)
    return _FULL_FRAME.pack(*stats.as_row(fmt))
