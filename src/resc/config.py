import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from resc.stats import InstrumentationFormat

# ---------- environment defaults ----------
RPC_URL = os.getenv("RESC_RPC_URL", "http://localhost:8545")
RPC_TIMEOUT = float(os.getenv("RESC_RPC_TIMEOUT", "120"))
RPC_MAX_RETRIES = int(os.getenv("RESC_RPC_MAX_RETRIES", "6"))
QUEUE_SIZE = int(os.getenv("RESC_QUEUE_SIZE", "1000"))
HEAD_POLL_INTERVAL = float(os.getenv("RESC_HEAD_POLL_INTERVAL", "0"))

TIMESTAMP_LAYOUT = "%Y-%m-%dT%H:%M:%S"
DEFAULT_LIMIT = 100


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """'2020-06-01T00:00:00' -> aware UTC datetime; empty -> None."""
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_LAYOUT).replace(tzinfo=timezone.utc)


def output_path(epoch: int) -> str:
    return f"resc-{epoch}.csv"


@dataclass(frozen=True)
class ReplayConfig:
    start_block: int = 0
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: int = DEFAULT_LIMIT
    fmt: InstrumentationFormat = InstrumentationFormat.FULL
    rpc_url: str = RPC_URL
    rpc_timeout: float = RPC_TIMEOUT
    rpc_max_retries: int = RPC_MAX_RETRIES
    queue_size: int = QUEUE_SIZE
    head_poll_interval: float = HEAD_POLL_INTERVAL

    def __post_init__(self):
        if self.start_block < 0:
            raise ValueError(f"start block must be >= 0, got {self.start_block}")
        if self.queue_size <= 0:
            raise ValueError(f"queue size must be positive, got {self.queue_size}")
        if self.start and self.end and self.start >= self.end:
            raise ValueError(f"empty time window: {self.start.isoformat()} >= {self.end.isoformat()}")
