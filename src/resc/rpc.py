"""
JSON-RPC access to the node.

Only three calls are needed: eth_getBlockByNumber (full transactions),
eth_chainId and eth_call. Transport trouble (HTTP 429, connection errors,
rate-limit style RPC errors) is retried with exponential backoff; anything
the node reports as a JSON-RPC error object is raised straight away.
"""

import logging
import threading
import time
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from eth_utils import to_bytes

from resc import config

logger = logging.getLogger(__name__)

RETRYABLE_MESSAGES = ("rate limit", "too many", "capacity", "timeout")


class RpcError(RuntimeError):
    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


class RpcTransportError(RpcError):
    pass


class BlockNotFound(RpcError):
    def __init__(self, height: int):
        super().__init__(f"block {height} not found")
        self.height = height


def to_block_hex(n: int) -> str:
    return hex(int(n))


class NodeClient:
    def __init__(
        self,
        url: str = config.RPC_URL,
        timeout: float = config.RPC_TIMEOUT,
        max_retries: int = config.RPC_MAX_RETRIES,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.max_retries = max(1, int(max_retries))
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_connections=4, pool_maxsize=4)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session
        self._lock = threading.Lock()
        self._next_id = 0

    def _request_id(self) -> int:
        with self._lock:
            self._next_id += 1
            return self._next_id

    def request(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": self._request_id(), "method": method, "params": params}
        backoff = 0.5
        last_error = "no attempt made"
        for attempt in range(1, self.max_retries + 1):
            if attempt > 1:
                time.sleep(backoff)
                backoff = min(backoff * 2, 8.0)
            try:
                r = self.session.post(self.url, json=payload, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.debug("%s attempt %d failed: %s", method, attempt, last_error)
                continue
            if r.status_code == 429:
                ra = r.headers.get("Retry-After")
                if ra and ra.isdigit():
                    backoff = float(ra)
                last_error = "HTTP 429"
                continue
            try:
                r.raise_for_status()
                resp = r.json()
            except (requests.exceptions.RequestException, ValueError) as e:
                last_error = f"{type(e).__name__}: {e}"
                continue
            error = resp.get("error")
            if error:
                if not isinstance(error, dict):
                    error = {"message": str(error)}
                msg = str(error.get("message", ""))
                # "execution aborted (timeout = 5s)" and reverts are deterministic
                if not msg.lower().startswith("execution") and any(x in msg.lower() for x in RETRYABLE_MESSAGES):
                    last_error = msg
                    continue
                raise RpcError(msg, code=error.get("code"), data=error.get("data"))
            return resp.get("result")
        raise RpcTransportError(f"{method} failed after {self.max_retries} attempts: {last_error}")

    # ---------- node interface ----------
    def get_block_by_number(self, height: int) -> Dict[str, Any]:
        block = self.request("eth_getBlockByNumber", [to_block_hex(height), True])
        if block is None:
            raise BlockNotFound(height)
        return block

    def chain_id(self) -> int:
        result = self.request("eth_chainId", [])
        if not isinstance(result, str) or not result.startswith("0x"):
            raise RpcError(f"bad eth_chainId result: {result!r}")
        try:
            return int(result, 16)
        except ValueError:
            raise RpcError(f"bad eth_chainId result: {result!r}") from None

    def call(self, request: Dict[str, Any], block_number: int) -> bytes:
        """eth_call at a historical height; returns the raw result bytes."""
        result = self.request("eth_call", [request, to_block_hex(block_number)])
        return to_bytes(hexstr=result or "0x")
