from __future__ import annotations

import itertools
import threading
from typing import Any, Dict, List, Optional

import httpx


class RpcError(RuntimeError):
    """The node answered with a JSON-RPC error object (revert, bad params, ...).

    Not transient: retrying the same request gives the same answer.
    """

    def __init__(self, message: str, *, code: Optional[int] = None, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


class RpcUnavailable(RuntimeError):
    """HTTP-level failure from the node (429/5xx or malformed envelope); transient."""


class JsonRpcTransport:
    """
    JSON-RPC 2.0 over HTTP POST, one request per call.

    Single attempt only; retry policy lives in `RetryRpcClient`. Network
    failures surface as httpx exceptions, transient HTTP statuses as
    `RpcUnavailable`, error payloads as `RpcError`.
    """

    def __init__(self, url: str, *, timeout: float = 30.0, client: Optional[httpx.Client] = None) -> None:
        if not url:
            raise ValueError("url is required")
        self._url = url
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, headers={"Content-Type": "application/json"})
        self._ids = itertools.count(1)
        self._ids_lock = threading.Lock()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "JsonRpcTransport":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        with self._ids_lock:
            request_id = next(self._ids)
        body: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or []}
        resp = self._client.post(self._url, json=body)
        if resp.status_code in (429, 500, 502, 503, 504):
            raise RpcUnavailable(f"HTTP {resp.status_code} from RPC node")
        if resp.status_code != 200:
            raise RpcError(f"HTTP {resp.status_code} from RPC node: {resp.text[:200]}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise RpcUnavailable("RPC node returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise RpcUnavailable("RPC node returned a non-object envelope")
        error = payload.get("error")
        if error:
            if isinstance(error, dict):
                raise RpcError(str(error.get("message") or "RPC error"), code=error.get("code"), data=error.get("data"))
            raise RpcError(str(error))
        return payload.get("result")


__all__ = ["JsonRpcTransport", "RpcError", "RpcUnavailable"]
