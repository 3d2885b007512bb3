from __future__ import annotations

import json

import httpx
import pytest

from common.jsonrpc import JsonRpcTransport, RpcError, RpcUnavailable


URL = "https://rpc.example"


def _transport(handler) -> JsonRpcTransport:
    return JsonRpcTransport(URL, client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_call_sends_envelope_and_returns_result():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        bodies.append(body)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": "0x10"})

    rpc = _transport(handler)
    assert rpc.call("eth_getBalance", ["0xabc", "latest"]) == "0x10"
    rpc.call("eth_gasPrice")

    assert bodies[0] == {"jsonrpc": "2.0", "id": 1, "method": "eth_getBalance", "params": ["0xabc", "latest"]}
    assert bodies[1]["id"] == 2
    assert bodies[1]["params"] == []


def test_error_payload_raises_rpc_error():
    def handler(request: httpx.Request) -> httpx.Response:  # noqa: ARG001
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": 1, "error": {"code": 3, "message": "execution reverted: Asset not found"}},
        )

    with pytest.raises(RpcError) as ei:
        _transport(handler).call("eth_call", [])
    assert ei.value.code == 3
    assert "Asset not found" in str(ei.value)


@pytest.mark.parametrize("status", [429, 502, 503])
def test_transient_status_is_unavailable(status: int):
    def handler(request: httpx.Request) -> httpx.Response:  # noqa: ARG001
        return httpx.Response(status)

    with pytest.raises(RpcUnavailable):
        _transport(handler).call("eth_blockNumber")


def test_invalid_json_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:  # noqa: ARG001
        return httpx.Response(200, text="<html>")

    with pytest.raises(RpcUnavailable):
        _transport(handler).call("eth_blockNumber")


def test_other_http_status_is_rpc_error():
    def handler(request: httpx.Request) -> httpx.Response:  # noqa: ARG001
        return httpx.Response(403, text="forbidden")

    with pytest.raises(RpcError, match="403"):
        _transport(handler).call("eth_blockNumber")
