from __future__ import annotations

import json
from typing import Any, Dict, List

import httpx
import pytest

from common.telegram import TelegramApiError, TelegramClient, TelegramError


TOKEN = "123:SECRET"
BASE = f"https://api.telegram.org/bot{TOKEN}"


def _client(handler, sleeps: List[float] | None = None) -> TelegramClient:
    http = httpx.Client(transport=httpx.MockTransport(handler), base_url=BASE)
    sink = sleeps if sleeps is not None else []
    return TelegramClient(TOKEN, client=http, sleep=sink.append)


def test_send_message_payload_and_result():
    seen: Dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 9}})

    with _client(handler) as tg:
        out = tg.send_message(5, "hi", disable_web_page_preview=True)

    assert out == {"message_id": 9}
    assert seen["path"].endswith("/sendMessage")
    assert seen["body"] == {"chat_id": 5, "text": "hi", "disable_web_page_preview": True}


def test_send_media_maps_kind_and_truncates_caption():
    seen: Dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})

    tg = _client(handler)
    tg.send_media("5", "image", "https://ipfs/x", caption="c" * 2000)

    assert seen["path"].endswith("/sendPhoto")
    assert seen["body"]["photo"] == "https://ipfs/x"
    assert len(seen["body"]["caption"]) == 1024

    with pytest.raises(ValueError):
        tg.send_media("5", "hologram", "https://ipfs/x")


def test_error_envelope_raises_api_error():
    def handler(request: httpx.Request) -> httpx.Response:  # noqa: ARG001
        return httpx.Response(400, json={"ok": False, "error_code": 400, "description": "Bad Request: chat not found"})

    with pytest.raises(TelegramApiError, match="chat not found"):
        _client(handler).send_message(1, "x")


def test_retries_429_honoring_retry_after():
    calls = {"n": 0}
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:  # noqa: ARG001
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(429, json={"ok": False, "error_code": 429, "parameters": {"retry_after": 3}})
        return httpx.Response(200, json={"ok": True, "result": []})

    out = _client(handler, sleeps).get_updates(offset=10, timeout=0)

    assert out == []
    assert calls["n"] == 2
    assert sleeps == [3.0]


def test_transport_errors_exhaust_retries():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    sleeps: List[float] = []
    with pytest.raises(TelegramError):
        _client(handler, sleeps).get_updates()
    assert len(sleeps) == 5


def test_get_file_path_and_download():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/getFile"):
            return httpx.Response(200, json={"ok": True, "result": {"file_id": "F", "file_path": "photos/a.jpg"}})
        assert request.url.path == f"/file/bot{TOKEN}/photos/a.jpg"
        return httpx.Response(200, content=b"\x89PNG")

    tg = _client(handler)
    path = tg.get_file_path("F")
    assert path == "photos/a.jpg"
    assert tg.download_file(path) == b"\x89PNG"


def test_get_file_without_path_is_an_error():
    def handler(request: httpx.Request) -> httpx.Response:  # noqa: ARG001
        return httpx.Response(200, json={"ok": True, "result": {"file_id": "F"}})

    with pytest.raises(TelegramApiError):
        _client(handler).get_file_path("F")


def test_token_required():
    with pytest.raises(ValueError):
        TelegramClient("")
