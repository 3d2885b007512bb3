from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Union

import httpx

from .limits import SlidingWindowRateLimiter, RateLimitError


DEFAULT_API_BASE = "https://api.telegram.org"

logger = logging.getLogger(__name__)

ChatId = Union[int, str]

# Telegram method and payload field per media kind
_MEDIA_METHODS = {
    "image": ("sendPhoto", "photo"),
    "video": ("sendVideo", "video"),
    "audio": ("sendAudio", "audio"),
    "document": ("sendDocument", "document"),
}


class TelegramError(RuntimeError):
    """Base error for Telegram client."""


class TelegramApiError(TelegramError):
    """API returned an error payload or unexpected structure."""


class TelegramRateLimitError(TelegramError):
    """Local or remote rate limiting prevented the request."""


class TelegramClient:
    """
    Small Telegram Bot API client for a long-polling chat bot.

    Notes
    - JSON request bodies for every method (media are sent by URL, never uploaded).
    - Retries transient HTTP errors and 429 with backoff, honoring `retry_after`.
    - Local QPS limiter (default 25 req/sec) shared by all worker threads.
    - `get_updates` uses a per-call read timeout longer than the long-poll wait.
    """

    def __init__(
        self,
        token: str,
        *,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 15.0,
        max_per_second: int = 25,
        client: Optional[httpx.Client] = None,
        sleep=time.sleep,
    ) -> None:
        if not token:
            raise ValueError("token is required")
        self._token = token
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._owns_client = client is None
        base_url = f"{self._api_base}/bot{self._token}"
        self._client = client or httpx.Client(base_url=base_url, timeout=self._timeout)
        self._limiter = SlidingWindowRateLimiter(max_calls=max_per_second, per_seconds=1.0)
        self._sleep = sleep

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "TelegramClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Public API ---------------
    def send_message(
        self,
        chat_id: ChatId,
        text: str,
        *,
        disable_web_page_preview: Optional[bool] = None,
        reply_to_message_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Send a plain-text message; returns the Message object."""
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if disable_web_page_preview is not None:
            payload["disable_web_page_preview"] = disable_web_page_preview
        if reply_to_message_id is not None:
            payload["reply_to_message_id"] = reply_to_message_id
        return self._call("sendMessage", payload)

    def send_media(self, chat_id: ChatId, kind: str, url: str, *, caption: Optional[str] = None) -> Dict[str, Any]:
        """Send a photo/video/audio/document by URL with an optional caption."""
        try:
            method, field = _MEDIA_METHODS[kind]
        except KeyError:
            raise ValueError(f"unsupported media kind: {kind}") from None
        payload: Dict[str, Any] = {"chat_id": chat_id, field: url}
        if caption:
            # Captions are capped at 1024 chars by the Bot API
            payload["caption"] = caption[:1024]
        return self._call(method, payload)

    def get_updates(
        self,
        *,
        offset: Optional[int] = None,
        limit: int = 100,
        timeout: int = 0,
        allowed_updates: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        """Long-poll `getUpdates`; returns the list of Update objects."""
        payload: Dict[str, Any] = {"limit": limit, "timeout": timeout}
        if offset is not None:
            payload["offset"] = offset
        if allowed_updates is not None:
            payload["allowed_updates"] = allowed_updates
        result = self._call("getUpdates", payload, read_timeout=self._timeout + timeout)
        if not isinstance(result, list):
            raise TelegramApiError("getUpdates returned a non-list result")
        return result

    def get_file_path(self, file_id: str) -> str:
        result = self._call("getFile", {"file_id": file_id})
        path = result.get("file_path") if isinstance(result, dict) else None
        if not isinstance(path, str) or not path:
            raise TelegramApiError(f"getFile returned no file_path for {file_id}")
        return path

    def download_file(self, file_path: str) -> bytes:
        """Download a file previously resolved with `get_file_path`."""
        url = f"{self._api_base}/file/bot{self._token}/{file_path.lstrip('/')}"
        try:
            resp = self._client.get(url)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise TelegramError("File download failed") from exc
        if resp.status_code != 200:
            raise TelegramApiError(f"HTTP {resp.status_code} downloading file")
        return resp.content

    # --------------- Internal ---------------
    def _call(self, method: str, payload: Dict[str, Any], *, read_timeout: Optional[float] = None) -> Any:
        data = self._request(method, payload, read_timeout=read_timeout)
        # Expect Telegram's envelope: { ok: bool, result?: ..., description?: str }
        if not isinstance(data, dict) or "ok" not in data:
            raise TelegramApiError("Malformed response from Telegram Bot API")
        if data.get("ok") is True and "result" in data:
            return data["result"]
        desc = data.get("description") or "Telegram API error"
        code = data.get("error_code")
        raise TelegramApiError(f"{desc} (code={code})")

    def _request(self, method: str, json_body: Dict[str, Any], *, read_timeout: Optional[float] = None) -> Dict[str, Any]:
        try:
            self._limiter.acquire(blocking=True)
        except RateLimitError as rl:
            raise TelegramRateLimitError("Local rate limiter prevented request") from rl

        kwargs: Dict[str, Any] = {"json": json_body}
        if read_timeout is not None:
            kwargs["timeout"] = read_timeout

        attempt = 0
        backoff = 0.5
        last_exc: Optional[Exception] = None
        while attempt < 5:
            try:
                resp = self._client.post(f"/{method}", **kwargs)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
            else:
                if resp.status_code == 200:
                    try:
                        return resp.json()
                    except ValueError as exc:
                        raise TelegramApiError("Failed to parse JSON from Telegram API") from exc

                if resp.status_code in (429, 500, 502, 503, 504):
                    retry_after = _retry_after(resp)
                    delay = retry_after if retry_after is not None else backoff
                    logger.warning("Telegram %s returned HTTP %s; retrying in %.1fs", method, resp.status_code, delay)
                    self._sleep(min(delay, 10.0))
                    backoff = min(backoff * 2, 8.0)
                    attempt += 1
                    continue

                # 400/403 bodies still carry the JSON envelope with a description
                try:
                    return resp.json()
                except ValueError:
                    raise TelegramApiError(
                        f"HTTP {resp.status_code} from Telegram: {resp.text[:200]}"
                    ) from None

            attempt += 1
            self._sleep(backoff)
            backoff = min(backoff * 2, 8.0)

        if last_exc is not None:
            raise TelegramError(f"{method} failed after retries") from last_exc
        raise TelegramError(f"{method} failed after retries (unknown error)")


def _retry_after(resp: httpx.Response) -> Optional[float]:
    # Telegram 429: { ok:false, error_code:429, parameters: { retry_after: N } }
    try:
        body = resp.json()
    except ValueError:
        return None
    params = body.get("parameters") if isinstance(body, dict) else None
    if isinstance(params, dict):
        ra = params.get("retry_after")
        if isinstance(ra, (int, float)):
            return float(ra)
    return None


__all__ = [
    "TelegramClient",
    "TelegramError",
    "TelegramApiError",
    "TelegramRateLimitError",
]
