from __future__ import annotations

import logging
import time
from typing import BinaryIO, Optional

import httpx


DEFAULT_PIN_URL = "https://api.pinata.cloud/pinning/pinFileToIPFS"

logger = logging.getLogger(__name__)


class UploadError(RuntimeError):
    """Pinning the file failed; the user has to send it again."""


class PinataClient:
    """
    Uploads files to IPFS through Pinata's `pinFileToIPFS` endpoint.

    Returns the bare content hash (no `ipfs://` prefix), which is what the
    registry contract stores. Transport errors and 5xx are retried a few
    times; anything else is an `UploadError`.
    """

    def __init__(
        self,
        api_key: str,
        secret_api_key: str,
        *,
        url: str = DEFAULT_PIN_URL,
        timeout: float = 120.0,
        attempts: int = 3,
        client: Optional[httpx.Client] = None,
        sleep=time.sleep,
    ) -> None:
        if not api_key or not secret_api_key:
            raise ValueError("api_key and secret_api_key are required")
        self._url = url
        self._headers = {
            "pinata_api_key": api_key,
            "pinata_secret_api_key": secret_api_key,
        }
        self._attempts = attempts
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self._sleep = sleep

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "PinataClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def pin_file(self, fh: BinaryIO, filename: str) -> str:
        backoff = 1.0
        last_exc: Optional[Exception] = None
        for attempt in range(1, self._attempts + 1):
            fh.seek(0)
            try:
                resp = self._client.post(self._url, headers=self._headers, files={"file": (filename, fh)})
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
            else:
                if resp.status_code == 200:
                    return self._extract_hash(resp)
                if resp.status_code < 500 and resp.status_code != 429:
                    raise UploadError(f"HTTP {resp.status_code} from Pinata: {resp.text[:200]}")
                last_exc = UploadError(f"HTTP {resp.status_code} from Pinata")
            if attempt < self._attempts:
                logger.warning("Pinata upload attempt %d/%d failed: %s", attempt, self._attempts, last_exc)
                self._sleep(backoff)
                backoff *= 2
        raise UploadError("Failed to upload to IPFS") from last_exc

    @staticmethod
    def _extract_hash(resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError as exc:
            raise UploadError("Pinata returned invalid JSON") from exc
        ipfs_hash = body.get("IpfsHash") if isinstance(body, dict) else None
        if not isinstance(ipfs_hash, str) or not ipfs_hash:
            raise UploadError("Pinata response has no IpfsHash")
        return ipfs_hash


__all__ = ["PinataClient", "UploadError"]
