from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple
from uuid import uuid4

import boto3
from botocore.exceptions import ClientError
from cryptography.fernet import Fernet, InvalidToken

from .models import BotState


logger = logging.getLogger(__name__)


def to_fernet(key: str | bytes) -> Fernet:
    """Build a Fernet from a urlsafe base64 32-byte key (str or bytes)."""
    return Fernet(key.encode("utf-8") if isinstance(key, str) else key)


def _dump_state_json(state: BotState) -> bytes:
    # Deterministic JSON: stable key order, no extra whitespace
    return json.dumps(state.model_dump(mode="json"), separators=(",", ":"), sort_keys=True).encode("utf-8")


def _load_state_json(data: bytes) -> BotState:
    return BotState.model_validate(json.loads(data.decode("utf-8")))


class OptimisticLockError(Exception):
    """Raised when an ETag precondition fails during a conditional write."""


@dataclass
class S3ObjectRef:
    bucket: str
    key: str


class S3StateStore:
    """
    S3-backed persistence for `BotState`, Fernet-encrypted at rest.

    - `read()` returns `(state, etag)`; a missing object reads as
      `(BotState.empty(), None)`.
    - `write(state, if_match=None)` stores the encrypted bytes and returns the
      new ETag. With `if_match`, the write goes through a temp object and a
      conditional copy so it only lands if the current ETag still matches.
    - `update(mutate)` is read-modify-write with a bounded retry on
      `OptimisticLockError`, for the wallet store and the poll offset which
      both write the same object.
    """

    def __init__(
        self,
        *,
        s3: Optional[object] = None,
        bucket: str,
        key: str,
        fernet_key: str | bytes,
        region_name: Optional[str] = None,
    ) -> None:
        self._s3 = s3 or boto3.client("s3", region_name=region_name)
        self._obj = S3ObjectRef(bucket=bucket, key=key)
        self._fernet = to_fernet(fernet_key)

    def read(self) -> Tuple[BotState, Optional[str]]:
        """Read and decrypt the state.

        Raises ValueError on a bad Fernet token or invalid JSON, ClientError
        for other S3 failures.
        """
        try:
            resp = self._s3.get_object(Bucket=self._obj.bucket, Key=self._obj.key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                return (BotState.empty(), None)
            raise

        body = resp["Body"].read()
        etag = resp.get("ETag")
        try:
            decrypted = self._fernet.decrypt(body)
        except InvalidToken as ex:
            raise ValueError("Failed to decrypt state: invalid Fernet token") from ex

        try:
            state = _load_state_json(decrypted)
        except Exception as ex:
            raise ValueError("Failed to parse decrypted state JSON") from ex

        return (state, etag)

    def write(self, state: BotState, *, if_match: Optional[str] = None) -> str:
        ciphertext = self._fernet.encrypt(_dump_state_json(state))

        if if_match is None:
            resp = self._s3.put_object(
                Bucket=self._obj.bucket,
                Key=self._obj.key,
                Body=ciphertext,
                ContentType="application/octet-stream",
            )
            return str(resp.get("ETag"))

        # PutObject has no If-Match; stage to a temp key, then copy over the
        # destination with the ETag precondition.
        temp_key = f"{self._obj.key}.tmp-{uuid4().hex}"
        self._s3.put_object(
            Bucket=self._obj.bucket,
            Key=temp_key,
            Body=ciphertext,
            ContentType="application/octet-stream",
        )
        try:
            resp = self._s3.copy_object(
                Bucket=self._obj.bucket,
                Key=self._obj.key,
                CopySource={"Bucket": self._obj.bucket, "Key": temp_key},
                IfMatch=if_match,
                MetadataDirective="COPY",
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("PreconditionFailed", "412"):
                raise OptimisticLockError(
                    f"ETag mismatch for s3://{self._obj.bucket}/{self._obj.key}"
                ) from e
            raise
        finally:
            try:
                self._s3.delete_object(Bucket=self._obj.bucket, Key=temp_key)
            except ClientError:
                logger.warning("Could not delete temp state object %s", temp_key)

        return str(resp.get("ETag"))

    def update(self, mutate: Callable[[BotState], None], *, retries: int = 3) -> BotState:
        """Apply `mutate` to the freshest state and write it back; returns the written state."""
        attempt = 0
        while True:
            attempt += 1
            state, etag = self.read()
            mutate(state)
            try:
                self.write(state, if_match=etag)
                return state
            except OptimisticLockError:
                if attempt >= retries:
                    raise
                logger.info("State changed concurrently; retrying update (%d/%d)", attempt, retries)


__all__ = ["OptimisticLockError", "S3StateStore", "to_fernet"]
