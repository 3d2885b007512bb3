from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .ledger_codec import Credential
from .retry_rpc import FailureKind, LedgerError, Receipt, RetryRpcClient


class AssetType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"


class License(BaseModel):
    price_wei: int = Field(..., ge=0)
    is_commercial: bool
    royalty_percent: int = Field(..., ge=0, le=100)


class AssetRecord(BaseModel):
    asset_id: int
    owner: str
    content_hash: str
    asset_type: str
    registered_at: datetime
    license: Optional[License] = None

    def owned_by(self, address: str) -> bool:
        return self.owner.lower() == (address or "").lower()


class Registration(BaseModel):
    """One AssetRegistered log."""

    asset_id: int
    owner: str
    content_hash: str
    asset_type: str
    block_number: int


def _ts(value: int) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class AssetRegistry:
    """
    Typed view of the IPRegistry contract on top of `RetryRpcClient`.

    Reads return pydantic records; writes return the confirmed `Receipt`.
    All failures are `LedgerError`.
    """

    def __init__(self, rpc: RetryRpcClient) -> None:
        self._rpc = rpc

    # --------------- Reads ---------------
    def get_asset(self, asset_id: int) -> AssetRecord:
        (asset,) = self._rpc.read("getAsset", asset_id)
        content_hash, owner, asset_type, timestamp = asset
        if not content_hash or int(owner, 16) == 0:
            raise LedgerError(FailureKind.NOT_FOUND, f"Asset {asset_id} not found")
        return AssetRecord(
            asset_id=asset_id,
            owner=owner,
            content_hash=content_hash,
            asset_type=asset_type,
            registered_at=_ts(timestamp),
        )

    def find_by_hash(self, content_hash: str) -> Optional[AssetRecord]:
        """Look an asset up by content hash; None when the hash is not registered."""
        try:
            exists, asset_id, owner, timestamp, asset_type = self._rpc.read("verifyAsset", content_hash)
        except LedgerError as exc:
            if exc.kind is FailureKind.NOT_FOUND:
                return None
            raise
        if not exists:
            return None
        return AssetRecord(
            asset_id=int(asset_id),
            owner=owner,
            content_hash=content_hash,
            asset_type=asset_type,
            registered_at=_ts(timestamp),
        )

    def get_license(self, asset_id: int) -> Optional[License]:
        """Current license terms, or None when none were ever set."""
        try:
            price, commercial, royalty = self._rpc.read("getLicense", asset_id)
        except LedgerError as exc:
            if exc.kind is FailureKind.NOT_FOUND:
                return None
            raise
        if price == 0 and not commercial and royalty == 0:
            return None
        return License(price_wei=int(price), is_commercial=bool(commercial), royalty_percent=int(royalty))

    def assets_of(self, owner: str) -> List[int]:
        (ids,) = self._rpc.read("getAssetsByOwner", owner)
        return [int(i) for i in ids]

    def balance_of(self, address: str) -> int:
        return self._rpc.get_balance(address)

    def latest_block(self) -> int:
        return self._rpc.block_number()

    def registrations(self, from_block: int, to_block: int) -> List[Registration]:
        out: List[Registration] = []
        for block, (asset_id, owner, content_hash, asset_type, _ts_value) in self._rpc.logs(
            "AssetRegistered", from_block, to_block
        ):
            out.append(
                Registration(
                    asset_id=int(asset_id),
                    owner=owner,
                    content_hash=content_hash,
                    asset_type=asset_type,
                    block_number=block,
                )
            )
        return out

    # --------------- Writes ---------------
    def register(self, credential: Credential, content_hash: str, asset_type: AssetType) -> Receipt:
        return self._rpc.write(credential, "registerAsset", content_hash, AssetType(asset_type).value)

    def set_license(self, credential: Credential, asset_id: int, terms: License) -> Receipt:
        return self._rpc.write(
            credential, "setLicense", asset_id, terms.price_wei, terms.is_commercial, terms.royalty_percent
        )

    def transfer(self, credential: Credential, asset_id: int, recipient: str) -> Receipt:
        return self._rpc.write(credential, "transferAsset", asset_id, recipient)

    def fund(self, credential: Credential, address: str, amount_wei: int) -> Receipt:
        return self._rpc.send_value(credential, address, amount_wei)


__all__ = ["AssetRecord", "AssetRegistry", "AssetType", "License", "Registration"]
