from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WalletRecord(BaseModel):
    """
    One user's custodial wallet.

    - address: checksummed 0x address, safe to show to the user.
    - encrypted_key: Fernet token of the hex private key. Only
      `state.wallets.WalletStore.resolve` ever decrypts it.
    """

    address: str
    encrypted_key: str
    created_at: datetime = Field(default_factory=_utcnow)


class BotState(BaseModel):
    """
    Durable bot state, serialized to JSON and encrypted at rest.

    Fields
    - wallets: user identity (Telegram user id as str) -> WalletRecord.
    - last_update_id: last Telegram update_id handed to the dispatcher, for
      offset-based polling across restarts.

    Conversation sessions are intentionally not part of it; they live in
    `state.sessions.SessionStore` and die with the process.
    """

    wallets: Dict[str, WalletRecord] = Field(default_factory=dict)
    last_update_id: Optional[int] = Field(
        default=None,
        description="Last processed Telegram update_id (None if never polled)",
    )

    @classmethod
    def empty(cls) -> "BotState":
        return cls()
