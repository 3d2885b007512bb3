from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional, Protocol, Tuple

from cryptography.fernet import InvalidToken

from common.ledger_codec import Credential

from .models import BotState, WalletRecord
from .s3_store import to_fernet


logger = logging.getLogger(__name__)


class NotProvisionedError(LookupError):
    """The user has no usable wallet (never ran /start, or the key can't be decrypted)."""

    def __init__(self, identity: str, reason: str = "no wallet") -> None:
        super().__init__(f"{identity}: {reason}")
        self.identity = identity
        self.reason = reason


class StateBackend(Protocol):
    def read(self) -> Tuple[BotState, Optional[str]]: ...

    def update(self, mutate: Callable[[BotState], None], *, retries: int = 3) -> BotState: ...


class WalletStore:
    """
    identity -> custodial wallet, backed by the encrypted `BotState` object.

    Each private key is Fernet-encrypted on its own before it goes into the
    state, so a decrypted state dump still doesn't expose keys. Lookups hit
    an in-memory copy; `provision` writes through with optimistic locking.
    Safe to call from any worker thread.
    """

    def __init__(
        self,
        backend: StateBackend,
        fernet_key: str | bytes,
        *,
        account_factory: Callable[[], Credential],
    ) -> None:
        self._backend = backend
        self._fernet = to_fernet(fernet_key)
        self._account_factory = account_factory
        self._lock = threading.Lock()
        self._wallets: Dict[str, WalletRecord] = {}

    def load(self) -> BotState:
        state, _etag = self._backend.read()
        with self._lock:
            self._wallets = dict(state.wallets)
        logger.info("Loaded %d wallets", len(state.wallets))
        return state

    def address_of(self, identity: str) -> str:
        with self._lock:
            record = self._wallets.get(identity)
        if record is None:
            raise NotProvisionedError(identity)
        return record.address

    def resolve(self, identity: str) -> Credential:
        """Return the signing credential for `identity` or raise NotProvisionedError."""
        with self._lock:
            record = self._wallets.get(identity)
        if record is None:
            raise NotProvisionedError(identity)
        try:
            secret = self._fernet.decrypt(record.encrypted_key.encode("ascii")).decode("ascii")
        except InvalidToken:
            logger.error("Wallet key for %s failed to decrypt", identity)
            raise NotProvisionedError(identity, "key cannot be decrypted") from None
        return Credential(address=record.address, private_key=secret)

    def provision(self, identity: str) -> Tuple[WalletRecord, bool]:
        """Create a wallet for `identity` unless one exists. Returns (record, created)."""
        with self._lock:
            existing = self._wallets.get(identity)
        if existing is not None:
            return existing, False

        account = self._account_factory()
        record = WalletRecord(
            address=account.address,
            encrypted_key=self._fernet.encrypt(account.private_key.get_secret_value().encode("ascii")).decode("ascii"),
        )

        def _add(state: BotState) -> None:
            state.wallets.setdefault(identity, record)

        state = self._backend.update(_add)
        with self._lock:
            self._wallets = dict(state.wallets)
            stored = self._wallets[identity]
        created = stored.address == record.address
        if created:
            logger.info("Provisioned wallet %s for %s", stored.address, identity)
        return stored, created

    def addresses(self) -> Dict[str, str]:
        """Read-only snapshot identity -> address (a copy; safe to iterate)."""
        with self._lock:
            return {identity: rec.address for identity, rec in self._wallets.items()}


__all__ = ["NotProvisionedError", "WalletStore"]
