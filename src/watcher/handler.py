from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from common.registry import Registration
from common.retry_rpc import LedgerError
from workflows.messages import OutboundMessage, Transport
from workflows.validation import format_ip


logger = logging.getLogger(__name__)


class AddressBook(Protocol):
    def addresses(self) -> Mapping[str, str]: ...


class LedgerView(Protocol):
    def balance_of(self, address: str) -> int: ...

    def latest_block(self) -> int: ...

    def registrations(self, from_block: int, to_block: int) -> List[Registration]: ...


class LedgerWatcher:
    """
    Tells users about ledger activity on their wallets.

    Each cycle reads a snapshot of identity -> address from the wallet store,
    so wallets created by /start are picked up on the next pass, then:

    - Balances: the first balance seen for a wallet is only a baseline;
      later changes send "funds received" / "funds spent".
    - Registrations: AssetRegistered logs since the last block seen are
      matched to owners. The first cycle only records the current block, so
      history is never replayed. A failed read leaves the cursor where it
      was and the range is retried next cycle.

    Never touches sessions.
    """

    def __init__(
        self,
        wallets: AddressBook,
        ledger: LedgerView,
        transport: Transport,
        *,
        max_block_span: int = 2000,
    ) -> None:
        self._wallets = wallets
        self._ledger = ledger
        self._transport = transport
        self._max_block_span = max_block_span
        self._last: Dict[str, int] = {}
        self._cursor: Optional[int] = None

    @property
    def cursor(self) -> Optional[int]:
        return self._cursor

    def run_once(self) -> Dict[str, Any]:
        book = dict(self._wallets.addresses())
        checked, notified = self._balances(book)
        events = self._registrations(book)
        return {"ok": True, "checked": checked, "notified": notified, "events": events}

    def _balances(self, book: Mapping[str, str]) -> Tuple[int, int]:
        checked = notified = 0
        for identity, address in book.items():
            try:
                balance = self._ledger.balance_of(address)
            except LedgerError as exc:
                logger.warning("Balance read for %s failed: %s", address, exc.detail)
                continue
            checked += 1
            previous = self._last.get(identity)
            self._last[identity] = balance
            text = _delta_text(previous, balance)
            if text is not None:
                self._transport.send(identity, OutboundMessage(text=text))
                notified += 1
        return checked, notified

    def _registrations(self, book: Mapping[str, str]) -> int:
        try:
            latest = self._ledger.latest_block()
        except LedgerError as exc:
            logger.warning("Block number read failed: %s", exc.detail)
            return 0
        if self._cursor is None:
            self._cursor = latest
            logger.info("Watching registrations from block %d", latest)
            return 0
        if latest <= self._cursor:
            return 0

        to_block = min(latest, self._cursor + self._max_block_span)
        try:
            found = self._ledger.registrations(self._cursor + 1, to_block)
        except LedgerError as exc:
            logger.warning("Log read for blocks %d-%d failed: %s", self._cursor + 1, to_block, exc.detail)
            return 0
        self._cursor = to_block

        owners = {address.lower(): identity for identity, address in book.items()}
        sent = 0
        for event in found:
            identity = owners.get(event.owner.lower())
            if identity is None:
                continue
            self._transport.send(identity, OutboundMessage(text=_registered_text(event)))
            sent += 1
        return sent

    def run_forever(self, stop: threading.Event, interval: float) -> None:
        logger.info("Ledger watcher started (every %.0fs)", interval)
        while not stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Ledger watch cycle failed")
            stop.wait(interval)


def _delta_text(previous: Optional[int], balance: int) -> Optional[str]:
    if previous is None or previous == balance:
        return None
    if balance > previous:
        return (
            "💰 Funds received!\n\n"
            f"➕ {format_ip(balance - previous)} IP\n"
            f"💎 New balance: {format_ip(balance)} IP"
        )
    return (
        "💸 Funds spent\n\n"
        f"➖ {format_ip(previous - balance)} IP\n"
        f"💎 New balance: {format_ip(balance)} IP"
    )


def _registered_text(event: Registration) -> str:
    return (
        "🎉 Asset Registered!\n\n"
        f"🆔 Asset ID: {event.asset_id}\n"
        f"📦 Type: {event.asset_type}\n\n"
        "✅ Your work is now protected on-chain!"
    )


__all__ = ["LedgerWatcher"]
