from __future__ import annotations

import logging
import signal
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from common.config import Settings, load_settings
from common.jsonrpc import JsonRpcTransport
from common.ledger_codec import EthereumCodec
from common.logging_setup import setup_logging
from common.pinning import PinataClient
from common.registry import AssetRegistry, AssetType
from common.retry_rpc import RetryRpcClient
from common.telegram import TelegramClient, TelegramError
from common.whitelist import Allowed, is_chat_allowed, parse_allowed_chat_ids
from poller.dispatcher import UserSerialDispatcher
from poller.transport import TelegramTransport
from state.models import BotState
from state.s3_store import S3StateStore
from state.sessions import SessionStore
from state.wallets import WalletStore
from watcher.handler import LedgerWatcher
from workflows.base import Faucet, Links
from workflows.engine import WorkflowEngine
from workflows.messages import Attachment, InboundMessage


logger = logging.getLogger(__name__)

ALLOWED_UPDATES = ["message"]


class OffsetStore(Protocol):
    def read(self): ...

    def update(self, mutate, *, retries: int = 3) -> BotState: ...


def _attachment(msg: Dict[str, Any]) -> Optional[Attachment]:
    photos = msg.get("photo")
    if isinstance(photos, list) and photos:
        # Sizes come smallest first
        best = photos[-1]
        return Attachment(
            file_id=best["file_id"],
            kind=AssetType.IMAGE,
            file_name=f"photo_{best.get('file_unique_id', best['file_id'])}.jpg",
        )
    for key, kind in (
        ("video", AssetType.VIDEO),
        ("audio", AssetType.AUDIO),
        ("voice", AssetType.AUDIO),
        ("document", AssetType.DOCUMENT),
    ):
        media = msg.get(key)
        if isinstance(media, dict) and media.get("file_id"):
            return Attachment(file_id=media["file_id"], kind=kind, file_name=media.get("file_name"))
    return None


def parse_update(update: Dict[str, Any]) -> Optional[InboundMessage]:
    """Turn a Telegram Update into an InboundMessage; None for anything we don't handle."""
    msg = update.get("message") if isinstance(update, dict) else None
    if not isinstance(msg, dict):
        return None
    chat = msg.get("chat") if isinstance(msg.get("chat"), dict) else None
    sender = msg.get("from") if isinstance(msg.get("from"), dict) else None
    if chat is None or chat.get("id") is None:
        return None
    user_id = sender.get("id") if sender is not None else chat.get("id")
    text = msg.get("text") if isinstance(msg.get("text"), str) else msg.get("caption")
    attachment = _attachment(msg)
    if not isinstance(text, str) and attachment is None:
        return None
    return InboundMessage(
        user_id=str(user_id),
        chat_id=str(chat["id"]),
        text=text if isinstance(text, str) else "",
        attachment=attachment,
        update_id=update.get("update_id"),
    )


def _max_update_id(updates: List[Dict[str, Any]]) -> Optional[int]:
    max_id: Optional[int] = None
    for upd in updates:
        uid = upd.get("update_id") if isinstance(upd, dict) else None
        if isinstance(uid, int):
            max_id = uid if max_id is None else max(max_id, uid)
    return max_id


class BotRunner:
    """
    Long-polls getUpdates and hands each message to the dispatcher.

    The offset (`last_update_id + 1`) is persisted in `BotState` after each
    batch is dispatched, so a restart resumes after the last update seen.
    Chats outside the allow-list are skipped.
    """

    def __init__(
        self,
        *,
        telegram: TelegramClient,
        dispatcher: UserSerialDispatcher,
        store: OffsetStore,
        allowed: Optional[Allowed] = None,
        poll_timeout: int = 30,
        limit: int = 100,
    ) -> None:
        self._tg = telegram
        self._dispatcher = dispatcher
        self._store = store
        self._allowed = allowed or set()
        self._poll_timeout = poll_timeout
        self._limit = limit
        self._last_update_id: Optional[int] = None

    @property
    def last_update_id(self) -> Optional[int]:
        return self._last_update_id

    def load_offset(self) -> Optional[int]:
        state, _etag = self._store.read()
        self._last_update_id = state.last_update_id
        return self._last_update_id

    def _next_offset(self) -> Optional[int]:
        return self._last_update_id + 1 if self._last_update_id is not None else None

    def run_once(self) -> Dict[str, Any]:
        """
        One getUpdates round trip.

        Returns: {"ok": True, "received": N, "dispatched": M, "new_last_update_id": int|None}.
        """
        updates = self._tg.get_updates(
            offset=self._next_offset(),
            limit=self._limit,
            timeout=self._poll_timeout,
            allowed_updates=ALLOWED_UPDATES,
        )
        dispatched = 0
        for upd in updates:
            msg = upd.get("message") if isinstance(upd, dict) else None
            chat = msg.get("chat") if isinstance(msg, dict) and isinstance(msg.get("chat"), dict) else None
            if chat is not None and not is_chat_allowed(chat, self._allowed):
                logger.info("Skipping update %s from chat %s (not allowed)", upd.get("update_id"), chat.get("id"))
                continue
            inbound = parse_update(upd)
            if inbound is None:
                continue
            self._dispatcher.submit(inbound.user_id, inbound)
            dispatched += 1

        new_last = _max_update_id(updates)
        if new_last is not None and (self._last_update_id is None or new_last > self._last_update_id):
            self._last_update_id = new_last
            self._persist_offset(new_last)
        return {
            "ok": True,
            "received": len(updates),
            "dispatched": dispatched,
            "new_last_update_id": self._last_update_id,
        }

    def _persist_offset(self, update_id: int) -> None:
        def _set(state: BotState) -> None:
            if state.last_update_id is None or update_id > state.last_update_id:
                state.last_update_id = update_id

        self._store.update(_set)

    def run_forever(self, stop: threading.Event, *, error_backoff: float = 5.0) -> None:
        logger.info("Polling for updates (offset=%s)", self._next_offset())
        while not stop.is_set():
            try:
                self.run_once()
            except TelegramError as exc:
                logger.warning("getUpdates failed: %s", exc)
                stop.wait(error_backoff)
            except Exception:
                logger.exception("Poll cycle failed")
                stop.wait(error_backoff)


@dataclass
class App:
    settings: Settings
    telegram: TelegramClient
    store: S3StateStore
    wallets: WalletStore
    registry: AssetRegistry
    sessions: SessionStore
    engine: WorkflowEngine
    dispatcher: UserSerialDispatcher
    runner: BotRunner
    watcher: LedgerWatcher


def build_app(settings: Settings) -> App:
    """Wire the long-running bot from settings. Nothing is started yet."""
    fernet_key = settings.fernet_key.get_secret_value()
    store = S3StateStore(bucket=settings.state_bucket, key=settings.state_key, fernet_key=fernet_key)
    codec = EthereumCodec()
    wallets = WalletStore(store, fernet_key, account_factory=codec.create_account)

    rpc = RetryRpcClient(
        JsonRpcTransport(settings.rpc_url),
        codec,
        settings.contract_address,
        chain_id=settings.chain_id,
        attempts=settings.rpc_attempts,
        backoff=settings.rpc_backoff_seconds,
        poll_interval=settings.poll_interval_seconds,
        poll_attempts=settings.poll_attempts,
    )
    registry = AssetRegistry(rpc)

    faucet: Optional[Faucet] = None
    if settings.faucet_private_key is not None:
        faucet = Faucet(
            registry=registry,
            credential=codec.load_account(settings.faucet_private_key.get_secret_value()),
            amount_wei=settings.faucet_amount_wei,
        )
        logger.info("Faucet enabled from %s", faucet.credential.address)

    telegram = TelegramClient(settings.telegram_bot_token.get_secret_value())
    transport = TelegramTransport(telegram)
    uploader = PinataClient(
        settings.pinata_api_key.get_secret_value(),
        settings.pinata_secret_api_key.get_secret_value(),
    )
    # A write polls its receipt for poll_attempts * poll_interval; the margin covers
    # the nonce, gas and read-back calls around it
    sessions = SessionStore(
        ttl_seconds=settings.session_ttl_seconds,
        submit_ttl_seconds=settings.poll_attempts * settings.poll_interval_seconds + 300.0,
    )
    engine = WorkflowEngine(
        sessions=sessions,
        registry=registry,
        wallets=wallets,
        uploader=uploader,
        transport=transport,
        links=Links(explorer_base=settings.explorer_base, ipfs_gateway=settings.ipfs_gateway),
        faucet=faucet,
        min_gas_balance_wei=settings.min_gas_balance_wei,
    )
    dispatcher = UserSerialDispatcher(engine.handle, workers=settings.workers)
    runner = BotRunner(
        telegram=telegram,
        dispatcher=dispatcher,
        store=store,
        allowed=parse_allowed_chat_ids(settings.allowed_chat_ids),
    )
    watcher = LedgerWatcher(wallets, registry, transport)
    return App(
        settings=settings,
        telegram=telegram,
        store=store,
        wallets=wallets,
        registry=registry,
        sessions=sessions,
        engine=engine,
        dispatcher=dispatcher,
        runner=runner,
        watcher=watcher,
    )


def _sweep_sessions(sessions: SessionStore, stop: threading.Event, interval: float) -> None:
    while not stop.wait(interval):
        dropped = sessions.sweep()
        if dropped:
            logger.info("Swept %d idle sessions", dropped)


def main() -> int:
    """Console entry point: `assetbot`. Runs until SIGINT/SIGTERM."""
    settings = load_settings()
    setup_logging(settings.log_level)
    app = build_app(settings)
    app.wallets.load()
    app.runner.load_offset()

    stop = threading.Event()

    def _stop(signum, _frame) -> None:
        logger.info("Signal %d received, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    background = [
        threading.Thread(
            target=app.watcher.run_forever,
            args=(stop, settings.watch_interval_seconds),
            name="ledger-watcher",
            daemon=True,
        ),
        threading.Thread(
            target=_sweep_sessions,
            args=(app.sessions, stop, 60.0),
            name="session-sweeper",
            daemon=True,
        ),
    ]
    for thread in background:
        thread.start()

    started = time.monotonic()
    try:
        app.runner.run_forever(stop)
    finally:
        app.dispatcher.shutdown(wait=True)
        app.telegram.close()
        logger.info("Stopped after %.0fs", time.monotonic() - started)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
