from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from common.config import load_settings
from common.registry import AssetType
from common.telegram import TelegramError
from state.models import BotState


def _mk_update(update_id: int, chat_id: int, text: Optional[str] = "hi", **extra: Any) -> Dict[str, Any]:
    msg: Dict[str, Any] = {
        "message_id": update_id * 10,
        "date": 0,
        "chat": {"id": chat_id, "type": "private"},
        "from": {"id": chat_id, "is_bot": False},
    }
    if text is not None:
        msg["text"] = text
    msg.update(extra)
    return {"update_id": update_id, "message": msg}


class FakeStore:
    def __init__(self, state: Optional[BotState] = None) -> None:
        self.state = state or BotState.empty()
        self.updates = 0

    def read(self) -> Tuple[BotState, Optional[str]]:
        return self.state.model_copy(deep=True), "etag-1"

    def update(self, mutate: Callable[[BotState], None], *, retries: int = 3) -> BotState:  # noqa: ARG002
        mutate(self.state)
        self.updates += 1
        return self.state


class FakeTG:
    def __init__(self) -> None:
        self.plan: List[List[Dict[str, Any]]] = []
        self.offsets: List[Optional[int]] = []

    def get_updates(self, *, offset=None, limit=None, timeout=None, allowed_updates=None):  # noqa: ARG002
        self.offsets.append(offset)
        if not self.plan:
            return []
        batch = self.plan.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return batch


class FakeDispatcher:
    def __init__(self) -> None:
        self.items: List[Tuple[str, Any]] = []

    def submit(self, key: str, item: Any) -> None:
        self.items.append((key, item))


def _runner(store: FakeStore, tg: FakeTG, allowed=None):
    from poller.handler import BotRunner

    dispatcher = FakeDispatcher()
    runner = BotRunner(telegram=tg, dispatcher=dispatcher, store=store, allowed=allowed)
    return runner, dispatcher


def test_parse_update_text_and_media():
    from poller.handler import parse_update

    msg = parse_update(_mk_update(1, 42, "/register"))
    assert (msg.user_id, msg.chat_id, msg.text, msg.attachment) == ("42", "42", "/register", None)

    photo = parse_update(
        _mk_update(
            2,
            42,
            None,
            caption="my art",
            photo=[{"file_id": "small", "file_unique_id": "s"}, {"file_id": "big", "file_unique_id": "b"}],
        )
    )
    assert photo.attachment.file_id == "big"
    assert photo.attachment.kind is AssetType.IMAGE
    assert photo.text == "my art"

    doc = parse_update(_mk_update(3, 42, None, document={"file_id": "D", "file_name": "a.pdf"}))
    assert doc.attachment.kind is AssetType.DOCUMENT
    assert doc.attachment.file_name == "a.pdf"

    voice = parse_update(_mk_update(4, 42, None, voice={"file_id": "V"}))
    assert voice.attachment.kind is AssetType.AUDIO

    assert parse_update(_mk_update(5, 42, None, sticker={"file_id": "S"})) is None
    assert parse_update({"update_id": 6, "edited_message": {}}) is None


def test_run_once_dispatches_and_persists_offset():
    store = FakeStore(BotState(last_update_id=40))
    tg = FakeTG()
    tg.plan = [[_mk_update(41, 1, "/register"), _mk_update(42, 2, "/balance"), _mk_update(43, 1, "x")]]
    runner, dispatcher = _runner(store, tg)
    runner.load_offset()

    out = runner.run_once()

    assert out == {"ok": True, "received": 3, "dispatched": 3, "new_last_update_id": 43}
    assert tg.offsets == [41]
    assert [k for k, _ in dispatcher.items] == ["1", "2", "1"]
    assert store.state.last_update_id == 43

    runner.run_once()
    assert tg.offsets[-1] == 44
    assert store.updates == 1


def test_run_once_skips_chats_outside_allow_list_but_advances():
    store = FakeStore()
    tg = FakeTG()
    tg.plan = [[_mk_update(1, 111, "/start"), _mk_update(2, 222, "/start")]]
    runner, dispatcher = _runner(store, tg, allowed={111})

    out = runner.run_once()

    assert out["dispatched"] == 1
    assert dispatcher.items[0][0] == "111"
    assert store.state.last_update_id == 2


def test_run_once_propagates_telegram_errors():
    tg = FakeTG()
    tg.plan = [TelegramError("down")]
    runner, _ = _runner(FakeStore(), tg)
    with pytest.raises(TelegramError):
        runner.run_once()


def test_run_forever_backs_off_on_errors_until_stopped():
    import threading

    tg = FakeTG()
    tg.plan = [TelegramError("down")]
    runner, _ = _runner(FakeStore(), tg)
    stop = threading.Event()

    class StopAfterWait:
        def is_set(self) -> bool:
            return stop.is_set()

        def wait(self, timeout: float) -> bool:
            stop.set()
            return True

    runner.run_forever(StopAfterWait(), error_backoff=0.01)
    assert tg.offsets == [None]


def test_build_app_wires_components(monkeypatch: pytest.MonkeyPatch):
    from cryptography.fernet import Fernet
    from eth_account import Account
    from eth_utils import to_hex

    from poller import handler as poller

    monkeypatch.setattr(poller, "S3StateStore", lambda **_kw: FakeStore())
    faucet_key = to_hex(Account.create().key)
    settings = load_settings(
        {
            "STATE_BUCKET": "b",
            "CONTRACT_ADDRESS": "0x" + "1" * 40,
            "TELEGRAM_BOT_TOKEN": "1:x",
            "FERNET_KEY": Fernet.generate_key().decode(),
            "PINATA_API_KEY": "k",
            "PINATA_SECRET_API_KEY": "s",
            "FAUCET_PRIVATE_KEY": faucet_key,
            "ALLOWED_CHAT_IDS": "1,2",
            "WORKERS": "2",
        }
    )

    app = poller.build_app(settings)
    try:
        assert app.engine.faucet is not None
        assert app.engine.faucet.credential.address == Account.from_key(faucet_key).address
        assert app.engine.sessions is app.sessions
        assert app.runner.load_offset() is None
    finally:
        app.dispatcher.shutdown()
        app.telegram.close()
