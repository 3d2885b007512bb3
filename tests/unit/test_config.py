from __future__ import annotations

from typing import Dict, Iterable, Optional

import pytest

from common import config


BASE_ENV = {
    "STATE_BUCKET": "bot-state",
    "CONTRACT_ADDRESS": "0x" + "1" * 40,
}

SECRETS = {
    "TELEGRAM_BOT_TOKEN": "123:abc",
    "FERNET_KEY": "k" * 43 + "=",
    "PINATA_API_KEY": "pk",
    "PINATA_SECRET_API_KEY": "psk",
}


def test_env_only_settings_with_defaults():
    s = config.load_settings({**BASE_ENV, **SECRETS})

    assert s.state_bucket == "bot-state"
    assert s.state_key == "state.json"
    assert s.telegram_bot_token.get_secret_value() == "123:abc"
    assert s.faucet_private_key is None
    assert s.session_ttl_seconds == 900
    assert s.rpc_attempts == 3
    assert s.chain_id == 1315


def test_secrets_are_masked_in_repr():
    s = config.load_settings({**BASE_ENV, **SECRETS})
    assert "123:abc" not in repr(s)
    assert "psk" not in str(s.model_dump())


def test_numeric_knobs_from_env():
    env = {**BASE_ENV, **SECRETS, "RPC_ATTEMPTS": "5", "SESSION_TTL_SECONDS": "60", "CHAIN_ID": "1514"}
    s = config.load_settings(env)
    assert s.rpc_attempts == 5
    assert s.session_ttl_seconds == 60
    assert s.chain_id == 1514


def test_missing_bucket_raises():
    with pytest.raises(RuntimeError, match="STATE_BUCKET"):
        config.load_settings({**SECRETS, "CONTRACT_ADDRESS": "0x" + "1" * 40})


def test_missing_secret_names_the_env_var():
    env = {**BASE_ENV, **SECRETS}
    del env["PINATA_API_KEY"]
    with pytest.raises(RuntimeError, match="PINATA_API_KEY"):
        config.load_settings(env)


def test_ssm_prefix_reads_secrets_from_parameter_store():
    seen = {}

    def fake_ssm(prefix: str, names: Iterable[str]) -> Dict[str, Optional[str]]:
        seen["prefix"] = prefix
        seen["names"] = list(names)
        return {
            "telegram_bot_token": "ssm-token",
            "fernet_key": "f" * 43 + "=",
            "pinata_api_key": "a",
            "pinata_secret_api_key": "b",
            "faucet_private_key": None,
            "allowed_chat_ids": "[1, 2]",
        }

    env = {**BASE_ENV, "PARAM_PREFIX": "/assetbot/dev/"}
    s = config.load_settings(env, ssm_loader=fake_ssm)

    assert seen["prefix"] == "/assetbot/dev/"
    assert "telegram_bot_token" in seen["names"]
    assert s.telegram_bot_token.get_secret_value() == "ssm-token"
    assert s.allowed_chat_ids == "[1, 2]"


def test_ssm_missing_secret_names_the_parameter():
    def fake_ssm(prefix: str, names: Iterable[str]) -> Dict[str, Optional[str]]:  # noqa: ARG001
        return {name: None for name in names}

    with pytest.raises(RuntimeError, match="/p/telegram_bot_token"):
        config.load_settings({**BASE_ENV, "PARAM_PREFIX": "/p/"}, ssm_loader=fake_ssm)


def test_invalid_value_rejected():
    from pydantic import ValidationError

    with pytest.raises(ValidationError):
        config.load_settings({**BASE_ENV, **SECRETS, "RPC_ATTEMPTS": "0"})
