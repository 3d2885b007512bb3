from __future__ import annotations

import pytest
from eth_abi import decode as abi_decode, encode as abi_encode
from eth_account import Account
from eth_utils import decode_hex, function_signature_to_4byte_selector, keccak, to_hex

from common.ledger_codec import Credential, EthereumCodec


OWNER = "0x" + "ab" * 20


def test_encode_call_prefixes_selector_and_checksums_addresses():
    codec = EthereumCodec()
    data = codec.encode_call("transferAsset", [7, OWNER])

    raw = decode_hex(data)
    assert raw[:4] == function_signature_to_4byte_selector("transferAsset(uint256,address)")
    asset_id, recipient = abi_decode(["uint256", "address"], raw[4:])
    assert asset_id == 7
    assert recipient.lower() == OWNER


def test_encode_call_checks_arity_and_method():
    codec = EthereumCodec()
    with pytest.raises(ValueError):
        codec.encode_call("registerAsset", ["QmOnlyOne"])
    with pytest.raises(ValueError):
        codec.encode_call("selfDestruct", [])


def test_decode_verify_asset_result():
    codec = EthereumCodec()
    payload = abi_encode(
        ["bool", "uint256", "address", "uint256", "string"],
        [True, 7, OWNER, 1_700_000_000, "image"],
    )
    exists, asset_id, owner, ts, kind = codec.decode_result("verifyAsset", to_hex(payload))
    assert exists is True
    assert asset_id == 7
    assert owner.lower() == OWNER
    assert ts == 1_700_000_000
    assert kind == "image"


def test_decode_get_asset_tuple():
    codec = EthereumCodec()
    payload = abi_encode(["(string,address,string,uint256)"], [("QmH", OWNER, "video", 5)])
    ((content_hash, owner, kind, ts),) = codec.decode_result("getAsset", to_hex(payload))
    assert (content_hash, kind, ts) == ("QmH", "video", 5)


def test_decode_empty_result_is_an_error():
    with pytest.raises(ValueError):
        EthereumCodec().decode_result("totalAssets", "0x")


def test_sign_transaction_recovers_to_sender():
    codec = EthereumCodec()
    cred = codec.create_account()
    tx = {
        "to": OWNER,
        "data": "0x",
        "value": 1,
        "nonce": 0,
        "gas": 21000,
        "gasPrice": 10**9,
        "chainId": 1315,
    }
    signed = codec.sign_transaction(tx, cred)

    assert signed.tx_hash.startswith("0x") and len(signed.tx_hash) == 66
    assert Account.recover_transaction(signed.raw) == cred.address


def test_create_and_load_account_roundtrip():
    codec = EthereumCodec()
    cred = codec.create_account()
    assert isinstance(cred, Credential)
    assert cred.private_key.get_secret_value() not in repr(cred)

    again = codec.load_account(cred.private_key.get_secret_value())
    assert again.address == cred.address


def _registered_log(asset_id: int, owner: str, content_hash: str, kind: str, ts: int):
    topics = [
        EthereumCodec().event_topic("AssetRegistered"),
        to_hex(abi_encode(["uint256"], [asset_id])),
        to_hex(abi_encode(["address"], [owner])),
    ]
    return topics, to_hex(abi_encode(["string", "string", "uint256"], [content_hash, kind, ts]))


def test_event_topic_is_keccak_of_signature():
    topic = EthereumCodec().event_topic("AssetRegistered")
    assert topic == to_hex(keccak(text="AssetRegistered(uint256,address,string,string,uint256)"))


def test_decode_event_returns_values_in_declared_order():
    topics, data = _registered_log(7, OWNER, "QmH", "audio", 1_700_000_000)

    asset_id, owner, content_hash, kind, ts = EthereumCodec().decode_event("AssetRegistered", topics, data)

    assert asset_id == 7
    assert owner.lower() == OWNER
    assert (content_hash, kind, ts) == ("QmH", "audio", 1_700_000_000)


def test_decode_event_checks_topic_count_and_name():
    topics, data = _registered_log(7, OWNER, "QmH", "audio", 1)
    codec = EthereumCodec()
    with pytest.raises(ValueError):
        codec.decode_event("AssetRegistered", topics[:2], data)
    with pytest.raises(ValueError):
        codec.event_topic("AssetBurned")
