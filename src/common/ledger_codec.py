from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, NamedTuple, Protocol, Sequence, Tuple

from eth_abi import decode as abi_decode, encode as abi_encode
from eth_account import Account
from eth_utils import (
    decode_hex,
    event_signature_to_log_topic,
    function_signature_to_4byte_selector,
    to_checksum_address,
    to_hex,
)
from pydantic import BaseModel, SecretStr


class Credential(BaseModel):
    """Signing material for one wallet. The key is a secret: never log or echo it."""

    address: str
    private_key: SecretStr


class SignedTransaction(NamedTuple):
    raw: str  # 0x-prefixed RLP
    tx_hash: str


class LedgerCodec(Protocol):
    """Wire encoding of registry calls plus transaction signing."""

    def encode_call(self, method: str, args: Sequence[Any]) -> str: ...

    def decode_result(self, method: str, data: str) -> Tuple[Any, ...]: ...

    def sign_transaction(self, tx: Mapping[str, Any], credential: Credential) -> SignedTransaction: ...

    def create_account(self) -> Credential: ...

    def event_topic(self, event: str) -> str: ...

    def decode_event(self, event: str, topics: Sequence[str], data: str) -> Tuple[Any, ...]: ...


@dataclass(frozen=True)
class AbiMethod:
    inputs: Tuple[str, ...]
    outputs: Tuple[str, ...] = ()

    def signature(self, name: str) -> str:
        return f"{name}({','.join(self.inputs)})"


# IPRegistry contract surface used by the bot
REGISTRY_ABI: Dict[str, AbiMethod] = {
    "registerAsset": AbiMethod(("string", "string")),
    "setLicense": AbiMethod(("uint256", "uint256", "bool", "uint256")),
    "transferAsset": AbiMethod(("uint256", "address")),
    "getAsset": AbiMethod(("uint256",), ("(string,address,string,uint256)",)),
    "verifyAsset": AbiMethod(("string",), ("bool", "uint256", "address", "uint256", "string")),
    "getLicense": AbiMethod(("uint256",), ("uint256", "bool", "uint256")),
    "getAssetsByOwner": AbiMethod(("address",), ("uint256[]",)),
    "totalAssets": AbiMethod((), ("uint256",)),
}


@dataclass(frozen=True)
class AbiEvent:
    params: Tuple[Tuple[str, bool], ...]  # (type, indexed) in declared order

    def signature(self, name: str) -> str:
        return f"{name}({','.join(typ for typ, _ in self.params)})"


REGISTRY_EVENTS: Dict[str, AbiEvent] = {
    "AssetRegistered": AbiEvent(
        (("uint256", True), ("address", True), ("string", False), ("string", False), ("uint256", False))
    ),
}


class EthereumCodec:
    """ABI encoding with eth-abi and EIP-155 legacy signing with eth-account."""

    def __init__(
        self,
        abi: Mapping[str, AbiMethod] = REGISTRY_ABI,
        events: Mapping[str, AbiEvent] = REGISTRY_EVENTS,
    ) -> None:
        self._abi = dict(abi)
        self._events = dict(events)

    def _method(self, name: str) -> AbiMethod:
        try:
            return self._abi[name]
        except KeyError:
            raise ValueError(f"unknown contract method: {name}") from None

    def encode_call(self, method: str, args: Sequence[Any]) -> str:
        fn = self._method(method)
        if len(args) != len(fn.inputs):
            raise ValueError(f"{method} expects {len(fn.inputs)} args, got {len(args)}")
        values: List[Any] = [
            to_checksum_address(v) if typ == "address" else v for typ, v in zip(fn.inputs, args)
        ]
        selector = function_signature_to_4byte_selector(fn.signature(method))
        return to_hex(selector + abi_encode(list(fn.inputs), values))

    def decode_result(self, method: str, data: str) -> Tuple[Any, ...]:
        fn = self._method(method)
        if not fn.outputs:
            return ()
        raw = decode_hex(data) if isinstance(data, str) else bytes(data)
        if not raw:
            raise ValueError(f"empty result for {method}")
        return tuple(abi_decode(list(fn.outputs), raw))

    def _event(self, name: str) -> AbiEvent:
        try:
            return self._events[name]
        except KeyError:
            raise ValueError(f"unknown contract event: {name}") from None

    def event_topic(self, event: str) -> str:
        return to_hex(event_signature_to_log_topic(self._event(event).signature(event)))

    def decode_event(self, event: str, topics: Sequence[str], data: str) -> Tuple[Any, ...]:
        """Values in declared order; indexed ones come from topics[1:]."""
        ev = self._event(event)
        indexed = [typ for typ, is_indexed in ev.params if is_indexed]
        if len(topics) != len(indexed) + 1:
            raise ValueError(f"{event} expects {len(indexed) + 1} topics, got {len(topics)}")
        from_topics = iter(abi_decode([typ], decode_hex(topic))[0] for typ, topic in zip(indexed, topics[1:]))
        from_data = iter(abi_decode([typ for typ, is_indexed in ev.params if not is_indexed], decode_hex(data)))
        return tuple(next(from_topics) if is_indexed else next(from_data) for _typ, is_indexed in ev.params)

    def sign_transaction(self, tx: Mapping[str, Any], credential: Credential) -> SignedTransaction:
        payload = dict(tx)
        if payload.get("to"):
            payload["to"] = to_checksum_address(payload["to"])
        signed = Account.sign_transaction(payload, credential.private_key.get_secret_value())
        return SignedTransaction(raw=to_hex(signed.raw_transaction), tx_hash=to_hex(signed.hash))

    def create_account(self) -> Credential:
        acct = Account.create()
        return Credential(address=acct.address, private_key=to_hex(acct.key))

    def load_account(self, private_key: str) -> Credential:
        """Credential for an existing key (the faucet wallet)."""
        acct = Account.from_key(private_key)
        return Credential(address=acct.address, private_key=to_hex(acct.key))


__all__ = [
    "AbiEvent",
    "AbiMethod",
    "Credential",
    "EthereumCodec",
    "LedgerCodec",
    "REGISTRY_ABI",
    "REGISTRY_EVENTS",
    "SignedTransaction",
]
