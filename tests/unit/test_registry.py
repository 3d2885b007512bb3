from __future__ import annotations

from typing import Any, Dict, List, Tuple

import pytest

from common.ledger_codec import Credential
from common.registry import AssetRegistry, AssetType, License
from common.retry_rpc import FailureKind, LedgerError, Receipt


OWNER = "0x" + "ab" * 20
ZERO = "0x" + "0" * 40
CRED = Credential(address=OWNER, private_key="0x" + "1" * 64)


class FakeRpc:
    def __init__(self, reads: Dict[str, Any]) -> None:
        self.reads = reads
        self.writes: List[Tuple[str, Tuple[Any, ...]]] = []

    def read(self, method: str, *args: Any):
        out = self.reads[method]
        if isinstance(out, Exception):
            raise out
        return out(*args) if callable(out) else out

    def get_balance(self, address: str) -> int:
        return 42

    def write(self, credential: Credential, method: str, *args: Any) -> Receipt:
        self.writes.append((method, args))
        return Receipt(tx_hash="0xt", block_number=1, status=1)

    def send_value(self, credential: Credential, to: str, value: int) -> Receipt:
        self.writes.append(("value", (to, value)))
        return Receipt(tx_hash="0xv", block_number=1, status=1)


def test_get_asset_maps_tuple():
    rpc = FakeRpc({"getAsset": lambda i: (("QmH", OWNER, "image", 1_700_000_000),)})
    asset = AssetRegistry(rpc).get_asset(7)
    assert asset.asset_id == 7
    assert asset.content_hash == "QmH"
    assert asset.registered_at.year == 2023
    assert asset.owned_by(OWNER.upper().replace("0X", "0x"))


def test_get_asset_empty_record_is_not_found():
    rpc = FakeRpc({"getAsset": (("", ZERO, "", 0),)})
    with pytest.raises(LedgerError) as ei:
        AssetRegistry(rpc).get_asset(99)
    assert ei.value.kind is FailureKind.NOT_FOUND


def test_find_by_hash():
    rpc = FakeRpc({"verifyAsset": (True, 7, OWNER, 1_700_000_000, "audio")})
    asset = AssetRegistry(rpc).find_by_hash("QmH")
    assert asset is not None
    assert (asset.asset_id, asset.asset_type) == (7, "audio")


def test_find_by_hash_missing():
    assert AssetRegistry(FakeRpc({"verifyAsset": (False, 0, ZERO, 0, "")})).find_by_hash("QmH") is None
    reverted = LedgerError(FailureKind.NOT_FOUND, "not found")
    assert AssetRegistry(FakeRpc({"verifyAsset": reverted})).find_by_hash("QmH") is None


def test_find_by_hash_network_error_propagates():
    rpc = FakeRpc({"verifyAsset": LedgerError(FailureKind.NETWORK_ERROR, "down")})
    with pytest.raises(LedgerError):
        AssetRegistry(rpc).find_by_hash("QmH")


def test_get_license():
    registry = AssetRegistry(FakeRpc({"getLicense": (5 * 10**17, True, 10)}))
    assert registry.get_license(7) == License(price_wei=5 * 10**17, is_commercial=True, royalty_percent=10)
    assert AssetRegistry(FakeRpc({"getLicense": (0, False, 0)})).get_license(7) is None


def test_writes_pass_typed_arguments():
    rpc = FakeRpc({})
    registry = AssetRegistry(rpc)
    registry.register(CRED, "QmH", AssetType.VIDEO)
    registry.set_license(CRED, 7, License(price_wei=1, is_commercial=False, royalty_percent=0))
    registry.transfer(CRED, 7, "0x" + "cd" * 20)
    registry.fund(CRED, "0x" + "cd" * 20, 10)

    assert rpc.writes == [
        ("registerAsset", ("QmH", "video")),
        ("setLicense", (7, 1, False, 0)),
        ("transferAsset", (7, "0x" + "cd" * 20)),
        ("value", ("0x" + "cd" * 20, 10)),
    ]


def test_assets_of_and_balance():
    registry = AssetRegistry(FakeRpc({"getAssetsByOwner": ([3, 7],)}))
    assert registry.assets_of(OWNER) == [3, 7]
    assert registry.balance_of(OWNER) == 42


def test_license_bounds():
    with pytest.raises(ValueError):
        License(price_wei=0, is_commercial=False, royalty_percent=101)


def test_registrations_map_decoded_logs():
    class LogRpc(FakeRpc):
        def __init__(self) -> None:
            super().__init__({})
            self.queries: List[Tuple[str, int, int]] = []

        def block_number(self) -> int:
            return 120

        def logs(self, event: str, from_block: int, to_block: int):
            self.queries.append((event, from_block, to_block))
            return [(105, (7, OWNER, "QmH", "video", 1_700_000_000))]

    rpc = LogRpc()
    registry = AssetRegistry(rpc)

    assert registry.latest_block() == 120
    (event,) = registry.registrations(101, 120)
    assert rpc.queries == [("AssetRegistered", 101, 120)]
    assert (event.asset_id, event.owner, event.asset_type, event.block_number) == (7, OWNER, "video", 105)
