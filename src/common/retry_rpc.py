from __future__ import annotations

import logging
import re
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

import httpx
from pydantic import BaseModel

from .jsonrpc import RpcError, RpcUnavailable
from .ledger_codec import Credential, LedgerCodec
from .limits import KeyedLocks


logger = logging.getLogger(__name__)


class FailureKind(str, Enum):
    INSUFFICIENT_FUNDS = "insufficient_funds"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    REJECTED = "rejected"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    UNKNOWN = "unknown"


class LedgerError(RuntimeError):
    """A classified ledger failure. `kind` decides what the user is told."""

    def __init__(self, kind: FailureKind, detail: str, *, tx_hash: Optional[str] = None) -> None:
        super().__init__(detail)
        self.kind = kind
        self.detail = detail
        self.tx_hash = tx_hash

    def __repr__(self) -> str:
        return f"LedgerError({self.kind.value}, {self.detail!r}, tx_hash={self.tx_hash!r})"


# Revert reasons and node messages, first match wins
_CLASSIFIERS: List[Tuple[re.Pattern[str], FailureKind]] = [
    (re.compile(r"insufficient funds|insufficient balance", re.I), FailureKind.INSUFFICIENT_FUNDS),
    (re.compile(r"already (registered|exists)|duplicate", re.I), FailureKind.DUPLICATE),
    (re.compile(r"not found|does not exist|nonexistent|invalid asset", re.I), FailureKind.NOT_FOUND),
    (re.compile(r"not (the )?owner|unauthori[sz]ed|only owner|caller is not", re.I), FailureKind.UNAUTHORIZED),
    (re.compile(r"execution reverted|revert", re.I), FailureKind.REJECTED),
]


def classify_message(message: str) -> FailureKind:
    for pattern, kind in _CLASSIFIERS:
        if pattern.search(message or ""):
            return kind
    return FailureKind.UNKNOWN


class Receipt(BaseModel):
    tx_hash: str
    block_number: int
    status: int
    gas_used: Optional[int] = None


class RpcTransport(Protocol):
    def call(self, method: str, params: Optional[List[Any]] = None) -> Any: ...


_NETWORK_ERRORS = (httpx.TimeoutException, httpx.TransportError, RpcUnavailable)

# Node replies to a resend whose first copy already went through
_RESEND_REJECTED = re.compile(r"nonce too low|replacement transaction underpriced")


class RetryRpcClient:
    """
    Uniform read/write access to the registry contract.

    Reads
    - encode -> `eth_call` -> decode. Network errors (timeouts, connection
      failures, 429/5xx) are retried up to `attempts` times with exponential
      backoff `backoff * 2**(n-1)`. Node error payloads and decode failures
      are classified and raised at once.

    Writes
    - Serialized per sending address: nonce, gas price and gas estimate are
      fetched, the transaction signed and submitted, then the receipt is
      polled every `poll_interval` seconds for at most `poll_attempts` polls.
      Running out of polls raises `Timeout` with the tx hash; a reverted
      receipt raises `Rejected`.

    Every failure leaves as `LedgerError`; raw transport exceptions never do.
    """

    def __init__(
        self,
        transport: RpcTransport,
        codec: LedgerCodec,
        contract_address: str,
        *,
        chain_id: int,
        attempts: int = 3,
        backoff: float = 1.0,
        poll_interval: float = 2.0,
        poll_attempts: int = 60,
        gas_multiplier: int = 2,
        sleep=time.sleep,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self._transport = transport
        self._codec = codec
        self._contract = contract_address
        self._chain_id = chain_id
        self._attempts = attempts
        self._backoff = backoff
        self._poll_interval = poll_interval
        self._poll_attempts = poll_attempts
        self._gas_multiplier = gas_multiplier
        self._sleep = sleep
        self._signer_locks = KeyedLocks()

    # --------------- Reads ---------------
    def read(self, method: str, *args: Any) -> Tuple[Any, ...]:
        data = self._codec.encode_call(method, args)
        raw = self._rpc("eth_call", [{"to": self._contract, "data": data}, "latest"])
        try:
            return self._codec.decode_result(method, raw)
        except Exception as exc:
            raise LedgerError(FailureKind.UNKNOWN, f"Failed to decode {method} result: {exc}") from exc

    def get_balance(self, address: str) -> int:
        return _hex_to_int(self._rpc("eth_getBalance", [address, "latest"]), "eth_getBalance")

    def block_number(self) -> int:
        return _hex_to_int(self._rpc("eth_blockNumber", []), "eth_blockNumber")

    def logs(self, event: str, from_block: int, to_block: int) -> List[Tuple[int, Tuple[Any, ...]]]:
        """Decoded `event` logs emitted by the contract in [from_block, to_block], as (block, values)."""
        query = {
            "address": self._contract,
            "topics": [self._codec.event_topic(event)],
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }
        out: List[Tuple[int, Tuple[Any, ...]]] = []
        for entry in self._rpc("eth_getLogs", [query]) or []:
            if entry.get("removed"):
                continue
            try:
                values = self._codec.decode_event(event, entry.get("topics") or [], entry.get("data") or "0x")
            except Exception as exc:
                raise LedgerError(FailureKind.UNKNOWN, f"Failed to decode {event} log: {exc}") from exc
            out.append((_hex_to_int(entry.get("blockNumber", "0x0"), "blockNumber"), values))
        return out

    # --------------- Writes ---------------
    def write(self, credential: Credential, method: str, *args: Any) -> Receipt:
        data = self._codec.encode_call(method, args)
        return self._transact(credential, to=self._contract, data=data, value=0, label=method)

    def send_value(self, credential: Credential, to: str, value: int) -> Receipt:
        return self._transact(credential, to=to, data="0x", value=value, label="transfer")

    def _transact(self, credential: Credential, *, to: str, data: str, value: int, label: str) -> Receipt:
        sender = credential.address
        with self._signer_locks.hold(sender.lower()):
            nonce = _hex_to_int(self._rpc("eth_getTransactionCount", [sender, "pending"]), "nonce")
            gas_price = _hex_to_int(self._rpc("eth_gasPrice", []), "gas price")
            call: Dict[str, Any] = {"from": sender, "to": to, "data": data, "value": hex(value)}
            gas = _hex_to_int(self._rpc("eth_estimateGas", [call]), "gas estimate")
            tx = {
                "to": to,
                "data": data,
                "value": value,
                "nonce": nonce,
                "gas": gas * self._gas_multiplier,
                "gasPrice": gas_price,
                "chainId": self._chain_id,
            }
            try:
                signed = self._codec.sign_transaction(tx, credential)
            except Exception as exc:
                # Message deliberately omits the exception text: it may quote key material
                raise LedgerError(FailureKind.UNKNOWN, f"Failed to sign {label} transaction") from exc
            tx_hash = self._submit(signed.raw, signed.tx_hash)
            logger.info("Submitted %s tx %s from %s (nonce=%d)", label, tx_hash, sender, nonce)
            return self._wait_for_receipt(tx_hash)

    def _submit(self, raw: str, expected_hash: str) -> str:
        try:
            result = self._rpc("eth_sendRawTransaction", [raw])
        except LedgerError as exc:
            detail = exc.detail.lower()
            # A retried send of an already-accepted tx; the hash is deterministic
            if "already known" in detail or "known transaction" in detail:
                return expected_hash
            # The first send may have been mined (or pooled) before the retry
            if _RESEND_REJECTED.search(detail) and self._is_known(expected_hash):
                logger.info("Send of %s rejected (%s) but the node has it", expected_hash, exc.detail)
                return expected_hash
            raise
        return result if isinstance(result, str) and result else expected_hash

    def _is_known(self, tx_hash: str) -> bool:
        try:
            return bool(self._rpc("eth_getTransactionByHash", [tx_hash]))
        except LedgerError as exc:
            logger.warning("Lookup of %s failed: %s", tx_hash, exc.detail)
            return False

    def _wait_for_receipt(self, tx_hash: str) -> Receipt:
        for poll in range(1, self._poll_attempts + 1):
            try:
                receipt = self._rpc("eth_getTransactionReceipt", [tx_hash])
            except LedgerError as exc:
                if exc.kind is not FailureKind.NETWORK_ERROR:
                    raise
                logger.warning("Receipt poll %d for %s failed: %s", poll, tx_hash, exc.detail)
                receipt = None
            if receipt:
                parsed = Receipt(
                    tx_hash=tx_hash,
                    block_number=_hex_to_int(receipt.get("blockNumber", "0x0"), "blockNumber"),
                    status=_hex_to_int(receipt.get("status", "0x1"), "status"),
                    gas_used=_hex_to_int(receipt["gasUsed"], "gasUsed") if receipt.get("gasUsed") else None,
                )
                if parsed.status == 0:
                    raise LedgerError(FailureKind.REJECTED, f"Transaction {tx_hash} reverted", tx_hash=tx_hash)
                logger.info("Tx %s mined in block %d", tx_hash, parsed.block_number)
                return parsed
            if poll < self._poll_attempts:
                self._sleep(self._poll_interval)
        raise LedgerError(
            FailureKind.TIMEOUT,
            f"Transaction {tx_hash} not confirmed after {self._poll_attempts} polls",
            tx_hash=tx_hash,
        )

    # --------------- Internal ---------------
    def _rpc(self, method: str, params: List[Any]) -> Any:
        last_exc: Optional[Exception] = None
        for attempt in range(1, self._attempts + 1):
            try:
                return self._transport.call(method, params)
            except RpcError as exc:
                raise LedgerError(classify_message(str(exc)), f"{method}: {exc}") from exc
            except _NETWORK_ERRORS as exc:
                last_exc = exc
                logger.warning("RPC %s attempt %d/%d failed: %s", method, attempt, self._attempts, exc)
            if attempt < self._attempts:
                self._sleep(self._backoff * (2 ** (attempt - 1)))
        raise LedgerError(
            FailureKind.NETWORK_ERROR, f"{method} failed after {self._attempts} attempts: {last_exc}"
        ) from last_exc


def _hex_to_int(value: Any, what: str) -> int:
    if isinstance(value, int):
        return value
    try:
        return int(str(value), 16)
    except (TypeError, ValueError) as exc:
        raise LedgerError(FailureKind.UNKNOWN, f"Malformed {what}: {value!r}") from exc


__all__ = [
    "FailureKind",
    "LedgerError",
    "Receipt",
    "RetryRpcClient",
    "classify_message",
]
