from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional, Protocol, Tuple

from common.config import DEFAULT_EXPLORER_BASE, DEFAULT_IPFS_GATEWAY
from common.ledger_codec import Credential
from common.registry import AssetRecord, AssetRegistry, AssetType
from common.retry_rpc import FailureKind, LedgerError, Receipt
from state.models import WalletRecord
from state.sessions import Session, WorkflowKind

from .errors import OwnershipDenied
from .messages import InboundMessage, OutboundMessage, Transport, Uploader, reply
from .validation import format_ip


logger = logging.getLogger(__name__)


class Wallets(Protocol):
    def address_of(self, identity: str) -> str: ...

    def resolve(self, identity: str) -> Credential: ...

    def provision(self, identity: str) -> Tuple[WalletRecord, bool]: ...


@dataclass(frozen=True)
class Links:
    explorer_base: str = DEFAULT_EXPLORER_BASE
    ipfs_gateway: str = DEFAULT_IPFS_GATEWAY

    def ipfs(self, content_hash: str) -> str:
        return f"{self.ipfs_gateway.rstrip('/')}/{content_hash}"

    def tx(self, tx_hash: str) -> str:
        return f"{self.explorer_base.rstrip('/')}/tx/{tx_hash}"

    def address(self, address: str) -> str:
        return f"{self.explorer_base.rstrip('/')}/address/{address}"


@dataclass
class Faucet:
    """Tops up new wallets from the bot's own wallet so first registrations can pay gas."""

    registry: AssetRegistry
    credential: Credential
    amount_wei: int

    def top_up(self, address: str) -> Receipt:
        logger.info("Funding %s with %d wei", address, self.amount_wei)
        return self.registry.fund(self.credential, address, self.amount_wei)


@dataclass
class WorkflowContext:
    """Everything a workflow step may touch while handling one inbound message."""

    message: InboundMessage
    registry: AssetRegistry
    wallets: Wallets
    uploader: Uploader
    transport: Transport
    links: Links = field(default_factory=Links)
    faucet: Optional[Faucet] = None
    min_gas_balance_wei: int = 10**15

    @property
    def identity(self) -> str:
        return self.message.user_id

    @property
    def text(self) -> str:
        return (self.message.text or "").strip()

    def notify(self, text: str, **kwargs: Any) -> None:
        """Progress note sent right away, before a slow call."""
        self.transport.send(self.message.chat_id, reply(text, **kwargs))


@dataclass(frozen=True)
class Transition:
    state: Enum
    updates: Mapping[str, Any] = field(default_factory=dict)
    replies: Tuple[OutboundMessage, ...] = ()


def to(state: Enum, *texts: Any, **updates: Any) -> Transition:
    """Shorthand: `to(State.X, "text", reply(...), assetId=7)`."""
    replies = tuple(t if isinstance(t, OutboundMessage) else reply(str(t)) for t in texts)
    return Transition(state=state, updates=updates, replies=replies)


class Workflow(ABC):
    """
    One conversational flow.

    - `start` runs on the entry command and returns the first state (a
      terminal state means a one-shot command with no session).
    - `step` consumes one inbound message; raises `ValidationError` to
      re-prompt without changing anything.
    - `submit` performs the single write call once `step` has moved the
      session to `submitting`.
    """

    kind: WorkflowKind

    @abstractmethod
    def start(self, ctx: WorkflowContext) -> Transition: ...

    @abstractmethod
    def step(self, session: Session, ctx: WorkflowContext) -> Transition: ...

    def submit(self, session: Session, ctx: WorkflowContext) -> Transition:
        raise NotImplementedError(f"{self.kind.value} has no write step")


def require_owner(ctx: WorkflowContext, asset_id: int) -> AssetRecord:
    """Read the asset and check the user's wallet owns it; raises OwnershipDenied otherwise."""
    address = ctx.wallets.address_of(ctx.identity)
    asset = ctx.registry.get_asset(asset_id)
    if not asset.owned_by(address):
        raise OwnershipDenied(asset_id, asset.owner)
    return asset


def license_line(ctx: WorkflowContext, asset_id: int) -> str:
    """Best-effort license summary; a failed read just shows no license."""
    try:
        terms = ctx.registry.get_license(asset_id)
    except LedgerError as exc:
        logger.warning("License lookup for asset %d failed: %s", asset_id, exc.detail)
        return "📋 No license"
    if terms is None:
        return "📋 No license"
    usage = "💼 commercial" if terms.is_commercial else "👤 personal"
    return f"💰 {format_ip(terms.price_wei)} IP {usage} | {terms.royalty_percent}% royalty"


def certificate(ctx: WorkflowContext, asset: AssetRecord, *, title: str) -> OutboundMessage:
    registered = asset.registered_at.strftime("%Y-%m-%d %H:%M UTC")
    text = (
        f"{title}\n\n"
        f"🆔 Asset ID: {asset.asset_id}\n"
        f"🌐 IPFS Hash: {asset.content_hash}\n"
        f"📦 Type: {asset.asset_type}\n"
        f"👤 Owner: {asset.owner}\n"
        f"🕐 Registered: {registered}\n"
        f"{license_line(ctx, asset.asset_id)}\n\n"
        f"🔗 View on IPFS: {ctx.links.ipfs(asset.content_hash)}"
    )
    try:
        kind: Optional[AssetType] = AssetType(asset.asset_type)
    except ValueError:
        kind = None
    if kind is None or kind is AssetType.DOCUMENT:
        return reply(text)
    return reply(text, media_url=ctx.links.ipfs(asset.content_hash), media_kind=kind)


def describe_assets(ctx: WorkflowContext, owner: str, *, heading: str, limit: int = 3500) -> List[OutboundMessage]:
    """List every asset of `owner`, split into chunks that fit a chat message."""
    ids = ctx.registry.assets_of(owner)
    if not ids:
        return [reply(f"📭 No assets found for address:\n{owner}\n\nUse /register to protect your first creation!")]

    blocks: List[str] = []
    for asset_id in ids:
        try:
            asset = ctx.registry.get_asset(asset_id)
        except LedgerError as exc:
            if exc.kind is FailureKind.NETWORK_ERROR:
                raise
            logger.warning("Skipping asset %d: %s", asset_id, exc.detail)
            continue
        blocks.append(
            "━━━━━━━━━━━━━━━━━━\n"
            f"🆔 Asset ID: {asset.asset_id}\n"
            f"📦 Type: {asset.asset_type}\n"
            f"🕐 Registered: {asset.registered_at.strftime('%Y-%m-%d')}\n"
            f"{license_line(ctx, asset.asset_id)}\n"
            f"🔗 {ctx.links.ipfs(asset.content_hash)}\n"
        )

    chunks: List[str] = [f"{heading}\n{owner}\n\nFound {len(ids)} asset(s):\n\n"]
    for block in blocks:
        if len(chunks[-1]) + len(block) > limit:
            chunks.append("")
        chunks[-1] += block
    chunks[-1] += f"\n🔗 Explorer: {ctx.links.address(owner)}"
    return [reply(c, disable_preview=True) for c in chunks]
