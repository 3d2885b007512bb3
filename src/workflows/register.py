from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from common.registry import AssetType
from common.retry_rpc import FailureKind, LedgerError
from state.sessions import Session, WorkflowKind

from .base import Transition, Workflow, WorkflowContext, certificate, to
from .errors import ValidationError
from .messages import AttachmentError
from .validation import format_ip


logger = logging.getLogger(__name__)


class RegisterState(str, Enum):
    AWAIT_FILE = "await_file"
    SUBMITTING = "submitting"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


class RegisterWorkflow(Workflow):
    """/register: file -> IPFS pin -> registerAsset, idempotent on the content hash."""

    kind = WorkflowKind.REGISTER

    def start(self, ctx: WorkflowContext) -> Transition:
        address = ctx.wallets.address_of(ctx.identity)
        self._ensure_gas(ctx, address)
        return to(
            RegisterState.AWAIT_FILE,
            "📤 Send me a file to register (image, video, audio, or document)...\n\n📝 Or send /cancel to exit",
        )

    def _ensure_gas(self, ctx: WorkflowContext, address: str) -> None:
        try:
            balance = ctx.registry.balance_of(address)
        except LedgerError as exc:
            # The write step reports InsufficientFunds properly if it comes to that
            logger.warning("Balance check for %s skipped: %s", address, exc.detail)
            return
        if balance >= ctx.min_gas_balance_wei:
            return
        if ctx.faucet is None:
            ctx.notify(
                f"⚠️ Your wallet holds {format_ip(balance)} IP, which may not cover gas.\n\n"
                f"Send some IP to:\n{address}"
            )
            return
        ctx.notify(
            "⚠️ Your wallet has no IP tokens for gas fees.\n\n"
            f"💡 Funding your wallet with {format_ip(ctx.faucet.amount_wei)} IP..."
        )
        ctx.faucet.top_up(address)
        ctx.notify("✅ Wallet funded! Now you can register assets.")

    def step(self, session: Session, ctx: WorkflowContext) -> Transition:
        attachment = ctx.message.attachment
        if attachment is None:
            raise ValidationError("📎 Please send a file (image, video, audio, or document), or /cancel")

        ctx.notify("📥 Downloading your file...")
        try:
            with ctx.transport.open_attachment(attachment) as fh:
                ctx.notify("🌐 Uploading to IPFS...")
                content_hash = ctx.uploader.pin_file(fh, attachment.file_name or attachment.file_id)
        except AttachmentError as exc:
            logger.warning("Attachment %s for %s unavailable: %s", attachment.file_id, ctx.identity, exc)
            raise ValidationError("❌ Could not download that file. Please send it again or /cancel") from exc

        return to(
            RegisterState.SUBMITTING,
            "⛓️ Registering on-chain...",
            contentHash=content_hash,
            assetType=attachment.kind.value,
        )

    def submit(self, session: Session, ctx: WorkflowContext) -> Transition:
        content_hash = session.fields["contentHash"]
        asset_type = AssetType(session.fields["assetType"])
        credential = ctx.wallets.resolve(ctx.identity)

        notice: Optional[str] = None
        tx_hash: Optional[str] = None
        try:
            tx_hash = ctx.registry.register(credential, content_hash, asset_type).tx_hash
        except LedgerError as exc:
            if exc.kind is not FailureKind.DUPLICATE:
                raise
            logger.info("Hash %s already registered; recovering asset id", content_hash)
            notice = "ℹ️ This asset was already registered. Showing certificate..."

        asset = ctx.registry.find_by_hash(content_hash)
        if asset is None:
            raise LedgerError(
                FailureKind.UNKNOWN,
                f"No asset record for hash {content_hash} after registration",
                tx_hash=tx_hash,
            )

        title = "✅ Asset Registered Successfully!"
        if tx_hash:
            title += f"\n\n🔗 Transaction: {ctx.links.tx(tx_hash)}"
        replies = [notice] if notice else []
        replies.append(certificate(ctx, asset, title=title))
        return to(RegisterState.DONE, *replies, assetId=asset.asset_id, duplicate=notice is not None)
