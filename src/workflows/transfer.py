from __future__ import annotations

from enum import Enum

from state.sessions import Session, WorkflowKind

from .base import Transition, Workflow, WorkflowContext, require_owner, to
from .errors import ValidationError
from .validation import ZERO_ADDRESS, parse_address, parse_asset_id, same_address


class TransferState(str, Enum):
    AWAIT_ID = "await_id"
    AWAIT_RECIPIENT = "await_recipient"
    SUBMITTING = "submitting"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


class TransferWorkflow(Workflow):
    kind = WorkflowKind.TRANSFER

    def start(self, ctx: WorkflowContext) -> Transition:
        ctx.wallets.address_of(ctx.identity)
        return to(
            TransferState.AWAIT_ID,
            "🔄 Transfer Asset Ownership\n\n"
            "Enter the Asset ID you want to transfer:\n\n"
            "💡 Use /myassets to see your assets\n"
            "📝 Or send /cancel to exit",
        )

    def step(self, session: Session, ctx: WorkflowContext) -> Transition:
        state = TransferState(session.state)

        if state is TransferState.AWAIT_ID:
            asset_id = parse_asset_id(ctx.text)
            asset = require_owner(ctx, asset_id)
            return to(
                TransferState.AWAIT_RECIPIENT,
                f"✅ You own Asset #{asset_id}\n\n"
                "📬 Enter the recipient's wallet address:\n\n"
                "Format: 0x...\n"
                "⚠️ Transfers cannot be undone!\n\n"
                "📝 Or send /cancel to exit",
                assetId=asset_id,
                ownerAddress=asset.owner,
            )

        if state is TransferState.AWAIT_RECIPIENT:
            recipient = parse_address(ctx.text)
            if same_address(recipient, ZERO_ADDRESS):
                raise ValidationError("❌ Cannot transfer to the zero address.\n\nEnter another address or send /cancel")
            if same_address(recipient, session.fields["ownerAddress"]):
                raise ValidationError(
                    "❌ You already own this asset!\n\nEnter a different recipient address or send /cancel"
                )
            return to(TransferState.SUBMITTING, "⛓️ Transferring on-chain...", recipientAddress=recipient)

        raise ValueError(f"transfer cannot step from {state.value}")

    def submit(self, session: Session, ctx: WorkflowContext) -> Transition:
        asset_id = session.fields["assetId"]
        recipient = session.fields["recipientAddress"]
        credential = ctx.wallets.resolve(ctx.identity)
        receipt = ctx.registry.transfer(credential, asset_id, recipient)
        return to(
            TransferState.DONE,
            "✅ Transfer Complete!\n\n"
            f"🆔 Asset: #{asset_id}\n"
            f"📤 From: {session.fields['ownerAddress']}\n"
            f"📥 To: {recipient}\n\n"
            f"🔗 Transaction: {ctx.links.tx(receipt.tx_hash)}",
            txHash=receipt.tx_hash,
        )


__all__ = ["TransferState", "TransferWorkflow"]
