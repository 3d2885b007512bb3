from __future__ import annotations

from enum import Enum

from common.retry_rpc import FailureKind, LedgerError
from state.sessions import Session, WorkflowKind

from .base import Transition, Workflow, WorkflowContext, certificate, to
from .errors import ValidationError
from .validation import parse_asset_id, parse_content_hash


class VerifyState(str, Enum):
    AWAIT_METHOD = "await_method"
    AWAIT_HASH = "await_hash"
    AWAIT_ID = "await_id"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


_METHODS = {
    "1": VerifyState.AWAIT_HASH,
    "hash": VerifyState.AWAIT_HASH,
    "2": VerifyState.AWAIT_ID,
    "id": VerifyState.AWAIT_ID,
}


class VerifyWorkflow(Workflow):
    """Read-only lookup by content hash or asset id. "Not found" is an answer, not a failure."""

    kind = WorkflowKind.VERIFY

    def start(self, ctx: WorkflowContext) -> Transition:
        return to(
            VerifyState.AWAIT_METHOD,
            "🔍 Verify Asset Ownership\n\n"
            "How do you want to look it up?\n\n"
            "1️⃣ hash - by IPFS hash\n"
            "2️⃣ id - by Asset ID\n\n"
            "📝 Or send /cancel to exit",
        )

    def step(self, session: Session, ctx: WorkflowContext) -> Transition:
        state = VerifyState(session.state)

        if state is VerifyState.AWAIT_METHOD:
            choice = _METHODS.get(ctx.text.lower())
            if choice is None:
                raise ValidationError("❌ Please type hash or id (or 1 / 2)")
            if choice is VerifyState.AWAIT_HASH:
                return to(choice, "🌐 Send the IPFS hash:\n\nExample: QmXyz...", method="hash")
            return to(choice, "🆔 Send the Asset ID:\n\nExample: 1", method="id")

        if state is VerifyState.AWAIT_HASH:
            content_hash = parse_content_hash(ctx.text)
            asset = ctx.registry.find_by_hash(content_hash)
            if asset is None:
                return to(
                    VerifyState.DONE,
                    "❌ Asset Not Found\n\nThis IPFS hash is not registered on-chain.",
                    contentHash=content_hash,
                )
            return to(
                VerifyState.DONE,
                certificate(ctx, asset, title="✅ Asset Verified!"),
                contentHash=content_hash,
                assetId=asset.asset_id,
            )

        if state is VerifyState.AWAIT_ID:
            asset_id = parse_asset_id(ctx.text)
            try:
                asset = ctx.registry.get_asset(asset_id)
            except LedgerError as exc:
                if exc.kind is not FailureKind.NOT_FOUND:
                    raise
                return to(
                    VerifyState.DONE,
                    f"❌ Asset Not Found\n\nNo asset with ID {asset_id} exists.",
                    assetId=asset_id,
                )
            return to(VerifyState.DONE, certificate(ctx, asset, title="✅ Asset Verified!"), assetId=asset_id)

        raise ValueError(f"verify cannot step from {state.value}")


__all__ = ["VerifyState", "VerifyWorkflow"]
