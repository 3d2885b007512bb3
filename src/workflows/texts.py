from __future__ import annotations

from typing import Optional

from common.retry_rpc import FailureKind, LedgerError
from state.sessions import WorkflowKind


COMMAND_NAMES = {
    WorkflowKind.REGISTER: "/register",
    WorkflowKind.LICENSE: "/license",
    WorkflowKind.TRANSFER: "/transfer",
    WorkflowKind.VERIFY: "/verify",
    WorkflowKind.BALANCE: "/balance",
    WorkflowKind.MY_ASSETS: "/myassets",
    WorkflowKind.ASSETS_BY_ADDRESS: "/assetsbyaddress",
}

CANCELLED = {
    WorkflowKind.REGISTER: "✅ Registration cancelled.",
    WorkflowKind.LICENSE: "✅ Licensing cancelled.",
    WorkflowKind.TRANSFER: "✅ Transfer cancelled.",
    WorkflowKind.VERIFY: "✅ Verification cancelled.",
    WorkflowKind.ASSETS_BY_ADDRESS: "✅ Cancelled.",
}

HELP = (
    "🤖 Available commands\n\n"
    "/start - create your wallet\n"
    "/register - protect a file on-chain\n"
    "/license - set license terms for your asset\n"
    "/transfer - give an asset to another wallet\n"
    "/verify - check who owns an asset\n"
    "/balance - show your wallet balance\n"
    "/myassets - list your assets\n"
    "/assetsbyaddress - list assets of any wallet\n"
    "/cancel - stop the current step"
)

NOT_PROVISIONED = "❌ Please send /start first to create your wallet!"
NOTHING_TO_CANCEL = "ℹ️ Nothing to cancel."
STILL_SUBMITTING = "⏳ Your previous request is still being confirmed. Please wait for the result."
UPLOAD_FAILED = "❌ Failed to upload your file to IPFS. Please send /register again."
UNEXPECTED = "❌ Something went wrong. Please try again."


def command_name(kind: WorkflowKind) -> str:
    return COMMAND_NAMES.get(kind, "/help")


def cancelled(kind: WorkflowKind) -> str:
    return CANCELLED.get(kind, "✅ Cancelled.")


def expired(kind: WorkflowKind) -> str:
    return f"⌛ Your {command_name(kind)} session expired. Send {command_name(kind)} to start again."


def ownership_denied(asset_id: int, owner: Optional[str]) -> str:
    text = f"❌ You Don't Own This Asset\n\nAsset #{asset_id}"
    if owner:
        text += f" is owned by:\n{owner}"
    return text + "\n\nYou can only change assets you own."


def ledger_failure(kind: WorkflowKind, err: LedgerError) -> str:
    """User-facing text for a classified ledger failure; never includes raw node output."""
    again = command_name(kind)
    if err.kind is FailureKind.INSUFFICIENT_FUNDS:
        return "❌ Not enough IP tokens for gas.\n\n💡 Fund your wallet (see /balance) and try " + again + " again."
    if err.kind is FailureKind.DUPLICATE:
        return "❌ This content is already registered on-chain.\n\n💡 Use /verify to see its certificate."
    if err.kind is FailureKind.NOT_FOUND:
        return "❌ Asset not found on-chain. Check the Asset ID and try " + again + " again."
    if err.kind is FailureKind.UNAUTHORIZED:
        return "❌ The registry refused the request: your wallet is not allowed to do this."
    if err.kind is FailureKind.REJECTED:
        return f"❌ The transaction was reverted on-chain.\n\n🔗 Transaction: {err.tx_hash}\n\n💡 Try {again} again."
    if err.kind is FailureKind.TIMEOUT:
        return (
            "⌛ The transaction was sent but not confirmed in time.\n\n"
            f"🔗 Transaction: {err.tx_hash}\n\n"
            "💡 Check it on the explorer before retrying; it may still go through."
        )
    if err.kind is FailureKind.NETWORK_ERROR:
        return "❌ Network Timeout\n\nCould not reach the blockchain after several retries.\n\n💡 Try again in a few moments."
    return "❌ Something went wrong talking to the blockchain. Please try " + again + " again."
