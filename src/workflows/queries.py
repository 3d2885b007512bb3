from __future__ import annotations

from enum import Enum

from state.sessions import Session, WorkflowKind

from .base import Transition, Workflow, WorkflowContext, describe_assets, to
from .validation import format_ip, parse_address


class QueryState(str, Enum):
    AWAIT_ADDRESS = "await_address"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


class _OneShot(Workflow):
    """A command answered straight from `start`; it never opens a session."""

    def step(self, session: Session, ctx: WorkflowContext) -> Transition:
        raise ValueError(f"{self.kind.value} has no steps")


class BalanceWorkflow(_OneShot):
    kind = WorkflowKind.BALANCE

    def start(self, ctx: WorkflowContext) -> Transition:
        address = ctx.wallets.address_of(ctx.identity)
        balance = ctx.registry.balance_of(address)
        return to(
            QueryState.DONE,
            "💰 Wallet Balance\n\n"
            f"📍 Address:\n{address}\n\n"
            f"💎 Balance: {format_ip(balance)} IP\n\n"
            f"🔗 Explorer: {ctx.links.address(address)}",
        )


class MyAssetsWorkflow(_OneShot):
    kind = WorkflowKind.MY_ASSETS

    def start(self, ctx: WorkflowContext) -> Transition:
        address = ctx.wallets.address_of(ctx.identity)
        replies = describe_assets(ctx, address, heading="📚 Your Assets")
        return to(QueryState.DONE, *replies)


class AssetsByAddressWorkflow(Workflow):
    kind = WorkflowKind.ASSETS_BY_ADDRESS

    def start(self, ctx: WorkflowContext) -> Transition:
        return to(
            QueryState.AWAIT_ADDRESS,
            "🔍 View Assets by Address\n\n"
            "Enter a wallet address:\n\n"
            "Format: 0x...\n"
            "📝 Or send /cancel to exit",
        )

    def step(self, session: Session, ctx: WorkflowContext) -> Transition:
        address = parse_address(ctx.text)
        replies = describe_assets(ctx, address, heading="📚 Assets of")
        return to(QueryState.DONE, *replies, address=address)


__all__ = ["AssetsByAddressWorkflow", "BalanceWorkflow", "MyAssetsWorkflow", "QueryState"]
