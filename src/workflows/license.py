from __future__ import annotations

from enum import Enum

from common.registry import License
from state.sessions import Session, WorkflowKind

from .base import Transition, Workflow, WorkflowContext, license_line, require_owner, to
from .validation import parse_asset_id, parse_price, parse_royalty, parse_yes_no


class LicenseState(str, Enum):
    AWAIT_ASSET_ID = "await_asset_id"
    AWAIT_PRICE = "await_price"
    AWAIT_COMMERCIAL_FLAG = "await_commercial_flag"
    AWAIT_ROYALTY = "await_royalty"
    SUBMITTING = "submitting"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


class LicenseWorkflow(Workflow):
    """/license: asset id -> price -> commercial? -> royalty -> setLicense."""

    kind = WorkflowKind.LICENSE

    def start(self, ctx: WorkflowContext) -> Transition:
        ctx.wallets.address_of(ctx.identity)
        return to(
            LicenseState.AWAIT_ASSET_ID,
            "📜 Set License Terms\n\n"
            "Enter the Asset ID you want to license:\n\n"
            "💡 Use /myassets to see your assets\n"
            "📝 Or send /cancel to exit",
        )

    def step(self, session: Session, ctx: WorkflowContext) -> Transition:
        state = LicenseState(session.state)

        if state is LicenseState.AWAIT_ASSET_ID:
            asset_id = parse_asset_id(ctx.text)
            require_owner(ctx, asset_id)
            return to(
                LicenseState.AWAIT_PRICE,
                f"✅ Asset #{asset_id} verified!\n\n"
                f"Current terms: {license_line(ctx, asset_id)}\n\n"
                "💰 Enter the license price in IP tokens:\n\n"
                "Example: 0.1 (or 0 for free)",
                assetId=asset_id,
            )

        if state is LicenseState.AWAIT_PRICE:
            display, wei = parse_price(ctx.text)
            return to(
                LicenseState.AWAIT_COMMERCIAL_FLAG,
                f"💰 Price: {display} IP\n\n"
                "💼 Allow commercial use?\n\n"
                "Type: yes or no",
                price=display,
                priceWei=wei,
            )

        if state is LicenseState.AWAIT_COMMERCIAL_FLAG:
            commercial = parse_yes_no(ctx.text)
            return to(
                LicenseState.AWAIT_ROYALTY,
                f"💼 Commercial use: {'Yes' if commercial else 'No'}\n\n"
                "📊 Enter royalty percentage (0-100):\n\n"
                "Example: 10 (for 10%)",
                isCommercial=commercial,
            )

        if state is LicenseState.AWAIT_ROYALTY:
            royalty = parse_royalty(ctx.text)
            return to(LicenseState.SUBMITTING, "⛓️ Setting license on-chain...", royaltyPercent=royalty)

        raise ValueError(f"license cannot step from {state.value}")

    def submit(self, session: Session, ctx: WorkflowContext) -> Transition:
        fields = session.fields
        asset_id = fields["assetId"]
        terms = License(
            price_wei=fields["priceWei"],
            is_commercial=fields["isCommercial"],
            royalty_percent=fields["royaltyPercent"],
        )
        credential = ctx.wallets.resolve(ctx.identity)
        receipt = ctx.registry.set_license(credential, asset_id, terms)
        return to(
            LicenseState.DONE,
            "✅ License Set Successfully!\n\n"
            f"🆔 Asset: #{asset_id}\n"
            f"💰 Price: {fields['price']} IP\n"
            f"💼 Commercial: {'true' if terms.is_commercial else 'false'}\n"
            f"📊 Royalty: {terms.royalty_percent}%\n\n"
            f"🔗 Transaction: {ctx.links.tx(receipt.tx_hash)}",
            txHash=receipt.tx_hash,
        )


__all__ = ["LicenseState", "LicenseWorkflow"]
