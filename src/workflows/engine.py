from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

from common.limits import KeyedLocks
from common.pinning import UploadError
from common.registry import AssetRegistry
from common.retry_rpc import LedgerError
from state.sessions import Session, SessionStore, WorkflowKind, is_terminal
from state.wallets import NotProvisionedError

from . import texts
from .base import Faucet, Links, Transition, Wallets, Workflow, WorkflowContext
from .errors import OwnershipDenied, ValidationError
from .license import LicenseWorkflow
from .messages import InboundMessage, OutboundMessage, Transport, Uploader, reply
from .queries import AssetsByAddressWorkflow, BalanceWorkflow, MyAssetsWorkflow
from .register import RegisterWorkflow
from .transfer import TransferWorkflow
from .verify import VerifyWorkflow


logger = logging.getLogger(__name__)


ENTRY_COMMANDS: Dict[str, WorkflowKind] = {
    "register": WorkflowKind.REGISTER,
    "license": WorkflowKind.LICENSE,
    "transfer": WorkflowKind.TRANSFER,
    "verify": WorkflowKind.VERIFY,
    "balance": WorkflowKind.BALANCE,
    "myassets": WorkflowKind.MY_ASSETS,
    "assetsbyaddress": WorkflowKind.ASSETS_BY_ADDRESS,
}
CONTROL_COMMANDS = frozenset({"start", "help", "cancel"})


def parse_command(text: str) -> Optional[str]:
    """
    Normalise a command word: "/My_Assets@AssetBot" -> "myassets".

    Returns None when the message isn't a known command, so free text such as
    an asset id or an address is passed to the active step untouched.
    """
    words = (text or "").strip().split()
    if len(words) != 1:
        return None
    word = words[0].lstrip("/").split("@", 1)[0]
    name = word.lower().replace("-", "").replace("_", "")
    if name in ENTRY_COMMANDS or name in CONTROL_COMMANDS:
        return name
    return None


def default_workflows() -> Dict[WorkflowKind, Workflow]:
    flows: Iterable[Workflow] = (
        RegisterWorkflow(),
        LicenseWorkflow(),
        TransferWorkflow(),
        VerifyWorkflow(),
        BalanceWorkflow(),
        MyAssetsWorkflow(),
        AssetsByAddressWorkflow(),
    )
    return {flow.kind: flow for flow in flows}


class WorkflowEngine:
    """
    Routes inbound messages to per-user workflow sessions.

    Messages from one identity are handled one at a time (keyed lock), and a
    write started in `submitting` reaches `done` or `failed` before that
    user's next message is looked at. Every failure ends in exactly one
    outbound message; nothing raised by a workflow reaches the caller.
    """

    def __init__(
        self,
        *,
        sessions: SessionStore,
        registry: AssetRegistry,
        wallets: Wallets,
        uploader: Uploader,
        transport: Transport,
        links: Optional[Links] = None,
        faucet: Optional[Faucet] = None,
        min_gas_balance_wei: int = 10**15,
        workflows: Optional[Dict[WorkflowKind, Workflow]] = None,
    ) -> None:
        self.sessions = sessions
        self.registry = registry
        self.wallets = wallets
        self.uploader = uploader
        self.transport = transport
        self.links = links or Links()
        self.faucet = faucet
        self.min_gas_balance_wei = min_gas_balance_wei
        self.workflows = workflows or default_workflows()
        self._user_locks = KeyedLocks()

    def handle(self, message: InboundMessage) -> None:
        with self._user_locks.hold(message.user_id):
            self._handle(self._context(message))

    # --------------- Routing ---------------
    def _context(self, message: InboundMessage) -> WorkflowContext:
        return WorkflowContext(
            message=message,
            registry=self.registry,
            wallets=self.wallets,
            uploader=self.uploader,
            transport=self.transport,
            links=self.links,
            faucet=self.faucet,
            min_gas_balance_wei=self.min_gas_balance_wei,
        )

    def _handle(self, ctx: WorkflowContext) -> None:
        identity = ctx.identity
        command = parse_command(ctx.message.text) if ctx.message.attachment is None else None
        stale = self.sessions.discard_if_stale(identity)
        if stale is not None:
            logger.info("Session %s/%s for %s expired", stale.kind.value, stale.state.value, identity)

        if command == "help":
            self._send(ctx, reply(texts.HELP))
            return
        if command == "start":
            self._provision(ctx)
            return

        session = self.sessions.get(identity)
        if session is not None and session.submitting:
            self._send(ctx, reply(texts.STILL_SUBMITTING))
            return

        if command == "cancel":
            if session is None:
                self._send(ctx, reply(texts.NOTHING_TO_CANCEL))
                return
            self.sessions.remove(identity)
            logger.info("Cancelled %s for %s in %s", session.kind.value, identity, session.state.value)
            self._send(ctx, reply(texts.cancelled(session.kind)))
            return

        if command in ENTRY_COMMANDS:
            if session is not None:
                logger.info("Dropping %s session for %s", session.kind.value, identity)
                self.sessions.remove(identity)
            self._start(self.workflows[ENTRY_COMMANDS[command]], ctx)
            return

        if session is None:
            if stale is not None:
                self._send(ctx, reply(texts.expired(stale.kind)))
            else:
                self._send(ctx, reply(texts.HELP))
            return

        self._step(self.workflows[session.kind], session, ctx)

    def _provision(self, ctx: WorkflowContext) -> None:
        try:
            record, created = self.wallets.provision(ctx.identity)
        except Exception:
            logger.exception("Wallet provisioning failed for %s", ctx.identity)
            self._send(ctx, reply(texts.UNEXPECTED))
            return
        if created:
            text = (
                "🎉 Welcome! Your wallet has been created.\n\n"
                f"📍 Address:\n{record.address}\n\n"
                "💡 Send /register to protect your first creation.\n\n"
                f"{texts.HELP}"
            )
        else:
            text = f"👋 Welcome back!\n\n📍 Your wallet:\n{record.address}\n\n{texts.HELP}"
        self._send(ctx, reply(text, disable_preview=True))

    # --------------- Transitions ---------------
    def _start(self, workflow: Workflow, ctx: WorkflowContext) -> None:
        try:
            transition = workflow.start(ctx)
        except ValidationError as exc:
            self._send(ctx, reply(exc.prompt))
            return
        except Exception as exc:  # mapped to one user-facing failure
            self._fail(workflow.kind, ctx, exc)
            return
        self._apply(workflow, None, transition, ctx)

    def _step(self, workflow: Workflow, session: Session, ctx: WorkflowContext) -> None:
        try:
            transition = workflow.step(session, ctx)
        except ValidationError as exc:
            self.sessions.put(ctx.identity, session.touch(self.sessions.now()))
            self._send(ctx, reply(exc.prompt))
            return
        except Exception as exc:  # mapped to one user-facing failure
            self._fail(workflow.kind, ctx, exc, session=session)
            return
        self._apply(workflow, session, transition, ctx)

    def _apply(
        self,
        workflow: Workflow,
        session: Optional[Session],
        transition: Transition,
        ctx: WorkflowContext,
    ) -> None:
        now = self.sessions.now()
        if session is None:
            updated = Session.begin(ctx.identity, workflow.kind, transition.state, transition.updates, now)
        else:
            updated = session.advance(transition.state, transition.updates, now)

        if is_terminal(transition.state):
            self.sessions.remove(ctx.identity)
            for message in transition.replies:
                self._send(ctx, message)
            return

        self.sessions.put(ctx.identity, updated)
        try:
            for message in transition.replies:
                self._send(ctx, message)
        except Exception as exc:  # a live session must not outlive a broken reply
            self._fail(workflow.kind, ctx, exc, session=updated)
            return

        if updated.submitting:
            self._submit(workflow, updated, ctx)

    def _submit(self, workflow: Workflow, session: Session, ctx: WorkflowContext) -> None:
        logger.info("Submitting %s for %s", workflow.kind.value, ctx.identity)
        try:
            transition = workflow.submit(session, ctx)
            if not is_terminal(transition.state):
                raise RuntimeError(f"{workflow.kind.value} submit ended in {transition.state.value}")
        except Exception as exc:  # mapped to one user-facing failure
            self._fail(workflow.kind, ctx, exc, session=session)
            return
        logger.info("Finished %s for %s", workflow.kind.value, ctx.identity)
        self._apply(workflow, session, transition, ctx)

    def _fail(
        self,
        kind: WorkflowKind,
        ctx: WorkflowContext,
        exc: Exception,
        *,
        session: Optional[Session] = None,
    ) -> None:
        """End the workflow in `failed` and tell the user once."""
        self.sessions.remove(ctx.identity)
        where = session.state.value if session is not None else "start"
        if isinstance(exc, NotProvisionedError):
            logger.info("%s for %s: %s", kind.value, ctx.identity, exc.reason)
            text = texts.NOT_PROVISIONED
        elif isinstance(exc, OwnershipDenied):
            logger.info("%s for %s denied: %s", kind.value, ctx.identity, exc)
            text = texts.ownership_denied(exc.asset_id, exc.owner)
        elif isinstance(exc, LedgerError):
            logger.warning("%s for %s failed at %s: %r", kind.value, ctx.identity, where, exc)
            text = texts.ledger_failure(kind, exc)
        elif isinstance(exc, UploadError):
            logger.warning("%s for %s upload failed: %s", kind.value, ctx.identity, exc)
            text = texts.UPLOAD_FAILED
        else:
            logger.exception("%s for %s crashed at %s", kind.value, ctx.identity, where)
            text = texts.UNEXPECTED
        self._send(ctx, reply(text))

    def _send(self, ctx: WorkflowContext, message: OutboundMessage) -> None:
        self.transport.send(ctx.message.chat_id, message)


__all__ = ["ENTRY_COMMANDS", "WorkflowEngine", "default_workflows", "parse_command"]
