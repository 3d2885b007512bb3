"""
Bot state: the encrypted durable object (wallets, poll offset) kept in S3,
the wallet store built on it, and the in-memory conversation sessions.
"""

from .models import BotState, WalletRecord
from .sessions import Session, SessionStore, WorkflowKind

__all__ = ["BotState", "Session", "SessionStore", "WalletRecord", "WorkflowKind"]
