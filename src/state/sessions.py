from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


TERMINAL_STATES = frozenset({"done", "cancelled", "failed"})
SUBMITTING = "submitting"


class WorkflowKind(str, Enum):
    REGISTER = "register"
    LICENSE = "license"
    TRANSFER = "transfer"
    VERIFY = "verify"
    BALANCE = "balance"
    MY_ASSETS = "my_assets"
    ASSETS_BY_ADDRESS = "assets_by_address"


def state_name(state: Enum) -> str:
    return str(state.value)


def is_terminal(state: Enum) -> bool:
    return state_name(state) in TERMINAL_STATES


@dataclass(frozen=True)
class Session:
    """
    One user's in-progress workflow.

    Immutable: `advance`/`touch` return new sessions, so a worker never sees
    another worker's half-applied change. `fields` is a read-only mapping.
    """

    identity: str
    kind: WorkflowKind
    state: Enum
    fields: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    created_at: float = 0.0
    updated_at: float = 0.0

    @classmethod
    def begin(cls, identity: str, kind: WorkflowKind, state: Enum, fields: Mapping[str, Any], now: float) -> "Session":
        return cls(identity, kind, state, MappingProxyType(dict(fields)), now, now)

    def advance(self, state: Enum, updates: Mapping[str, Any], now: float) -> "Session":
        merged: Dict[str, Any] = dict(self.fields)
        merged.update(updates)
        return replace(self, state=state, fields=MappingProxyType(merged), updated_at=now)

    def touch(self, now: float) -> "Session":
        return replace(self, updated_at=now)

    @property
    def submitting(self) -> bool:
        return state_name(self.state) == SUBMITTING


class SessionStore:
    """
    At most one active session per identity, in process memory.

    - Thread-safe; the only cross-user structure the engine mutates.
    - Idle expiry: a session untouched for `ttl_seconds` is stale and is
      dropped on next access. A submitting session is exempt while its write
      can still reach an outcome, i.e. for `submit_ttl_seconds`.
    - `clock` is injectable for tests (defaults to `time.monotonic`).
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 900.0,
        submit_ttl_seconds: float = 3600.0,
        clock=time.monotonic,
    ) -> None:
        if ttl_seconds <= 0 or submit_ttl_seconds <= 0:
            raise ValueError("ttl_seconds and submit_ttl_seconds must be > 0")
        self._ttl = ttl_seconds
        self._submit_ttl = submit_ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def _is_stale(self, session: Session, now: float) -> bool:
        limit = self._submit_ttl if session.submitting else self._ttl
        return (now - session.updated_at) >= limit

    def discard_if_stale(self, identity: str) -> Optional[Session]:
        """Drop and return the identity's session if it has gone stale."""
        with self._lock:
            session = self._sessions.get(identity)
            if session is not None and self._is_stale(session, self._clock()):
                del self._sessions[identity]
                return session
        return None

    def get(self, identity: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(identity)
            if session is None:
                return None
            if self._is_stale(session, self._clock()):
                del self._sessions[identity]
                return None
            return session

    def put(self, identity: str, session: Session) -> None:
        if session.identity != identity:
            raise ValueError("session belongs to a different identity")
        with self._lock:
            self._sessions[identity] = session

    def remove(self, identity: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.pop(identity, None)

    def sweep(self) -> int:
        """Drop every stale session; returns how many were dropped."""
        with self._lock:
            now = self._clock()
            stale = [k for k, s in self._sessions.items() if self._is_stale(s, now)]
            for k in stale:
                del self._sessions[k]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


__all__ = [
    "Session",
    "SessionStore",
    "WorkflowKind",
    "is_terminal",
    "state_name",
]
