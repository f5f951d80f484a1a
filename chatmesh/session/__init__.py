"""
Session module: context state machine, versioned repository and reaper.
"""

from chatmesh.session.state_machine import (
    ContextKind,
    SessionContext,
    Trigger,
    validate,
)
from chatmesh.session.models import Session, VersionedSession
from chatmesh.session.repository import SessionRepository, session_key

__all__ = [
    "ContextKind",
    "SessionContext",
    "Trigger",
    "validate",
    "Session",
    "VersionedSession",
    "SessionRepository",
    "session_key",
]
