"""
Session State Machine: Conversation Context with Guard Conditions

Contexts (exactly one at any time):
    IDLE       → Not searching, no partner, no room
    SEARCHING  → Waiting in the matchmaking pool
    PAIRED     → Connected one-to-one with a partner
    IN_ROOM    → Member of a group room

Transitions:
    IDLE       → SEARCHING  : FIND
    SEARCHING  → SEARCHING  : FIND (idempotent re-issue)
    IDLE       → PAIRED     : MATCH (matchmaking engine only)
    SEARCHING  → PAIRED     : MATCH (matchmaking engine only)
    SEARCHING  → IDLE       : CANCEL
    IDLE       → IN_ROOM    : JOIN_ROOM
    SEARCHING  → IN_ROOM    : JOIN_ROOM (pending search abandoned)
    IDLE       → IDLE       : CREATE_ROOM (guard only)
    SEARCHING  → SEARCHING  : CREATE_ROOM (guard only)
    PAIRED     → IDLE       : LEAVE, PARTNER_LEFT, REAP
    IN_ROOM    → IDLE       : LEAVE, REAP
    SEARCHING  → IDLE       : REAP
    any        → IDLE       : START (forced reset)

Design:
    - Contexts are immutable values; the store record is the only copy
      that matters and it changes only through compare-and-set
    - validate() is pure: it never touches the store
    - Rejections are typed errors (AlreadyBusy, NotConnected)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from chatmesh.core.errors import ChatMeshError, InputError, SessionError
from chatmesh.core.types import Result, Ok, Err, RoomId, SessionId


# =============================================================================
# CONTEXT KIND ENUMERATION
# =============================================================================
class ContextKind(Enum):
    """
    The four mutually exclusive session contexts.

    Values are the wire names used in stored records.
    """
    IDLE = "IDLE"
    SEARCHING = "SEARCHING"
    PAIRED = "PAIRED"
    IN_ROOM = "IN_ROOM"

    @property
    def is_busy(self) -> bool:
        """Busy sessions cannot search, join or create rooms."""
        return self in (ContextKind.PAIRED, ContextKind.IN_ROOM)

    @property
    def is_connected(self) -> bool:
        return self.is_busy


# =============================================================================
# SESSION CONTEXT (TAGGED UNION)
# =============================================================================
@dataclass(frozen=True, slots=True)
class SessionContext:
    """
    Idle | Searching | PairedWith(partner_id) | InRoom(room_id).

    `ref` holds the partner id for PAIRED, the room id for IN_ROOM and is
    None otherwise; the constructors below keep that invariant.
    """
    kind: ContextKind
    ref: Union[SessionId, RoomId, None] = None

    def __post_init__(self) -> None:
        if self.kind is ContextKind.PAIRED and not isinstance(self.ref, int):
            raise ValueError(f"PAIRED context needs an int partner id, got {self.ref!r}")
        if self.kind is ContextKind.IN_ROOM and not isinstance(self.ref, str):
            raise ValueError(f"IN_ROOM context needs a room id, got {self.ref!r}")
        if self.kind in (ContextKind.IDLE, ContextKind.SEARCHING) and self.ref is not None:
            raise ValueError(f"{self.kind.name} context carries no reference")

    @classmethod
    def idle(cls) -> SessionContext:
        return _IDLE

    @classmethod
    def searching(cls) -> SessionContext:
        return _SEARCHING

    @classmethod
    def paired(cls, partner_id: SessionId) -> SessionContext:
        return cls(ContextKind.PAIRED, partner_id)

    @classmethod
    def in_room(cls, room_id: RoomId) -> SessionContext:
        return cls(ContextKind.IN_ROOM, room_id)

    @property
    def partner_id(self) -> Optional[SessionId]:
        return self.ref if self.kind is ContextKind.PAIRED else None  # type: ignore[return-value]

    @property
    def room_id(self) -> Optional[RoomId]:
        return self.ref if self.kind is ContextKind.IN_ROOM else None  # type: ignore[return-value]

    def is_paired_with(self, session_id: SessionId) -> bool:
        return self.kind is ContextKind.PAIRED and self.ref == session_id

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "ref": self.ref}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionContext:
        """
        Decode a stored context.

        Raises:
            ValueError: unknown kind or a reference that does not fit it
        """
        kind = ContextKind(data["kind"])
        ref = data.get("ref")
        if kind is ContextKind.PAIRED and ref is not None:
            ref = int(ref)
        return cls(kind, ref)

    def describe(self) -> str:
        if self.kind is ContextKind.PAIRED:
            return f"paired with {self.ref}"
        if self.kind is ContextKind.IN_ROOM:
            return f"in room {self.ref}"
        return self.kind.name.lower()


_IDLE = SessionContext(ContextKind.IDLE)
_SEARCHING = SessionContext(ContextKind.SEARCHING)


# =============================================================================
# TRIGGERS
# =============================================================================
class Trigger(Enum):
    """Events that may change a session's context."""
    FIND = "find"
    MATCH = "match"
    CANCEL = "cancel"
    JOIN_ROOM = "join_room"
    CREATE_ROOM = "create_room"
    LEAVE = "leave"
    PARTNER_LEFT = "partner_left"
    REAP = "reap"
    START = "start"


# =============================================================================
# TRANSITION DEFINITIONS
# =============================================================================
@dataclass(frozen=True, slots=True)
class ContextTransition:
    """One legal (from, trigger) -> to edge."""
    from_kind: ContextKind
    to_kind: ContextKind
    trigger: Trigger


_K = ContextKind
_T = Trigger

VALID_TRANSITIONS: frozenset[ContextTransition] = frozenset({
    ContextTransition(_K.IDLE, _K.SEARCHING, _T.FIND),
    ContextTransition(_K.SEARCHING, _K.SEARCHING, _T.FIND),

    ContextTransition(_K.IDLE, _K.PAIRED, _T.MATCH),
    ContextTransition(_K.SEARCHING, _K.PAIRED, _T.MATCH),

    ContextTransition(_K.SEARCHING, _K.IDLE, _T.CANCEL),

    ContextTransition(_K.IDLE, _K.IN_ROOM, _T.JOIN_ROOM),
    ContextTransition(_K.SEARCHING, _K.IN_ROOM, _T.JOIN_ROOM),

    ContextTransition(_K.IDLE, _K.IDLE, _T.CREATE_ROOM),
    ContextTransition(_K.SEARCHING, _K.SEARCHING, _T.CREATE_ROOM),

    ContextTransition(_K.PAIRED, _K.IDLE, _T.LEAVE),
    ContextTransition(_K.IN_ROOM, _K.IDLE, _T.LEAVE),

    ContextTransition(_K.PAIRED, _K.IDLE, _T.PARTNER_LEFT),

    ContextTransition(_K.SEARCHING, _K.IDLE, _T.REAP),
    ContextTransition(_K.PAIRED, _K.IDLE, _T.REAP),
    ContextTransition(_K.IN_ROOM, _K.IDLE, _T.REAP),

    *(ContextTransition(kind, _K.IDLE, _T.START) for kind in ContextKind),
})

_TARGETS: dict[tuple[ContextKind, Trigger], ContextKind] = {
    (t.from_kind, t.trigger): t.to_kind for t in VALID_TRANSITIONS
}


# =============================================================================
# VALIDATION
# =============================================================================
def validate(
    session_id: SessionId,
    context: SessionContext,
    trigger: Trigger,
    ref: Union[SessionId, RoomId, None] = None,
) -> Result[SessionContext, ChatMeshError]:
    """
    Decide the context `trigger` leads to from `context`.

    Args:
        session_id: Session the context belongs to (for error context)
        context: Current context
        trigger: Event being applied
        ref: Partner id for MATCH, room id for JOIN_ROOM

    Returns:
        Ok(target context) when the edge exists
        Err(SessionError.already_busy) for FIND/JOIN_ROOM/CREATE_ROOM/MATCH
            from PAIRED or IN_ROOM
        Err(SessionError.not_connected) for LEAVE/CANCEL/PARTNER_LEFT/REAP
            from a context they do not apply to
    """
    target = _TARGETS.get((context.kind, trigger))

    if target is None:
        if trigger in (Trigger.FIND, Trigger.MATCH, Trigger.JOIN_ROOM, Trigger.CREATE_ROOM):
            return Err(SessionError.already_busy(session_id, context.describe()))
        return Err(SessionError.not_connected(session_id))

    if target is ContextKind.PAIRED:
        if not isinstance(ref, int) or ref == session_id:
            return Err(InputError.invalid_input("partner_id", ref, "must be another session"))
        return Ok(SessionContext.paired(ref))

    if target is ContextKind.IN_ROOM:
        if not isinstance(ref, str) or not ref:
            return Err(InputError.invalid_input("room_id", ref, "must be a room id"))
        return Ok(SessionContext.in_room(ref))

    if target is context.kind:
        return Ok(context)
    return Ok(SessionContext.idle() if target is ContextKind.IDLE else SessionContext.searching())


def can_apply(context: SessionContext, trigger: Trigger) -> bool:
    """Check whether a trigger has an edge from this context."""
    return (context.kind, trigger) in _TARGETS


def available_triggers(context: SessionContext) -> list[Trigger]:
    """List triggers with an edge out of this context."""
    return [t for t in Trigger if (context.kind, t) in _TARGETS]
