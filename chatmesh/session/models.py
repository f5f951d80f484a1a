"""
Session record: one per user id, stored under `session:<id>`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Optional

from chatmesh.core.types import SessionId
from chatmesh.session.state_machine import SessionContext


@dataclass(frozen=True, slots=True)
class Session:
    """
    Immutable view of a stored session.

    `last_activity_at` never decreases: touched() keeps the larger of the
    stored and supplied timestamps. `is_admin` is set out of band and no
    engine operation changes it.
    """
    id: SessionId
    context: SessionContext
    last_activity_at: float
    created_at: float
    profile_ref: Optional[str] = None
    mood_ref: Optional[str] = None
    is_admin: bool = False

    @classmethod
    def new(cls, session_id: SessionId, now: float, is_admin: bool = False) -> Session:
        return cls(
            id=session_id,
            context=SessionContext.idle(),
            last_activity_at=now,
            created_at=now,
            profile_ref=f"profile:{session_id}",
            mood_ref=f"mood_history:{session_id}",
            is_admin=is_admin,
        )

    def with_context(self, context: SessionContext) -> Session:
        return replace(self, context=context)

    def touched(self, now: float) -> Session:
        return replace(self, last_activity_at=max(self.last_activity_at, now))

    def idle_seconds(self, now: float) -> float:
        return now - self.last_activity_at

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "context": self.context.to_dict(),
            "last_activity_at": self.last_activity_at,
            "created_at": self.created_at,
            "profile_ref": self.profile_ref,
            "mood_ref": self.mood_ref,
            "is_admin": self.is_admin,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Session:
        """
        Decode a stored record.

        Raises:
            KeyError, ValueError, TypeError: malformed record
        """
        return cls(
            id=int(record["id"]),
            context=SessionContext.from_dict(record["context"]),
            last_activity_at=float(record["last_activity_at"]),
            created_at=float(record.get("created_at", record["last_activity_at"])),
            profile_ref=record.get("profile_ref"),
            mood_ref=record.get("mood_ref"),
            is_admin=bool(record.get("is_admin", False)),
        )


@dataclass(frozen=True, slots=True)
class VersionedSession:
    """A session plus the store version it was read at (0 = not stored yet)."""
    session: Session
    version: int

    @property
    def id(self) -> SessionId:
        return self.session.id

    @property
    def context(self) -> SessionContext:
        return self.session.context

    @property
    def exists(self) -> bool:
        return self.version != 0
