"""
Room record, stored under `room:<id>`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from chatmesh.core.types import RoomId, SessionId


@dataclass(frozen=True, slots=True)
class Room:
    """
    A group room.

    Invariants kept by RoomManager: len(members) <= capacity, and a room
    whose last member leaves is deleted rather than stored empty.
    """
    id: RoomId
    name: str
    capacity: int
    members: frozenset[SessionId] = frozenset()
    created_at: float = 0.0

    @property
    def is_full(self) -> bool:
        return len(self.members) >= self.capacity

    @property
    def is_empty(self) -> bool:
        return not self.members

    def has_member(self, session_id: SessionId) -> bool:
        return session_id in self.members

    def with_member(self, session_id: SessionId) -> Room:
        return replace(self, members=self.members | {session_id})

    def without_member(self, session_id: SessionId) -> Room:
        return replace(self, members=self.members - {session_id})

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "capacity": self.capacity,
            "members": sorted(self.members),
            "created_at": self.created_at,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Room:
        return cls(
            id=str(record["id"]),
            name=str(record["name"]),
            capacity=int(record["capacity"]),
            members=frozenset(int(m) for m in record.get("members", ())),
            created_at=float(record.get("created_at", 0.0)),
        )


@dataclass(frozen=True, slots=True)
class VersionedRoom:
    room: Room
    version: int


@dataclass(frozen=True, slots=True)
class BroadcastReport:
    """Outcome of a fan-out: failures are counted, never raised."""
    delivered: int = 0
    failed: int = 0

    @property
    def attempted(self) -> int:
        return self.delivered + self.failed
