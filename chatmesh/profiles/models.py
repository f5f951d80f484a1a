"""
Profile and mood records.

Both are plain values; the profile store decides how they are laid out.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Optional

from chatmesh.core import constants as C
from chatmesh.core.errors import ChatMeshError, InputError
from chatmesh.core.types import Result, Ok, Err


@dataclass(frozen=True, slots=True)
class UserProfile:
    """Self-chosen public face of an anonymous user."""
    nickname: str
    avatar_emoji: str
    bio: str
    created_at: float
    updated_at: float

    @classmethod
    def build(
        cls,
        nickname: str,
        avatar_emoji: str,
        bio: str,
        now: float,
        existing: Optional[UserProfile] = None,
    ) -> Result[UserProfile, ChatMeshError]:
        """
        Validate fields and produce the profile to store.

        An existing profile keeps its created_at.
        """
        nickname = nickname.strip()
        avatar_emoji = avatar_emoji.strip()
        bio = bio.strip()

        if not nickname:
            return Err(InputError.invalid_input("nickname", nickname, "nickname is required"))
        if len(nickname) > C.NICKNAME_MAX_LENGTH:
            return Err(InputError.invalid_input(
                "nickname", nickname, f"at most {C.NICKNAME_MAX_LENGTH} characters",
            ))
        if not avatar_emoji:
            return Err(InputError.invalid_input("avatar_emoji", avatar_emoji, "emoji is required"))
        if len(bio) > C.BIO_MAX_LENGTH:
            return Err(InputError.invalid_input(
                "bio", bio[:20], f"at most {C.BIO_MAX_LENGTH} characters",
            ))

        if existing is not None:
            return Ok(replace(
                existing,
                nickname=nickname,
                avatar_emoji=avatar_emoji,
                bio=bio,
                updated_at=now,
            ))
        return Ok(cls(nickname, avatar_emoji, bio, created_at=now, updated_at=now))

    def to_record(self) -> dict[str, Any]:
        return {
            "nickname": self.nickname,
            "avatar_emoji": self.avatar_emoji,
            "bio": self.bio,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> UserProfile:
        return cls(
            nickname=str(record["nickname"]),
            avatar_emoji=str(record["avatar_emoji"]),
            bio=str(record.get("bio", "")),
            created_at=float(record["created_at"]),
            updated_at=float(record.get("updated_at", record["created_at"])),
        )


@dataclass(frozen=True, slots=True)
class MoodEntry:
    mood: str
    note: Optional[str]
    timestamp: float

    @classmethod
    def build(cls, mood: str, note: Optional[str], now: float) -> Result[MoodEntry, ChatMeshError]:
        mood = mood.strip().lower()
        if not mood:
            return Err(InputError.invalid_input("mood", mood, "mood is required"))
        note = note.strip() if note else None
        return Ok(cls(mood, note or None, now))

    def to_record(self) -> dict[str, Any]:
        return {"mood": self.mood, "note": self.note, "timestamp": self.timestamp}

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> MoodEntry:
        return cls(
            mood=str(record["mood"]),
            note=record.get("note"),
            timestamp=float(record["timestamp"]),
        )
