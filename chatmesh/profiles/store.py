"""
Profile Store Protocol and In-Memory Backend

Profiles and moods are owned by one user each, so they need no
compare-and-set; the only shared record is the anonymous mood tally.
"""

from __future__ import annotations

import asyncio
from abc import abstractmethod
from collections import Counter, defaultdict, deque
from typing import Optional, Protocol, runtime_checkable

from chatmesh.core import constants as C
from chatmesh.core.errors import StoreError
from chatmesh.core.types import Result, Ok, SessionId
from chatmesh.profiles.models import MoodEntry, UserProfile


@runtime_checkable
class ProfileStore(Protocol):
    """
    Persistence for profiles and mood history.

    Mood history is most recent first and never longer than
    MOOD_HISTORY_LIMIT entries; the statistics count every mood ever
    recorded, including entries trimmed from a history.
    """

    @abstractmethod
    async def save_profile(self, session_id: SessionId, profile: UserProfile) -> Result[None, StoreError]:
        ...

    @abstractmethod
    async def get_profile(self, session_id: SessionId) -> Result[Optional[UserProfile], StoreError]:
        ...

    @abstractmethod
    async def append_mood(self, session_id: SessionId, entry: MoodEntry) -> Result[None, StoreError]:
        ...

    @abstractmethod
    async def get_moods(self, session_id: SessionId) -> Result[list[MoodEntry], StoreError]:
        ...

    @abstractmethod
    async def get_mood_stats(self) -> Result[dict[str, int], StoreError]:
        ...

    async def close(self) -> None:
        ...


class InMemoryProfileStore:
    """
    Process-local ProfileStore for tests and the demo.

    Usage:
        profiles = InMemoryProfileStore()
        await profiles.append_mood(42, entry)
        (await profiles.get_mood_stats()).unwrap()  # {"happy": 1}
    """

    __slots__ = ("_profiles", "_moods", "_stats", "_history_limit", "_lock")

    def __init__(self, history_limit: int = C.MOOD_HISTORY_LIMIT) -> None:
        self._profiles: dict[SessionId, UserProfile] = {}
        self._moods: defaultdict[SessionId, deque[MoodEntry]] = defaultdict(
            lambda: deque(maxlen=history_limit)
        )
        self._stats: Counter[str] = Counter()
        self._history_limit = history_limit
        self._lock = asyncio.Lock()

    async def save_profile(self, session_id: SessionId, profile: UserProfile) -> Result[None, StoreError]:
        async with self._lock:
            self._profiles[session_id] = profile
        return Ok(None)

    async def get_profile(self, session_id: SessionId) -> Result[Optional[UserProfile], StoreError]:
        return Ok(self._profiles.get(session_id))

    async def append_mood(self, session_id: SessionId, entry: MoodEntry) -> Result[None, StoreError]:
        async with self._lock:
            self._moods[session_id].appendleft(entry)
            self._stats[entry.mood] += 1
        return Ok(None)

    async def get_moods(self, session_id: SessionId) -> Result[list[MoodEntry], StoreError]:
        return Ok(list(self._moods.get(session_id, ())))

    async def get_mood_stats(self) -> Result[dict[str, int], StoreError]:
        return Ok(dict(self._stats))

    async def close(self) -> None:
        pass
