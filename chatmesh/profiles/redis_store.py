"""
Redis Profile Store
===================

Memory Layout:
--------------
- `profile:<id>`       Hash: nickname, avatar_emoji, bio, created_at, updated_at
- `mood_history:<id>`  List of JSON entries, newest at index 0, trimmed to 30
- `mood_stats`         Hash: mood -> count (HINCRBY)

An append runs LPUSH, LTRIM and HINCRBY in one MULTI/EXEC so the tally
never drifts from the histories. Shares the client (and key prefix) of the
session RedisStore.

License: MIT
"""

from __future__ import annotations

import json
import logging
from typing import Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from chatmesh.core import constants as C
from chatmesh.core.errors import StoreError
from chatmesh.core.types import Result, Ok, Err, SessionId
from chatmesh.profiles.models import MoodEntry, UserProfile

logger = logging.getLogger(__name__)


class RedisProfileStore:
    """
    ProfileStore backed by Redis hashes and capped lists.

    Example:
        >>> profiles = RedisProfileStore(store.client, key_prefix="chatmesh:")
        >>> await profiles.append_mood(42, entry)
    """

    __slots__ = ("_client", "_prefix", "_history_limit")

    def __init__(
        self,
        client: aioredis.Redis,
        key_prefix: str = "",
        history_limit: int = C.MOOD_HISTORY_LIMIT,
    ) -> None:
        self._client = client
        self._prefix = key_prefix
        self._history_limit = history_limit

    def _profile_key(self, session_id: SessionId) -> str:
        return f"{self._prefix}{C.PROFILE_KEY_PREFIX}{session_id}"

    def _history_key(self, session_id: SessionId) -> str:
        return f"{self._prefix}{C.MOOD_HISTORY_KEY_PREFIX}{session_id}"

    @property
    def _stats_key(self) -> str:
        return f"{self._prefix}{C.MOOD_STATS_KEY}"

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    async def save_profile(self, session_id: SessionId, profile: UserProfile) -> Result[None, StoreError]:
        key = self._profile_key(session_id)
        mapping = {k: str(v) for k, v in profile.to_record().items()}
        try:
            await self._client.hset(key, mapping=mapping)
        except RedisError as e:
            return Err(StoreError.unavailable("save_profile", key, e))
        return Ok(None)

    async def get_profile(self, session_id: SessionId) -> Result[Optional[UserProfile], StoreError]:
        key = self._profile_key(session_id)
        try:
            data: Dict[str, str] = await self._client.hgetall(key)
        except RedisError as e:
            return Err(StoreError.unavailable("get_profile", key, e))

        if not data:
            return Ok(None)
        try:
            return Ok(UserProfile.from_record(data))
        except (KeyError, ValueError, TypeError) as e:
            return Err(StoreError.corrupt_record(key, str(e), e))

    # -------------------------------------------------------------------------
    # Moods
    # -------------------------------------------------------------------------

    async def append_mood(self, session_id: SessionId, entry: MoodEntry) -> Result[None, StoreError]:
        key = self._history_key(session_id)
        payload = json.dumps(entry.to_record(), separators=(",", ":"))
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.lpush(key, payload)
                pipe.ltrim(key, 0, self._history_limit - 1)
                pipe.hincrby(self._stats_key, entry.mood, 1)
                await pipe.execute()
        except RedisError as e:
            return Err(StoreError.unavailable("append_mood", key, e))
        return Ok(None)

    async def get_moods(self, session_id: SessionId) -> Result[list[MoodEntry], StoreError]:
        key = self._history_key(session_id)
        try:
            raw: List[str] = await self._client.lrange(key, 0, self._history_limit - 1)
        except RedisError as e:
            return Err(StoreError.unavailable("get_moods", key, e))

        entries: list[MoodEntry] = []
        for item in raw:
            try:
                entries.append(MoodEntry.from_record(json.loads(item)))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning("Skipping undecodable mood entry in %s: %s", key, e)
        return Ok(entries)

    async def get_mood_stats(self) -> Result[dict[str, int], StoreError]:
        try:
            data: Dict[str, str] = await self._client.hgetall(self._stats_key)
        except RedisError as e:
            return Err(StoreError.unavailable("get_mood_stats", self._stats_key, e))
        try:
            return Ok({mood: int(count) for mood, count in data.items()})
        except ValueError as e:
            return Err(StoreError.corrupt_record(self._stats_key, str(e), e))

    async def close(self) -> None:
        # The client belongs to the session RedisStore.
        pass
