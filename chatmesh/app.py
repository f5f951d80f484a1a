"""
Application Wiring

ChatMesh builds every component from one ChatMeshConfig and owns the
store connections:

    mesh = await ChatMesh.create(config, transport)
    await mesh.dispatcher.handle_text(42, "/find")
    await mesh.close()

Components share one ChatMeshMetrics instance and one clock.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Optional

from chatmesh.bot.dispatcher import Dispatcher
from chatmesh.core.config import ChatMeshConfig
from chatmesh.core.errors import StoreError
from chatmesh.core.types import Clock, Result, Ok, system_clock
from chatmesh.matchmaking.engine import MatchmakingEngine
from chatmesh.moderation.filter import ContentFilter
from chatmesh.observability.metrics import ChatMeshMetrics
from chatmesh.profiles.store import InMemoryProfileStore, ProfileStore
from chatmesh.reliability.retry import RetryPolicy
from chatmesh.rooms.manager import RoomManager
from chatmesh.session.reaper import InactivityReaper, ReaperSweep
from chatmesh.session.repository import SessionRepository
from chatmesh.storage import BackendType, KeyValueStore, create_store
from chatmesh.transport.protocols import Transport

logger = logging.getLogger(__name__)


@dataclass
class ChatMesh:
    """All engine components for one process."""
    config: ChatMeshConfig
    store: KeyValueStore
    profiles: ProfileStore
    metrics: ChatMeshMetrics
    repo: SessionRepository
    engine: MatchmakingEngine
    rooms: RoomManager
    reaper: InactivityReaper
    dispatcher: Dispatcher
    sweep: Optional[ReaperSweep] = None

    @classmethod
    def build(
        cls,
        config: ChatMeshConfig,
        transport: Transport,
        store: KeyValueStore,
        profiles: ProfileStore,
        clock: Clock = system_clock,
        rng: Optional[random.Random] = None,
        metrics: Optional[ChatMeshMetrics] = None,
    ) -> ChatMesh:
        """Wire components around an already-connected store."""
        metrics = metrics or ChatMeshMetrics()
        rel = config.reliability
        store_policy = RetryPolicy(
            max_retries=max(0, rel.store_retry_max_attempts - 1),
            base_delay_ms=rel.store_retry_base_ms,
            max_delay_ms=rel.store_retry_max_ms,
        )
        conflict_policy = RetryPolicy.for_conflicts(
            max_attempts=rel.cas_max_attempts,
            base_delay_ms=rel.cas_backoff_base_ms,
            max_delay_ms=rel.cas_backoff_max_ms,
        )

        repo = SessionRepository(store, clock, store_policy, conflict_policy, metrics)
        engine = MatchmakingEngine(repo, config.matchmaking, rng)
        rooms = RoomManager(store, repo, transport, config.rooms, store_policy)
        reaper = InactivityReaper(repo, engine, rooms, transport, config.reaper)
        dispatcher = Dispatcher(
            repo,
            engine,
            rooms,
            reaper,
            profiles,
            ContentFilter(config.moderation.blocked_words),
            transport,
            admin_ids=config.admin_ids,
        )
        sweep = (
            ReaperSweep(reaper, repo, config.reaper.sweep_interval_s)
            if config.reaper.sweep_interval_s > 0 else None
        )
        return cls(config, store, profiles, metrics, repo, engine, rooms, reaper, dispatcher, sweep)

    @classmethod
    async def create(
        cls,
        config: ChatMeshConfig,
        transport: Transport,
        clock: Clock = system_clock,
        rng: Optional[random.Random] = None,
    ) -> Result[ChatMesh, StoreError]:
        """
        Build the store selected by config, connect it and wire everything.

        The Redis backend shares its client with the Redis profile store.
        """
        store = create_store(config.store)
        profiles: ProfileStore

        if config.store.backend == BackendType.REDIS:
            from chatmesh.profiles.redis_store import RedisProfileStore

            connected = await store.connect()
            if connected.is_err():
                return connected
            profiles = RedisProfileStore(store.client, key_prefix=config.store.redis.key_prefix)
        else:
            profiles = InMemoryProfileStore()

        mesh = cls.build(config, transport, store, profiles, clock, rng)
        if mesh.sweep is not None:
            await mesh.sweep.start()
        logger.info("Chat mesh ready (backend=%s)", config.store.backend.name)
        return Ok(mesh)

    async def close(self) -> None:
        if self.sweep is not None:
            await self.sweep.stop()
        await self.profiles.close()
        await self.store.close()
