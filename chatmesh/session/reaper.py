"""
Inactivity Reaper

Lazy path: InactivityReaper.check() runs first for every inbound
non-command event. A non-Idle session that has been silent for longer than
the timeout is torn down exactly like an explicit leave (pair or room; a
Searching session is reset, or released as a pair when another find paired
it after the staleness check), the other party is told, and the caller
gets Err(SessionError.inactivity_disconnected) so the message is not
relayed. Otherwise the session is touched and processing continues.

Sweep path: ReaperSweep periodically scans every session record and
applies the same teardown to stale sessions that never send again. It is
off unless ReaperConfig.sweep_interval_s > 0; the lazy check always runs.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Optional

from chatmesh.bot import messages as M
from chatmesh.core.config import ReaperConfig
from chatmesh.core.errors import ChatMeshError, ErrorCode, SessionError
from chatmesh.core.types import Result, Ok, Err, SessionId
from chatmesh.matchmaking.engine import MatchmakingEngine
from chatmesh.rooms.manager import RoomManager
from chatmesh.session.models import Session, VersionedSession
from chatmesh.session.repository import SessionRepository
from chatmesh.session.state_machine import ContextKind, Trigger, validate
from chatmesh.transport.protocols import OutboundMessage, Transport, deliver

logger = logging.getLogger(__name__)


class InactivityReaper:
    """
    Usage:
        reaper = InactivityReaper(repo, engine, rooms, transport)
        checked = await reaper.check(42)
        if checked.is_err():
            return  # disconnected for inactivity, message dropped
    """

    __slots__ = ("_repo", "_engine", "_rooms", "_transport", "_config")

    def __init__(
        self,
        repo: SessionRepository,
        engine: MatchmakingEngine,
        rooms: RoomManager,
        transport: Transport,
        config: Optional[ReaperConfig] = None,
    ) -> None:
        self._repo = repo
        self._engine = engine
        self._rooms = rooms
        self._transport = transport
        self._config = config or ReaperConfig()

    def is_stale(self, session: Session, now: float) -> bool:
        return (
            session.context.kind is not ContextKind.IDLE
            and session.idle_seconds(now) > self._config.inactivity_timeout_s
        )

    async def check(self, session_id: SessionId) -> Result[VersionedSession, ChatMeshError]:
        """
        Reap or touch.

        Returns:
            Ok(touched session) when the session may proceed
            Err(SessionError.inactivity_disconnected) after a teardown
        """
        now = self._repo.clock()
        loaded = await self._repo.load(session_id)
        if loaded.is_err():
            return loaded

        session = loaded.value.session
        if self.is_stale(session, now):
            idle = session.idle_seconds(now)
            reaped = await self.reap(session, trigger="lazy")
            if reaped.is_err():
                return reaped
            # The event still counts as activity for the now-Idle session.
            await self._repo.touch(session_id, now)
            return Err(SessionError.inactivity_disconnected(session_id, idle))

        return await self._repo.touch(session_id, now)

    async def reap(self, session: Session, trigger: str) -> Result[bool, ChatMeshError]:
        """
        Tear down whatever the session is connected to and notify both sides.

        Returns Ok(False) when there was nothing left to tear down.
        """
        context = session.context

        if context.kind is ContextKind.PAIRED:
            ended = await self._engine.disconnect(session.id, Trigger.REAP)
            if ended.is_err():
                return self._skip_if_moved(session, ended.error)
            await deliver(self._transport, ended.value, OutboundMessage.plain(M.PARTNER_INACTIVE))

        elif context.kind is ContextKind.IN_ROOM:
            left = await self._rooms.leave(context.room_id, session.id)
            if left.is_err():
                return left

        elif context.kind is ContextKind.SEARCHING:
            reset = await self._end_search(session.id)
            if reset.is_err():
                if reset.error.code is not ErrorCode.NOT_CONNECTED:
                    return reset
                fresh = await self._repo.load(session.id)
                if fresh.is_err():
                    return fresh
                if fresh.value.context.kind is not ContextKind.PAIRED:
                    return self._skip_if_moved(session, reset.error)
                # Another session's find paired us after the staleness check.
                return await self.reap(fresh.value.session, trigger)

        else:
            return Ok(False)

        await deliver(self._transport, session.id, OutboundMessage.plain(M.SELF_INACTIVE))
        self._repo.metrics.sessions_reaped.inc(trigger=trigger)
        logger.info(
            "Reaped session %s (%s) after %.0fs idle",
            session.id, context.describe(), session.idle_seconds(self._repo.clock()),
        )
        return Ok(True)

    async def _end_search(self, session_id: SessionId) -> Result[VersionedSession, ChatMeshError]:
        """Searching -> Idle; Err(NotConnected) once the record left Searching."""

        def reset(current: Session) -> Result[Optional[Session], ChatMeshError]:
            if current.context.kind is not ContextKind.SEARCHING:
                return Err(SessionError.not_connected(current.id))
            target = validate(current.id, current.context, Trigger.REAP)
            if target.is_err():
                return target
            return Ok(current.with_context(target.value))

        return await self._repo.update(session_id, reset, "session.reap")

    def _skip_if_moved(self, session: Session, error: ChatMeshError) -> Result[bool, ChatMeshError]:
        # A concurrent leave already reset the record.
        if error.code is ErrorCode.NOT_CONNECTED:
            logger.debug("Session %s already released before reaping", session.id)
            return Ok(False)
        return Err(error)


class ReaperSweep:
    """
    Background task applying the reaper to sessions that stay silent.

    Usage:
        sweep = ReaperSweep(reaper, repo, interval_s=60)
        await sweep.start()
        ...
        await sweep.stop()
    """

    __slots__ = ("_reaper", "_repo", "_interval_s", "_task")

    def __init__(
        self,
        reaper: InactivityReaper,
        repo: SessionRepository,
        interval_s: float,
    ) -> None:
        if interval_s <= 0:
            raise ValueError("sweep interval must be positive")
        self._reaper = reaper
        self._repo = repo
        self._interval_s = interval_s
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the sweep loop. Idempotent."""
        if self.running:
            return

        async def sweep_loop() -> None:
            while True:
                try:
                    await asyncio.sleep(self._interval_s)
                    await self.sweep_once()
                except asyncio.CancelledError:
                    break
                except Exception:
                    logger.exception("Inactivity sweep failed; retrying next interval")

        self._task = asyncio.create_task(sweep_loop())
        logger.info("Inactivity sweep started (every %.0fs)", self._interval_s)

    async def stop(self) -> None:
        """Stop the sweep loop and wait for it to exit."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def sweep_once(self) -> int:
        """Reap every stale session found by one scan; returns how many were reaped."""
        scanned = await self._repo.scan()
        if scanned.is_err():
            logger.warning("Inactivity sweep could not scan sessions: %s", scanned.error)
            return 0

        counts = Counter(record.session.context.kind for record in scanned.value)
        for kind in ContextKind:
            self._repo.metrics.sessions.set(counts[kind], context=kind.value.lower())

        reaped = 0
        for record in scanned.value:
            if not self._reaper.is_stale(record.session, self._repo.clock()):
                continue
            # The scan is a snapshot; the session may have spoken since.
            fresh = await self._repo.load(record.id)
            if fresh.is_err() or not self._reaper.is_stale(fresh.value.session, self._repo.clock()):
                continue
            result = await self._reaper.reap(fresh.value.session, trigger="sweep")
            if result.is_err():
                logger.warning("Could not reap session %s: %s", record.id, result.error)
                continue
            if result.value:
                reaped += 1
        return reaped
