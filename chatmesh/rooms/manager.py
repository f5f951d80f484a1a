"""
Room Lifecycle Manager

Creates, lists, joins, leaves and broadcasts to group rooms. Membership
spans two records (the room's member set and each member's session
context), so admission and release are ordered conditional writes:

    join:  session CAS Idle|Searching -> InRoom(r)
           room CAS loop re-checking existence and capacity at commit time
           on room failure: session CAS InRoom(r) -> Idle

    leave: room CAS loop removing the member; last one out deletes the
           room with a conditional delete
           session CAS InRoom(r) -> Idle (even if the room is gone)

A capacity-2 room with one member that receives two concurrent joins
admits exactly one: both sessions reach InRoom(r) but only one room CAS
can add the second member, and the loser is rolled back to Idle.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from chatmesh.core import constants as C
from chatmesh.core.config import RoomConfig
from chatmesh.core.errors import ChatMeshError, InputError, RoomError, StoreError
from chatmesh.core.types import Clock, Result, Ok, Err, RoomId, SessionId
from chatmesh.reliability.retry import RetryContext, RetryPolicy, retry_result
from chatmesh.rooms.models import BroadcastReport, Room, VersionedRoom
from chatmesh.session.models import Session
from chatmesh.session.repository import SessionRepository
from chatmesh.session.state_machine import SessionContext, Trigger, validate
from chatmesh.storage.protocols import ABSENT_VERSION, KeyValueStore
from chatmesh.transport.protocols import OutboundMessage, Transport, deliver

logger = logging.getLogger(__name__)


def room_key(room_id: RoomId) -> str:
    return f"{C.ROOM_KEY_PREFIX}{room_id}"


class RoomManager:
    """
    Room operations on top of the shared store.

    Usage:
        rooms = RoomManager(store, repo, transport)
        room = (await rooms.create("Chess", "4")).unwrap()
        await rooms.join(room.id, 42)
    """

    __slots__ = ("_store", "_repo", "_transport", "_config", "_store_policy")

    def __init__(
        self,
        store: KeyValueStore,
        repo: SessionRepository,
        transport: Transport,
        config: Optional[RoomConfig] = None,
        store_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self._store = store
        self._repo = repo
        self._transport = transport
        self._config = config or RoomConfig()
        self._store_policy = store_policy or RetryPolicy.default()

    @property
    def _clock(self) -> Clock:
        return self._repo.clock

    # -------------------------------------------------------------------------
    # Create / read
    # -------------------------------------------------------------------------

    async def create(self, name: str, capacity: str | int) -> Result[Room, ChatMeshError]:
        """
        Persist a new, empty room under a fresh uuid4.

        Non-numeric capacity is rejected; numeric capacity is clamped into
        [min_capacity, max_capacity]. The creator is not joined.
        """
        name = name.strip()
        if not name:
            return Err(InputError.invalid_input("name", name, "room name is required"))
        if len(name) > self._config.max_name_length:
            return Err(InputError.invalid_input(
                "name", name, f"at most {self._config.max_name_length} characters",
            ))

        try:
            requested = int(str(capacity).strip())
        except ValueError:
            return Err(InputError.invalid_input("capacity", capacity, "must be a number"))

        room = Room(
            id=str(uuid.uuid4()),
            name=name,
            capacity=self._config.clamp(requested),
            created_at=self._clock(),
        )
        written = await retry_result(
            lambda: self._store.put_if_version(room_key(room.id), room.to_record(), ABSENT_VERSION),
            self._store_policy,
            "room.create",
        )
        if written.is_err():
            return written

        self._repo.metrics.rooms_created.inc()
        logger.info("Created room %s (%r, capacity %d)", room.id, room.name, room.capacity)
        return Ok(room)

    async def get(self, room_id: RoomId) -> Result[Room, ChatMeshError]:
        loaded = await self._load(room_id)
        if loaded.is_err():
            return loaded
        if loaded.value is None:
            return Err(RoomError.room_not_found(room_id))
        return Ok(loaded.value.room)

    async def list(self) -> Result[list[Room], ChatMeshError]:
        """Rooms with at least one member, sorted by name."""
        scanned = await retry_result(
            lambda: self._store.scan(C.ROOM_KEY_PREFIX), self._store_policy, "room.list",
        )
        if scanned.is_err():
            return scanned

        rooms: list[Room] = []
        for entry in scanned.value:
            try:
                room = Room.from_record(entry.value)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning("Skipping corrupt room record %s: %s", entry.key, e)
                continue
            if not room.is_empty:
                rooms.append(room)
        rooms.sort(key=lambda r: (r.name.lower(), r.id))
        return Ok(rooms)

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    async def join(self, room_id: RoomId, session_id: SessionId) -> Result[Room, ChatMeshError]:
        """
        Admit a session into a room.

        Returns:
            Ok(room) with the session among its members
            Err(SessionError.already_busy) when Paired or in another room
            Err(RoomError.room_not_found / room_full) after rolling the
                session back to Idle
        """
        entered = await self._repo.transition(session_id, Trigger.JOIN_ROOM, room_id)
        if entered.is_err():
            return entered

        ctx = RetryContext(self._repo.conflict_policy)
        failure: ChatMeshError = StoreError.conflict(room_key(room_id), ABSENT_VERSION)

        for _ in ctx.attempts():
            loaded = await self._load(room_id)
            if loaded.is_err():
                failure = loaded.error
                break
            if loaded.value is None:
                failure = RoomError.room_not_found(room_id)
                break

            current = loaded.value
            if current.room.has_member(session_id):
                ctx.success()
                return Ok(current.room)
            if current.room.is_full:
                failure = RoomError.room_full(room_id, current.room.capacity)
                break

            written = await self._write(current, current.room.with_member(session_id))
            if written.is_ok():
                ctx.success()
                logger.info("Session %s joined room %s", session_id, room_id)
                return Ok(written.value.room)
            if not _is_conflict(written.error):
                failure = written.error
                break
            self._repo.metrics.store_conflicts.inc(operation="room.join")
            failure = written.error
            await ctx.fail(failure)

        await self._release_session(session_id, room_id)
        logger.info("Session %s could not join room %s: %s", session_id, room_id, failure.code.name)
        return Err(failure)

    async def leave(self, room_id: RoomId, session_id: SessionId) -> Result[None, ChatMeshError]:
        """
        Remove a member; delete the room when it becomes empty.

        The session is moved InRoom(room_id) -> Idle whether or not the
        room still exists.
        """
        removed = await self._remove_member(room_id, session_id)
        released = await self._release_session(session_id, room_id)
        if removed.is_err():
            return removed
        if released.is_err():
            return released
        return Ok(None)

    async def broadcast(
        self,
        room_id: RoomId,
        sender_id: Optional[SessionId],
        message: OutboundMessage,
    ) -> Result[BroadcastReport, ChatMeshError]:
        """Deliver to every member except the sender; failures are counted."""
        room = await self.get(room_id)
        if room.is_err():
            return room

        delivered = failed = 0
        for member in sorted(room.value.members):
            if member == sender_id:
                continue
            if await deliver(self._transport, member, message):
                delivered += 1
            else:
                failed += 1
        if failed:
            self._repo.metrics.deliveries_failed.inc(failed)
        return Ok(BroadcastReport(delivered, failed))

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    async def _remove_member(
        self,
        room_id: RoomId,
        session_id: SessionId,
    ) -> Result[None, ChatMeshError]:
        ctx = RetryContext(self._repo.conflict_policy)
        last_error: ChatMeshError = StoreError.conflict(room_key(room_id), ABSENT_VERSION)

        for _ in ctx.attempts():
            loaded = await self._load(room_id)
            if loaded.is_err():
                return loaded
            current = loaded.value
            if current is None or not current.room.has_member(session_id):
                return Ok(None)

            remaining = current.room.without_member(session_id)
            if remaining.is_empty:
                written = await retry_result(
                    lambda: self._store.delete_if_version(room_key(room_id), current.version),
                    self._store_policy,
                    "room.delete",
                )
            else:
                written = await self._write(current, remaining)

            if written.is_ok():
                if remaining.is_empty:
                    self._repo.metrics.rooms_deleted.inc()
                    logger.info("Room %s deleted after last member left", room_id)
                return Ok(None)
            if not _is_conflict(written.error):
                return written
            self._repo.metrics.store_conflicts.inc(operation="room.leave")
            last_error = written.error
            await ctx.fail(last_error)

        return Err(last_error)

    async def _release_session(
        self,
        session_id: SessionId,
        room_id: RoomId,
    ) -> Result[None, ChatMeshError]:
        """InRoom(room_id) -> Idle; any other context is left alone."""
        target = SessionContext.in_room(room_id)

        def apply(session: Session) -> Result[Optional[Session], ChatMeshError]:
            if session.context != target:
                return Ok(None)
            nxt = validate(session.id, session.context, Trigger.LEAVE)
            if nxt.is_err():
                return nxt
            return Ok(session.with_context(nxt.value))

        released = await self._repo.update(session_id, apply, "room.release")
        if released.is_err():
            logger.error(
                "Session %s left room %s but its context was not reset: %s",
                session_id, room_id, released.error,
            )
            return released
        return Ok(None)

    async def _load(self, room_id: RoomId) -> Result[Optional[VersionedRoom], ChatMeshError]:
        key = room_key(room_id)
        result = await retry_result(lambda: self._store.get(key), self._store_policy, "room.get")
        if result.is_err():
            return result
        if result.value is None:
            return Ok(None)
        try:
            return Ok(VersionedRoom(Room.from_record(result.value.value), result.value.version))
        except (KeyError, ValueError, TypeError) as e:
            return Err(StoreError.corrupt_record(key, str(e), e))

    async def _write(self, current: VersionedRoom, room: Room) -> Result[VersionedRoom, ChatMeshError]:
        result = await retry_result(
            lambda: self._store.put_if_version(room_key(room.id), room.to_record(), current.version),
            self._store_policy,
            "room.write",
        )
        if result.is_err():
            return result
        return Ok(VersionedRoom(room, result.value))


def _is_conflict(error: ChatMeshError) -> bool:
    return isinstance(error, StoreError) and error.is_conflict
