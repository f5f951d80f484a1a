"""Tests for the room lifecycle manager."""

import asyncio

import pytest

from chatmesh.core.errors import ErrorCode
from chatmesh.rooms.manager import RoomManager, room_key
from chatmesh.session.repository import SessionRepository
from chatmesh.session.state_machine import SessionContext, Trigger
from chatmesh.storage.memory_store import InMemoryStore
from chatmesh.transport.backends import RecordingTransport
from chatmesh.transport.protocols import OutboundMessage


class TestCreate:
    """Test room creation and validation."""

    @pytest.mark.asyncio
    async def test_create_persists_empty_room(self, rooms: RoomManager, store: InMemoryStore, metrics) -> None:
        """The creator is not joined and the room is stored without members."""
        room = (await rooms.create("Chess", "4")).unwrap()

        assert room.name == "Chess"
        assert room.capacity == 4
        assert room.members == frozenset()
        assert (await store.get(room_key(room.id))).unwrap() is not None
        assert metrics.rooms_created.get() == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("requested,expected", [("1", 2), ("0", 2), ("-5", 2), ("50", 50), ("500", 50)])
    async def test_capacity_is_clamped(self, rooms: RoomManager, requested: str, expected: int) -> None:
        room = (await rooms.create("R", requested)).unwrap()
        assert room.capacity == expected

    @pytest.mark.asyncio
    async def test_non_numeric_capacity_rejected(self, rooms: RoomManager, store: InMemoryStore) -> None:
        result = await rooms.create("Chess", "four")

        assert result.error.code is ErrorCode.INVALID_INPUT
        assert result.error.context["field"] == "capacity"
        assert (await store.scan("room:")).unwrap() == []

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, rooms: RoomManager) -> None:
        result = await rooms.create("   ", 4)
        assert result.error.context["field"] == "name"

    @pytest.mark.asyncio
    async def test_room_ids_are_unique(self, rooms: RoomManager) -> None:
        a = (await rooms.create("Same", 3)).unwrap()
        b = (await rooms.create("Same", 3)).unwrap()
        assert a.id != b.id


class TestListAndGet:
    """Test listing rules."""

    @pytest.mark.asyncio
    async def test_empty_rooms_are_not_listed(self, rooms: RoomManager) -> None:
        await rooms.create("Lonely", 4)
        assert (await rooms.list()).unwrap() == []

    @pytest.mark.asyncio
    async def test_list_sorted_by_name(self, rooms: RoomManager) -> None:
        zulu = (await rooms.create("zulu", 4)).unwrap()
        alpha = (await rooms.create("Alpha", 4)).unwrap()
        await rooms.join(zulu.id, 1)
        await rooms.join(alpha.id, 2)

        assert [r.name for r in (await rooms.list()).unwrap()] == ["Alpha", "zulu"]

    @pytest.mark.asyncio
    async def test_get_missing_room(self, rooms: RoomManager) -> None:
        result = await rooms.get("nope")
        assert result.error.code is ErrorCode.ROOM_NOT_FOUND


class TestJoin:
    """Test admission at commit time."""

    @pytest.mark.asyncio
    async def test_join_updates_room_and_session(self, rooms: RoomManager, repo: SessionRepository) -> None:
        room = (await rooms.create("Chess", 4)).unwrap()

        joined = (await rooms.join(room.id, 7)).unwrap()

        assert joined.members == frozenset({7})
        assert (await repo.load(7)).unwrap().context == SessionContext.in_room(room.id)

    @pytest.mark.asyncio
    async def test_rejoin_same_room_is_rejected_as_busy(self, rooms: RoomManager) -> None:
        room = (await rooms.create("Chess", 4)).unwrap()
        await rooms.join(room.id, 7)

        again = await rooms.join(room.id, 7)
        assert again.error.code is ErrorCode.ALREADY_BUSY

    @pytest.mark.asyncio
    async def test_join_from_searching_abandons_search(self, rooms: RoomManager, repo: SessionRepository) -> None:
        room = (await rooms.create("Chess", 4)).unwrap()
        await repo.transition(7, Trigger.FIND)

        assert (await rooms.join(room.id, 7)).is_ok()
        assert (await repo.load(7)).unwrap().context == SessionContext.in_room(room.id)

    @pytest.mark.asyncio
    async def test_join_missing_room_rolls_back(self, rooms: RoomManager, repo: SessionRepository) -> None:
        result = await rooms.join("does-not-exist", 7)

        assert result.error.code is ErrorCode.ROOM_NOT_FOUND
        assert (await repo.load(7)).unwrap().context == SessionContext.idle()

    @pytest.mark.asyncio
    async def test_join_full_room_rolls_back(self, rooms: RoomManager, repo: SessionRepository) -> None:
        room = (await rooms.create("Pair", 2)).unwrap()
        await rooms.join(room.id, 1)
        await rooms.join(room.id, 2)

        result = await rooms.join(room.id, 3)

        assert result.error.code is ErrorCode.ROOM_FULL
        assert (await repo.load(3)).unwrap().context == SessionContext.idle()

    @pytest.mark.asyncio
    async def test_paired_session_cannot_join(self, rooms: RoomManager, engine, repo: SessionRepository) -> None:
        room = (await rooms.create("Chess", 4)).unwrap()
        await engine.find(1)
        await engine.find(2)

        result = await rooms.join(room.id, 1)

        assert result.error.code is ErrorCode.ALREADY_BUSY
        assert (await rooms.get(room.id)).unwrap().members == frozenset()

    @pytest.mark.asyncio
    async def test_concurrent_joins_admit_exactly_one(self, rooms: RoomManager, repo: SessionRepository) -> None:
        """Capacity 2 with one member: of two simultaneous joins one wins."""
        room = (await rooms.create("Duo", 2)).unwrap()
        await rooms.join(room.id, 1)

        results = await asyncio.gather(rooms.join(room.id, 2), rooms.join(room.id, 3))

        assert sorted(r.is_ok() for r in results) == [False, True]
        loser = results[0] if results[0].is_err() else results[1]
        assert loser.error.code is ErrorCode.ROOM_FULL

        stored = (await rooms.get(room.id)).unwrap()
        assert len(stored.members) == 2
        winner = next(iter(stored.members - {1}))
        other = 5 - winner
        assert (await repo.load(winner)).unwrap().context == SessionContext.in_room(room.id)
        assert (await repo.load(other)).unwrap().context == SessionContext.idle()

    @pytest.mark.asyncio
    async def test_many_concurrent_joins_respect_capacity(self, rooms: RoomManager) -> None:
        room = (await rooms.create("Party", 5)).unwrap()

        results = await asyncio.gather(*(rooms.join(room.id, sid) for sid in range(20)))

        assert sum(r.is_ok() for r in results) == 5
        assert len((await rooms.get(room.id)).unwrap().members) == 5


class TestLeave:
    """Test release and deletion of empty rooms."""

    @pytest.mark.asyncio
    async def test_chess_scenario(self, rooms: RoomManager, repo: SessionRepository, metrics) -> None:
        """Create, join, list, leave: the room disappears with its last member."""
        room = (await rooms.create("Chess", "4")).unwrap()
        assert (await repo.load(7)).unwrap().context == SessionContext.idle()

        await rooms.join(room.id, 7)
        listed = (await rooms.list()).unwrap()
        assert [(r.name, len(r.members), r.capacity) for r in listed] == [("Chess", 1, 4)]

        assert (await rooms.leave(room.id, 7)).is_ok()
        assert (await repo.load(7)).unwrap().context == SessionContext.idle()
        assert (await rooms.list()).unwrap() == []
        assert (await rooms.get(room.id)).error.code is ErrorCode.ROOM_NOT_FOUND
        assert metrics.rooms_deleted.get() == 1

    @pytest.mark.asyncio
    async def test_leave_keeps_room_with_members(self, rooms: RoomManager) -> None:
        room = (await rooms.create("Chess", 4)).unwrap()
        await rooms.join(room.id, 7)
        await rooms.join(room.id, 8)

        await rooms.leave(room.id, 7)

        assert (await rooms.get(room.id)).unwrap().members == frozenset({8})

    @pytest.mark.asyncio
    async def test_leave_vanished_room_still_resets_session(
        self, rooms: RoomManager, repo: SessionRepository,
    ) -> None:
        await repo.transition(7, Trigger.JOIN_ROOM, "gone")

        assert (await rooms.leave("gone", 7)).is_ok()
        assert (await repo.load(7)).unwrap().context == SessionContext.idle()

    @pytest.mark.asyncio
    async def test_concurrent_leaves_delete_once(self, rooms: RoomManager, metrics) -> None:
        room = (await rooms.create("Duo", 2)).unwrap()
        await rooms.join(room.id, 1)
        await rooms.join(room.id, 2)

        await asyncio.gather(rooms.leave(room.id, 1), rooms.leave(room.id, 2))

        assert (await rooms.get(room.id)).error.code is ErrorCode.ROOM_NOT_FOUND
        assert metrics.rooms_deleted.get() == 1


class TestBroadcast:
    """Test room fan-out."""

    @pytest.mark.asyncio
    async def test_broadcast_skips_sender_and_counts_failures(
        self, rooms: RoomManager, transport: RecordingTransport, metrics,
    ) -> None:
        room = (await rooms.create("Chess", 4)).unwrap()
        for sid in (1, 2, 3):
            await rooms.join(room.id, sid)
        transport.fail_for(3)

        report = (await rooms.broadcast(room.id, 1, OutboundMessage.plain("hi"))).unwrap()

        assert (report.delivered, report.failed, report.attempted) == (1, 1, 2)
        assert transport.texts_for(2) == ["hi"]
        assert transport.texts_for(1) == []
        assert metrics.deliveries_failed.get() == 1
