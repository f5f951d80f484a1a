"""End-to-end tests for the command dispatcher and message relay."""

import pytest

from chatmesh.app import ChatMesh
from chatmesh.bot import messages as M
from chatmesh.bot.dispatcher import Dispatcher, InboundMessage
from chatmesh.core.types import ManualClock
from chatmesh.session.models import Session
from chatmesh.session.repository import SessionRepository
from chatmesh.session.state_machine import ContextKind, SessionContext
from chatmesh.storage.memory_store import InMemoryStore
from chatmesh.transport.backends import RecordingTransport
from chatmesh.transport.protocols import MessageKind

ALICE, BOB, CAROL, ADMIN = 1, 2, 3, 999


async def _paired(dispatcher: Dispatcher) -> None:
    await dispatcher.handle_text(ALICE, "/find")
    await dispatcher.handle_text(BOB, "/find")


async def _room_id(store: InMemoryStore) -> str:
    entries = (await store.scan("room:")).unwrap()
    return entries[-1].value["id"]


class TestGeneralCommands:
    """Test start, help and unknown commands."""

    @pytest.mark.asyncio
    async def test_start_welcomes(self, dispatcher: Dispatcher, transport: RecordingTransport) -> None:
        reply = await dispatcher.handle_text(ALICE, "/start")
        assert reply == M.WELCOME
        assert transport.last_text(ALICE) == M.WELCOME

    @pytest.mark.asyncio
    async def test_start_resets_without_notifying_partner(
        self, dispatcher: Dispatcher, repo: SessionRepository, transport: RecordingTransport,
    ) -> None:
        await _paired(dispatcher)
        transport.clear()

        await dispatcher.handle_text(ALICE, "/start")

        assert (await repo.load(ALICE)).unwrap().context == SessionContext.idle()
        assert transport.texts_for(BOB) == []

    @pytest.mark.asyncio
    async def test_start_preserves_admin_flag(self, dispatcher: Dispatcher, repo: SessionRepository) -> None:
        await repo.replace(Session.new(5, now=0.0, is_admin=True))
        await dispatcher.handle_text(5, "/start")
        assert (await repo.load(5)).unwrap().session.is_admin

    @pytest.mark.asyncio
    async def test_help_lists_commands(self, dispatcher: Dispatcher) -> None:
        reply = await dispatcher.handle_text(ALICE, "/help")
        assert reply.startswith(M.HELP_HEADER)
        assert "/createroom" in reply

    @pytest.mark.asyncio
    async def test_unknown_command(self, dispatcher: Dispatcher) -> None:
        assert await dispatcher.handle_text(ALICE, "/dance") == M.UNKNOWN_COMMAND

    @pytest.mark.asyncio
    async def test_missing_arguments_show_usage(self, dispatcher: Dispatcher) -> None:
        reply = await dispatcher.handle_text(ALICE, "/joinroom")
        assert "usage: /joinroom <room_id>" in reply

    @pytest.mark.asyncio
    async def test_store_outage_means_try_again(self, dispatcher: Dispatcher, store: InMemoryStore) -> None:
        store.fail_next(3)
        assert await dispatcher.handle_text(ALICE, "/find") == M.TRY_AGAIN_LATER

    @pytest.mark.asyncio
    async def test_command_latency_recorded(self, dispatcher: Dispatcher, metrics) -> None:
        await dispatcher.handle_text(ALICE, "/find")
        assert metrics.command_latency.count(command="find") == 1


class TestMatchmakingCommands:
    """Test find, cancel and leave for one-to-one chats."""

    @pytest.mark.asyncio
    async def test_find_pairs_and_notifies_both(
        self, dispatcher: Dispatcher, transport: RecordingTransport,
    ) -> None:
        assert await dispatcher.handle_text(ALICE, "/find") == M.SEARCHING
        assert await dispatcher.handle_text(BOB, "/find") == M.PARTNER_FOUND
        assert transport.last_text(ALICE) == M.PARTNER_FOUND

    @pytest.mark.asyncio
    async def test_find_while_busy(self, dispatcher: Dispatcher, store: InMemoryStore) -> None:
        await _paired(dispatcher)
        assert await dispatcher.handle_text(ALICE, "/find") == M.FIND_PAIRED

        await dispatcher.handle_text(CAROL, "/createroom Chess 4")
        await dispatcher.handle_text(CAROL, f"/joinroom {await _room_id(store)}")
        assert await dispatcher.handle_text(CAROL, "/find") == M.FIND_IN_ROOM

    @pytest.mark.asyncio
    async def test_cancel(self, dispatcher: Dispatcher) -> None:
        assert await dispatcher.handle_text(ALICE, "/cancel") == M.NOT_SEARCHING
        await dispatcher.handle_text(ALICE, "/find")
        assert await dispatcher.handle_text(ALICE, "/cancel") == M.SEARCH_CANCELLED

    @pytest.mark.asyncio
    async def test_leave_pair_notifies_partner(
        self, dispatcher: Dispatcher, repo: SessionRepository, transport: RecordingTransport,
    ) -> None:
        await _paired(dispatcher)

        assert await dispatcher.handle_text(ALICE, "/leave") == M.LEFT_CHAT
        assert transport.last_text(BOB) == M.PARTNER_LEFT
        assert (await repo.load(BOB)).unwrap().context == SessionContext.idle()

    @pytest.mark.asyncio
    async def test_leave_is_idempotent_when_idle(self, dispatcher: Dispatcher, repo: SessionRepository) -> None:
        assert await dispatcher.handle_text(ALICE, "/leave") == M.NOT_IN_CHAT
        assert await dispatcher.handle_text(ALICE, "/leave") == M.NOT_IN_CHAT
        assert (await repo.load(ALICE)).unwrap().context == SessionContext.idle()


class TestRelay:
    """Test moderated relay to partners and rooms."""

    @pytest.mark.asyncio
    async def test_text_reaches_partner(
        self, dispatcher: Dispatcher, transport: RecordingTransport, metrics,
    ) -> None:
        await _paired(dispatcher)

        assert await dispatcher.handle_text(ALICE, "hi stranger") is None

        assert transport.last_text(BOB) == "hi stranger"
        assert metrics.messages_relayed.get(kind="text", route="pair") == 1

    @pytest.mark.asyncio
    async def test_disallowed_text_is_not_relayed(
        self,
        dispatcher: Dispatcher,
        repo: SessionRepository,
        transport: RecordingTransport,
        metrics,
    ) -> None:
        """The sender is warned, the partner sees nothing and the pair stays."""
        await _paired(dispatcher)
        transport.clear()

        assert await dispatcher.handle_text(ALICE, "this is shit") == M.BLOCKED_TEXT

        assert transport.texts_for(BOB) == []
        assert (await repo.load(ALICE)).unwrap().context == SessionContext.paired(BOB)
        assert metrics.messages_blocked.get() == 1

    @pytest.mark.asyncio
    async def test_media_relay(self, dispatcher: Dispatcher, transport: RecordingTransport) -> None:
        await _paired(dispatcher)

        await dispatcher.handle_message(InboundMessage.photo(ALICE, "file-1", "look"))
        await dispatcher.handle_message(InboundMessage.sticker(ALICE, "stk-1"))
        await dispatcher.handle_message(InboundMessage.voice(ALICE, "voice-1"))

        kinds = [(m.kind, m.file_id) for m in transport.messages_for(BOB)[-3:]]
        assert kinds == [
            (MessageKind.PHOTO, "file-1"),
            (MessageKind.STICKER, "stk-1"),
            (MessageKind.VOICE, "voice-1"),
        ]

    @pytest.mark.asyncio
    async def test_blocked_caption(self, dispatcher: Dispatcher) -> None:
        await _paired(dispatcher)
        photo = InboundMessage.photo(ALICE, "file-1", "Fuck this")
        assert await dispatcher.handle_message(photo) == M.BLOCKED_PHOTO

    @pytest.mark.asyncio
    async def test_unsupported_media(self, dispatcher: Dispatcher) -> None:
        await _paired(dispatcher)
        reply = await dispatcher.handle_message(InboundMessage.unsupported(ALICE, "video"))
        assert reply == M.UNSUPPORTED_MEDIA

    @pytest.mark.asyncio
    async def test_message_without_connection(self, dispatcher: Dispatcher) -> None:
        assert await dispatcher.handle_text(CAROL, "anyone?") == M.NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_failed_partner_delivery_is_counted(
        self, dispatcher: Dispatcher, transport: RecordingTransport, metrics,
    ) -> None:
        await _paired(dispatcher)
        transport.fail_for(BOB)

        await dispatcher.handle_text(ALICE, "hello?")

        assert metrics.deliveries_failed.get() == 1

    @pytest.mark.asyncio
    async def test_inactive_sender_is_disconnected(
        self,
        dispatcher: Dispatcher,
        repo: SessionRepository,
        transport: RecordingTransport,
        clock: ManualClock,
    ) -> None:
        """The stale sender's message is dropped and both sides are reset."""
        await _paired(dispatcher)
        clock.advance(30 * 60 + 1)

        assert await dispatcher.handle_text(ALICE, "still there?") is None

        assert "still there?" not in transport.texts_for(BOB)
        assert transport.last_text(BOB) == M.PARTNER_INACTIVE
        assert transport.last_text(ALICE) == M.SELF_INACTIVE
        assert (await repo.load(BOB)).unwrap().context.kind is ContextKind.IDLE


class TestRoomCommands:
    """Test the room command flow."""

    @pytest.mark.asyncio
    async def test_room_flow(
        self, dispatcher: Dispatcher, store: InMemoryStore, transport: RecordingTransport,
    ) -> None:
        created = await dispatcher.handle_text(CAROL, "/createroom Chess 4")
        assert "Chess" in created
        assert await dispatcher.handle_text(CAROL, "/listrooms") == M.NO_ROOMS

        room_id = await _room_id(store)
        joined = await dispatcher.handle_text(CAROL, f"/joinroom {room_id}")
        assert "Current members: 1/4" in joined
        await dispatcher.handle_text(ALICE, f"/joinroom {room_id}")
        assert transport.last_text(CAROL) == M.MEMBER_JOINED

        listing = await dispatcher.handle_text(BOB, "/listrooms")
        assert room_id in listing
        assert "Members: 2/4" in listing

        await dispatcher.handle_text(ALICE, "good game")
        assert transport.last_text(CAROL) == M.ROOM_PREFIX + "good game"

        assert await dispatcher.handle_text(ALICE, "/leave") == M.LEFT_ROOM
        assert await dispatcher.handle_text(CAROL, "/leave") == M.LEFT_ROOM
        assert await dispatcher.handle_text(CAROL, "/listrooms") == M.NO_ROOMS

    @pytest.mark.asyncio
    async def test_createroom_validation(self, dispatcher: Dispatcher) -> None:
        assert await dispatcher.handle_text(ALICE, "/createroom Chess many") == M.INVALID_CAPACITY

    @pytest.mark.asyncio
    async def test_createroom_requires_free_session(self, dispatcher: Dispatcher) -> None:
        await _paired(dispatcher)
        assert await dispatcher.handle_text(ALICE, "/createroom Chess 4") == M.LEAVE_FIRST

    @pytest.mark.asyncio
    async def test_join_unknown_room(self, dispatcher: Dispatcher) -> None:
        assert await dispatcher.handle_text(ALICE, "/joinroom nope") == M.JOIN_FAILED


class TestProfileCommands:
    """Test profile and mood commands."""

    @pytest.mark.asyncio
    async def test_profile(self, dispatcher: Dispatcher) -> None:
        assert await dispatcher.handle_text(ALICE, "/viewprofile") == M.PROFILE_MISSING

        updated = await dispatcher.handle_text(ALICE, "/setprofile neo 🙂 likes green text")
        assert "Nickname: neo" in updated

        view = await dispatcher.handle_text(ALICE, "/viewprofile")
        assert "Bio: likes green text" in view
        assert "Created: 2023-11-14" in view

    @pytest.mark.asyncio
    async def test_moods(self, dispatcher: Dispatcher) -> None:
        assert await dispatcher.handle_text(ALICE, "/viewmood") == M.NO_MOODS
        assert await dispatcher.handle_text(ALICE, "/moodstats") == M.NO_MOOD_STATS

        for _ in range(5):
            await dispatcher.handle_text(ALICE, "/setmood happy")
        await dispatcher.handle_text(BOB, "/setmood Calm quiet evening")

        history = await dispatcher.handle_text(BOB, "/viewmood")
        assert "1. Mood: calm\nNote: quiet evening" in history
        stats = await dispatcher.handle_text(BOB, "/moodstats")
        assert stats.index("happy: 5 times") < stats.index("calm: 1 times")


class TestBroadcast:
    """Test the admin broadcast."""

    @pytest.mark.asyncio
    async def test_admin_broadcast_counts_deliveries(
        self, dispatcher: Dispatcher, transport: RecordingTransport,
    ) -> None:
        for user in (ALICE, BOB, CAROL):
            await dispatcher.handle_text(user, "/start")
        transport.fail_for(CAROL)

        reply = await dispatcher.handle_text(ADMIN, "/broadcast maintenance at noon")

        assert reply == M.broadcast_sent(2)
        assert transport.last_text(BOB) == M.broadcast_body("maintenance at noon")
        assert M.broadcast_body("maintenance at noon") not in transport.texts_for(ADMIN)

    @pytest.mark.asyncio
    async def test_non_admin_refused(self, dispatcher: Dispatcher, transport: RecordingTransport) -> None:
        await dispatcher.handle_text(BOB, "/start")

        assert await dispatcher.handle_text(ALICE, "/broadcast hi") == M.ADMIN_ONLY
        assert transport.last_text(BOB) == M.WELCOME


class TestChatMesh:
    """Test wiring."""

    @pytest.mark.asyncio
    async def test_build_shares_metrics_and_clock(self, mesh: ChatMesh, clock: ManualClock) -> None:
        assert mesh.repo.metrics is mesh.metrics
        assert mesh.repo.clock is clock
        assert mesh.sweep is None
        await mesh.close()
