"""
Command Dispatcher and Message Relay

Entry point for everything a user sends:

    handle_text(sender, text)
        "/..." -> parse_command -> one handler per command variant
        else   -> handle_message(InboundMessage.text(...))

    handle_message(msg)
        InactivityReaper.check -> context -> moderation -> partner or room

Every handler returns the reply it sent to the sender (None when the reply
was sent by someone else, e.g. the lower id of a mutual match). Handlers
never raise for expected outcomes; error codes are mapped to texts in
chatmesh.bot.messages, and store trouble becomes "try again later".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from chatmesh.bot import commands as cmd
from chatmesh.bot import messages as M
from chatmesh.core.errors import ChatMeshError, ErrorCode, InputError
from chatmesh.core.types import SessionId
from chatmesh.matchmaking.engine import MatchmakingEngine
from chatmesh.moderation.filter import ContentFilter
from chatmesh.observability.logging import StructuredLogger
from chatmesh.observability.metrics import ChatMeshMetrics
from chatmesh.profiles.models import MoodEntry, UserProfile
from chatmesh.profiles.store import ProfileStore
from chatmesh.rooms.manager import RoomManager
from chatmesh.session.models import Session
from chatmesh.session.reaper import InactivityReaper
from chatmesh.session.repository import SessionRepository
from chatmesh.session.state_machine import ContextKind, Trigger, validate
from chatmesh.transport.protocols import MessageKind, OutboundMessage, Transport, deliver

logger = StructuredLogger(__name__)

Handler = Callable[[SessionId, Any], Awaitable[Optional[str]]]


# =============================================================================
# INBOUND MESSAGE
# =============================================================================
@dataclass(frozen=True, slots=True)
class InboundMessage:
    """
    A non-command message from a user.

    `kind` is None for media the relay does not handle; `label` then names
    what was received (for logs).
    """
    sender: SessionId
    kind: Optional[MessageKind]
    text: str = ""
    file_id: Optional[str] = None
    label: str = ""

    @classmethod
    def text_message(cls, sender: SessionId, text: str) -> InboundMessage:
        return cls(sender, MessageKind.TEXT, text)

    @classmethod
    def photo(cls, sender: SessionId, file_id: str, caption: str = "") -> InboundMessage:
        return cls(sender, MessageKind.PHOTO, caption, file_id)

    @classmethod
    def sticker(cls, sender: SessionId, file_id: str) -> InboundMessage:
        return cls(sender, MessageKind.STICKER, "", file_id)

    @classmethod
    def voice(cls, sender: SessionId, file_id: str, caption: str = "") -> InboundMessage:
        return cls(sender, MessageKind.VOICE, caption, file_id)

    @classmethod
    def unsupported(cls, sender: SessionId, label: str) -> InboundMessage:
        return cls(sender, None, label=label)

    def to_outbound(self, text: str) -> OutboundMessage:
        return OutboundMessage(self.kind, text, self.file_id)  # type: ignore[arg-type]


_BLOCKED_REPLY = {
    MessageKind.TEXT: M.BLOCKED_TEXT,
    MessageKind.PHOTO: M.BLOCKED_PHOTO,
    MessageKind.VOICE: M.BLOCKED_VOICE,
}


# =============================================================================
# DISPATCHER
# =============================================================================
class Dispatcher:
    """
    Routes commands and messages to the engine components.

    Usage:
        dispatcher = Dispatcher(repo, engine, rooms, reaper, profiles,
                                ContentFilter(), transport)
        await dispatcher.handle_text(42, "/find")
        await dispatcher.handle_text(42, "hello there")
    """

    __slots__ = (
        "_repo",
        "_engine",
        "_rooms",
        "_reaper",
        "_profiles",
        "_filter",
        "_transport",
        "_admin_ids",
        "_handlers",
    )

    def __init__(
        self,
        repo: SessionRepository,
        engine: MatchmakingEngine,
        rooms: RoomManager,
        reaper: InactivityReaper,
        profiles: ProfileStore,
        content_filter: ContentFilter,
        transport: Transport,
        admin_ids: frozenset[SessionId] = frozenset(),
    ) -> None:
        self._repo = repo
        self._engine = engine
        self._rooms = rooms
        self._reaper = reaper
        self._profiles = profiles
        self._filter = content_filter
        self._transport = transport
        self._admin_ids = admin_ids
        self._handlers: dict[type, Handler] = {
            cmd.Help: self._help,
            cmd.Start: self._start,
            cmd.Find: self._find,
            cmd.Cancel: self._cancel,
            cmd.CreateRoom: self._create_room,
            cmd.ListRooms: self._list_rooms,
            cmd.JoinRoom: self._join_room,
            cmd.Leave: self._leave,
            cmd.SetProfile: self._set_profile,
            cmd.ViewProfile: self._view_profile,
            cmd.SetMood: self._set_mood,
            cmd.ViewMood: self._view_mood,
            cmd.MoodStats: self._mood_stats,
            cmd.Broadcast: self._broadcast,
        }

    @property
    def _metrics(self) -> ChatMeshMetrics:
        return self._repo.metrics

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def handle_text(self, sender: SessionId, text: str) -> Optional[str]:
        """Route raw text: slash commands to handlers, the rest to the relay."""
        if not cmd.is_command(text):
            return await self.handle_message(InboundMessage.text_message(sender, text))

        parsed = cmd.parse_command(text)
        if parsed.is_err():
            with logger.context(session_id=sender, command="invalid"):
                logger.info("Rejected command", reason=parsed.error.message)
            return await self._reply(sender, M.error_reply(parsed.error))
        return await self.handle_command(sender, parsed.value)

    async def handle_command(self, sender: SessionId, command: cmd.Command) -> Optional[str]:
        name = cmd.command_name(command)
        handler = self._handlers.get(type(command))
        if handler is None:
            return await self._reply(sender, M.error_reply(InputError.unknown_command(name)))

        with logger.context(session_id=sender, command=name):
            with self._metrics.command_latency.time(command=name):
                if not isinstance(command, cmd.Start):
                    touched = await self._repo.touch(sender, self._repo.clock())
                    if touched.is_err():
                        return await self._fail(sender, touched.error)
                logger.debug("Handling command")
                reply = await handler(sender, command)
        if reply is not None:
            await self._reply(sender, reply)
        return reply

    async def handle_message(self, message: InboundMessage) -> Optional[str]:
        """
        Relay a non-command message to the sender's partner or room.

        Disallowed content is rejected as a whole; allowed text is redacted
        before relay. Stickers carry no text and always pass.
        """
        sender = message.sender
        with logger.context(session_id=sender, command="relay"):
            checked = await self._reaper.check(sender)
            if checked.is_err():
                if checked.error.code is ErrorCode.INACTIVITY_DISCONNECTED:
                    logger.info("Message dropped: sender reaped for inactivity")
                    return None
                return await self._fail(sender, checked.error)

            context = checked.value.context
            if not context.kind.is_connected:
                return await self._reply(sender, M.NOT_CONNECTED)

            if message.kind is None:
                logger.info("Unsupported message kind", kind=message.label)
                return await self._reply(sender, M.UNSUPPORTED_MEDIA)

            if message.kind is not MessageKind.STICKER and self._filter.classify(message.text):
                self._metrics.messages_blocked.inc()
                logger.info("Message blocked by moderation", kind=message.kind.value)
                return await self._reply(sender, _BLOCKED_REPLY[message.kind])

            text = self._filter.redact(message.text)

            if context.kind is ContextKind.PAIRED:
                outbound = message.to_outbound(text)
                if await deliver(self._transport, context.partner_id, outbound):
                    self._metrics.messages_relayed.inc(kind=message.kind.value, route="pair")
                else:
                    self._metrics.deliveries_failed.inc()
                return None

            if message.kind is MessageKind.TEXT:
                text = M.ROOM_PREFIX + text
            report = await self._rooms.broadcast(context.room_id, sender, message.to_outbound(text))
            if report.is_err():
                return await self._fail(sender, report.error)
            if report.value.delivered:
                self._metrics.messages_relayed.inc(kind=message.kind.value, route="room")
            return None

    # -------------------------------------------------------------------------
    # General
    # -------------------------------------------------------------------------

    async def _help(self, sender: SessionId, command: cmd.Help) -> Optional[str]:
        return M.help_text(cmd.describe_commands())

    async def _start(self, sender: SessionId, command: cmd.Start) -> Optional[str]:
        """Forced reset to a fresh Idle session; a prior partner or room is not told."""
        loaded = await self._repo.load(sender)
        if loaded.is_err():
            return self._error_text(loaded.error)

        previous = loaded.value.session
        fresh = Session.new(
            sender,
            self._repo.clock(),
            is_admin=previous.is_admin or sender in self._admin_ids,
        )
        replaced = await self._repo.replace(fresh)
        if replaced.is_err():
            return self._error_text(replaced.error)
        if previous.context.kind is not ContextKind.IDLE:
            logger.warning("Start discarded active context", previous=previous.context.describe())
        logger.info("Session started")
        return M.WELCOME

    # -------------------------------------------------------------------------
    # Matchmaking
    # -------------------------------------------------------------------------

    async def _find(self, sender: SessionId, command: cmd.Find) -> Optional[str]:
        found = await self._engine.find(sender)
        if found.is_err():
            error = found.error
            if error.code is ErrorCode.ALREADY_BUSY:
                current = str(error.context.get("current_context", ""))
                return M.FIND_IN_ROOM if current.startswith("in room") else M.FIND_PAIRED
            return self._error_text(error)

        outcome = found.value
        if not outcome.is_matched:
            return M.SEARCHING
        if not outcome.notify:
            return None
        if not await deliver(self._transport, outcome.partner_id, OutboundMessage.plain(M.PARTNER_FOUND)):
            self._metrics.deliveries_failed.inc()
        return M.PARTNER_FOUND

    async def _cancel(self, sender: SessionId, command: cmd.Cancel) -> Optional[str]:
        cancelled = await self._engine.cancel(sender)
        if cancelled.is_err():
            if cancelled.error.code is ErrorCode.NOT_CONNECTED:
                return M.NOT_SEARCHING
            return self._error_text(cancelled.error)
        return M.SEARCH_CANCELLED

    # -------------------------------------------------------------------------
    # Rooms
    # -------------------------------------------------------------------------

    async def _create_room(self, sender: SessionId, command: cmd.CreateRoom) -> Optional[str]:
        loaded = await self._repo.load(sender)
        if loaded.is_err():
            return self._error_text(loaded.error)
        guard = validate(sender, loaded.value.context, Trigger.CREATE_ROOM)
        if guard.is_err():
            return M.LEAVE_FIRST

        created = await self._rooms.create(command.name, command.capacity)
        if created.is_err():
            error = created.error
            if error.code is ErrorCode.INVALID_INPUT:
                field_name = error.context.get("field")
                return M.INVALID_CAPACITY if field_name == "capacity" else M.INVALID_ROOM_NAME
            return self._error_text(error)
        return M.room_created(created.value)

    async def _list_rooms(self, sender: SessionId, command: cmd.ListRooms) -> Optional[str]:
        listed = await self._rooms.list()
        if listed.is_err():
            return self._error_text(listed.error)
        return M.room_list(listed.value)

    async def _join_room(self, sender: SessionId, command: cmd.JoinRoom) -> Optional[str]:
        joined = await self._rooms.join(command.room_id, sender)
        if joined.is_err():
            return self._error_text(joined.error)

        room = joined.value
        notice = await self._rooms.broadcast(room.id, sender, OutboundMessage.plain(M.MEMBER_JOINED))
        if notice.is_err():
            logger.warning("Join notice not sent", room_id=room.id, error=str(notice.error))
        return M.room_joined(room)

    async def _leave(self, sender: SessionId, command: cmd.Leave) -> Optional[str]:
        loaded = await self._repo.load(sender)
        if loaded.is_err():
            return self._error_text(loaded.error)
        context = loaded.value.context

        if context.kind is ContextKind.IN_ROOM:
            left = await self._rooms.leave(context.room_id, sender)
            if left.is_err():
                return self._error_text(left.error)
            return M.LEFT_ROOM

        if context.kind is ContextKind.PAIRED:
            ended = await self._engine.disconnect(sender)
            if ended.is_err():
                return self._error_text(ended.error)
            if not await deliver(self._transport, ended.value, OutboundMessage.plain(M.PARTNER_LEFT)):
                self._metrics.deliveries_failed.inc()
            return M.LEFT_CHAT

        return M.NOT_IN_CHAT

    # -------------------------------------------------------------------------
    # Profiles & moods
    # -------------------------------------------------------------------------

    async def _set_profile(self, sender: SessionId, command: cmd.SetProfile) -> Optional[str]:
        existing = await self._profiles.get_profile(sender)
        if existing.is_err():
            return self._error_text(existing.error)

        built = UserProfile.build(
            command.nickname,
            command.emoji,
            command.bio,
            now=self._repo.clock(),
            existing=existing.value,
        )
        if built.is_err():
            return self._error_text(built.error)

        saved = await self._profiles.save_profile(sender, built.value)
        if saved.is_err():
            return self._error_text(saved.error)
        return M.profile_updated(built.value)

    async def _view_profile(self, sender: SessionId, command: cmd.ViewProfile) -> Optional[str]:
        profile = await self._profiles.get_profile(sender)
        if profile.is_err():
            return self._error_text(profile.error)
        if profile.value is None:
            return M.PROFILE_MISSING
        return M.profile_view(profile.value)

    async def _set_mood(self, sender: SessionId, command: cmd.SetMood) -> Optional[str]:
        entry = MoodEntry.build(command.mood, command.note, self._repo.clock())
        if entry.is_err():
            return M.MOOD_USAGE

        saved = await self._profiles.append_mood(sender, entry.value)
        if saved.is_err():
            return self._error_text(saved.error)
        return M.mood_set(entry.value)

    async def _view_mood(self, sender: SessionId, command: cmd.ViewMood) -> Optional[str]:
        moods = await self._profiles.get_moods(sender)
        if moods.is_err():
            return self._error_text(moods.error)
        return M.mood_history(moods.value)

    async def _mood_stats(self, sender: SessionId, command: cmd.MoodStats) -> Optional[str]:
        stats = await self._profiles.get_mood_stats()
        if stats.is_err():
            return self._error_text(stats.error)
        return M.mood_stats(stats.value)

    # -------------------------------------------------------------------------
    # Admin
    # -------------------------------------------------------------------------

    async def _broadcast(self, sender: SessionId, command: cmd.Broadcast) -> Optional[str]:
        """Send to every known session except the sender; replies with the delivered count."""
        loaded = await self._repo.load(sender)
        if loaded.is_err():
            return self._error_text(loaded.error)
        if not (loaded.value.session.is_admin or sender in self._admin_ids):
            logger.warning("Broadcast refused for non-admin")
            return self._error_text(InputError.permission_denied(sender, "broadcast"))

        sessions = await self._repo.scan()
        if sessions.is_err():
            return self._error_text(sessions.error)

        outbound = OutboundMessage.plain(M.broadcast_body(command.text))
        sent = failed = 0
        for record in sessions.value:
            if record.id == sender:
                continue
            if await deliver(self._transport, record.id, outbound):
                sent += 1
            else:
                failed += 1
        if failed:
            self._metrics.deliveries_failed.inc(failed)
        logger.info("Broadcast delivered", sent=sent, failed=failed)
        return M.broadcast_sent(sent)

    # -------------------------------------------------------------------------
    # Replies
    # -------------------------------------------------------------------------

    async def _reply(self, recipient: SessionId, text: str) -> str:
        await deliver(self._transport, recipient, OutboundMessage.plain(text))
        return text

    def _error_text(self, error: ChatMeshError) -> str:
        if error.is_transient or error.code is ErrorCode.STORE_CORRUPT_RECORD:
            logger.error("Command failed", error=error.to_dict())
        return M.error_reply(error)

    async def _fail(self, recipient: SessionId, error: ChatMeshError) -> str:
        return await self._reply(recipient, self._error_text(error))
