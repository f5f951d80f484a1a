"""Tests for reply texts and error mapping."""

from chatmesh.bot import messages as M
from chatmesh.core.errors import InputError, RoomError, SessionError, StoreError
from chatmesh.profiles.models import MoodEntry
from chatmesh.rooms.models import Room


class TestErrorReply:
    def test_store_trouble_means_try_again(self) -> None:
        assert M.error_reply(StoreError.unavailable("get", "k")) == M.TRY_AGAIN_LATER
        assert M.error_reply(StoreError.conflict("k", 1)) == M.TRY_AGAIN_LATER
        assert M.error_reply(StoreError.corrupt_record("k", "bad")) == M.TRY_AGAIN_LATER

    def test_session_errors(self) -> None:
        assert M.error_reply(SessionError.already_busy(1, "idle")) == M.LEAVE_FIRST
        assert M.error_reply(SessionError.not_connected(1)) == M.NOT_IN_CHAT

    def test_room_errors(self) -> None:
        assert M.error_reply(RoomError.room_full("r", 2)) == M.JOIN_FAILED
        assert M.error_reply(RoomError.room_not_found("r")) == M.JOIN_FAILED

    def test_input_errors(self) -> None:
        assert M.error_reply(InputError.permission_denied(1, "broadcast")) == M.ADMIN_ONLY
        assert M.error_reply(InputError.invalid_input("x", "", "too short")) == "❌ too short"
        assert M.error_reply(InputError.invalid_input("x", "", "r"), hint=M.MOOD_USAGE) == M.MOOD_USAGE


class TestFormatting:
    def test_room_list(self) -> None:
        room = Room("abc", "Chess", 4, frozenset({1}))
        text = M.room_list([room])
        assert text.startswith(M.ROOMS_HEADER)
        assert "📝 ID: abc" in text
        assert "👥 Members: 1/4" in text
        assert M.room_list([]) == M.NO_ROOMS

    def test_mood_history_numbering(self) -> None:
        text = M.mood_history([MoodEntry("happy", None, 2.0), MoodEntry("sad", "rain", 1.0)])
        assert "1. Mood: happy\n\n" in text
        assert "2. Mood: sad\nNote: rain" in text

    def test_mood_stats_ordering(self) -> None:
        text = M.mood_stats({"calm": 2, "angry": 2, "happy": 5})
        assert text.index("happy") < text.index("angry") < text.index("calm")
