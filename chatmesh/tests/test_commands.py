"""Tests for the slash command parser."""

import pytest

from chatmesh.bot import commands as cmd
from chatmesh.core.errors import ErrorCode


class TestParseCommand:
    """Test mapping raw text to command variants."""

    @pytest.mark.parametrize("text,expected", [
        ("/help", cmd.Help()),
        ("/start", cmd.Start()),
        ("/find", cmd.Find()),
        ("/cancel", cmd.Cancel()),
        ("/listrooms", cmd.ListRooms()),
        ("/leave", cmd.Leave()),
        ("/viewprofile", cmd.ViewProfile()),
        ("/viewmood", cmd.ViewMood()),
        ("/moodstats", cmd.MoodStats()),
        ("  /FIND  ", cmd.Find()),
        ("/find@AnonChatBot", cmd.Find()),
    ])
    def test_commands_without_arguments(self, text: str, expected: cmd.Command) -> None:
        assert cmd.parse_command(text).unwrap() == expected

    def test_createroom(self) -> None:
        assert cmd.parse_command("/createroom Chess 4").unwrap() == cmd.CreateRoom("Chess", "4")

    @pytest.mark.parametrize("text", ["/createroom", "/createroom Chess", "/createroom Chess Club 4"])
    def test_createroom_needs_name_and_capacity(self, text: str) -> None:
        result = cmd.parse_command(text)
        assert result.error.code is ErrorCode.INVALID_INPUT
        assert "usage" in result.error.context["reason"]

    def test_joinroom(self) -> None:
        assert cmd.parse_command("/joinroom abc-123").unwrap() == cmd.JoinRoom("abc-123")
        assert cmd.parse_command("/joinroom").is_err()

    def test_setprofile_keeps_bio_whole(self) -> None:
        parsed = cmd.parse_command("/setprofile neo 🙂 I like long walks").unwrap()
        assert parsed == cmd.SetProfile("neo", "🙂", "I like long walks")

    def test_setprofile_needs_three_parts(self) -> None:
        assert cmd.parse_command("/setprofile neo 🙂").is_err()

    def test_setmood_with_and_without_note(self) -> None:
        assert cmd.parse_command("/setmood happy").unwrap() == cmd.SetMood("happy")
        assert cmd.parse_command("/setmood happy sunny day").unwrap() == cmd.SetMood("happy", "sunny day")
        assert cmd.parse_command("/setmood").is_err()

    def test_broadcast(self) -> None:
        assert cmd.parse_command("/broadcast hello all").unwrap() == cmd.Broadcast("hello all")
        assert cmd.parse_command("/broadcast").is_err()

    def test_unknown_command(self) -> None:
        result = cmd.parse_command("/dance")
        assert result.error.code is ErrorCode.UNKNOWN_COMMAND
        assert result.error.context["command"] == "dance"


class TestHelpers:
    def test_is_command(self) -> None:
        assert cmd.is_command(" /find")
        assert not cmd.is_command("hello /find")

    def test_command_name(self) -> None:
        assert cmd.command_name(cmd.CreateRoom("a", "2")) == "createroom"

    def test_every_command_is_described(self) -> None:
        names = [name for name, _ in cmd.describe_commands()]
        assert names[0] == "help"
        assert "broadcast" in names
        assert len(names) == len(cmd.DESCRIPTIONS)
