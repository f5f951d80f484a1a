"""
Command Variants and Parser

A closed set of command dataclasses, one per slash command, and
parse_command() turning raw text into one of them. Unknown commands and
malformed arguments come back as Err values; nothing here touches state.

    /createroom Chess 4       -> CreateRoom(name="Chess", capacity="4")
    /setmood happy great day  -> SetMood(mood="happy", note="great day")
    /joinroom@SomeBot abc     -> JoinRoom(room_id="abc")
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from chatmesh.core.errors import ChatMeshError, InputError
from chatmesh.core.types import Result, Ok, Err


@dataclass(frozen=True, slots=True)
class Help:
    pass


@dataclass(frozen=True, slots=True)
class Start:
    pass


@dataclass(frozen=True, slots=True)
class Find:
    pass


@dataclass(frozen=True, slots=True)
class Cancel:
    pass


@dataclass(frozen=True, slots=True)
class CreateRoom:
    name: str
    capacity: str  # validated by RoomManager.create


@dataclass(frozen=True, slots=True)
class ListRooms:
    pass


@dataclass(frozen=True, slots=True)
class JoinRoom:
    room_id: str


@dataclass(frozen=True, slots=True)
class Leave:
    pass


@dataclass(frozen=True, slots=True)
class SetProfile:
    nickname: str
    emoji: str
    bio: str


@dataclass(frozen=True, slots=True)
class ViewProfile:
    pass


@dataclass(frozen=True, slots=True)
class SetMood:
    mood: str
    note: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ViewMood:
    pass


@dataclass(frozen=True, slots=True)
class MoodStats:
    pass


@dataclass(frozen=True, slots=True)
class Broadcast:
    text: str


Command = Union[
    Help, Start, Find, Cancel, CreateRoom, ListRooms, JoinRoom, Leave,
    SetProfile, ViewProfile, SetMood, ViewMood, MoodStats, Broadcast,
]

# name -> (description, usage)
DESCRIPTIONS: dict[str, tuple[str, str]] = {
    "help": ("📜 Show this help message", ""),
    "start": ("🎉 Start the bot", ""),
    "find": ("🔍 Find a random chat partner", ""),
    "cancel": ("🛑 Stop looking for a partner", ""),
    "createroom": ("👋 Create a new chat room", "<name> <max_members>"),
    "listrooms": ("📋 List available chat rooms", ""),
    "joinroom": ("🚪 Join a chat room", "<room_id>"),
    "leave": ("👋 Leave current chat or room", ""),
    "setprofile": ("👤 Set your profile", "<nickname> <emoji> <bio>"),
    "viewprofile": ("📝 View your profile", ""),
    "setmood": ("😊 Set your mood", "<mood> [note]"),
    "viewmood": ("📊 View your mood history", ""),
    "moodstats": ("📈 View anonymous mood statistics", ""),
    "broadcast": ("📢 Broadcast message (admins)", "<message>"),
}

_NO_ARGS: dict[str, type] = {
    "help": Help,
    "start": Start,
    "find": Find,
    "cancel": Cancel,
    "listrooms": ListRooms,
    "leave": Leave,
    "viewprofile": ViewProfile,
    "viewmood": ViewMood,
    "moodstats": MoodStats,
}


def is_command(text: str) -> bool:
    return text.lstrip().startswith("/")


def command_name(command: Command) -> str:
    """Lower-case command name, used as a log and metric label."""
    return type(command).__name__.lower()


def describe_commands() -> list[tuple[str, str]]:
    """(name, description with usage) pairs in help order."""
    return [
        (name, f"{desc} (usage: /{name} {usage})" if usage else desc)
        for name, (desc, usage) in DESCRIPTIONS.items()
    ]


def parse_command(text: str) -> Result[Command, ChatMeshError]:
    """
    Parse one slash command.

    Returns:
        Ok(command) for a known command with usable arguments
        Err(InputError.unknown_command) for anything not in the command set
        Err(InputError.invalid_input) for missing arguments
    """
    stripped = text.strip()
    if not stripped.startswith("/"):
        return Err(InputError.invalid_input("text", stripped[:32], "not a command"))

    head, _, rest = stripped[1:].partition(" ")
    name = head.split("@", 1)[0].lower()
    args = rest.strip()

    if name in _NO_ARGS:
        return Ok(_NO_ARGS[name]())

    if name == "createroom":
        parts = args.split()
        if len(parts) != 2:
            return Err(InputError.invalid_input(
                "createroom", args, "usage: /createroom <name> <max_members>",
            ))
        return Ok(CreateRoom(name=parts[0], capacity=parts[1]))

    if name == "joinroom":
        if not args:
            return Err(InputError.invalid_input("room_id", args, "usage: /joinroom <room_id>"))
        return Ok(JoinRoom(room_id=args.split()[0]))

    if name == "setprofile":
        parts = args.split(maxsplit=2)
        if len(parts) < 3:
            return Err(InputError.invalid_input(
                "setprofile", args, "usage: /setprofile <nickname> <emoji> <bio>",
            ))
        return Ok(SetProfile(nickname=parts[0], emoji=parts[1], bio=parts[2]))

    if name == "setmood":
        parts = args.split(maxsplit=1)
        if not parts:
            return Err(InputError.invalid_input("mood", args, "usage: /setmood <mood> [note]"))
        return Ok(SetMood(mood=parts[0], note=parts[1] if len(parts) > 1 else None))

    if name == "broadcast":
        if not args:
            return Err(InputError.invalid_input("broadcast", args, "usage: /broadcast <message>"))
        return Ok(Broadcast(text=args))

    return Err(InputError.unknown_command(name))
