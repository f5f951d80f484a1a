"""
User-facing reply texts.

Kept in one place so every handler, the reaper and the tests agree on the
exact wording users see.
"""

from __future__ import annotations

import time
from typing import Iterable, Mapping, Optional

from chatmesh.core.errors import ChatMeshError, ErrorCode
from chatmesh.profiles.models import MoodEntry, UserProfile
from chatmesh.rooms.models import Room

# =============================================================================
# GENERAL
# =============================================================================
WELCOME = (
    "🎈 Welcome to Anonymous Chat Bot! 🎈\n\n"
    "Here you can chat anonymously with random people or join chat rooms!\n\n"
    "📝 Commands:\n"
    "/find - Find a random chat partner\n"
    "/createroom - Create a new chat room\n"
    "/listrooms - See available chat rooms\n"
    "/joinroom - Join a chat room\n"
    "/leave - Leave current chat or room\n"
    "/setprofile - Set your profile\n"
    "/viewprofile - View your profile\n"
    "/help - Show all commands\n\n"
    "📱 Supported messages:\n"
    "• Text messages 💬\n"
    "• Photos 📸\n"
    "• Stickers 🎯\n"
    "• Voice Notes 🎤\n\n"
    "🔒 Your privacy is our priority! Stay safe and have fun!"
)

HELP_HEADER = "🌟 Welcome to Anonymous Chat! 🌟\n\n✨ Available commands:\n"

TRY_AGAIN_LATER = "⚠️ Something went wrong on our side. Please try again later."
UNKNOWN_COMMAND = "❓ Unknown command. Use /help to see what I understand."

# =============================================================================
# MATCHMAKING
# =============================================================================
FIND_IN_ROOM = "❌ You're currently in a chat room! Use /leave first to find a private chat partner."
FIND_PAIRED = "❌ You're already in a chat! Use /leave first to find a new partner."
PARTNER_FOUND = (
    "🎉 Chat partner found! Say hi! 👋\n"
    "You can send:\n"
    "• Text messages 💬\n"
    "• Photos 📸\n"
    "• Stickers 🎯\n"
    "• Voice Notes 🎤\n\n"
    "Use /leave when you want to end the chat."
)
SEARCHING = "🔍 Looking for a chat partner... Please wait!"
SEARCH_CANCELLED = "🛑 Search cancelled.\nUse /find whenever you want to look again."
NOT_SEARCHING = "❌ You're not looking for a partner right now."

# =============================================================================
# ROOMS
# =============================================================================
LEAVE_FIRST = "❌ You must leave your current chat or room first!"
INVALID_CAPACITY = (
    "❌ Invalid number for max_members. Please use a number between 2 and 50.\n"
    "Example: /createroom FunChat 10"
)
INVALID_ROOM_NAME = "❌ Please give your room a name.\nExample: /createroom FunChat 10"
NO_ROOMS = "😔 No active chat rooms found.\nCreate one using /createroom command!"
ROOMS_HEADER = "📋 Available Chat Rooms:\n\n"
ROOMS_FOOTER = "\nUse /joinroom command with a room ID to join!"
MEMBER_JOINED = "👋 A new user has joined the chat room!"
JOIN_FAILED = "❌ Could not join the room. It might be full or no longer exists."
LEFT_ROOM = (
    "👋 You've left the chat room.\n"
    "Use /find to start a private chat or /listrooms to see available rooms!"
)
ROOM_PREFIX = "👤 Anonymous: "

# =============================================================================
# LEAVE / INACTIVITY
# =============================================================================
PARTNER_LEFT = "👋 Your chat partner has left the chat.\nUse /find to start a new chat!"
LEFT_CHAT = "👋 You've left the chat.\nUse /find to start a new chat!"
NOT_IN_CHAT = (
    "❌ You're not in a chat or room!\n"
    "Use /find to start chatting or /listrooms to see available rooms."
)
PARTNER_INACTIVE = (
    "⏰ Your chat partner has been disconnected due to inactivity.\n"
    "Use /find to start a new chat!"
)
SELF_INACTIVE = (
    "⏰ You have been disconnected due to inactivity.\n"
    "Use /find to start a new chat!"
)

# =============================================================================
# RELAY
# =============================================================================
BLOCKED_TEXT = "⚠️ Your message contains inappropriate content and was not sent."
BLOCKED_PHOTO = "⚠️ Your photo caption contains inappropriate content and was not sent."
BLOCKED_VOICE = "⚠️ Your voice note caption contains inappropriate content and was not sent."
UNSUPPORTED_MEDIA = (
    "❌ This type of message is not supported. "
    "You can send text, photos, stickers, or voice notes."
)
NOT_CONNECTED = (
    "❌ You're not connected to anyone!\n"
    "Use /find to start chatting or /listrooms to join a chat room."
)

# =============================================================================
# PROFILES & MOODS
# =============================================================================
PROFILE_MISSING = (
    "❌ You haven't set up your profile yet!\n"
    "Use /setprofile <nickname> <emoji> <bio> to create one."
)
PROFILE_USAGE = "❌ Usage: /setprofile <nickname> <emoji> <bio>"
MOOD_USAGE = "❌ Usage: /setmood <mood> [note]"
NO_MOODS = "📊 You haven't recorded any moods yet!\nUse /setmood <mood> [note] to start tracking."
NO_MOOD_STATS = "📊 No mood data available yet!"

# =============================================================================
# ADMIN
# =============================================================================
ADMIN_ONLY = "❌ This command is only available for administrators."
BROADCAST_USAGE = "❌ Usage: /broadcast <message>"


def help_text(descriptions: Iterable[tuple[str, str]]) -> str:
    lines = [f"/{name} - {description}" for name, description in descriptions]
    return HELP_HEADER + "\n".join(lines)


def room_created(room: Room) -> str:
    return (
        f"🎉 Chat room '{room.name}' created!\n"
        f"Room ID: {room.id}\n"
        f"Maximum members: {room.capacity}\n\n"
        "Share this Room ID with others to let them join using /joinroom command!"
    )


def room_list(rooms: Iterable[Room]) -> str:
    rooms = list(rooms)
    if not rooms:
        return NO_ROOMS
    body = "".join(
        f"🏠 Name: {room.name}\n"
        f"📝 ID: {room.id}\n"
        f"👥 Members: {len(room.members)}/{room.capacity}\n\n"
        for room in rooms
    )
    return ROOMS_HEADER + body + ROOMS_FOOTER


def room_joined(room: Room) -> str:
    return (
        f"🎉 Welcome to chat room '{room.name}'!\n"
        f"👥 Current members: {len(room.members)}/{room.capacity}\n\n"
        "Start chatting or use /leave to exit the room."
    )


def profile_updated(profile: UserProfile) -> str:
    return (
        "✅ Profile updated successfully!\n\n"
        f"Nickname: {profile.nickname}\n"
        f"Avatar: {profile.avatar_emoji}\n"
        f"Bio: {profile.bio}"
    )


def profile_view(profile: UserProfile) -> str:
    return (
        "👤 Your Profile:\n\n"
        f"Nickname: {profile.nickname}\n"
        f"Avatar: {profile.avatar_emoji}\n"
        f"Bio: {profile.bio}\n"
        f"Created: {_format_ts(profile.created_at)}\n"
        f"Last Updated: {_format_ts(profile.updated_at)}"
    )


def mood_set(entry: MoodEntry) -> str:
    return (
        "✅ Mood updated successfully!\n\n"
        f"Current mood: {entry.mood}\n"
        f"Note: {entry.note or '-'}"
    )


def mood_history(entries: Iterable[MoodEntry]) -> str:
    entries = list(entries)
    if not entries:
        return NO_MOODS
    parts = ["📊 Your Mood History:\n\n"]
    for i, entry in enumerate(entries, start=1):
        note = f"\nNote: {entry.note}" if entry.note else ""
        parts.append(f"{i}. Mood: {entry.mood}{note}\n\n")
    return "".join(parts)


def mood_stats(stats: Mapping[str, int]) -> str:
    if not stats:
        return NO_MOOD_STATS
    ordered = sorted(stats.items(), key=lambda kv: (-kv[1], kv[0]))
    return "📊 Anonymous Mood Statistics:\n\n" + "".join(
        f"{mood}: {count} times\n" for mood, count in ordered
    )


def broadcast_body(text: str) -> str:
    return f"📢 Broadcast Message:\n\n{text}"


def broadcast_sent(count: int) -> str:
    return f"✅ Broadcast message sent to {count} users."


def error_reply(error: ChatMeshError, hint: Optional[str] = None) -> str:
    """Fallback text for an error code the handler did not special-case."""
    if error.code.is_transient or error.code is ErrorCode.STORE_CORRUPT_RECORD:
        return TRY_AGAIN_LATER
    if error.code is ErrorCode.ALREADY_BUSY:
        return LEAVE_FIRST
    if error.code is ErrorCode.NOT_CONNECTED:
        return NOT_IN_CHAT
    if error.code is ErrorCode.INACTIVITY_DISCONNECTED:
        return SELF_INACTIVE
    if error.code in (ErrorCode.ROOM_FULL, ErrorCode.ROOM_NOT_FOUND):
        return JOIN_FAILED
    if error.code is ErrorCode.PERMISSION_DENIED:
        return ADMIN_ONLY
    if error.code is ErrorCode.UNKNOWN_COMMAND:
        return UNKNOWN_COMMAND
    if hint:
        return hint
    if error.code is ErrorCode.INVALID_INPUT:
        return f"❌ {error.context.get('reason', error.message)}"
    return f"❌ {error.message}"


def _format_ts(ts: float) -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S", time.gmtime(ts))
