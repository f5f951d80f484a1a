"""
Error codes and the ChatMeshError family.

Operations hand these back inside Err(...); they are exceptions only so a
caller that gives up can raise one unchanged. The message is for logs.
What the user sees is chosen by the bot layer from `code`.

Usage:
    result = await rooms.join(room_id, session_id)
    match result:
        case Ok(room):
            announce(room)
        case Err(error) if error.code is ErrorCode.ROOM_FULL:
            reply("room is full")
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Numbered by subsystem:
    - 1xxx: Session context errors
    - 2xxx: Room errors
    - 3xxx: Input and permission errors
    - 4xxx: Store errors
    - 6xxx: Reliability errors
    """

    # Session context (1xxx)
    ALREADY_BUSY = 1001
    NOT_CONNECTED = 1002
    INACTIVITY_DISCONNECTED = 1003

    # Rooms (2xxx)
    ROOM_FULL = 2001
    ROOM_NOT_FOUND = 2002

    # Input (3xxx)
    INVALID_INPUT = 3001
    PERMISSION_DENIED = 3002
    UNKNOWN_COMMAND = 3003

    # Store (4xxx)
    STORE_UNAVAILABLE = 4001
    STORE_CONFLICT = 4002
    STORE_CORRUPT_RECORD = 4003

    # Reliability (6xxx)
    RETRY_EXHAUSTED = 6001

    @property
    def is_transient(self) -> bool:
        """Transient codes are reported as "try again later"."""
        return self in _TRANSIENT_CODES


_TRANSIENT_CODES = frozenset({
    ErrorCode.STORE_UNAVAILABLE,
    ErrorCode.STORE_CONFLICT,
    ErrorCode.RETRY_EXHAUSTED,
})


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class ChatMeshError(Exception):
    """
    Base of every error the engine returns.

    `error_id` ties a user-visible failure to its log line; `cause` keeps
    the client exception behind a store failure.
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: float = field(default_factory=time.time)
    cause: Optional[Exception] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @property
    def is_transient(self) -> bool:
        return self.code.is_transient

    def to_dict(self) -> dict[str, Any]:
        """Serialize error to dictionary for structured logging."""
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# SESSION CONTEXT ERRORS
# =============================================================================
@dataclass
class SessionError(ChatMeshError):
    """Errors raised by state machine guards on a session's context."""

    @classmethod
    def already_busy(cls, session_id: int, context: str) -> SessionError:
        """Session is already paired or in a room."""
        return cls(
            code=ErrorCode.ALREADY_BUSY,
            message=f"Session {session_id} is busy ({context})",
            context={"session_id": session_id, "current_context": context},
        )

    @classmethod
    def not_connected(cls, session_id: int) -> SessionError:
        """Leave requested with no partner and no room."""
        return cls(
            code=ErrorCode.NOT_CONNECTED,
            message=f"Session {session_id} has no partner and no room",
            context={"session_id": session_id},
        )

    @classmethod
    def inactivity_disconnected(
        cls,
        session_id: int,
        idle_seconds: float,
    ) -> SessionError:
        """Session was torn down by the inactivity reaper."""
        return cls(
            code=ErrorCode.INACTIVITY_DISCONNECTED,
            message=f"Session {session_id} idle for {idle_seconds:.0f}s",
            context={"session_id": session_id, "idle_seconds": idle_seconds},
        )


# =============================================================================
# ROOM ERRORS
# =============================================================================
@dataclass
class RoomError(ChatMeshError):
    """Errors from the room lifecycle manager."""

    @classmethod
    def room_full(cls, room_id: str, capacity: int) -> RoomError:
        return cls(
            code=ErrorCode.ROOM_FULL,
            message=f"Room {room_id} is at capacity {capacity}",
            context={"room_id": room_id, "capacity": capacity},
        )

    @classmethod
    def room_not_found(cls, room_id: str) -> RoomError:
        return cls(
            code=ErrorCode.ROOM_NOT_FOUND,
            message=f"Room {room_id} does not exist",
            context={"room_id": room_id},
        )


# =============================================================================
# INPUT ERRORS
# =============================================================================
@dataclass
class InputError(ChatMeshError):
    """User input and permission errors."""

    @classmethod
    def invalid_input(cls, field_name: str, value: Any, reason: str) -> InputError:
        return cls(
            code=ErrorCode.INVALID_INPUT,
            message=f"Invalid value for '{field_name}': {reason}",
            context={"field": field_name, "value": str(value)[:100], "reason": reason},
        )

    @classmethod
    def permission_denied(cls, session_id: int, action: str) -> InputError:
        return cls(
            code=ErrorCode.PERMISSION_DENIED,
            message=f"Session {session_id} may not {action}",
            context={"session_id": session_id, "action": action},
        )

    @classmethod
    def unknown_command(cls, name: str) -> InputError:
        return cls(
            code=ErrorCode.UNKNOWN_COMMAND,
            message=f"Unknown command '{name}'",
            context={"command": name},
        )


# =============================================================================
# STORE ERRORS
# =============================================================================
@dataclass
class StoreError(ChatMeshError):
    """
    Errors from the shared key-value store.

    `unavailable` is transient I/O failure and is retried by the caller;
    `conflict` is a lost compare-and-set and is recovered by re-reading.
    """

    @classmethod
    def unavailable(
        cls,
        operation: str,
        key: str,
        cause: Optional[Exception] = None,
    ) -> StoreError:
        return cls(
            code=ErrorCode.STORE_UNAVAILABLE,
            message=f"Store unavailable during {operation} on '{key}'",
            cause=cause,
            context={"operation": operation, "key": key},
        )

    @classmethod
    def conflict(
        cls,
        key: str,
        expected_version: int,
        actual_version: Optional[int] = None,
    ) -> StoreError:
        return cls(
            code=ErrorCode.STORE_CONFLICT,
            message=(
                f"Version conflict on '{key}': expected {expected_version}, "
                f"found {actual_version}"
            ),
            context={
                "key": key,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )

    @classmethod
    def corrupt_record(
        cls,
        key: str,
        reason: str,
        cause: Optional[Exception] = None,
    ) -> StoreError:
        return cls(
            code=ErrorCode.STORE_CORRUPT_RECORD,
            message=f"Record '{key}' could not be decoded: {reason}",
            cause=cause,
            context={"key": key, "reason": reason},
        )

    @property
    def is_conflict(self) -> bool:
        return self.code is ErrorCode.STORE_CONFLICT


# =============================================================================
# RELIABILITY ERRORS
# =============================================================================
@dataclass
class ReliabilityError(ChatMeshError):
    """Errors from retry loops."""

    @classmethod
    def retry_exhausted(
        cls,
        attempts: int,
        last_error: str,
        operation: str = "",
    ) -> ReliabilityError:
        return cls(
            code=ErrorCode.RETRY_EXHAUSTED,
            message=f"Retry exhausted after {attempts} attempts: {last_error}",
            context={
                "attempts": attempts,
                "last_error": last_error,
                "operation": operation,
            },
        )
