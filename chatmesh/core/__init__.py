"""
Core module: Type definitions, error hierarchy, and configuration.

This module provides the foundational abstractions for the chat mesh:
- Result/Either monads for zero-exception control flow
- Error hierarchy with stable codes
- Configuration management with validation
"""

from chatmesh.core.types import (
    Result,
    Ok,
    Err,
    SessionId,
    RoomId,
    Clock,
    ManualClock,
    system_clock,
)
from chatmesh.core.errors import (
    ErrorCode,
    ChatMeshError,
    SessionError,
    RoomError,
    InputError,
    StoreError,
    ReliabilityError,
)
from chatmesh.core.config import ChatMeshConfig

__all__ = [
    "Result",
    "Ok",
    "Err",
    "SessionId",
    "RoomId",
    "Clock",
    "ManualClock",
    "system_clock",
    "ErrorCode",
    "ChatMeshError",
    "SessionError",
    "RoomError",
    "InputError",
    "StoreError",
    "ReliabilityError",
    "ChatMeshConfig",
]
