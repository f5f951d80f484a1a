"""
Anonymous Chat Mesh

Session state machine and coordination engine for an anonymous chat bot:
- Random one-to-one matchmaking with a race-safe two-sided commit
- Group rooms with capacity enforced at commit time
- Inactivity reaping (lazy on the next message, optional background sweep)
- Moderated relay of text, photos, stickers and voice notes
- Profiles, mood history and anonymous mood statistics

All cross-record consistency is kept with single-key conditional writes
against a shared store (in-memory or Redis), so any number of handlers and
bot workers can run concurrently.

License: MIT
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from chatmesh.core.types import Result, Ok, Err, ManualClock
from chatmesh.core.errors import (
    ChatMeshError,
    ErrorCode,
    SessionError,
    RoomError,
    InputError,
    StoreError,
)
from chatmesh.core.config import ChatMeshConfig
from chatmesh.session import SessionContext, SessionRepository
from chatmesh.matchmaking import MatchmakingEngine
from chatmesh.rooms import RoomManager
from chatmesh.transport import OutboundMessage, RecordingTransport
from chatmesh.app import ChatMesh

__all__ = [
    "__version__",
    "Result",
    "Ok",
    "Err",
    "ManualClock",
    "ChatMeshError",
    "ErrorCode",
    "SessionError",
    "RoomError",
    "InputError",
    "StoreError",
    "ChatMeshConfig",
    "SessionContext",
    "SessionRepository",
    "MatchmakingEngine",
    "RoomManager",
    "OutboundMessage",
    "RecordingTransport",
    "ChatMesh",
]
