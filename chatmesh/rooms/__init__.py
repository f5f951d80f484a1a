"""
Rooms module: group room records and the lifecycle manager.
"""

from chatmesh.rooms.models import BroadcastReport, Room, VersionedRoom
from chatmesh.rooms.manager import RoomManager, room_key

__all__ = [
    "Room",
    "VersionedRoom",
    "BroadcastReport",
    "RoomManager",
    "room_key",
]
