"""
Profiles module: user profiles, mood history and anonymous mood statistics.
"""

from chatmesh.profiles.models import MoodEntry, UserProfile
from chatmesh.profiles.store import InMemoryProfileStore, ProfileStore

__all__ = [
    "UserProfile",
    "MoodEntry",
    "ProfileStore",
    "InMemoryProfileStore",
]
