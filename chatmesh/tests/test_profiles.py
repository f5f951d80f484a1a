"""Tests for profiles, mood history and mood statistics."""

import pytest

from chatmesh.core.errors import ErrorCode
from chatmesh.profiles.models import MoodEntry, UserProfile
from chatmesh.profiles.store import InMemoryProfileStore, ProfileStore


class TestUserProfile:
    """Test profile validation."""

    def test_build_new_profile(self) -> None:
        profile = UserProfile.build(" neo ", "🙂", "likes tea", now=10.0).unwrap()
        assert profile.nickname == "neo"
        assert profile.created_at == profile.updated_at == 10.0

    def test_update_keeps_created_at(self) -> None:
        first = UserProfile.build("neo", "🙂", "v1", now=10.0).unwrap()
        second = UserProfile.build("trinity", "😎", "v2", now=20.0, existing=first).unwrap()
        assert second.created_at == 10.0
        assert second.updated_at == 20.0
        assert second.nickname == "trinity"

    @pytest.mark.parametrize("nickname,emoji,bio,field", [
        ("", "🙂", "bio", "nickname"),
        ("x" * 33, "🙂", "bio", "nickname"),
        ("neo", " ", "bio", "avatar_emoji"),
        ("neo", "🙂", "b" * 281, "bio"),
    ])
    def test_invalid_fields(self, nickname: str, emoji: str, bio: str, field: str) -> None:
        result = UserProfile.build(nickname, emoji, bio, now=0.0)
        assert result.error.code is ErrorCode.INVALID_INPUT
        assert result.error.context["field"] == field

    def test_record_round_trip(self) -> None:
        profile = UserProfile("neo", "🙂", "bio", 1.0, 2.0)
        assert UserProfile.from_record(profile.to_record()) == profile


class TestMoodEntry:
    def test_mood_is_normalised(self) -> None:
        entry = MoodEntry.build("  HAPPY ", "  ", now=1.0).unwrap()
        assert entry.mood == "happy"
        assert entry.note is None

    def test_empty_mood_rejected(self) -> None:
        assert MoodEntry.build(" ", None, now=1.0).is_err()


class TestInMemoryProfileStore:
    """Test history capping and the anonymous tally."""

    @pytest.fixture
    def profiles(self) -> InMemoryProfileStore:
        return InMemoryProfileStore()

    def test_satisfies_protocol(self, profiles: InMemoryProfileStore) -> None:
        assert isinstance(profiles, ProfileStore)

    @pytest.mark.asyncio
    async def test_missing_profile(self, profiles: InMemoryProfileStore) -> None:
        assert (await profiles.get_profile(1)).unwrap() is None

    @pytest.mark.asyncio
    async def test_five_happy_moods(self, profiles: InMemoryProfileStore) -> None:
        for i in range(5):
            await profiles.append_mood(1, MoodEntry("happy", f"#{i}", float(i)))

        moods = (await profiles.get_moods(1)).unwrap()
        assert [m.note for m in moods] == ["#4", "#3", "#2", "#1", "#0"]
        assert (await profiles.get_mood_stats()).unwrap() == {"happy": 5}

    @pytest.mark.asyncio
    async def test_history_capped_at_thirty(self, profiles: InMemoryProfileStore) -> None:
        """Only the 30 most recent entries are kept; stats count all of them."""
        for i in range(35):
            await profiles.append_mood(1, MoodEntry("calm", None, float(i)))

        moods = (await profiles.get_moods(1)).unwrap()
        assert len(moods) == 30
        assert moods[0].timestamp == 34.0
        assert moods[-1].timestamp == 5.0
        assert (await profiles.get_mood_stats()).unwrap() == {"calm": 35}

    @pytest.mark.asyncio
    async def test_stats_span_users(self, profiles: InMemoryProfileStore) -> None:
        await profiles.append_mood(1, MoodEntry("happy", None, 1.0))
        await profiles.append_mood(2, MoodEntry("happy", None, 2.0))
        await profiles.append_mood(2, MoodEntry("sad", None, 3.0))

        assert (await profiles.get_mood_stats()).unwrap() == {"happy": 2, "sad": 1}
        assert len((await profiles.get_moods(1)).unwrap()) == 1
