"""Tests for the Redis session and profile stores against a mocked client."""

import json
from typing import AsyncIterator
from unittest.mock import AsyncMock
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import NoScriptError

from chatmesh.core.errors import ErrorCode
from chatmesh.profiles.models import MoodEntry, UserProfile
from chatmesh.profiles.redis_store import RedisProfileStore
from chatmesh.storage.config import RedisConfig
from chatmesh.storage.redis_store import RedisStore


def _record(value: dict, version: int) -> dict:
    return {"d": json.dumps(value), "v": str(version), "c": "1.0", "u": "1.0"}


def _pipeline(results: list) -> MagicMock:
    """Pipeline double usable as `async with client.pipeline() as pipe`."""
    pipe = MagicMock()
    pipe.__aenter__.return_value = pipe
    pipe.__aexit__.return_value = False
    pipe.execute = AsyncMock(return_value=results)
    return pipe


@pytest.fixture
def client() -> MagicMock:
    """Mocked redis.asyncio client with scripts already loadable."""
    mock = MagicMock()
    mock.ping = AsyncMock(return_value=True)
    mock.script_load = AsyncMock(side_effect=lambda script: f"sha-{len(script)}")
    mock.hgetall = AsyncMock(return_value={})
    mock.evalsha = AsyncMock(return_value=[1, 1])
    mock.delete = AsyncMock(return_value=1)
    mock.aclose = AsyncMock()
    return mock


@pytest.fixture
def store(client: MagicMock) -> RedisStore:
    return RedisStore(RedisConfig(key_prefix="test:"), client=client)


class TestConnection:
    """Test connect and close."""

    @pytest.mark.asyncio
    async def test_connect_pings_and_loads_scripts(self, store: RedisStore, client: MagicMock) -> None:
        assert (await store.connect()).is_ok()
        client.ping.assert_awaited_once()
        assert client.script_load.await_count == 2

    @pytest.mark.asyncio
    async def test_connect_reports_unreachable_server(self, store: RedisStore, client: MagicMock) -> None:
        """PING is retried with backoff, then reported as unavailable."""
        client.ping.side_effect = RedisConnectionError("refused")

        result = await store.connect()

        assert result.is_err()
        assert result.error.code is ErrorCode.STORE_UNAVAILABLE
        assert client.ping.await_count == 3

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self, store: RedisStore, client: MagicMock) -> None:
        await store.close()
        client.aclose.assert_not_awaited()

    def test_client_required_before_connect(self) -> None:
        with pytest.raises(RuntimeError):
            RedisStore(RedisConfig()).client


class TestReads:
    """Test record decoding."""

    @pytest.mark.asyncio
    async def test_get_decodes_hash(self, store: RedisStore, client: MagicMock) -> None:
        client.hgetall.return_value = _record({"id": 1}, 5)

        stored = (await store.get("session:1")).unwrap()

        client.hgetall.assert_awaited_once_with("test:session:1")
        assert stored.value == {"id": 1}
        assert stored.version == 5

    @pytest.mark.asyncio
    async def test_get_missing(self, store: RedisStore) -> None:
        assert (await store.get("session:1")).unwrap() is None

    @pytest.mark.asyncio
    async def test_get_corrupt_record(self, store: RedisStore, client: MagicMock) -> None:
        client.hgetall.return_value = {"d": "not json", "v": "1"}
        result = await store.get("session:1")
        assert result.error.code is ErrorCode.STORE_CORRUPT_RECORD

    @pytest.mark.asyncio
    async def test_get_maps_redis_errors(self, store: RedisStore, client: MagicMock) -> None:
        client.hgetall.side_effect = RedisConnectionError("reset")
        result = await store.get("session:1")
        assert result.error.code is ErrorCode.STORE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_scan_strips_prefix_and_skips_vanished_keys(
        self, store: RedisStore, client: MagicMock,
    ) -> None:
        """Keys deleted between SCAN and HGETALL are skipped."""

        async def keys(**kwargs: object) -> AsyncIterator[str]:
            for key in ("test:session:2", "test:session:1", "test:session:3"):
                yield key

        client.scan_iter = MagicMock(side_effect=keys)
        client.pipeline = MagicMock(return_value=_pipeline([
            _record({"id": 2}, 7), _record({"id": 1}, 4), {},
        ]))

        entries = (await store.scan("session:")).unwrap()

        assert [(e.key, e.version) for e in entries] == [("session:1", 4), ("session:2", 7)]
        assert client.scan_iter.call_args.kwargs["match"] == "test:session:*"


class TestConditionalWrites:
    """Test the Lua-backed compare-and-set path."""

    @pytest.mark.asyncio
    async def test_put_if_version_success(self, store: RedisStore, client: MagicMock) -> None:
        client.evalsha.return_value = [1, 12]

        assert (await store.put_if_version("session:1", {"id": 1}, 11)).unwrap() == 12

        args = client.evalsha.await_args.args
        assert args[1:4] == (2, "test:session:1", "test:__version__")
        assert args[4] == 11
        assert json.loads(args[5]) == {"id": 1}

    @pytest.mark.asyncio
    async def test_put_if_version_conflict(self, store: RedisStore, client: MagicMock) -> None:
        client.evalsha.return_value = [0, 13]

        result = await store.put_if_version("session:1", {"id": 1}, 11)

        assert result.error.is_conflict
        assert result.error.context["actual_version"] == 13

    @pytest.mark.asyncio
    async def test_put_is_unconditional(self, store: RedisStore, client: MagicMock) -> None:
        await store.put("session:1", {"id": 1})
        assert client.evalsha.await_args.args[4] == -1

    @pytest.mark.asyncio
    async def test_negative_expected_version_rejected(self, store: RedisStore) -> None:
        with pytest.raises(ValueError):
            await store.put_if_version("session:1", {}, -1)

    @pytest.mark.asyncio
    async def test_reloads_scripts_after_server_restart(self, store: RedisStore, client: MagicMock) -> None:
        """NOSCRIPT triggers one reload and a second attempt."""
        client.evalsha.side_effect = [NoScriptError("NOSCRIPT"), [1, 3]]

        assert (await store.put_if_version("session:1", {}, 2)).unwrap() == 3
        assert client.script_load.await_count == 4

    @pytest.mark.asyncio
    async def test_delete_if_version(self, store: RedisStore, client: MagicMock) -> None:
        client.evalsha.return_value = [0, 9]
        result = await store.delete_if_version("room:a", 8)
        assert result.error.is_conflict

        client.evalsha.return_value = [1, 9]
        assert (await store.delete_if_version("room:a", 9)).is_ok()

    @pytest.mark.asyncio
    async def test_write_maps_redis_errors(self, store: RedisStore, client: MagicMock) -> None:
        client.evalsha.side_effect = RedisConnectionError("reset")
        result = await store.put_if_version("session:1", {}, 0)
        assert result.error.code is ErrorCode.STORE_UNAVAILABLE


class TestRedisProfileStore:
    """Test the profile and mood layout."""

    @pytest.fixture
    def profiles(self, client: MagicMock) -> RedisProfileStore:
        client.hset = AsyncMock(return_value=1)
        client.lrange = AsyncMock(return_value=[])
        return RedisProfileStore(client, key_prefix="test:", history_limit=30)

    @pytest.mark.asyncio
    async def test_save_and_get_profile(self, profiles: RedisProfileStore, client: MagicMock) -> None:
        profile = UserProfile("neo", "🙂", "hello", created_at=10.0, updated_at=20.0)

        await profiles.save_profile(42, profile)
        key, = client.hset.await_args.args
        mapping = client.hset.await_args.kwargs["mapping"]
        assert key == "test:profile:42"
        assert mapping["nickname"] == "neo"

        client.hgetall.return_value = mapping
        assert (await profiles.get_profile(42)).unwrap() == profile

    @pytest.mark.asyncio
    async def test_append_mood_is_one_transaction(self, profiles: RedisProfileStore, client: MagicMock) -> None:
        """LPUSH, LTRIM and HINCRBY go through one MULTI/EXEC pipeline."""
        pipe = _pipeline([1, True, 1])
        client.pipeline = MagicMock(return_value=pipe)

        await profiles.append_mood(42, MoodEntry("happy", None, 5.0))

        client.pipeline.assert_called_once_with(transaction=True)
        assert pipe.lpush.call_args.args[0] == "test:mood_history:42"
        pipe.ltrim.assert_called_once_with("test:mood_history:42", 0, 29)
        pipe.hincrby.assert_called_once_with("test:mood_stats", "happy", 1)
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_moods_skips_bad_entries(self, profiles: RedisProfileStore, client: MagicMock) -> None:
        client.lrange.return_value = [
            json.dumps({"mood": "calm", "note": "tea", "timestamp": 2.0}),
            "{broken",
            json.dumps({"mood": "happy", "note": None, "timestamp": 1.0}),
        ]

        moods = (await profiles.get_moods(42)).unwrap()

        assert [m.mood for m in moods] == ["calm", "happy"]
        client.lrange.assert_awaited_once_with("test:mood_history:42", 0, 29)

    @pytest.mark.asyncio
    async def test_mood_stats(self, profiles: RedisProfileStore, client: MagicMock) -> None:
        client.hgetall.return_value = {"happy": "5", "sad": "1"}
        assert (await profiles.get_mood_stats()).unwrap() == {"happy": 5, "sad": 1}
