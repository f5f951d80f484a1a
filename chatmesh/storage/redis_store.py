"""
Redis Session Store
===================

Redis/Valkey implementation of KeyValueStore, shared by every bot worker.

Design Principles:
------------------
1. **Lock-Free**: CAS via Lua scripts, no Python-side locks
2. **Connection Pooling**: one redis-py asyncio client per process
3. **Result Monad**: No exceptions for control flow

Memory Layout:
--------------
Each key is stored as a Redis Hash with fields:
- 'd': data (JSON text)
- 'v': version (integer)
- 'c': created_at (epoch seconds)
- 'u': updated_at (epoch seconds)

Versions are drawn from one counter key (`<prefix>__version__`) so a key
that is deleted and recreated never reuses a version. In cluster mode the
key prefix must contain a hash tag (e.g. "{chatmesh}:") so the counter and
the records share a slot.

Algorithmic Complexity:
-----------------------
| Operation         | Time  | Notes                        |
|-------------------|-------|------------------------------|
| get               | O(1)  | HGETALL                      |
| put_if_version    | O(1)  | Lua, atomic on server        |
| delete_if_version | O(1)  | Lua, atomic on server        |
| scan              | O(N)  | SCAN + pipelined HGETALL     |

License: MIT
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import NoScriptError, RedisError

from chatmesh.core import constants as C
from chatmesh.core.errors import StoreError
from chatmesh.core.types import Result, Ok, Err
from chatmesh.reliability.retry import RetryPolicy, retry_with_backoff
from chatmesh.storage.config import RedisConfig, RedisMode
from chatmesh.storage.protocols import ABSENT_VERSION, ScanEntry, VersionedValue

logger = logging.getLogger(__name__)


# =============================================================================
# LUA SCRIPTS
# =============================================================================

# Returns {1, new_version} on success or {0, current_version} on mismatch.
# expected_version < 0 means unconditional write.
LUA_CAS_SCRIPT: str = """
local key = KEYS[1]
local counter = KEYS[2]
local expected_version = tonumber(ARGV[1])
local new_value = ARGV[2]
local now = ARGV[3]

local curr_version = tonumber(redis.call('HGET', key, 'v') or '0')
if expected_version >= 0 and curr_version ~= expected_version then
    return {0, curr_version}
end

local new_version = redis.call('INCR', counter)
if curr_version == 0 then
    redis.call('HSET', key, 'd', new_value, 'v', new_version, 'c', now, 'u', now)
else
    redis.call('HSET', key, 'd', new_value, 'v', new_version, 'u', now)
end
return {1, new_version}
"""

# Returns {1, version} when deleted or {0, current_version} on mismatch.
LUA_CAD_SCRIPT: str = """
local key = KEYS[1]
local expected_version = tonumber(ARGV[1])

local curr_version = tonumber(redis.call('HGET', key, 'v') or '0')
if curr_version == 0 or curr_version ~= expected_version then
    return {0, curr_version}
end
redis.call('DEL', key)
return {1, curr_version}
"""

UNCONDITIONAL: int = -1


# =============================================================================
# REDIS STORE
# =============================================================================

class RedisStore:
    """
    Redis/Valkey store implementing KeyValueStore.

    Keys handed to this class are logical ("session:42"); the configured
    key_prefix is applied on the way in and stripped on the way out.

    Example:
        >>> store = RedisStore(RedisConfig(host="redis.example.com"))
        >>> (await store.connect()).unwrap()
        >>> await store.put_if_version("session:42", record, 0)
        >>> await store.close()
    """

    __slots__ = (
        "_config",
        "_client",
        "_cas_sha",
        "_cad_sha",
        "_owns_client",
    )

    def __init__(
        self,
        config: RedisConfig,
        client: Optional[aioredis.Redis] = None,
    ) -> None:
        """
        Initialize Redis store.

        Args:
            config: Redis connection configuration.
            client: Pre-built client (shared pool or test double). When
                omitted, `connect()` builds one from config.
        """
        self._config = config
        self._client = client
        self._cas_sha: Optional[str] = None
        self._cad_sha: Optional[str] = None
        self._owns_client = client is None

    # -------------------------------------------------------------------------
    # CONNECTION MANAGEMENT
    # -------------------------------------------------------------------------

    async def connect(self) -> Result[None, StoreError]:
        """
        Establish the connection pool and load Lua scripts.

        Must be called before any operations. The first PING is retried
        with backoff so workers can start while Redis is still coming up.
        """
        if self._client is None:
            self._client = self._build_client()

        pinged = await retry_with_backoff(
            self._client.ping,
            RetryPolicy(retryable_exceptions=(RedisError, OSError)),
        )
        if pinged.is_err():
            return Err(StoreError.unavailable("connect", self._config.host, pinged.error))

        try:
            await self._load_scripts()
            logger.info(
                "Connected to redis at %s:%d (mode=%s)",
                self._config.host, self._config.port, self._config.mode.name,
            )
            return Ok(None)
        except RedisError as e:
            return Err(StoreError.unavailable("connect", self._config.host, e))

    def _build_client(self) -> aioredis.Redis:
        kwargs = self._config.get_connection_kwargs()

        if self._config.mode == RedisMode.CLUSTER:
            from redis.asyncio.cluster import RedisCluster
            kwargs.pop("max_connections", None)
            return RedisCluster(**kwargs)

        if self._config.mode == RedisMode.SENTINEL:
            from redis.asyncio.sentinel import Sentinel
            sentinel = Sentinel(
                list(self._config.sentinel_hosts),
                socket_timeout=self._config.socket_timeout_ms / 1000,
            )
            kwargs.pop("host", None)
            kwargs.pop("port", None)
            return sentinel.master_for(
                self._config.sentinel_service,
                redis_class=aioredis.Redis,
                **kwargs,
            )

        return aioredis.Redis(**kwargs)

    async def _load_scripts(self) -> None:
        self._cas_sha = await self._client.script_load(LUA_CAS_SCRIPT)
        self._cad_sha = await self._client.script_load(LUA_CAD_SCRIPT)

    async def close(self) -> None:
        """
        Close connections. Safe to call multiple times.

        A client passed in by the caller is left open for its owner.
        """
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> aioredis.Redis:
        """Underlying client, shared with the Redis profile store."""
        if self._client is None:
            raise RuntimeError("RedisStore.connect() has not been called")
        return self._client

    def physical_key(self, key: str) -> str:
        return f"{self._config.key_prefix}{key}"

    @property
    def _counter_key(self) -> str:
        return f"{self._config.key_prefix}__version__"

    # -------------------------------------------------------------------------
    # KeyValueStore Implementation
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> Result[Optional[VersionedValue], StoreError]:
        """
        Retrieve value and version.

        Complexity: O(1) - HGETALL on a small hash.
        """
        try:
            data: Dict[str, str] = await self.client.hgetall(self.physical_key(key))
        except RedisError as e:
            return Err(StoreError.unavailable("get", key, e))

        if not data:
            return Ok(None)
        return self._decode(key, data)

    async def put(self, key: str, value: Dict[str, Any]) -> Result[int, StoreError]:
        return await self._cas(key, value, UNCONDITIONAL)

    async def delete(self, key: str) -> Result[bool, StoreError]:
        try:
            deleted = await self.client.delete(self.physical_key(key))
        except RedisError as e:
            return Err(StoreError.unavailable("delete", key, e))
        return Ok(deleted > 0)

    async def put_if_version(
        self,
        key: str,
        value: Dict[str, Any],
        expected_version: int,
    ) -> Result[int, StoreError]:
        """
        Atomic CAS: update only if version matches.

        Uses Lua script for atomicity without WATCH/MULTI.

        Returns:
            Ok(new_version) on success.
            Err(StoreError.conflict) if the version doesn't match
            (ABSENT_VERSION expects the key to be missing).
        """
        if expected_version < ABSENT_VERSION:
            raise ValueError("expected_version must be >= 0")
        return await self._cas(key, value, expected_version)

    async def delete_if_version(
        self,
        key: str,
        expected_version: int,
    ) -> Result[None, StoreError]:
        try:
            applied, actual = await self._evalsha(
                "cad", [self.physical_key(key)], [expected_version],
            )
        except RedisError as e:
            return Err(StoreError.unavailable("delete_if_version", key, e))

        if not applied:
            return Err(StoreError.conflict(key, expected_version, actual))
        return Ok(None)

    async def scan(self, prefix: str) -> Result[List[ScanEntry], StoreError]:
        """
        Return every record under a logical prefix.

        Uses SCAN for non-blocking iteration and a pipeline to fetch the
        hashes in one round-trip per batch. Keys deleted between SCAN and
        HGETALL are skipped.
        """
        pattern = f"{self.physical_key(prefix)}*"
        strip = len(self._config.key_prefix)
        entries: List[ScanEntry] = []

        try:
            keys = [
                k async for k in self.client.scan_iter(
                    match=pattern, count=C.SCAN_BATCH_SIZE,
                )
            ]
            for start in range(0, len(keys), C.SCAN_BATCH_SIZE):
                batch = keys[start:start + C.SCAN_BATCH_SIZE]
                async with self.client.pipeline(transaction=False) as pipe:
                    for physical in batch:
                        pipe.hgetall(physical)
                    hashes = await pipe.execute()

                for physical, data in zip(batch, hashes):
                    if not data:
                        continue
                    logical = physical[strip:]
                    decoded = self._decode(logical, data)
                    if decoded.is_err():
                        logger.warning(
                            "Skipping undecodable record %s: %s",
                            logical, decoded.error,
                        )
                        continue
                    record = decoded.value
                    entries.append(ScanEntry(logical, record.value, record.version))
        except RedisError as e:
            return Err(StoreError.unavailable("scan", prefix, e))

        entries.sort(key=lambda entry: entry.key)
        return Ok(entries)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    async def _cas(
        self,
        key: str,
        value: Dict[str, Any],
        expected_version: int,
    ) -> Result[int, StoreError]:
        try:
            payload = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            return Err(StoreError.corrupt_record(key, "value is not JSON-serializable", e))

        try:
            applied, version = await self._evalsha(
                "cas",
                [self.physical_key(key), self._counter_key],
                [expected_version, payload, f"{time.time():.6f}"],
            )
        except RedisError as e:
            return Err(StoreError.unavailable("put_if_version", key, e))

        if not applied:
            return Err(StoreError.conflict(key, expected_version, version))
        return Ok(version)

    async def _evalsha(
        self,
        script: str,
        keys: List[str],
        args: List[Any],
    ) -> tuple[bool, int]:
        """Run a loaded script, reloading once if the server lost it."""
        if self._cas_sha is None or self._cad_sha is None:
            await self._load_scripts()

        for attempt in range(2):
            sha = self._cas_sha if script == "cas" else self._cad_sha
            try:
                result = await self.client.evalsha(sha, len(keys), *keys, *args)
                return bool(int(result[0])), int(result[1])
            except NoScriptError:
                if attempt:
                    raise
                logger.info("Lua scripts missing on server (restart?); reloading")
                await self._load_scripts()
        raise AssertionError("unreachable")

    def _decode(self, key: str, data: Dict[str, str]) -> Result[VersionedValue, StoreError]:
        try:
            value = json.loads(data["d"])
            version = int(data["v"])
        except (KeyError, ValueError, TypeError) as e:
            return Err(StoreError.corrupt_record(key, str(e), e))
        if not isinstance(value, dict):
            return Err(StoreError.corrupt_record(key, "record is not a JSON object"))
        return Ok(VersionedValue(value, version))
