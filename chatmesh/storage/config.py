"""
Store backend configuration.

Two backends hold session and room records: an in-process dict for a
single bot worker (and for tests), and Redis/Valkey when several workers
share state. Both configs are frozen; RedisConfig checks its own bounds on
construction so a bad deployment fails at startup rather than on the first
command.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlparse


class BackendType(Enum):
    IN_MEMORY = auto()
    REDIS = auto()


class RedisMode(Enum):
    """How the Redis client reaches the primary."""
    STANDALONE = auto()
    SENTINEL = auto()
    CLUSTER = auto()  # record and counter keys need a shared hash tag in key_prefix


_TRUTHY = ("true", "1", "yes")
_FALSY = ("false", "0", "no")

_MODES = {mode.name.lower(): mode for mode in RedisMode}

_BACKENDS = {
    "memory": BackendType.IN_MEMORY,
    "in_memory": BackendType.IN_MEMORY,
    "redis": BackendType.REDIS,
    "valkey": BackendType.REDIS,
}


def _env_flag(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name, "").lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    return default


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "")
    return int(raw) if raw else default


def _parse_hosts(raw: str) -> Tuple[Tuple[str, int], ...]:
    """'a:26379, b:26379' -> (('a', 26379), ('b', 26379)); malformed entries are skipped."""
    hosts = []
    for item in raw.split(","):
        host, sep, port = item.strip().rpartition(":")
        if sep and host and port.isdigit():
            hosts.append((host, int(port)))
    return tuple(hosts)


@dataclass(frozen=True, slots=True)
class RedisConfig:
    """
    Connection settings for the shared session store.

    Every key chatmesh writes starts with `key_prefix`, so several bots can
    share one logical database. In cluster mode the prefix should carry a
    hash tag such as "{chatmesh}:" because the compare-and-set script
    touches a record and the store-wide version counter together.

    Example:
        >>> RedisConfig.from_url("redis://:secret@cache:6380/2").port
        6380
    """
    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    db: int = 0
    ssl: bool = False
    key_prefix: str = "chatmesh:"

    mode: RedisMode = RedisMode.STANDALONE
    sentinel_hosts: Tuple[Tuple[str, int], ...] = field(default_factory=tuple)
    sentinel_service: str = "mymaster"

    max_connections: int = 50
    connect_timeout_ms: int = 2000
    socket_timeout_ms: int = 5000

    def __post_init__(self) -> None:
        problems = []
        if not 0 < self.port < 65536:
            problems.append(f"port {self.port} out of range")
        if self.mode is RedisMode.STANDALONE and not 0 <= self.db <= 15:
            problems.append(f"db {self.db} out of range for a standalone server")
        for name in ("max_connections", "connect_timeout_ms", "socket_timeout_ms"):
            if getattr(self, name) <= 0:
                problems.append(f"{name} must be positive")
        if self.mode is RedisMode.SENTINEL and not self.sentinel_hosts:
            problems.append("sentinel mode needs at least one sentinel host")
        if problems:
            raise ValueError("invalid redis config: " + "; ".join(problems))

    @classmethod
    def from_url(cls, url: str, **overrides: Any) -> RedisConfig:
        """Standalone settings from a redis:// or rediss:// URL."""
        parsed = urlparse(url)
        if parsed.scheme not in ("redis", "rediss"):
            raise ValueError(f"unsupported redis URL scheme: {parsed.scheme!r}")
        db = parsed.path.lstrip("/") or "0"
        if not db.isdigit():
            raise ValueError(f"redis URL path must be a db number, got {parsed.path!r}")
        settings: Dict[str, Any] = dict(
            host=parsed.hostname or "localhost",
            port=parsed.port or 6379,
            password=parsed.password or None,
            db=int(db),
            ssl=parsed.scheme == "rediss",
        )
        settings.update(overrides)
        return cls(**settings)

    @classmethod
    def from_env(cls, prefix: str = "REDIS", env: Optional[Mapping[str, str]] = None) -> RedisConfig:
        """
        Read {prefix}_* variables.

        {prefix}_URL wins over HOST/PORT/PASSWORD/DB/SSL when set. Pool
        size, timeouts and KEY_PREFIX apply either way; MODE selects
        standalone, sentinel or cluster and SENTINEL_HOSTS is a
        comma-separated host:port list.
        """
        env = os.environ if env is None else env
        p = f"{prefix}_"

        shared: Dict[str, Any] = dict(
            key_prefix=env.get(p + "KEY_PREFIX", "chatmesh:"),
            max_connections=_env_int(env, p + "MAX_CONNECTIONS", 50),
            connect_timeout_ms=_env_int(env, p + "CONNECT_TIMEOUT_MS", 2000),
            socket_timeout_ms=_env_int(env, p + "SOCKET_TIMEOUT_MS", 5000),
        )
        if env.get(p + "URL"):
            return cls.from_url(env[p + "URL"], **shared)

        return cls(
            host=env.get(p + "HOST", "localhost"),
            port=_env_int(env, p + "PORT", 6379),
            password=env.get(p + "PASSWORD") or None,
            db=_env_int(env, p + "DB", 0),
            ssl=_env_flag(env, p + "SSL"),
            mode=_MODES.get(env.get(p + "MODE", "").lower(), RedisMode.STANDALONE),
            sentinel_hosts=_parse_hosts(env.get(p + "SENTINEL_HOSTS", "")),
            sentinel_service=env.get(p + "SENTINEL_SERVICE", "mymaster"),
            **shared,
        )

    def get_connection_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for redis.asyncio clients; replies are decoded to str."""
        kwargs: Dict[str, Any] = dict(
            host=self.host,
            port=self.port,
            ssl=self.ssl,
            decode_responses=True,
            max_connections=self.max_connections,
            socket_connect_timeout=self.connect_timeout_ms / 1000,
            socket_timeout=self.socket_timeout_ms / 1000,
        )
        if self.password:
            kwargs["password"] = self.password
        if self.mode is not RedisMode.CLUSTER:
            kwargs["db"] = self.db
        return kwargs


@dataclass(frozen=True, slots=True)
class StoreConfig:
    """
    Which backend holds session and room records.

    `simulate_latency` makes the in-memory store yield to the event loop on
    every call so concurrent handlers interleave as they would against Redis.
    """
    backend: BackendType = BackendType.IN_MEMORY
    simulate_latency: bool = False
    redis: RedisConfig = field(default_factory=RedisConfig)

    @classmethod
    def from_env(cls, prefix: str = "CHATMESH", env: Optional[Mapping[str, str]] = None) -> StoreConfig:
        env = os.environ if env is None else env
        name = env.get(f"{prefix}_STORE_BACKEND", "memory").lower()
        if name not in _BACKENDS:
            raise ValueError(f"unknown store backend: {name!r}")
        return cls(
            backend=_BACKENDS[name],
            simulate_latency=_env_flag(env, f"{prefix}_SIMULATE_LATENCY"),
            redis=RedisConfig.from_env(env=env),
        )
