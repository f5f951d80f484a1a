"""
Configuration Management for the Anonymous Chat Mesh

Provides validated configuration with sensible defaults.
Supports environment variable overrides.

Design:
- Immutable after validation
- Fail-fast on invalid configuration
- Type-safe with dataclasses
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from chatmesh.core.types import Result, Ok, Err
from chatmesh.core import constants as C
from chatmesh.storage.config import StoreConfig


# Default moderation list carried over from the first deployment of the bot.
DEFAULT_BLOCKED_WORDS: tuple[str, ...] = (
    "anjing",
    "babi",
    "bangsat",
    "kontol",
    "memek",
    "ngentot",
    "jancok",
    "fuck",
    "shit",
    "dick",
    "bitch",
    "bastard",
    "asshole",
)


@dataclass(frozen=True)
class MatchmakingConfig:
    """Partner selection and two-sided commit retry settings."""

    max_attempts: int = C.MATCH_MAX_ATTEMPTS
    backoff_base_ms: int = C.CAS_BACKOFF_BASE_MS
    backoff_max_ms: int = C.CAS_BACKOFF_MAX_MS
    seed: int | None = None  # fixed seed makes partner choice reproducible


@dataclass(frozen=True)
class RoomConfig:
    """Room capacity bounds."""

    min_capacity: int = C.ROOM_MIN_CAPACITY
    max_capacity: int = C.ROOM_MAX_CAPACITY
    max_name_length: int = C.ROOM_NAME_MAX_LENGTH

    def clamp(self, capacity: int) -> int:
        return max(self.min_capacity, min(self.max_capacity, capacity))


@dataclass(frozen=True)
class ReaperConfig:
    """Inactivity detection."""

    inactivity_timeout_s: float = C.INACTIVITY_TIMEOUT_S
    sweep_interval_s: float = C.SWEEP_INTERVAL_S


@dataclass(frozen=True)
class ReliabilityConfig:
    """Retry settings for single-record CAS loops and transient store errors."""

    cas_max_attempts: int = C.CAS_MAX_ATTEMPTS
    cas_backoff_base_ms: int = C.CAS_BACKOFF_BASE_MS
    cas_backoff_max_ms: int = C.CAS_BACKOFF_MAX_MS
    store_retry_max_attempts: int = C.STORE_RETRY_MAX_ATTEMPTS
    store_retry_base_ms: int = C.STORE_RETRY_BASE_MS
    store_retry_max_ms: int = C.STORE_RETRY_MAX_MS


@dataclass(frozen=True)
class ModerationConfig:
    """Word list for the moderation gate."""

    blocked_words: tuple[str, ...] = DEFAULT_BLOCKED_WORDS


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging and metrics configuration."""

    log_level: str = "INFO"
    log_json: bool = False
    metrics_enabled: bool = True


@dataclass(frozen=True)
class ChatMeshConfig:
    """Root configuration for the chat mesh."""

    store: StoreConfig = field(default_factory=StoreConfig)
    matchmaking: MatchmakingConfig = field(default_factory=MatchmakingConfig)
    rooms: RoomConfig = field(default_factory=RoomConfig)
    reaper: ReaperConfig = field(default_factory=ReaperConfig)
    reliability: ReliabilityConfig = field(default_factory=ReliabilityConfig)
    moderation: ModerationConfig = field(default_factory=ModerationConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    admin_ids: frozenset[int] = frozenset()

    @classmethod
    def from_env(cls) -> Result[ChatMeshConfig, str]:
        """
        Load configuration from environment variables.

        Environment variables are prefixed with CHATMESH_.
        Example: CHATMESH_INACTIVITY_TIMEOUT_S, CHATMESH_ADMIN_IDS=42,1001
        Redis settings use the REDIS_ prefix (see RedisConfig.from_env).
        """
        try:
            store = StoreConfig.from_env()

            seed_str = os.getenv("CHATMESH_MATCH_SEED", "")
            matchmaking = MatchmakingConfig(
                max_attempts=int(os.getenv(
                    "CHATMESH_MATCH_MAX_ATTEMPTS", str(C.MATCH_MAX_ATTEMPTS),
                )),
                seed=int(seed_str) if seed_str else None,
            )

            reaper = ReaperConfig(
                inactivity_timeout_s=float(os.getenv(
                    "CHATMESH_INACTIVITY_TIMEOUT_S", str(C.INACTIVITY_TIMEOUT_S),
                )),
                sweep_interval_s=float(os.getenv(
                    "CHATMESH_SWEEP_INTERVAL_S", str(C.SWEEP_INTERVAL_S),
                )),
            )

            extra_words = _split_csv(os.getenv("CHATMESH_BLOCKED_WORDS", ""))
            moderation = ModerationConfig(
                blocked_words=DEFAULT_BLOCKED_WORDS + tuple(
                    w.lower() for w in extra_words
                    if w.lower() not in DEFAULT_BLOCKED_WORDS
                ),
            )

            observability = ObservabilityConfig(
                log_level=os.getenv("CHATMESH_LOG_LEVEL", "INFO").upper(),
                log_json=os.getenv("CHATMESH_LOG_JSON", "").lower() in ("true", "1", "yes"),
            )

            admin_ids = frozenset(
                int(v) for v in _split_csv(os.getenv("CHATMESH_ADMIN_IDS", ""))
            )

            return Ok(cls(
                store=store,
                matchmaking=matchmaking,
                reaper=reaper,
                moderation=moderation,
                observability=observability,
                admin_ids=admin_ids,
            ))
        except (ValueError, TypeError) as e:
            return Err(f"Configuration error: {e}")

    def validate(self) -> Result[None, str]:
        """Validate configuration invariants."""
        if self.rooms.min_capacity < 2:
            return Err("Room min_capacity must be >= 2")
        if self.rooms.min_capacity > self.rooms.max_capacity:
            return Err("Room min_capacity cannot exceed max_capacity")
        if self.matchmaking.max_attempts < 1:
            return Err("Matchmaking max_attempts must be >= 1")
        if self.reliability.cas_max_attempts < 1:
            return Err("CAS max_attempts must be >= 1")
        if self.reaper.inactivity_timeout_s <= 0:
            return Err("Inactivity timeout must be positive")
        if self.reaper.sweep_interval_s < 0:
            return Err("Sweep interval cannot be negative")
        if self.observability.log_level not in (
            "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL",
        ):
            return Err(f"Unknown log level {self.observability.log_level!r}")
        return Ok(None)


def _split_csv(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]
