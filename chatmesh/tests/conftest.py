"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import pytest

from chatmesh.app import ChatMesh
from chatmesh.core.config import ChatMeshConfig, MatchmakingConfig, ReliabilityConfig
from chatmesh.core.types import ManualClock
from chatmesh.profiles.store import InMemoryProfileStore
from chatmesh.storage.memory_store import InMemoryStore
from chatmesh.transport.backends import RecordingTransport

ADMIN_ID = 999
START_TIME = 1_700_000_000.0


@pytest.fixture
def config() -> ChatMeshConfig:
    """Defaults with short backoffs so contention tests finish quickly."""
    return ChatMeshConfig(
        matchmaking=MatchmakingConfig(
            max_attempts=20, backoff_base_ms=1, backoff_max_ms=5, seed=7,
        ),
        reliability=ReliabilityConfig(
            cas_max_attempts=20,
            cas_backoff_base_ms=1,
            cas_backoff_max_ms=5,
            store_retry_max_attempts=3,
            store_retry_base_ms=1,
            store_retry_max_ms=2,
        ),
        admin_ids=frozenset({ADMIN_ID}),
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(start=START_TIME)


@pytest.fixture
def store() -> InMemoryStore:
    """In-memory store that yields on every call so handlers interleave."""
    return InMemoryStore(simulate_latency=True)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def profiles() -> InMemoryProfileStore:
    return InMemoryProfileStore()


@pytest.fixture
def mesh(
    config: ChatMeshConfig,
    store: InMemoryStore,
    transport: RecordingTransport,
    profiles: InMemoryProfileStore,
    clock: ManualClock,
) -> ChatMesh:
    return ChatMesh.build(config, transport, store, profiles, clock)


@pytest.fixture
def repo(mesh: ChatMesh):
    return mesh.repo


@pytest.fixture
def engine(mesh: ChatMesh):
    return mesh.engine


@pytest.fixture
def rooms(mesh: ChatMesh):
    return mesh.rooms


@pytest.fixture
def reaper(mesh: ChatMesh):
    return mesh.reaper


@pytest.fixture
def dispatcher(mesh: ChatMesh):
    return mesh.dispatcher


@pytest.fixture
def metrics(mesh: ChatMesh):
    return mesh.metrics
