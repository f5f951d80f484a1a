"""
Storage Module: Versioned Key-Value Store Adapter
=================================================

Provides:
- The KeyValueStore protocol (single-key reads, conditional writes)
- InMemoryStore for development, tests and the demo
- RedisStore for deployments with several bot workers
- A factory for backend selection

Design Principles:
-----------------
1. **Backend Agnostic**: Same interface for in-memory and production
2. **Factory Pattern**: Runtime backend selection via configuration
3. **Result Monad**: No exceptions for control flow

Example:
    >>> store = create_store(StoreConfig())
    >>> store = create_store(StoreConfig(backend=BackendType.REDIS))
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Union

from chatmesh.storage.protocols import (
    ABSENT_VERSION,
    KeyValueStore,
    ScanEntry,
    VersionedValue,
)
from chatmesh.storage.memory_store import InMemoryStore
from chatmesh.storage.config import (
    BackendType,
    RedisMode,
    RedisConfig,
    StoreConfig,
)

if TYPE_CHECKING:
    from chatmesh.storage.redis_store import RedisStore


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================

def create_store(config: StoreConfig) -> Union[InMemoryStore, "RedisStore"]:
    """
    Create the session store selected by configuration.

    Returns:
        InMemoryStore: backend IN_MEMORY (development, tests).
        RedisStore: backend REDIS; the caller must await `connect()`.
    """
    if config.backend == BackendType.REDIS:
        from chatmesh.storage.redis_store import RedisStore
        return RedisStore(config.redis)

    return InMemoryStore(simulate_latency=config.simulate_latency)


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    # Protocol
    "ABSENT_VERSION",
    "KeyValueStore",
    "ScanEntry",
    "VersionedValue",
    # Configuration
    "BackendType",
    "RedisMode",
    "RedisConfig",
    "StoreConfig",
    # Backends
    "InMemoryStore",
    # Factory
    "create_store",
]
