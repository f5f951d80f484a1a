"""
In-Memory Store Backend: Development and Testing Implementation

Provides an in-process implementation of KeyValueStore:
- Versions drawn from one store-wide counter for optimistic concurrency
- asyncio.Lock around every read-modify-write
- Optional latency simulation so concurrent handlers interleave, with a
  seeded number of extra yields per call to vary the interleaving
- Optional fault injection for transient-unavailability tests

Performance Characteristics:
    - Get/Put/Delete/CAS: O(1) average case
    - Scan: O(N) over all keys

License: MIT
"""

from __future__ import annotations

import asyncio
import copy
import random
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from chatmesh.core.errors import StoreError
from chatmesh.core.types import Result, Ok, Err
from chatmesh.storage.protocols import ABSENT_VERSION, ScanEntry, VersionedValue


# =============================================================================
# CONSTANTS
# =============================================================================
DEFAULT_SIMULATED_LATENCY_S: float = 0.0  # a bare yield is enough to interleave
MAX_JITTER_YIELDS: int = 3


# =============================================================================
# VERSIONED RECORD
# =============================================================================
@dataclass
class VersionedRecord:
    """
    Internal record with version tracking for OCC.

    Versions are positive and strictly increase on every write to the key.
    updated_at moves on every write; created_at survives overwrites.
    """
    value: Dict[str, Any]
    version: int = 1
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)


# =============================================================================
# IN-MEMORY STORE
# =============================================================================
class InMemoryStore:
    """
    In-memory session store with compare-and-set semantics.

    Values are deep-copied on the way in and out so callers never share
    mutable state with the store.

    Example:
        store = InMemoryStore()
        await store.put("session:1", {"id": 1})
        current = (await store.get("session:1")).unwrap()
        await store.put_if_version("session:1", new_value, current.version)
    """

    __slots__ = (
        "_data",
        "_lock",
        "_simulate_latency",
        "_latency_s",
        "_jitter",
        "_failures_remaining",
        "_operation_count",
        "_version_counter",
    )

    def __init__(
        self,
        simulate_latency: bool = False,
        latency_s: float = DEFAULT_SIMULATED_LATENCY_S,
        jitter_seed: Optional[int] = None,
    ) -> None:
        """
        Initialize in-memory store.

        Args:
            simulate_latency: If True, every call yields to the event loop
                before touching data
            latency_s: Sleep duration used when simulating latency
            jitter_seed: When set with simulate_latency, each call also
                yields 0..MAX_JITTER_YIELDS extra times, drawn from a
                generator seeded with this value
        """
        self._data: Dict[str, VersionedRecord] = {}
        self._lock = asyncio.Lock()
        self._simulate_latency = simulate_latency
        self._latency_s = latency_s
        self._jitter = random.Random(jitter_seed) if jitter_seed is not None else None
        self._failures_remaining = 0
        self._operation_count = 0
        self._version_counter = 0

    # -------------------------------------------------------------------------
    # Test hooks
    # -------------------------------------------------------------------------

    def fail_next(self, count: int = 1) -> None:
        """Make the next `count` operations return StoreError.unavailable."""
        self._failures_remaining = count

    @property
    def operation_count(self) -> int:
        return self._operation_count

    def __len__(self) -> int:
        return len(self._data)

    def record(self, key: str) -> Optional[VersionedRecord]:
        """Copy of the raw record under key, timestamps included."""
        existing = self._data.get(key)
        return copy.deepcopy(existing) if existing is not None else None

    async def _enter(self, operation: str, key: str) -> Optional[StoreError]:
        self._operation_count += 1
        if self._simulate_latency:
            await asyncio.sleep(self._latency_s)
            if self._jitter is not None:
                for _ in range(self._jitter.randint(0, MAX_JITTER_YIELDS)):
                    await asyncio.sleep(0)
        if self._failures_remaining > 0:
            self._failures_remaining -= 1
            return StoreError.unavailable(operation, key)
        return None

    # -------------------------------------------------------------------------
    # KeyValueStore Implementation
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> Result[Optional[VersionedValue], StoreError]:
        if (failure := await self._enter("get", key)) is not None:
            return Err(failure)

        async with self._lock:
            record = self._data.get(key)
            if record is None:
                return Ok(None)
            return Ok(VersionedValue(copy.deepcopy(record.value), record.version))

    async def put(self, key: str, value: Dict[str, Any]) -> Result[int, StoreError]:
        if (failure := await self._enter("put", key)) is not None:
            return Err(failure)

        async with self._lock:
            return Ok(self._write(key, value))

    async def delete(self, key: str) -> Result[bool, StoreError]:
        if (failure := await self._enter("delete", key)) is not None:
            return Err(failure)

        async with self._lock:
            return Ok(self._data.pop(key, None) is not None)

    async def put_if_version(
        self,
        key: str,
        value: Dict[str, Any],
        expected_version: int,
    ) -> Result[int, StoreError]:
        """
        Update only if version matches (CAS operation).

        Returns new version on success.
        """
        if (failure := await self._enter("put_if_version", key)) is not None:
            return Err(failure)

        async with self._lock:
            record = self._data.get(key)
            actual = record.version if record is not None else ABSENT_VERSION
            if actual != expected_version:
                return Err(StoreError.conflict(key, expected_version, actual))
            return Ok(self._write(key, value))

    async def delete_if_version(
        self,
        key: str,
        expected_version: int,
    ) -> Result[None, StoreError]:
        """Delete only if version matches."""
        if (failure := await self._enter("delete_if_version", key)) is not None:
            return Err(failure)

        async with self._lock:
            record = self._data.get(key)
            actual = record.version if record is not None else ABSENT_VERSION
            if record is None or actual != expected_version:
                return Err(StoreError.conflict(key, expected_version, actual))
            del self._data[key]
            return Ok(None)

    async def scan(self, prefix: str) -> Result[List[ScanEntry], StoreError]:
        """
        Scan records by key prefix.

        Complexity: O(N); keys are returned sorted for deterministic output.
        """
        if (failure := await self._enter("scan", prefix)) is not None:
            return Err(failure)

        async with self._lock:
            return Ok([
                ScanEntry(key, copy.deepcopy(record.value), record.version)
                for key, record in sorted(self._data.items())
                if key.startswith(prefix)
            ])

    async def close(self) -> None:
        async with self._lock:
            self._data.clear()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _write(self, key: str, value: Dict[str, Any]) -> int:
        """
        Store value under key; caller holds the lock.

        Versions come from one store-wide counter so a deleted and recreated
        key never repeats a version an old reader may still hold.
        """
        self._version_counter += 1
        now = time.time()
        existing = self._data.get(key)
        self._data[key] = VersionedRecord(
            value=copy.deepcopy(value),
            version=self._version_counter,
            created_at=existing.created_at if existing is not None else now,
            updated_at=now,
        )
        return self._version_counter