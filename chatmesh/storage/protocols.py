"""
Store Protocol Definitions: Versioned Key-Value Abstraction

Provides the structural subtyping protocol (PEP 544) every session store
backend implements. The engine only ever touches one key per call; all
cross-record consistency is built from conditional writes on top of it.

Design Principles:
    - Zero-exception control flow via Result[T, E] monad
    - Async-first for non-blocking I/O
    - Values are JSON-compatible dicts; versions are store-managed ints
    - Version 0 means "absent" for conditional writes

License: MIT
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

from chatmesh.core.errors import StoreError
from chatmesh.core.types import Result


# Version passed to put_if_version to mean "create only if the key is absent".
ABSENT_VERSION: int = 0


# =============================================================================
# VERSIONED VALUE
# =============================================================================
@dataclass(frozen=True, slots=True)
class VersionedValue:
    """
    A stored value together with the version it was read at.

    The version is opaque to callers; it only has to be handed back to
    put_if_version / delete_if_version.
    """
    value: dict[str, Any]
    version: int


@dataclass(frozen=True, slots=True)
class ScanEntry:
    """One key returned by a prefix scan."""
    key: str
    value: dict[str, Any]
    version: int


# =============================================================================
# KEY-VALUE STORE PROTOCOL
# =============================================================================
@runtime_checkable
class KeyValueStore(Protocol):
    """
    Protocol for the shared session/room store.

    Compare-and-swap semantics prevent lost updates: every write that must
    not clobber a concurrent change goes through put_if_version or
    delete_if_version and returns StoreError.conflict on a version mismatch.
    """

    @abstractmethod
    async def get(self, key: str) -> Result[Optional[VersionedValue], StoreError]:
        """Read a key. Ok(None) when absent."""
        ...

    @abstractmethod
    async def put(self, key: str, value: dict[str, Any]) -> Result[int, StoreError]:
        """Unconditional upsert. Returns the new version."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> Result[bool, StoreError]:
        """Unconditional delete. Ok(True) when a record was removed."""
        ...

    @abstractmethod
    async def put_if_version(
        self,
        key: str,
        value: dict[str, Any],
        expected_version: int,
    ) -> Result[int, StoreError]:
        """
        Write only if the stored version equals expected_version.

        Args:
            key: Record key
            value: New value
            expected_version: Version from previous read, or ABSENT_VERSION
                to create a record that must not exist yet

        Returns:
            Ok(new_version): Write applied
            Err(StoreError.conflict): Concurrent modification detected
        """
        ...

    @abstractmethod
    async def delete_if_version(
        self,
        key: str,
        expected_version: int,
    ) -> Result[None, StoreError]:
        """Delete only if the stored version equals expected_version."""
        ...

    @abstractmethod
    async def scan(self, prefix: str) -> Result[list[ScanEntry], StoreError]:
        """Return every record whose key starts with prefix."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release connections held by the backend."""
        ...
