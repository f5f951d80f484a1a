"""
Session Repository: Typed, Versioned Access to Session Records

Wraps the key-value store with:
- Session (de)serialization under `session:<id>`
- Transparent retry of transient store unavailability
- Compare-and-set helpers and a bounded read-modify-write loop

A missing record reads as a fresh Idle session at version 0, so the first
conditional write creates it.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from chatmesh.core import constants as C
from chatmesh.core.errors import ChatMeshError, StoreError
from chatmesh.core.types import Clock, Result, Ok, Err, SessionId, system_clock
from chatmesh.observability.metrics import ChatMeshMetrics
from chatmesh.reliability.retry import RetryContext, RetryPolicy, retry_result
from chatmesh.session.models import Session, VersionedSession
from chatmesh.session.state_machine import SessionContext, Trigger, validate
from chatmesh.storage.protocols import ABSENT_VERSION, KeyValueStore

logger = logging.getLogger(__name__)

# Returns the replacement session, Ok(None) to leave the record unchanged,
# or Err to abort the update.
SessionUpdate = Callable[[Session], Result[Optional[Session], ChatMeshError]]


def session_key(session_id: SessionId) -> str:
    return f"{C.SESSION_KEY_PREFIX}{session_id}"


class SessionRepository:
    """
    Typed session persistence with optimistic concurrency.

    Usage:
        repo = SessionRepository(store)
        current = (await repo.load(42)).unwrap()
        result = await repo.compare_and_set(
            current, current.session.with_context(SessionContext.searching()),
        )
    """

    __slots__ = ("_store", "_clock", "_store_policy", "_conflict_policy", "_metrics")

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock = system_clock,
        store_policy: Optional[RetryPolicy] = None,
        conflict_policy: Optional[RetryPolicy] = None,
        metrics: Optional[ChatMeshMetrics] = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._store_policy = store_policy or RetryPolicy.default()
        self._conflict_policy = conflict_policy or RetryPolicy.for_conflicts()
        self._metrics = metrics or ChatMeshMetrics()

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def conflict_policy(self) -> RetryPolicy:
        return self._conflict_policy

    @property
    def metrics(self) -> ChatMeshMetrics:
        return self._metrics

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def load(self, session_id: SessionId) -> Result[VersionedSession, ChatMeshError]:
        """Read a session; a missing record is an unsaved Idle session."""
        key = session_key(session_id)
        result = await retry_result(
            lambda: self._store.get(key), self._store_policy, "session.load",
        )
        if result.is_err():
            return result

        stored = result.value
        if stored is None:
            return Ok(VersionedSession(Session.new(session_id, self._clock()), ABSENT_VERSION))

        try:
            session = Session.from_record(stored.value)
        except (KeyError, ValueError, TypeError) as e:
            return Err(StoreError.corrupt_record(key, str(e), e))
        return Ok(VersionedSession(session, stored.version))

    async def scan(self) -> Result[list[VersionedSession], ChatMeshError]:
        """All stored sessions; undecodable records are logged and skipped."""
        result = await retry_result(
            lambda: self._store.scan(C.SESSION_KEY_PREFIX), self._store_policy, "session.scan",
        )
        if result.is_err():
            return result

        sessions: list[VersionedSession] = []
        for entry in result.value:
            try:
                sessions.append(VersionedSession(Session.from_record(entry.value), entry.version))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning("Skipping corrupt session record %s: %s", entry.key, e)
        return Ok(sessions)

    async def find_searching(
        self,
        exclude: SessionId,
    ) -> Result[list[VersionedSession], ChatMeshError]:
        """Sessions currently waiting in the matchmaking pool."""
        result = await self.scan()
        if result.is_err():
            return result
        return Ok([
            s for s in result.value
            if s.id != exclude and s.context == SessionContext.searching()
        ])

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def compare_and_set(
        self,
        current: VersionedSession,
        new: Session,
        operation: str = "session.cas",
    ) -> Result[VersionedSession, ChatMeshError]:
        """
        Write `new` only if the record is still at `current.version`.

        Returns Err(StoreError.conflict) when another handler got there first.
        """
        key = session_key(new.id)
        result = await retry_result(
            lambda: self._store.put_if_version(key, new.to_record(), current.version),
            self._store_policy,
            operation,
        )
        if result.is_err():
            if isinstance(result.error, StoreError) and result.error.is_conflict:
                self._metrics.store_conflicts.inc(operation=operation)
            return result
        return Ok(VersionedSession(new, result.value))

    async def replace(self, session: Session) -> Result[VersionedSession, ChatMeshError]:
        """Unconditional overwrite (used by START)."""
        result = await retry_result(
            lambda: self._store.put(session_key(session.id), session.to_record()),
            self._store_policy,
            "session.replace",
        )
        if result.is_err():
            return result
        return Ok(VersionedSession(session, result.value))

    async def update(
        self,
        session_id: SessionId,
        fn: SessionUpdate,
        operation: str = "session.update",
    ) -> Result[VersionedSession, ChatMeshError]:
        """
        Bounded read-modify-write loop.

        `fn` is re-applied to a fresh read after every lost race, so it
        must be a pure function of the session it is given.
        """
        ctx = RetryContext(self._conflict_policy)
        last_error: ChatMeshError = StoreError.conflict(session_key(session_id), ABSENT_VERSION)

        for _ in ctx.attempts():
            loaded = await self.load(session_id)
            if loaded.is_err():
                return loaded
            current = loaded.value

            decided = fn(current.session)
            if decided.is_err():
                return decided
            if decided.value is None:
                return Ok(current)

            written = await self.compare_and_set(current, decided.value, operation)
            if written.is_ok():
                ctx.success()
                return written
            if not (isinstance(written.error, StoreError) and written.error.is_conflict):
                return written

            last_error = written.error
            await ctx.fail(last_error)

        logger.warning(
            "Giving up %s for session %s after %d conflicts",
            operation, session_id, ctx.attempt_count,
        )
        return Err(last_error)

    async def transition(
        self,
        session_id: SessionId,
        trigger: Trigger,
        ref: object = None,
    ) -> Result[VersionedSession, ChatMeshError]:
        """Validate and apply a trigger under the CAS loop."""

        def apply(session: Session) -> Result[Optional[Session], ChatMeshError]:
            target = validate(session.id, session.context, trigger, ref)  # type: ignore[arg-type]
            if target.is_err():
                return target
            if target.value == session.context:
                return Ok(None)
            return Ok(session.with_context(target.value))

        return await self.update(session_id, apply, f"session.{trigger.value}")

    async def touch(self, session_id: SessionId, now: float) -> Result[VersionedSession, ChatMeshError]:
        """Advance last_activity_at, preserving whatever context is current."""

        def apply(session: Session) -> Result[Optional[Session], ChatMeshError]:
            return Ok(session.touched(now))

        return await self.update(session_id, apply, "session.touch")
