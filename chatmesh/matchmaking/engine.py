"""
Matchmaking Engine: Random Partner Selection with Two-Sided Commit

Pairs a searching session with another searching session chosen uniformly
at random. The pairing spans two records and the store only offers
single-key compare-and-set, so the commit is:

    1. CAS s: Searching@v_s -> Paired(c)        lost race -> reselect
    2. CAS c: Searching@v_c -> Paired(s)        success   -> established
    3. settle loop on conflict:
         c == Paired(s)  -> confirm c (rewrite, bumps version) -> established
         otherwise       -> roll s back Paired(c) -> Searching  -> reselect
       a failed rollback means c confirmed s meanwhile; re-read and loop
    4. store errors or exhaustion: retry the rollback on fresh reads of
       both records, then report

Confirm and rollback are both conditional writes on versions the other
side's confirm bumps, so at most one of them can win for a given pair of
reads. Every path that returns leaves the pairing symmetric.

When two sessions pick each other at the same time both establish the pair;
only the lower id reports `notify=True` so notifications go out once.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from chatmesh.core.config import MatchmakingConfig
from chatmesh.core.errors import ChatMeshError, SessionError, StoreError
from chatmesh.core.types import Result, Ok, Err, SessionId
from chatmesh.reliability.retry import RetryContext, RetryPolicy
from chatmesh.session.models import Session, VersionedSession
from chatmesh.session.repository import SessionRepository, session_key
from chatmesh.session.state_machine import ContextKind, SessionContext, Trigger, validate

logger = logging.getLogger(__name__)


# =============================================================================
# OUTCOME
# =============================================================================
class MatchStatus(Enum):
    MATCHED = "matched"
    WAITING = "waiting"


@dataclass(frozen=True, slots=True)
class MatchOutcome:
    """
    Result of a find request.

    Attributes:
        status: MATCHED or WAITING
        partner_id: The partner when MATCHED
        notify: True when this call is responsible for telling both sides
    """
    status: MatchStatus
    partner_id: Optional[SessionId] = None
    notify: bool = False

    @classmethod
    def waiting(cls) -> MatchOutcome:
        return cls(MatchStatus.WAITING)

    @classmethod
    def matched(cls, partner_id: SessionId, notify: bool) -> MatchOutcome:
        return cls(MatchStatus.MATCHED, partner_id, notify)

    @property
    def is_matched(self) -> bool:
        return self.status is MatchStatus.MATCHED


class _Settle(Enum):
    ESTABLISHED = "established"
    RESELECT = "reselect"


# =============================================================================
# ENGINE
# =============================================================================
class MatchmakingEngine:
    """
    Race-safe random matchmaking on top of the session repository.

    Usage:
        engine = MatchmakingEngine(repo, MatchmakingConfig(seed=7))
        outcome = (await engine.find(42)).unwrap()
        if outcome.is_matched and outcome.notify:
            notify_both(42, outcome.partner_id)
    """

    __slots__ = ("_repo", "_config", "_rng", "_policy")

    def __init__(
        self,
        repo: SessionRepository,
        config: Optional[MatchmakingConfig] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._repo = repo
        self._config = config or MatchmakingConfig()
        self._rng = rng or random.Random(self._config.seed)
        self._policy = RetryPolicy.for_conflicts(
            max_attempts=self._config.max_attempts,
            base_delay_ms=self._config.backoff_base_ms,
            max_delay_ms=self._config.backoff_max_ms,
        )

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def find(self, session_id: SessionId) -> Result[MatchOutcome, ChatMeshError]:
        """
        Enter the pool and try to pair with a random searching session.

        Returns:
            Ok(MatchOutcome.matched(...)) when a pair exists on return
            Ok(MatchOutcome.waiting()) when nobody else is searching;
                the session stays Searching
            Err(SessionError.already_busy) when Paired or InRoom
            Err(StoreError.conflict) when every attempt lost a race
        """
        loaded = await self._repo.load(session_id)
        if loaded.is_err():
            return loaded
        if loaded.value.context.kind.is_busy:
            return Err(SessionError.already_busy(session_id, loaded.value.context.describe()))

        ctx = RetryContext(self._policy)
        last_error: ChatMeshError = StoreError.conflict(session_key(session_id), 0)
        current: VersionedSession = loaded.value

        for attempt in ctx.attempts():
            if attempt:
                reread = await self._repo.load(session_id)
                if reread.is_err():
                    return reread
                current = reread.value

            kind = current.context.kind
            if kind is ContextKind.PAIRED:
                # Someone else committed a pair with us between attempts.
                return Ok(MatchOutcome.matched(current.context.partner_id, notify=False))
            if kind is ContextKind.IN_ROOM:
                return Err(SessionError.already_busy(session_id, current.context.describe()))

            if kind is ContextKind.IDLE:
                entered = await self._repo.compare_and_set(
                    current,
                    current.session.with_context(SessionContext.searching()),
                    "match.enter",
                )
                if entered.is_err():
                    if _is_conflict(entered.error):
                        last_error = entered.error
                        await ctx.fail(last_error)
                        continue
                    return entered
                current = entered.value

            step = await self._attempt_pair(current)
            if step.is_err():
                if _is_conflict(step.error):
                    last_error = step.error
                    await ctx.fail(last_error)
                    continue
                return step

            outcome = step.value
            if outcome is not None:
                ctx.success()
                return Ok(outcome)
            await ctx.fail(last_error)

        logger.warning(
            "Matchmaking for %s gave up after %d attempts", session_id, ctx.attempt_count,
        )
        return Err(last_error)

    async def cancel(self, session_id: SessionId) -> Result[VersionedSession, ChatMeshError]:
        """Leave the pool: Searching -> Idle."""
        return await self._repo.transition(session_id, Trigger.CANCEL)

    async def disconnect(
        self,
        session_id: SessionId,
        trigger: Trigger = Trigger.LEAVE,
    ) -> Result[Optional[SessionId], ChatMeshError]:
        """
        End a one-to-one chat from either side.

        Moves the session Paired(p) -> Idle, then p Paired(session) -> Idle.
        A partner that no longer points back is left alone.

        Returns:
            Ok(partner_id) for the caller to notify
            Err(SessionError.not_connected) when the session is not Paired
        """
        released: dict[str, SessionId] = {}

        def release_self(session: Session) -> Result[Optional[Session], ChatMeshError]:
            if session.context.kind is not ContextKind.PAIRED:
                return Err(SessionError.not_connected(session.id))
            target = validate(session.id, session.context, trigger)
            if target.is_err():
                return target
            released["partner"] = session.context.partner_id
            return Ok(session.with_context(target.value))

        left = await self._repo.update(session_id, release_self, f"pair.{trigger.value}")
        if left.is_err():
            return left
        partner_id = released["partner"]

        def release_partner(session: Session) -> Result[Optional[Session], ChatMeshError]:
            if not session.context.is_paired_with(session_id):
                return Ok(None)
            target = validate(session.id, session.context, Trigger.PARTNER_LEFT)
            if target.is_err():
                return target
            return Ok(session.with_context(target.value))

        dropped = await self._repo.update(partner_id, release_partner, "pair.partner_left")
        if dropped.is_err():
            logger.error(
                "Session %s left but partner %s was not released: %s",
                session_id, partner_id, dropped.error,
            )
            return dropped

        logger.info("Pair %s <-> %s ended (%s)", session_id, partner_id, trigger.value)
        return Ok(partner_id)

    # -------------------------------------------------------------------------
    # Commit protocol
    # -------------------------------------------------------------------------

    async def _attempt_pair(
        self,
        me: VersionedSession,
    ) -> Result[Optional[MatchOutcome], ChatMeshError]:
        """
        One selection round from a Searching record.

        Returns Ok(outcome) when finished, Ok(None) to reselect, or a
        conflict Err when our own record moved under us.
        """
        pool = await self._repo.find_searching(exclude=me.id)
        if pool.is_err():
            return pool
        if not pool.value:
            logger.debug("Session %s waiting: pool empty", me.id)
            return Ok(MatchOutcome.waiting())

        candidate = self._rng.choice(pool.value)

        claimed = await self._repo.compare_and_set(
            me,
            me.session.with_context(SessionContext.paired(candidate.id)),
            "match.claim_self",
        )
        if claimed.is_err():
            return claimed
        me = claimed.value

        linked = await self._repo.compare_and_set(
            candidate,
            candidate.session.with_context(SessionContext.paired(me.id)),
            "match.claim_partner",
        )
        if linked.is_ok():
            mine = await self._repo.load(me.id)
            if mine.is_ok() and not mine.value.context.is_paired_with(candidate.id):
                # Our half was released (leave or start) while we linked the partner.
                await self._unlink(candidate.id, me.id)
                return Err(SessionError.not_connected(me.id))
            self._established(me.id, candidate.id)
            return Ok(MatchOutcome.matched(candidate.id, notify=True))

        if _is_conflict(linked.error):
            settled: Result[_Settle, ChatMeshError] = await self._settle(me, candidate.id)
        elif await self._rollback_best_effort(me.id, candidate.id):
            settled = Ok(_Settle.ESTABLISHED)
        else:
            return linked

        if settled.is_err():
            return settled
        if settled.value is _Settle.ESTABLISHED:
            notify = me.id < candidate.id
            if notify:
                self._established(me.id, candidate.id)
            return Ok(MatchOutcome.matched(candidate.id, notify=notify))
        return Ok(None)

    async def _settle(
        self,
        me: VersionedSession,
        partner_id: SessionId,
    ) -> Result[_Settle, ChatMeshError]:
        """
        Resolve an asymmetric Paired(partner) on our side.

        Either the partner already points at us (confirm it) or we undo
        our half and reselect.
        """
        ctx = RetryContext(self._repo.conflict_policy)
        last_error: ChatMeshError = StoreError.conflict(session_key(partner_id), 0)

        for _ in ctx.attempts():
            partner = await self._repo.load(partner_id)
            if partner.is_err():
                return await self._give_up(me.id, partner_id, partner.error)

            if partner.value.context.is_paired_with(me.id):
                confirmed = await self._repo.compare_and_set(
                    partner.value, partner.value.session, "match.confirm",
                )
                if confirmed.is_ok():
                    logger.debug("Mutual selection %s <-> %s confirmed", me.id, partner_id)
                    return Ok(_Settle.ESTABLISHED)
                if not _is_conflict(confirmed.error):
                    return await self._give_up(me.id, partner_id, confirmed.error)
                last_error = confirmed.error
                await ctx.fail(last_error)
                continue

            rolled_back = await self._repo.compare_and_set(
                me, me.session.with_context(SessionContext.searching()), "match.rollback",
            )
            if rolled_back.is_ok():
                return Ok(_Settle.RESELECT)
            if not _is_conflict(rolled_back.error):
                return await self._give_up(me.id, partner_id, rolled_back.error)

            reread = await self._repo.load(me.id)
            if reread.is_err():
                return await self._give_up(me.id, partner_id, reread.error)
            if not reread.value.context.is_paired_with(partner_id):
                return Ok(_Settle.RESELECT)
            me = reread.value
            last_error = rolled_back.error
            await ctx.fail(last_error)

        return await self._give_up(me.id, partner_id, last_error)

    async def _give_up(
        self,
        me_id: SessionId,
        partner_id: SessionId,
        error: ChatMeshError,
    ) -> Result[_Settle, ChatMeshError]:
        # Keep whichever side of the race is now true before reporting.
        if await self._rollback_best_effort(me_id, partner_id):
            return Ok(_Settle.ESTABLISHED)
        return Err(error)

    async def _rollback_best_effort(self, me_id: SessionId, partner_id: SessionId) -> bool:
        """
        Undo our half-pair unless the partner points at us; True if the pair stands.

        Both records are re-read every round. A round that cannot read the
        partner does not roll back, since the partner may already point at us.
        """
        ctx = RetryContext(self._repo.conflict_policy)

        for _ in ctx.attempts():
            partner = await self._repo.load(partner_id)
            if partner.is_err():
                await ctx.fail(partner.error)
                continue
            if partner.value.context.is_paired_with(me_id):
                return True

            mine = await self._repo.load(me_id)
            if mine.is_err():
                await ctx.fail(mine.error)
                continue
            if not mine.value.context.is_paired_with(partner_id):
                return False

            undone = await self._repo.compare_and_set(
                mine.value,
                mine.value.session.with_context(SessionContext.searching()),
                "match.rollback",
            )
            if undone.is_ok():
                return False
            await ctx.fail(undone.error)

        logger.error(
            "Could not roll back half-pair %s -> %s after %d attempts: %s",
            me_id, partner_id, ctx.attempt_count, ctx.last_error,
        )
        return False

    async def _unlink(self, candidate_id: SessionId, me_id: SessionId) -> None:
        """Return a candidate we linked back to Searching if it still points at us."""

        def release(session: Session) -> Result[Optional[Session], ChatMeshError]:
            if not session.context.is_paired_with(me_id):
                return Ok(None)
            return Ok(session.with_context(SessionContext.searching()))

        unlinked = await self._repo.update(candidate_id, release, "match.unlink")
        if unlinked.is_err():
            logger.error(
                "Could not unlink %s from released session %s: %s",
                candidate_id, me_id, unlinked.error,
            )

    def _established(self, a: SessionId, b: SessionId) -> None:
        self._repo.metrics.pairs_established.inc()
        logger.info("Paired sessions %s and %s", a, b)


def _is_conflict(error: ChatMeshError) -> bool:
    return isinstance(error, StoreError) and error.is_conflict
