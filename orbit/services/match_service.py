"""
Orbit — Match Approval State Machine

    NONE ──(first sponsor approves)──► PENDING_ONE_SIDED ──(other approves)──► APPROVED

Approval is monotonic: flags only move false → true, ``approved_at`` is
stamped exactly once and never cleared, rows are never deleted.  There is no
decline state.

Concurrency:
  * Creation races are settled by ``uq_match_pair``; the loser re-reads the
    winner and applies its approval as an update.
  * Flag flips and the ``approved_at`` stamp happen in one conditional
    UPDATE, so two sponsors approving at the same instant can never both
    observe "not yet both true" and leave ``approved_at`` null.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import structlog
from sqlalchemy import and_, case, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from orbit.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    PreconditionError,
    StoreConflictError,
)
from orbit.models.match import Match
from orbit.services import profile_directory
from orbit.utils.clock import utcnow
from orbit.utils.pair_key import canonicalize, pair_key

logger = structlog.get_logger("orbit.match_service")


class ApprovalStatus(str, enum.Enum):
    """Where a pair stands from one sponsor's point of view."""

    CAN_APPROVE = "can-approve"
    PENDING = "pending"
    MATCHED = "matched"


@dataclass
class ApprovalOutcome:
    match: Match
    newly_approved: bool


class MatchService:
    """Mutual sponsor approval between two singles."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or utcnow

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    async def find(
        self, db_session: AsyncSession, party_x: uuid.UUID, party_y: uuid.UUID
    ) -> Match | None:
        """Return the Match for the unordered pair, if any."""
        lo, hi = canonicalize(party_x, party_y)
        result = await db_session.execute(
            select(Match)
            .where(Match.party_a_id == lo, Match.party_b_id == hi)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def can_communicate(
        self, db_session: AsyncSession, party_x: uuid.UUID, party_y: uuid.UUID
    ) -> bool:
        """True iff both sponsors have approved the pair."""
        if party_x == party_y:
            return False
        match = await self.find(db_session, party_x, party_y)
        return match is not None and match.is_approved

    async def approval_status(
        self,
        db_session: AsyncSession,
        party_x: uuid.UUID,
        party_y: uuid.UUID,
        sponsor_id: uuid.UUID,
    ) -> ApprovalStatus:
        match = await self.find(db_session, party_x, party_y)
        if match is None:
            return ApprovalStatus.CAN_APPROVE
        if match.is_approved:
            return ApprovalStatus.MATCHED
        sides = match.sides_for_sponsor(sponsor_id)
        if sides and all(getattr(match, f"sponsor_{side}_approved") for side in sides):
            return ApprovalStatus.PENDING
        return ApprovalStatus.CAN_APPROVE

    async def list_for_party(
        self, db_session: AsyncSession, party_id: uuid.UUID
    ) -> list[Match]:
        result = await db_session.execute(
            select(Match)
            .where(or_(Match.party_a_id == party_id, Match.party_b_id == party_id))
            .order_by(Match.created_at.desc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #

    async def record_approval(
        self,
        db_session: AsyncSession,
        party_a_id: uuid.UUID,
        party_b_id: uuid.UUID,
        sponsor_id: uuid.UUID,
        *,
        caller_id: uuid.UUID,
    ) -> ApprovalOutcome:
        """Record ``sponsor_id``'s approval of the pair and return the row.

        Re-approving is a silent no-op.  ``newly_approved`` is true only for
        the call that observed the transition into APPROVED.
        """
        log = logger.bind(pair=pair_key(party_a_id, party_b_id), sponsor_id=str(sponsor_id))

        if caller_id != sponsor_id:
            log.warning("approval_on_behalf_rejected", caller_id=str(caller_id))
            raise AuthorizationError("Sponsors may only approve on their own behalf.")
        if party_a_id == party_b_id:
            raise PreconditionError("A party cannot be matched with itself.")

        match = await self.find(db_session, party_a_id, party_b_id)
        if match is None:
            outcome = await self._create(db_session, party_a_id, party_b_id, sponsor_id, log)
            if outcome is not None:
                return outcome
            # Lost the creation race; the winner's row now exists.
            match = await self.find(db_session, party_a_id, party_b_id)
            if match is None:
                log.error("match_insert_conflict_unresolved")
                raise StoreConflictError(
                    "Match insert conflicted but no row could be re-read.",
                    party_a_id=str(party_a_id),
                    party_b_id=str(party_b_id),
                )

        return await self._approve_existing(db_session, match, sponsor_id, log)

    async def _create(
        self,
        db_session: AsyncSession,
        party_x: uuid.UUID,
        party_y: uuid.UUID,
        sponsor_id: uuid.UUID,
        log,
    ) -> ApprovalOutcome | None:
        lo, hi = canonicalize(party_x, party_y)
        profiles = await profile_directory.get_profiles(db_session, [lo, hi])
        for party_id in (lo, hi):
            if party_id not in profiles:
                raise NotFoundError(f"Profile {party_id} not found.", profile_id=str(party_id))

        sponsor_a_id = profiles[lo].sponsored_by_id
        sponsor_b_id = profiles[hi].sponsored_by_id
        if sponsor_a_id is None or sponsor_b_id is None:
            log.warning("approval_party_without_sponsor")
            raise InvalidStateError("Both parties must have a current sponsor.")
        if sponsor_id not in (sponsor_a_id, sponsor_b_id):
            raise AuthorizationError("Sponsor does not represent either party.")

        now = self._clock()
        a_approved = sponsor_a_id == sponsor_id
        b_approved = sponsor_b_id == sponsor_id
        match = Match(
            party_a_id=lo,
            party_b_id=hi,
            sponsor_a_id=sponsor_a_id,
            sponsor_b_id=sponsor_b_id,
            sponsor_a_approved=a_approved,
            sponsor_b_approved=b_approved,
            # One sponsor for both parties approves both sides at once.
            approved_at=now if a_approved and b_approved else None,
            created_at=now,
        )
        try:
            async with db_session.begin_nested():
                db_session.add(match)
                await db_session.flush()
        except IntegrityError:
            log.info("match_insert_race_lost")
            return None

        log.info("match_created", match_id=str(match.id), approved=match.is_approved)
        return ApprovalOutcome(match=match, newly_approved=match.is_approved)

    async def _approve_existing(
        self, db_session: AsyncSession, match: Match, sponsor_id: uuid.UUID, log
    ) -> ApprovalOutcome:
        sides = match.sides_for_sponsor(sponsor_id)
        if not sides:
            raise AuthorizationError("Sponsor does not represent either party.")

        if all(getattr(match, f"sponsor_{side}_approved") for side in sides):
            log.debug("approval_already_recorded", match_id=str(match.id))
            return ApprovalOutcome(match=match, newly_approved=False)

        was_approved = match.approved_at is not None
        now = self._clock()

        values: dict = {f"sponsor_{side}_approved": True for side in sides}
        if len(sides) == 2:
            completes = Match.approved_at.is_(None)
        else:
            other_flag = Match.sponsor_b_approved if sides[0] == "a" else Match.sponsor_a_approved
            completes = and_(other_flag.is_(True), Match.approved_at.is_(None))
        # SET expressions see the pre-update row, so the other flag is read
        # atomically with our own flip.
        values["approved_at"] = case((completes, now), else_=Match.approved_at)

        await db_session.execute(
            update(Match)
            .where(Match.id == match.id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        result = await db_session.execute(
            select(Match)
            .where(Match.id == match.id)
            .execution_options(populate_existing=True)
        )
        match = result.scalar_one()
        newly_approved = not was_approved and match.approved_at is not None

        log.info(
            "match_approval_recorded",
            match_id=str(match.id),
            sides=sides,
            approved=match.is_approved,
            newly_approved=newly_approved,
        )
        return ApprovalOutcome(match=match, newly_approved=newly_approved)
