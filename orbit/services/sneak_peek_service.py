"""
Orbit — Sneak-Peek Preview Engine

A sponsor shows a single a snapshot of a candidate and asks "would you be
open to this?".  The answer is a low-commitment signal only the issuing
sponsor sees; nothing downstream (match, notification) is triggered.

    PENDING ──(recipient)──► OPEN_TO_IT | NOT_SURE_YET | DISMISSED
    PENDING ──(expiry sweep)──► EXPIRED

Terminal states never change.  The pending cap per recipient is a soft
limit: the count and the insert are separate round-trips, and a small
overshoot under concurrent sends is accepted rather than serialising every
send through a lock.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Callable

import structlog
from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orbit.config import get_settings
from orbit.errors import (
    AuthorizationError,
    ForbiddenTransitionError,
    InvalidStateError,
    NotFoundError,
    PreconditionError,
    RateLimitError,
)
from orbit.models.sneak_peek import (
    CLIENT_RESPONSE_STATUSES,
    SPONSOR_VISIBLE_RESPONSES,
    SneakPeek,
    SneakPeekStatus,
)
from orbit.services import profile_directory
from orbit.utils.clock import utcnow

logger = structlog.get_logger("orbit.sneak_peek_service")


class SneakPeekService:
    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        settings = get_settings()
        self.ttl = timedelta(hours=settings.SNEAK_PEEK_TTL_HOURS)
        self.max_pending = settings.SNEAK_PEEK_MAX_PENDING
        self.sponsor_window = timedelta(hours=settings.SNEAK_PEEK_SPONSOR_WINDOW_HOURS)
        self._clock = clock or utcnow

    async def send(
        self,
        db_session: AsyncSession,
        sponsor_id: uuid.UUID,
        recipient_party_id: uuid.UUID,
        target_party_id: uuid.UUID,
    ) -> SneakPeek:
        log = logger.bind(
            sponsor_id=str(sponsor_id),
            recipient_party_id=str(recipient_party_id),
            target_party_id=str(target_party_id),
        )

        sponsor = await profile_directory.require_profile(db_session, sponsor_id)
        if not sponsor.is_sponsor:
            raise AuthorizationError("Only sponsors can send sneak peeks.")
        if recipient_party_id == target_party_id:
            raise PreconditionError("Recipient and target must be different singles.")

        recipient = await profile_directory.require_profile(db_session, recipient_party_id)
        target = await profile_directory.require_profile(db_session, target_party_id)
        if not recipient.is_single or not target.is_single:
            raise PreconditionError("Sneak peeks are only exchanged between singles.")

        # Snapshot now; later photo changes must not alter the preview.
        photo_url = target.first_photo
        if photo_url is None:
            log.info("sneak_peek_target_without_photo")
            raise PreconditionError("Target has no photo to preview.")

        now = self._clock()
        pending = await self._count_pending(db_session, recipient_party_id, now)
        if pending >= self.max_pending:
            log.info("sneak_peek_rate_limited", pending=pending)
            raise RateLimitError(
                f"Recipient already has {pending} pending sneak peeks.",
                pending=pending,
                limit=self.max_pending,
            )

        peek = SneakPeek(
            recipient_party_id=recipient_party_id,
            issuing_sponsor_id=sponsor_id,
            target_party_id=target_party_id,
            photo_url=photo_url,
            status=SneakPeekStatus.PENDING.value,
            created_at=now,
            expires_at=now + self.ttl,
            responded_at=None,
        )
        db_session.add(peek)
        await db_session.flush()

        log.info("sneak_peek_sent", sneak_peek_id=str(peek.id))
        return peek

    async def respond(
        self,
        db_session: AsyncSession,
        sneak_peek_id: uuid.UUID,
        responding_party_id: uuid.UUID,
        new_status: SneakPeekStatus | str,
    ) -> SneakPeek:
        """Record the recipient's one and only answer."""
        try:
            status = SneakPeekStatus(new_status)
        except ValueError:
            raise ForbiddenTransitionError(f"Unknown status {new_status!r}.") from None
        if status not in CLIENT_RESPONSE_STATUSES:
            raise ForbiddenTransitionError(f"Clients may not set status {status.value}.")

        log = logger.bind(sneak_peek_id=str(sneak_peek_id), status=status.value)

        peek = await db_session.get(SneakPeek, sneak_peek_id)
        if peek is None:
            raise NotFoundError(f"Sneak peek {sneak_peek_id} not found.")
        if peek.recipient_party_id != responding_party_id:
            log.warning("sneak_peek_respond_not_recipient", responder=str(responding_party_id))
            raise AuthorizationError("Only the recipient may respond to a sneak peek.")

        now = self._clock()
        result = await db_session.execute(
            update(SneakPeek)
            .where(SneakPeek.id == sneak_peek_id)
            .where(SneakPeek.status == SneakPeekStatus.PENDING.value)
            .where(SneakPeek.expires_at > now)
            .values(status=status.value, responded_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            log.info("sneak_peek_respond_rejected", current_status=peek.status)
            raise InvalidStateError("Sneak peek has already been answered or has expired.")

        refreshed = await db_session.execute(
            select(SneakPeek)
            .where(SneakPeek.id == sneak_peek_id)
            .execution_options(populate_existing=True)
        )
        log.info("sneak_peek_responded")
        return refreshed.scalar_one()

    async def list_for_recipient(
        self, db_session: AsyncSession, party_id: uuid.UUID
    ) -> list[SneakPeek]:
        """Pending, unexpired previews in the order they should be reviewed."""
        result = await db_session.execute(
            select(SneakPeek)
            .where(SneakPeek.recipient_party_id == party_id)
            .where(SneakPeek.status == SneakPeekStatus.PENDING.value)
            .where(SneakPeek.expires_at > self._clock())
            .order_by(SneakPeek.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_for_sponsor(
        self, db_session: AsyncSession, sponsor_id: uuid.UUID
    ) -> list[SneakPeek]:
        """Pending previews, then recent positive-ish answers, newest first."""
        since = self._clock() - self.sponsor_window
        visible = [s.value for s in SPONSOR_VISIBLE_RESPONSES]
        result = await db_session.execute(
            select(SneakPeek)
            .where(SneakPeek.issuing_sponsor_id == sponsor_id)
            .where(
                or_(
                    SneakPeek.status == SneakPeekStatus.PENDING.value,
                    and_(SneakPeek.status.in_(visible), SneakPeek.responded_at >= since),
                )
            )
            .order_by(
                case((SneakPeek.status == SneakPeekStatus.PENDING.value, 0), else_=1),
                func.coalesce(SneakPeek.responded_at, SneakPeek.created_at).desc(),
            )
        )
        return list(result.scalars().all())

    async def expire_stale(self, db_session: AsyncSession) -> int:
        """Move lapsed PENDING rows to EXPIRED.  System-only."""
        result = await db_session.execute(
            update(SneakPeek)
            .where(SneakPeek.status == SneakPeekStatus.PENDING.value)
            .where(SneakPeek.expires_at <= self._clock())
            .values(status=SneakPeekStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        logger.info("sneak_peeks_expired", count=result.rowcount)
        return result.rowcount

    async def status_counts(self, db_session: AsyncSession) -> dict[str, int]:
        """Row counts per stored status, plus PENDING rows already past
        their expiry and waiting for the next sweep under ``"LAPSED"``."""
        counts = {status.value: 0 for status in SneakPeekStatus}
        result = await db_session.execute(
            select(SneakPeek.status, func.count(SneakPeek.id)).group_by(SneakPeek.status)
        )
        for status, count in result.all():
            counts[status] = count

        lapsed = await db_session.execute(
            select(func.count(SneakPeek.id))
            .where(SneakPeek.status == SneakPeekStatus.PENDING.value)
            .where(SneakPeek.expires_at <= self._clock())
        )
        counts["LAPSED"] = lapsed.scalar_one()
        return counts

    async def _count_pending(
        self, db_session: AsyncSession, recipient_party_id: uuid.UUID, now: datetime
    ) -> int:
        result = await db_session.execute(
            select(func.count(SneakPeek.id))
            .where(SneakPeek.recipient_party_id == recipient_party_id)
            .where(SneakPeek.status == SneakPeekStatus.PENDING.value)
            .where(SneakPeek.expires_at > now)
        )
        return result.scalar_one()
