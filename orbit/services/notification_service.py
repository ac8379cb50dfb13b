"""
Orbit — Notification Issuance Policy

A single decision procedure, ``ensure``, that every other component calls
after a successful state transition (and that login/activity signals call
directly).  It decides *whether* a notification row should exist; delivery
is somebody else's problem.

Two flavours:

  Correlated — the notification reports on a durable entity (a match, a
  sponsor/single pair).  At most one row per
  ``(recipient_id, type, correlation_key)``, backed by the
  ``uq_notification_correlation`` constraint.

  Nudge — the notification prompts the recipient to resolve an unmet
  condition.  No correlation key.  If the condition has since been met,
  any still-active nudge of that type is dismissed instead; otherwise a new
  one is created at most once per cooldown window.

All checks are read-then-write against the shared store without locks.
Under a race the worst outcome is a harmless duplicate nudge or a skipped
one.  Store failures are logged and swallowed: a missed notification is
recoverable, a failed match/conversation/sneak-peek mutation is not.
"""

from __future__ import annotations

import inspect
import random
import uuid
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from orbit.config import get_settings
from orbit.errors import AuthorizationError, NotFoundError
from orbit.models.match import Match
from orbit.models.notification import Notification, NotificationType
from orbit.models.profile import Profile
from orbit.services import profile_directory
from orbit.utils.clock import utcnow

logger = structlog.get_logger("orbit.notification_service")

PayloadBuilder = Callable[[], "dict[str, Any] | Awaitable[dict[str, Any]]"]
Condition = Callable[[], Awaitable[bool]]

# All convey the same fact: the sponsor is engaged.
SPONSOR_LOGIN_MESSAGES: tuple[str, ...] = (
    "Your sponsor is actively reviewing matches.",
    "Your sponsor is working on introductions.",
    "Your sponsor is spending time in Orbit.",
    "Your sponsor is exploring potential matches.",
    "Your sponsor is making thoughtful connections.",
)


def intro_correlation_key(match_id: uuid.UUID) -> str:
    return f"intro:{match_id}"


def chat_correlation_key(other_sponsor_id: uuid.UUID, subject_party_id: uuid.UUID) -> str:
    return f"chat:{other_sponsor_id}:{subject_party_id}"


class NotificationPolicy:
    """Idempotent, cooldown-throttled notification issuance."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        settings = get_settings()
        self.nudge_cooldown = timedelta(hours=settings.NUDGE_COOLDOWN_HOURS)
        self.sponsor_login_cooldown = timedelta(hours=settings.SPONSOR_LOGIN_COOLDOWN_HOURS)
        self.intro_view_delay = timedelta(hours=settings.INTRO_VIEW_CHECK_DELAY_HOURS)
        self._clock = clock or utcnow

    # ── Core decision procedure ───────────────────────────────────────────

    async def ensure(
        self,
        db_session: AsyncSession,
        recipient_id: uuid.UUID,
        notification_type: NotificationType | str,
        correlation_key: str | None,
        payload_builder: PayloadBuilder,
        condition: Condition | None = None,
        cooldown: timedelta | None = None,
    ) -> Notification | None:
        """Create the notification if policy allows; return it, else ``None``.

        Never raises: store errors and failing payload or condition callbacks
        are logged and swallowed.  The whole decision runs inside a SAVEPOINT
        so a failure here leaves the caller's transaction usable.
        """
        type_value = NotificationType(notification_type).value
        log = logger.bind(
            recipient_id=str(recipient_id),
            type=type_value,
            correlation_key=correlation_key,
        )

        try:
            async with db_session.begin_nested():
                if correlation_key is not None:
                    return await self._ensure_correlated(
                        db_session, recipient_id, type_value, correlation_key, payload_builder, log
                    )
                return await self._ensure_nudge(
                    db_session,
                    recipient_id,
                    type_value,
                    payload_builder,
                    condition,
                    cooldown or self.nudge_cooldown,
                    log,
                )
        except Exception:
            log.exception("notification_ensure_failed")
            return None

    async def _ensure_correlated(
        self,
        db_session: AsyncSession,
        recipient_id: uuid.UUID,
        type_value: str,
        correlation_key: str,
        payload_builder: PayloadBuilder,
        log,
    ) -> Notification | None:
        existing = await db_session.execute(
            select(Notification.id)
            .where(Notification.recipient_id == recipient_id)
            .where(Notification.type == type_value)
            .where(Notification.correlation_key == correlation_key)
            .limit(1)
        )
        if existing.scalar_one_or_none() is not None:
            log.debug("notification_already_exists")
            return None

        return await self._insert(
            db_session, recipient_id, type_value, correlation_key, payload_builder, log
        )

    async def _ensure_nudge(
        self,
        db_session: AsyncSession,
        recipient_id: uuid.UUID,
        type_value: str,
        payload_builder: PayloadBuilder,
        condition: Condition | None,
        cooldown: timedelta,
        log,
    ) -> Notification | None:
        now = self._clock()

        if condition is not None and not await condition():
            result = await db_session.execute(
                update(Notification)
                .where(Notification.recipient_id == recipient_id)
                .where(Notification.type == type_value)
                .where(Notification.dismissed_at.is_(None))
                .values(dismissed_at=now)
                .execution_options(synchronize_session="evaluate")
            )
            log.info("nudge_condition_met_dismissed", dismissed=result.rowcount)
            return None

        recent = await db_session.execute(
            select(Notification.id)
            .where(Notification.recipient_id == recipient_id)
            .where(Notification.type == type_value)
            .where(Notification.created_at > now - cooldown)
            .limit(1)
        )
        if recent.scalar_one_or_none() is not None:
            log.debug("nudge_within_cooldown")
            return None

        return await self._insert(db_session, recipient_id, type_value, None, payload_builder, log)

    async def _insert(
        self,
        db_session: AsyncSession,
        recipient_id: uuid.UUID,
        type_value: str,
        correlation_key: str | None,
        payload_builder: PayloadBuilder,
        log,
    ) -> Notification | None:
        payload = payload_builder()
        if inspect.isawaitable(payload):
            payload = await payload

        notification = Notification(
            recipient_id=recipient_id,
            type=type_value,
            correlation_key=correlation_key,
            payload=payload,
            read=False,
            dismissed_at=None,
            created_at=self._clock(),
        )
        try:
            async with db_session.begin_nested():
                db_session.add(notification)
                await db_session.flush()
        except IntegrityError:
            # A concurrent request created the same correlated row first.
            log.info("notification_duplicate_race")
            return None

        log.info("notification_created", notification_id=str(notification.id))
        return notification

    # ── Producers ─────────────────────────────────────────────────────────

    async def introduction_live(
        self, db_session: AsyncSession, match: Match
    ) -> list[Notification]:
        """One ``introduction_live`` per sponsor per match, ever."""
        profiles = await profile_directory.get_profiles(
            db_session, [match.party_a_id, match.party_b_id]
        )

        def _payload() -> dict[str, Any]:
            payload: dict[str, Any] = {
                "match_id": str(match.id),
                "sponsor_a_id": str(match.sponsor_a_id),
                "sponsor_b_id": str(match.sponsor_b_id),
                "party_a_id": str(match.party_a_id),
                "party_b_id": str(match.party_b_id),
            }
            for side, party_id in (("a", match.party_a_id), ("b", match.party_b_id)):
                profile = profiles.get(party_id)
                if profile is not None and profile.name:
                    payload[f"party_{side}_name"] = profile.name
            return payload

        created = []
        for sponsor_id in dict.fromkeys([match.sponsor_a_id, match.sponsor_b_id]):
            notification = await self.ensure(
                db_session,
                sponsor_id,
                NotificationType.INTRODUCTION_LIVE,
                intro_correlation_key(match.id),
                _payload,
            )
            if notification is not None:
                created.append(notification)
        return created

    async def matchmakr_chat(
        self,
        db_session: AsyncSession,
        subject_party_id: uuid.UUID,
        sponsor_id: uuid.UUID,
        other_sponsor_id: uuid.UUID,
        conversation_id: uuid.UUID,
    ) -> Notification | None:
        """Tell a single their sponsor is talking to another sponsor about them."""
        return await self.ensure(
            db_session,
            subject_party_id,
            NotificationType.MATCHMAKR_CHAT,
            chat_correlation_key(other_sponsor_id, subject_party_id),
            lambda: {
                "sponsor_id": str(sponsor_id),
                "other_sponsor_id": str(other_sponsor_id),
                "conversation_id": str(conversation_id),
                "message": "Your sponsor is talking to another sponsor about you.",
            },
        )

    async def nudge_invite_sponsor(
        self, db_session: AsyncSession, single: Profile
    ) -> Notification | None:
        """Nudge a single who has no sponsor to invite one."""

        async def _still_unsponsored() -> bool:
            result = await db_session.execute(
                select(Profile.sponsored_by_id).where(Profile.id == single.id)
            )
            return result.scalar_one_or_none() is None

        return await self.ensure(
            db_session,
            single.id,
            NotificationType.NUDGE_INVITE_SPONSOR,
            None,
            lambda: {"reason": "single_without_sponsor", "created_by": "system"},
            condition=_still_unsponsored,
        )

    async def nudge_invite_single(
        self, db_session: AsyncSession, sponsor_id: uuid.UUID
    ) -> Notification | None:
        """Nudge a sponsor with no singles to invite one."""

        async def _has_no_singles() -> bool:
            return not await profile_directory.has_sponsored_singles(db_session, sponsor_id)

        return await self.ensure(
            db_session,
            sponsor_id,
            NotificationType.NUDGE_INVITE_SINGLE,
            None,
            lambda: {"reason": "sponsor_without_singles", "created_by": "system"},
            condition=_has_no_singles,
        )

    async def ensure_nudges(
        self, db_session: AsyncSession, profile: Profile
    ) -> Notification | None:
        """Run whichever persistent nudge applies to this user's role."""
        if profile.is_single:
            return await self.nudge_invite_sponsor(db_session, profile)
        if profile.is_sponsor:
            return await self.nudge_invite_single(db_session, profile.id)
        return None

    async def sponsor_logged_in(
        self, db_session: AsyncSession, sponsor_id: uuid.UUID
    ) -> list[Notification]:
        """Reassure each sponsored single that their sponsor is active.

        A single is skipped while it has any active notification, and gets
        at most one of these per cooldown window.
        """
        log = logger.bind(sponsor_id=str(sponsor_id))
        try:
            singles = await profile_directory.sponsored_singles(db_session, sponsor_id)
            if not singles:
                return []

            active = await db_session.execute(
                select(Notification.recipient_id)
                .where(Notification.recipient_id.in_([s.id for s in singles]))
                .where(Notification.dismissed_at.is_(None))
            )
            busy = set(active.scalars().all())
        except SQLAlchemyError:
            log.exception("sponsor_login_lookup_failed")
            return []

        message = random.choice(SPONSOR_LOGIN_MESSAGES)
        created = []
        for single in singles:
            if single.id in busy:
                continue
            notification = await self.ensure(
                db_session,
                single.id,
                NotificationType.SPONSOR_LOGGED_IN,
                None,
                lambda: {"sponsor_id": str(sponsor_id), "kind": "login", "message": message},
                cooldown=self.sponsor_login_cooldown,
            )
            if notification is not None:
                created.append(notification)

        log.info("sponsor_login_notifications", created=len(created), singles=len(singles))
        return created

    async def single_not_seen_intro(
        self, db_session: AsyncSession, sponsor_id: uuid.UUID
    ) -> list[Notification]:
        """Flag intros older than the view delay that the sponsor's single
        has not signed in to see.  One notification per intro."""
        log = logger.bind(sponsor_id=str(sponsor_id))
        threshold = self._clock() - self.intro_view_delay
        unseen: dict[uuid.UUID, tuple[Match, uuid.UUID]] = {}
        try:
            for party_col, sponsor_col in (
                (Match.party_a_id, Match.sponsor_a_id),
                (Match.party_b_id, Match.sponsor_b_id),
            ):
                # Only the sponsor who currently sponsors the single is told.
                result = await db_session.execute(
                    select(Match, Profile.id)
                    .join(Profile, Profile.id == party_col)
                    .where(sponsor_col == sponsor_id)
                    .where(Profile.sponsored_by_id == sponsor_id)
                    .where(Match.created_at < threshold)
                    .where(
                        or_(
                            Profile.last_sign_in_at.is_(None),
                            Profile.last_sign_in_at < Match.created_at,
                        )
                    )
                )
                for match, party_id in result.all():
                    unseen.setdefault(match.id, (match, party_id))
        except SQLAlchemyError:
            log.exception("single_not_seen_intro_lookup_failed")
            return []

        created = []
        for match, party_id in unseen.values():
            notification = await self.ensure(
                db_session,
                sponsor_id,
                NotificationType.SINGLE_NOT_SEEN_INTRO,
                intro_correlation_key(match.id),
                lambda m=match, p=party_id: {"match_id": str(m.id), "party_id": str(p)},
            )
            if notification is not None:
                created.append(notification)

        log.info("single_not_seen_intro_checked", intros=len(unseen), created=len(created))
        return created

    # ── Recipient-facing reads and mutations ──────────────────────────────

    async def list_active(
        self, db_session: AsyncSession, recipient_id: uuid.UUID
    ) -> list[Notification]:
        result = await db_session.execute(
            select(Notification)
            .where(Notification.recipient_id == recipient_id)
            .where(Notification.dismissed_at.is_(None))
            .order_by(Notification.created_at.desc())
        )
        return list(result.scalars().all())

    async def mark_read(
        self, db_session: AsyncSession, notification_id: uuid.UUID, recipient_id: uuid.UUID
    ) -> Notification:
        notification = await self._owned(db_session, notification_id, recipient_id)
        notification.read = True
        await db_session.flush()
        return notification

    async def dismiss(
        self, db_session: AsyncSession, notification_id: uuid.UUID, recipient_id: uuid.UUID
    ) -> Notification:
        notification = await self._owned(db_session, notification_id, recipient_id)
        if notification.dismissed_at is None:
            notification.dismissed_at = self._clock()
            await db_session.flush()
        return notification

    async def _owned(
        self, db_session: AsyncSession, notification_id: uuid.UUID, recipient_id: uuid.UUID
    ) -> Notification:
        notification = await db_session.get(Notification, notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found.")
        if notification.recipient_id != recipient_id:
            raise AuthorizationError("Notification belongs to another user.")
        return notification
