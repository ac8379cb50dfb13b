"""
Orbit — Conversation Registry & Messaging

A conversation is identified by its two participants in canonical order plus
the two singles it is *about* (``context_subject_id`` / ``context_target_id``).
Exactly one row exists per identity; it is created lazily on first use and
reused forever after.

Context resolution
------------------
When two sponsors talk, the registry must know which pair of singles the
thread concerns.  Signals of decreasing strength are tried in order:

  1. An explicit conversation id supplied by the client.
  2. Explicit subject/target ids supplied by the client.
  3. The most recent conversation between the two sponsors.
  4. The most recent message between them that carried context.

Each strategy is a pure function over a pre-loaded ``ContextSignals``
snapshot.  Exhausting the list raises ``ContextResolutionError``; a
contextless conversation is never created.  Signals 1 and 2 are binding:
if the client named them and they do not check out, resolution fails
instead of falling through to 3 or 4.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from orbit.errors import (
    AuthorizationError,
    ContextResolutionError,
    NotFoundError,
    PreconditionError,
    StoreConflictError,
)
from orbit.models.conversation import Conversation, ConversationStatus, Message
from orbit.models.profile import Profile
from orbit.services import profile_directory
from orbit.services.match_service import MatchService
from orbit.services.notification_service import NotificationPolicy
from orbit.utils.clock import utcnow
from orbit.utils.pair_key import canonicalize

logger = structlog.get_logger("orbit.conversation_service")


# ──────────────────────────────────────────────────────────────────────────────
# Context resolution strategies
# ──────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ConversationContext:
    subject_id: uuid.UUID
    target_id: uuid.UUID
    source: str


@dataclass
class ContextSignals:
    sender_id: uuid.UUID
    recipient_id: uuid.UUID
    explicit_conversation: Conversation | None = None
    explicit_subject_id: uuid.UUID | None = None
    explicit_target_id: uuid.UUID | None = None
    latest_conversation: Conversation | None = None
    latest_context_message: Message | None = None

    @property
    def participants(self) -> set[uuid.UUID]:
        return {self.sender_id, self.recipient_id}


def from_explicit_conversation(signals: ContextSignals) -> Optional[ConversationContext]:
    conv = signals.explicit_conversation
    if conv is None:
        return None
    if {conv.initiator_id, conv.counterpart_id} != signals.participants:
        return None
    return ConversationContext(conv.context_subject_id, conv.context_target_id, "conversation_id")


def from_explicit_ids(signals: ContextSignals) -> Optional[ConversationContext]:
    if signals.explicit_subject_id is None or signals.explicit_target_id is None:
        return None
    return ConversationContext(
        signals.explicit_subject_id, signals.explicit_target_id, "explicit"
    )


def from_latest_conversation(signals: ContextSignals) -> Optional[ConversationContext]:
    conv = signals.latest_conversation
    if conv is None:
        return None
    return ConversationContext(
        conv.context_subject_id, conv.context_target_id, "latest_conversation"
    )


def from_latest_message(signals: ContextSignals) -> Optional[ConversationContext]:
    msg = signals.latest_context_message
    if msg is None or msg.context_subject_id is None or msg.context_target_id is None:
        return None
    return ConversationContext(msg.context_subject_id, msg.context_target_id, "latest_message")


EXPLICIT_SOURCES = frozenset({"conversation_id", "explicit"})

CONTEXT_STRATEGIES: tuple[Callable[[ContextSignals], Optional[ConversationContext]], ...] = (
    from_explicit_conversation,
    from_explicit_ids,
    from_latest_conversation,
    from_latest_message,
)


@dataclass
class ConversationSummary:
    conversation: Conversation
    last_message: Message | None
    unread_count: int


# ──────────────────────────────────────────────────────────────────────────────
# Service
# ──────────────────────────────────────────────────────────────────────────────


class ConversationService:
    """Canonical conversation identity plus the message log hung off it."""

    def __init__(
        self,
        match_service: MatchService | None = None,
        notifications: NotificationPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._clock = clock or utcnow
        self.match_service = match_service or MatchService(clock=self._clock)
        self.notifications = notifications or NotificationPolicy(clock=self._clock)

    # ------------------------------------------------------------------ #
    # Registry
    # ------------------------------------------------------------------ #

    async def get_or_create(
        self,
        db_session: AsyncSession,
        participant_x: uuid.UUID,
        participant_y: uuid.UUID,
        subject_id: uuid.UUID | None,
        target_id: uuid.UUID | None,
        sponsor_x_id: uuid.UUID | None = None,
        sponsor_y_id: uuid.UUID | None = None,
    ) -> Conversation:
        """Return the one conversation for this identity, creating it if needed.

        Argument order of the participants never matters.  The sponsor ids
        are recorded for display only and are ignored when the row exists.
        """
        if subject_id is None or target_id is None:
            raise ContextResolutionError("Conversation context is required.")
        if participant_x == participant_y:
            raise PreconditionError("A conversation needs two distinct participants.")

        lo, hi = canonicalize(participant_x, participant_y)
        if lo != participant_x:
            sponsor_x_id, sponsor_y_id = sponsor_y_id, sponsor_x_id

        existing = await self._find_keyed(db_session, lo, hi, subject_id, target_id)
        if existing is not None:
            return existing

        log = logger.bind(
            initiator_id=str(lo),
            counterpart_id=str(hi),
            subject_id=str(subject_id),
            target_id=str(target_id),
        )
        conversation = Conversation(
            initiator_id=lo,
            counterpart_id=hi,
            context_subject_id=subject_id,
            context_target_id=target_id,
            initiator_sponsor_id=sponsor_x_id,
            counterpart_sponsor_id=sponsor_y_id,
            status=ConversationStatus.ACTIVE.value,
            created_at=self._clock(),
        )
        try:
            async with db_session.begin_nested():
                db_session.add(conversation)
                await db_session.flush()
        except IntegrityError:
            winner = await self._find_keyed(db_session, lo, hi, subject_id, target_id)
            if winner is None:
                log.error("conversation_insert_conflict_unresolved")
                raise StoreConflictError(
                    "Conversation insert conflicted but no row could be re-read."
                )
            log.info("conversation_insert_race_lost", conversation_id=str(winner.id))
            return winner

        log.info("conversation_created", conversation_id=str(conversation.id))
        return conversation

    async def find_latest_for_pair(
        self, db_session: AsyncSession, participant_x: uuid.UUID, participant_y: uuid.UUID
    ) -> Conversation | None:
        """Most recent conversation between two participants, any context.

        This is the legacy fallback: "most recent wins" rather than the
        exact identity guaranteed by ``get_or_create``.
        """
        lo, hi = canonicalize(participant_x, participant_y)
        result = await db_session.execute(
            select(Conversation)
            .where(Conversation.initiator_id == lo, Conversation.counterpart_id == hi)
            .order_by(Conversation.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _find_keyed(
        self,
        db_session: AsyncSession,
        lo: uuid.UUID,
        hi: uuid.UUID,
        subject_id: uuid.UUID,
        target_id: uuid.UUID,
    ) -> Conversation | None:
        result = await db_session.execute(
            select(Conversation).where(
                Conversation.initiator_id == lo,
                Conversation.counterpart_id == hi,
                Conversation.context_subject_id == subject_id,
                Conversation.context_target_id == target_id,
            )
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------ #
    # Context
    # ------------------------------------------------------------------ #

    async def resolve_context(
        self,
        db_session: AsyncSession,
        sender_id: uuid.UUID,
        recipient_id: uuid.UUID,
        *,
        conversation_id: uuid.UUID | None = None,
        subject_id: uuid.UUID | None = None,
        target_id: uuid.UUID | None = None,
    ) -> ConversationContext:
        log = logger.bind(sender_id=str(sender_id), recipient_id=str(recipient_id))
        signals = await self._load_signals(
            db_session, sender_id, recipient_id, conversation_id, subject_id, target_id
        )

        if conversation_id is not None:
            named = signals.explicit_conversation
            if named is None:
                raise NotFoundError("Conversation not found.", conversation_id=conversation_id)
            if {named.initiator_id, named.counterpart_id} != signals.participants:
                log.info("conversation_context_foreign", conversation_id=str(conversation_id))
                raise ContextResolutionError(
                    "Conversation is not between these participants."
                )

        for strategy in CONTEXT_STRATEGIES:
            context = strategy(signals)
            if context is None:
                continue
            if await self._context_is_valid(db_session, context, signals.participants):
                log.debug("conversation_context_resolved", source=context.source)
                return context
            # Client-named context is never swapped for a weaker signal.
            if context.source in EXPLICIT_SOURCES:
                raise ContextResolutionError(
                    "Context parties are not represented by either participant."
                )
            log.info("conversation_context_stale", source=context.source)

        log.warning("conversation_context_unresolved")
        raise ContextResolutionError("Could not determine which singles this chat is about.")

    async def _load_signals(
        self,
        db_session: AsyncSession,
        sender_id: uuid.UUID,
        recipient_id: uuid.UUID,
        conversation_id: uuid.UUID | None,
        subject_id: uuid.UUID | None,
        target_id: uuid.UUID | None,
    ) -> ContextSignals:
        explicit = None
        if conversation_id is not None:
            explicit = await db_session.get(Conversation, conversation_id)

        latest_message = await db_session.execute(
            select(Message)
            .where(
                or_(
                    and_(Message.sender_id == sender_id, Message.recipient_id == recipient_id),
                    and_(Message.sender_id == recipient_id, Message.recipient_id == sender_id),
                )
            )
            .where(Message.context_subject_id.is_not(None))
            .where(Message.context_target_id.is_not(None))
            .order_by(Message.created_at.desc())
            .limit(1)
        )

        return ContextSignals(
            sender_id=sender_id,
            recipient_id=recipient_id,
            explicit_conversation=explicit,
            explicit_subject_id=subject_id,
            explicit_target_id=target_id,
            latest_conversation=await self.find_latest_for_pair(
                db_session, sender_id, recipient_id
            ),
            latest_context_message=latest_message.scalar_one_or_none(),
        )

    async def _context_is_valid(
        self,
        db_session: AsyncSession,
        context: ConversationContext,
        participants: set[uuid.UUID],
    ) -> bool:
        """Each context single is a participant or sponsored by one."""
        if context.subject_id == context.target_id:
            return False
        profiles = await profile_directory.get_profiles(
            db_session, [context.subject_id, context.target_id]
        )
        for party_id in (context.subject_id, context.target_id):
            if party_id in participants:
                continue
            profile = profiles.get(party_id)
            if profile is None or profile.sponsored_by_id not in participants:
                return False
        return True

    # ------------------------------------------------------------------ #
    # Messaging
    # ------------------------------------------------------------------ #

    async def send_message(
        self,
        db_session: AsyncSession,
        sender_id: uuid.UUID,
        recipient_id: uuid.UUID,
        content: str,
        *,
        conversation_id: uuid.UUID | None = None,
        subject_id: uuid.UUID | None = None,
        target_id: uuid.UUID | None = None,
    ) -> Message:
        """Append a message, creating or reusing its conversation.

        Singles may only message a single they are approved with.  Sponsors
        message other sponsors about a pair of singles; the single(s) the
        sender sponsors are told their sponsor is talking about them.
        """
        if not content or not content.strip():
            raise PreconditionError("Message content must not be empty.")
        if sender_id == recipient_id:
            raise PreconditionError("Cannot send a message to yourself.")

        sender = await profile_directory.require_profile(db_session, sender_id)
        recipient = await profile_directory.require_profile(db_session, recipient_id)
        log = logger.bind(sender_id=str(sender_id), recipient_id=str(recipient_id))

        conversation = await self._conversation_for(
            db_session,
            sender,
            recipient,
            conversation_id=conversation_id,
            subject_id=subject_id,
            target_id=target_id,
        )

        message = Message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            recipient_id=recipient_id,
            content=content.strip(),
            context_subject_id=conversation.context_subject_id,
            context_target_id=conversation.context_target_id,
            read=False,
            created_at=self._clock(),
        )
        db_session.add(message)
        await db_session.flush()
        log.info(
            "message_sent",
            message_id=str(message.id),
            conversation_id=str(conversation.id),
        )

        if sender.is_sponsor:
            await self._notify_sponsored_parties(db_session, sender_id, recipient_id, conversation)
        return message

    async def open_conversation(
        self,
        db_session: AsyncSession,
        caller_id: uuid.UUID,
        other_id: uuid.UUID,
        *,
        conversation_id: uuid.UUID | None = None,
        subject_id: uuid.UUID | None = None,
        target_id: uuid.UUID | None = None,
    ) -> Conversation:
        """Get or create the thread ``send_message`` would use, without
        appending anything.  Same role and approval rules apply."""
        if caller_id == other_id:
            raise PreconditionError("A conversation needs two distinct participants.")
        caller = await profile_directory.require_profile(db_session, caller_id)
        other = await profile_directory.require_profile(db_session, other_id)
        return await self._conversation_for(
            db_session,
            caller,
            other,
            conversation_id=conversation_id,
            subject_id=subject_id,
            target_id=target_id,
        )

    async def _conversation_for(
        self,
        db_session: AsyncSession,
        sender: Profile,
        recipient: Profile,
        *,
        conversation_id: uuid.UUID | None,
        subject_id: uuid.UUID | None,
        target_id: uuid.UUID | None,
    ) -> Conversation:
        if sender.is_single:
            if not recipient.is_single:
                raise AuthorizationError("Singles may only message other singles.")
            if not await self.match_service.can_communicate(db_session, sender.id, recipient.id):
                logger.info(
                    "single_chat_blocked_not_approved",
                    sender_id=str(sender.id),
                    recipient_id=str(recipient.id),
                )
                raise AuthorizationError("Both sponsors must approve before you can chat.")
            # A single-to-single thread is always about the pair itself.
            lo, hi = canonicalize(sender.id, recipient.id)
            return await self.get_or_create(
                db_session,
                sender.id,
                recipient.id,
                lo,
                hi,
                sender.sponsored_by_id,
                recipient.sponsored_by_id,
            )

        if not recipient.is_sponsor:
            raise AuthorizationError("Sponsors may only message other sponsors.")
        context = await self.resolve_context(
            db_session,
            sender.id,
            recipient.id,
            conversation_id=conversation_id,
            subject_id=subject_id,
            target_id=target_id,
        )
        return await self.get_or_create(
            db_session,
            sender.id,
            recipient.id,
            context.subject_id,
            context.target_id,
            sender.id,
            recipient.id,
        )

    async def _notify_sponsored_parties(
        self,
        db_session: AsyncSession,
        sponsor_id: uuid.UUID,
        other_sponsor_id: uuid.UUID,
        conversation: Conversation,
    ) -> None:
        party_ids = list(dict.fromkeys([conversation.context_subject_id, conversation.context_target_id]))
        profiles = await profile_directory.get_profiles(db_session, party_ids)
        for party_id in party_ids:
            profile = profiles.get(party_id)
            if profile is None or profile.sponsored_by_id != sponsor_id:
                continue
            await self.notifications.matchmakr_chat(
                db_session, party_id, sponsor_id, other_sponsor_id, conversation.id
            )

    async def history(
        self, db_session: AsyncSession, conversation_id: uuid.UUID, caller_id: uuid.UUID
    ) -> list[Message]:
        await self._require_participant(db_session, conversation_id, caller_id)
        result = await db_session.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc())
        )
        return list(result.scalars().all())

    async def mark_read(
        self, db_session: AsyncSession, conversation_id: uuid.UUID, reader_id: uuid.UUID
    ) -> int:
        """Mark every message addressed to ``reader_id`` as read."""
        await self._require_participant(db_session, conversation_id, reader_id)
        result = await db_session.execute(
            update(Message)
            .where(Message.conversation_id == conversation_id)
            .where(Message.recipient_id == reader_id)
            .where(Message.read.is_(False))
            .values(read=True)
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount

    async def list_for_participant(
        self, db_session: AsyncSession, user_id: uuid.UUID
    ) -> list[ConversationSummary]:
        """Conversations the user takes part in, most recently active first."""
        last_activity = (
            select(
                Message.conversation_id.label("conversation_id"),
                func.max(Message.created_at).label("last_at"),
            )
            .group_by(Message.conversation_id)
            .subquery()
        )
        result = await db_session.execute(
            select(Conversation)
            .outerjoin(last_activity, last_activity.c.conversation_id == Conversation.id)
            .where(or_(Conversation.initiator_id == user_id, Conversation.counterpart_id == user_id))
            .order_by(
                func.coalesce(last_activity.c.last_at, Conversation.created_at).desc()
            )
        )
        conversations = list(result.scalars().all())
        if not conversations:
            return []
        ids = [c.id for c in conversations]

        unread_rows = await db_session.execute(
            select(Message.conversation_id, func.count(Message.id))
            .where(Message.conversation_id.in_(ids))
            .where(Message.recipient_id == user_id)
            .where(Message.read.is_(False))
            .group_by(Message.conversation_id)
        )
        unread = {conv_id: count for conv_id, count in unread_rows.all()}

        ranked = (
            select(
                Message.id.label("message_id"),
                func.row_number()
                .over(partition_by=Message.conversation_id, order_by=Message.created_at.desc())
                .label("rn"),
            )
            .where(Message.conversation_id.in_(ids))
            .subquery()
        )
        latest_rows = await db_session.execute(
            select(Message).join(ranked, ranked.c.message_id == Message.id).where(ranked.c.rn == 1)
        )
        latest = {m.conversation_id: m for m in latest_rows.scalars().all()}

        return [
            ConversationSummary(
                conversation=c,
                last_message=latest.get(c.id),
                unread_count=unread.get(c.id, 0),
            )
            for c in conversations
        ]

    async def _require_participant(
        self, db_session: AsyncSession, conversation_id: uuid.UUID, user_id: uuid.UUID
    ) -> Conversation:
        conversation = await db_session.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found.")
        if not conversation.has_participant(user_id):
            raise AuthorizationError("Not a participant in this conversation.")
        return conversation
