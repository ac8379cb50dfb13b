"""
Orbit — Notification model.

``correlation_key`` ties a notification to the entity it reports on (a
match, a sponsor/single pair).  Together with recipient and type it is
unique, which is what makes issuance idempotent.  Nudges have no durable
subject and leave it null; NULLs never collide, so nudges are throttled by
cooldown instead.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from orbit.database import Base


class NotificationType(str, enum.Enum):
    MATCHMAKR_CHAT = "matchmakr_chat"
    NUDGE_INVITE_SPONSOR = "nudge_invite_sponsor"
    NUDGE_INVITE_SINGLE = "nudge_invite_single"
    INTRODUCTION_LIVE = "introduction_live"
    SPONSOR_LOGGED_IN = "sponsor_logged_in"
    SINGLE_NOT_SEEN_INTRO = "single_not_seen_intro"


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint(
            "recipient_id", "type", "correlation_key", name="uq_notification_correlation"
        ),
        Index("idx_notifications_recipient_type_created", "recipient_id", "type", "created_at"),
        Index("idx_notifications_recipient_active", "recipient_id", "dismissed_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    recipient_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    correlation_key: Mapped[str | None] = mapped_column(String, nullable=True)
    payload: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict
    )
    read: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    dismissed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    @property
    def is_active(self) -> bool:
        return self.dismissed_at is None

    def __repr__(self) -> str:
        return (
            f"<Notification {self.type!r} -> {self.recipient_id} "
            f"key={self.correlation_key!r}>"
        )
