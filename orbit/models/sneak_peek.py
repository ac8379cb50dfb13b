"""
Orbit — SneakPeek model.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from orbit.database import Base


class SneakPeekStatus(str, enum.Enum):
    PENDING = "PENDING"
    OPEN_TO_IT = "OPEN_TO_IT"
    NOT_SURE_YET = "NOT_SURE_YET"
    DISMISSED = "DISMISSED"
    EXPIRED = "EXPIRED"


# Statuses a recipient may choose; PENDING and EXPIRED belong to the system.
CLIENT_RESPONSE_STATUSES = frozenset(
    {SneakPeekStatus.OPEN_TO_IT, SneakPeekStatus.NOT_SURE_YET, SneakPeekStatus.DISMISSED}
)

# Responses a sponsor keeps seeing for a while after they land.
SPONSOR_VISIBLE_RESPONSES = frozenset(
    {SneakPeekStatus.OPEN_TO_IT, SneakPeekStatus.NOT_SURE_YET}
)


class SneakPeek(Base):
    __tablename__ = "sneak_peeks"
    __table_args__ = (
        Index("idx_sneak_peeks_recipient_pending", "recipient_party_id", "status", "expires_at"),
        Index("idx_sneak_peeks_sponsor_status", "issuing_sponsor_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    recipient_party_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    issuing_sponsor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    target_party_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    photo_url: Mapped[str] = mapped_column(
        String, nullable=False, comment="Snapshot of the target's first photo at send time"
    )
    status: Mapped[str] = mapped_column(
        String, default=SneakPeekStatus.PENDING.value, server_default="PENDING", nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<SneakPeek {self.issuing_sponsor_id} -> {self.recipient_party_id} "
            f"about={self.target_party_id} status={self.status!r}>"
        )
