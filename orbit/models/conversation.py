"""
Orbit — Conversation and Message models.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orbit.database import Base


class ConversationStatus(str, enum.Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint(
            "initiator_id",
            "counterpart_id",
            "context_subject_id",
            "context_target_id",
            name="uq_conversation_context",
        ),
        CheckConstraint("initiator_id < counterpart_id", name="ck_conversation_canonical_order"),
        Index("idx_conversations_counterpart_id", "counterpart_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    initiator_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, comment="Smaller participant id (canonical order)"
    )
    counterpart_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, comment="Larger participant id (canonical order)"
    )
    context_subject_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, comment="Single the conversation is about"
    )
    context_target_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, comment="Single the subject is being introduced to"
    )
    initiator_sponsor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, nullable=True, comment="Display/audit only"
    )
    counterpart_sponsor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, nullable=True, comment="Display/audit only"
    )
    status: Mapped[str] = mapped_column(
        String, default=ConversationStatus.ACTIVE.value, server_default="active", nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    messages: Mapped[list["Message"]] = relationship(
        "Message", back_populates="conversation", lazy="raise"
    )

    def has_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.initiator_id, self.counterpart_id)

    def other_participant(self, user_id: uuid.UUID) -> uuid.UUID:
        return self.counterpart_id if user_id == self.initiator_id else self.initiator_id

    def __repr__(self) -> str:
        return (
            f"<Conversation {self.initiator_id} <-> {self.counterpart_id} "
            f"about={self.context_subject_id}/{self.context_target_id}>"
        )


class Message(Base):
    """Append-only; only ``read`` is ever mutated, by the recipient."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_conversation_created", "conversation_id", "created_at"),
        Index("idx_messages_recipient_read", "recipient_id", "read"),
        Index("idx_messages_sender_recipient", "sender_id", "recipient_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=True,
        comment="Null for legacy sender/recipient-only messages",
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    recipient_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    context_subject_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    context_target_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    read: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    conversation: Mapped["Conversation | None"] = relationship(
        "Conversation", back_populates="messages", lazy="raise"
    )

    def __repr__(self) -> str:
        return f"<Message {self.sender_id} -> {self.recipient_id} read={self.read}>"
