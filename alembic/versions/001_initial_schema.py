"""Initial schema — the six Orbit introductions tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. profiles (read model of the account service's table) ────
    op.create_table(
        "profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_type", sa.String, nullable=False, comment="SINGLE / MATCHMAKR"),
        sa.Column("name", sa.String, nullable=True),
        sa.Column(
            "photos",
            postgresql.JSONB,
            nullable=True,
            comment="Array of photo URLs",
        ),
        sa.Column(
            "sponsored_by_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("last_sign_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_profiles_sponsored_by_id", "profiles", ["sponsored_by_id"])

    # ── 2. matches ──────────────────────────────────────────────────
    op.create_table(
        "matches",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "party_a_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "party_b_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "sponsor_a_id",
            postgresql.UUID(as_uuid=True),
            nullable=False,
            comment="Sponsor of party A when the match was created",
        ),
        sa.Column(
            "sponsor_b_id",
            postgresql.UUID(as_uuid=True),
            nullable=False,
            comment="Sponsor of party B when the match was created",
        ),
        sa.Column("sponsor_a_approved", sa.Boolean, server_default="false", nullable=False),
        sa.Column("sponsor_b_approved", sa.Boolean, server_default="false", nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("party_a_id", "party_b_id", name="uq_match_pair"),
        sa.CheckConstraint("party_a_id < party_b_id", name="ck_match_canonical_order"),
    )
    op.create_index("idx_matches_party_b_id", "matches", ["party_b_id"])
    op.create_index("idx_matches_sponsor_a_id", "matches", ["sponsor_a_id"])
    op.create_index("idx_matches_sponsor_b_id", "matches", ["sponsor_b_id"])

    # ── 3. conversations ────────────────────────────────────────────
    op.create_table(
        "conversations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("initiator_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("counterpart_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("context_subject_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("context_target_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("initiator_sponsor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("counterpart_sponsor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("status", sa.String, server_default="active", nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "initiator_id",
            "counterpart_id",
            "context_subject_id",
            "context_target_id",
            name="uq_conversation_context",
        ),
        sa.CheckConstraint(
            "initiator_id < counterpart_id", name="ck_conversation_canonical_order"
        ),
    )
    op.create_index("idx_conversations_counterpart_id", "conversations", ["counterpart_id"])

    # ── 4. messages ─────────────────────────────────────────────────
    op.create_table(
        "messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "conversation_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("sender_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("recipient_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("context_subject_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("context_target_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("read", sa.Boolean, server_default="false", nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "idx_messages_conversation_created", "messages", ["conversation_id", "created_at"]
    )
    op.create_index("idx_messages_recipient_read", "messages", ["recipient_id", "read"])
    op.create_index("idx_messages_sender_recipient", "messages", ["sender_id", "recipient_id"])

    # ── 5. sneak_peeks ──────────────────────────────────────────────
    op.create_table(
        "sneak_peeks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "recipient_party_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "issuing_sponsor_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "target_party_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("photo_url", sa.String, nullable=False),
        sa.Column(
            "status",
            sa.String,
            server_default="PENDING",
            nullable=False,
            comment="PENDING / OPEN_TO_IT / NOT_SURE_YET / DISMISSED / EXPIRED",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "idx_sneak_peeks_recipient_pending",
        "sneak_peeks",
        ["recipient_party_id", "status", "expires_at"],
    )
    op.create_index(
        "idx_sneak_peeks_sponsor_status", "sneak_peeks", ["issuing_sponsor_id", "status"]
    )

    # ── 6. notifications ────────────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("recipient_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("type", sa.String, nullable=False),
        sa.Column("correlation_key", sa.String, nullable=True),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("read", sa.Boolean, server_default="false", nullable=False),
        sa.Column("dismissed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "recipient_id", "type", "correlation_key", name="uq_notification_correlation"
        ),
    )
    op.create_index(
        "idx_notifications_recipient_type_created",
        "notifications",
        ["recipient_id", "type", "created_at"],
    )
    op.create_index(
        "idx_notifications_recipient_active", "notifications", ["recipient_id", "dismissed_at"]
    )


def downgrade() -> None:
    # Drop in reverse order (children / dependents first).
    op.drop_index("idx_notifications_recipient_active", table_name="notifications")
    op.drop_index("idx_notifications_recipient_type_created", table_name="notifications")
    op.drop_table("notifications")

    op.drop_index("idx_sneak_peeks_sponsor_status", table_name="sneak_peeks")
    op.drop_index("idx_sneak_peeks_recipient_pending", table_name="sneak_peeks")
    op.drop_table("sneak_peeks")

    op.drop_index("idx_messages_sender_recipient", table_name="messages")
    op.drop_index("idx_messages_recipient_read", table_name="messages")
    op.drop_index("idx_messages_conversation_created", table_name="messages")
    op.drop_table("messages")

    op.drop_index("idx_conversations_counterpart_id", table_name="conversations")
    op.drop_table("conversations")

    op.drop_index("idx_matches_sponsor_b_id", table_name="matches")
    op.drop_index("idx_matches_sponsor_a_id", table_name="matches")
    op.drop_index("idx_matches_party_b_id", table_name="matches")
    op.drop_table("matches")

    op.drop_index("ix_profiles_sponsored_by_id", table_name="profiles")
    op.drop_table("profiles")
