"""
Orbit — Match model.

One row per unordered pair of singles, stored in canonical order
(``party_a_id < party_b_id``).  Approval flags only ever move false -> true
and ``approved_at`` is stamped exactly once, when the second flag flips.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from orbit.database import Base


class Match(Base):
    __tablename__ = "matches"
    __table_args__ = (
        UniqueConstraint("party_a_id", "party_b_id", name="uq_match_pair"),
        CheckConstraint("party_a_id < party_b_id", name="ck_match_canonical_order"),
        Index("idx_matches_party_b_id", "party_b_id"),
        Index("idx_matches_sponsor_a_id", "sponsor_a_id"),
        Index("idx_matches_sponsor_b_id", "sponsor_b_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    party_a_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False
    )
    party_b_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False
    )
    sponsor_a_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, comment="Sponsor of party A when the match was created"
    )
    sponsor_b_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, comment="Sponsor of party B when the match was created"
    )
    sponsor_a_approved: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    sponsor_b_approved: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    @property
    def is_approved(self) -> bool:
        return bool(self.sponsor_a_approved and self.sponsor_b_approved)

    def sides_for_sponsor(self, sponsor_id: uuid.UUID) -> list[str]:
        """Return ``"a"``/``"b"`` for each side this sponsor represents."""
        sides = []
        if self.sponsor_a_id == sponsor_id:
            sides.append("a")
        if self.sponsor_b_id == sponsor_id:
            sides.append("b")
        return sides

    def other_party(self, party_id: uuid.UUID) -> uuid.UUID:
        return self.party_b_id if party_id == self.party_a_id else self.party_a_id

    def __repr__(self) -> str:
        return (
            f"<Match {self.party_a_id} <-> {self.party_b_id} "
            f"a={self.sponsor_a_approved} b={self.sponsor_b_approved}>"
        )
