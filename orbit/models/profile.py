"""
Orbit — Profile read model.

Profiles are owned by the account/onboarding service; the introductions core
only reads the handful of columns it needs to decide who sponsors whom and
what a sneak peek should show.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, String, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from orbit.database import Base


class UserType(str, enum.Enum):
    SINGLE = "SINGLE"
    MATCHMAKR = "MATCHMAKR"


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_type: Mapped[str] = mapped_column(
        String, nullable=False, comment="SINGLE / MATCHMAKR"
    )
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    photos: Mapped[list | None] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=True,
        comment="Array of photo URLs",
    )
    sponsored_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True
    )
    last_sign_in_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    @property
    def is_single(self) -> bool:
        return self.user_type == UserType.SINGLE.value

    @property
    def is_sponsor(self) -> bool:
        return self.user_type == UserType.MATCHMAKR.value

    @property
    def first_photo(self) -> str | None:
        photos = self.photos or []
        return photos[0] if photos and photos[0] else None

    def __repr__(self) -> str:
        return f"<Profile {self.id} type={self.user_type!r}>"
