"""
Orbit — read-only lookups against the externally owned ``profiles`` table.

The sponsor relationship lives on the single's profile
(``sponsored_by_id``); a single has at most one current sponsor.
"""

from __future__ import annotations

import uuid
from typing import Iterable

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orbit.errors import NotFoundError
from orbit.models.profile import Profile, UserType

logger = structlog.get_logger("orbit.profile_directory")


async def get_profile(db_session: AsyncSession, profile_id: uuid.UUID) -> Profile | None:
    result = await db_session.execute(select(Profile).where(Profile.id == profile_id))
    return result.scalar_one_or_none()


async def require_profile(db_session: AsyncSession, profile_id: uuid.UUID) -> Profile:
    profile = await get_profile(db_session, profile_id)
    if profile is None:
        logger.warning("profile_not_found", profile_id=str(profile_id))
        raise NotFoundError(f"Profile {profile_id} not found.", profile_id=str(profile_id))
    return profile


async def get_profiles(
    db_session: AsyncSession, profile_ids: Iterable[uuid.UUID]
) -> dict[uuid.UUID, Profile]:
    """Fetch several profiles in one round-trip, keyed by id."""
    ids = list({pid for pid in profile_ids if pid is not None})
    if not ids:
        return {}
    result = await db_session.execute(select(Profile).where(Profile.id.in_(ids)))
    return {p.id: p for p in result.scalars().all()}


async def sponsored_singles(db_session: AsyncSession, sponsor_id: uuid.UUID) -> list[Profile]:
    result = await db_session.execute(
        select(Profile)
        .where(Profile.sponsored_by_id == sponsor_id)
        .where(Profile.user_type == UserType.SINGLE.value)
        .order_by(Profile.created_at.asc())
    )
    return list(result.scalars().all())


async def has_sponsored_singles(db_session: AsyncSession, sponsor_id: uuid.UUID) -> bool:
    result = await db_session.execute(
        select(Profile.id)
        .where(Profile.sponsored_by_id == sponsor_id)
        .where(Profile.user_type == UserType.SINGLE.value)
        .limit(1)
    )
    return result.scalar_one_or_none() is not None
