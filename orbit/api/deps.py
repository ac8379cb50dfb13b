"""
Orbit — shared request dependencies.

Authentication happens upstream; the gateway forwards the verified caller
as ``X-Orbit-User-Id`` and ``X-Orbit-User-Role``.  Services are created
lazily once per process, so handlers stay stateless.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from orbit.errors import AuthorizationError
from orbit.models.profile import UserType
from orbit.services import profile_directory
from orbit.services.conversation_service import ConversationService
from orbit.services.match_service import MatchService
from orbit.services.notification_service import NotificationPolicy
from orbit.services.sneak_peek_service import SneakPeekService

SYSTEM_ROLE = "SYSTEM"
_KNOWN_ROLES = {UserType.SINGLE.value, UserType.MATCHMAKR.value, SYSTEM_ROLE}


@dataclass(frozen=True)
class Caller:
    id: uuid.UUID
    role: str

    @property
    def is_sponsor(self) -> bool:
        return self.role == UserType.MATCHMAKR.value

    @property
    def is_single(self) -> bool:
        return self.role == UserType.SINGLE.value

    @property
    def is_system(self) -> bool:
        return self.role == SYSTEM_ROLE


async def get_caller(
    x_orbit_user_id: str | None = Header(default=None),
    x_orbit_user_role: str | None = Header(default=None),
) -> Caller:
    if not x_orbit_user_id or not x_orbit_user_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity headers.",
        )
    try:
        caller_id = uuid.UUID(x_orbit_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Malformed caller id.",
        ) from None
    role = x_orbit_user_role.upper()
    if role not in _KNOWN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown caller role {x_orbit_user_role!r}.",
        )
    return Caller(id=caller_id, role=role)


async def require_sponsor(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_sponsor:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only sponsors can do this.",
        )
    return caller


async def require_system(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_system:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="System callers only.",
        )
    return caller


async def require_party_access(
    db_session: AsyncSession, caller: Caller, *party_ids: uuid.UUID
) -> None:
    """Allow the call if the caller is one of the parties or currently
    sponsors one of them.  System callers always pass."""
    if caller.is_system or caller.id in party_ids:
        return
    profiles = await profile_directory.get_profiles(db_session, list(party_ids))
    if any(p.sponsored_by_id == caller.id for p in profiles.values()):
        return
    raise AuthorizationError(
        "Only the parties and their sponsors can see this.",
        caller_id=caller.id,
    )


# ── Service singletons ────────────────────────────────────────────────────────

_notification_policy: NotificationPolicy | None = None
_match_service: MatchService | None = None
_conversation_service: ConversationService | None = None
_sneak_peek_service: SneakPeekService | None = None


def get_notification_policy() -> NotificationPolicy:
    global _notification_policy
    if _notification_policy is None:
        _notification_policy = NotificationPolicy()
    return _notification_policy


def get_match_service() -> MatchService:
    global _match_service
    if _match_service is None:
        _match_service = MatchService()
    return _match_service


def get_conversation_service() -> ConversationService:
    global _conversation_service
    if _conversation_service is None:
        _conversation_service = ConversationService(
            match_service=get_match_service(),
            notifications=get_notification_policy(),
        )
    return _conversation_service


def get_sneak_peek_service() -> SneakPeekService:
    global _sneak_peek_service
    if _sneak_peek_service is None:
        _sneak_peek_service = SneakPeekService()
    return _sneak_peek_service
