"""
Orbit — Notifications API

Recipient-facing reads plus the activity signals (login, app open) that
drive the nudge and reassurance producers.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from orbit.api.deps import Caller, get_caller, get_notification_policy, require_sponsor
from orbit.database import get_db
from orbit.schemas.notification import IssuedResponse, NotificationResponse
from orbit.services import profile_directory
from orbit.services.notification_service import NotificationPolicy

logger = structlog.get_logger("orbit.api.notifications")

router = APIRouter()


@router.get("", response_model=list[NotificationResponse])
async def list_active(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    notifications: NotificationPolicy = Depends(get_notification_policy),
) -> list[NotificationResponse]:
    rows = await notifications.list_active(db, caller.id)
    return [NotificationResponse.model_validate(n) for n in rows]


@router.post("/ensure-nudges", response_model=IssuedResponse)
async def ensure_nudges(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    notifications: NotificationPolicy = Depends(get_notification_policy),
) -> IssuedResponse:
    profile = await profile_directory.require_profile(db, caller.id)
    created = await notifications.ensure_nudges(db, profile)
    return IssuedResponse(created=1 if created is not None else 0)


@router.post("/sponsor-login", response_model=IssuedResponse)
async def sponsor_login(
    caller: Caller = Depends(require_sponsor),
    db: AsyncSession = Depends(get_db),
    notifications: NotificationPolicy = Depends(get_notification_policy),
) -> IssuedResponse:
    created = await notifications.sponsor_logged_in(db, caller.id)
    return IssuedResponse(created=len(created))


@router.post("/check-intros", response_model=IssuedResponse)
async def check_intros(
    caller: Caller = Depends(require_sponsor),
    db: AsyncSession = Depends(get_db),
    notifications: NotificationPolicy = Depends(get_notification_policy),
) -> IssuedResponse:
    created = await notifications.single_not_seen_intro(db, caller.id)
    return IssuedResponse(created=len(created))


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    notifications: NotificationPolicy = Depends(get_notification_policy),
) -> NotificationResponse:
    notification = await notifications.mark_read(db, notification_id, caller.id)
    return NotificationResponse.model_validate(notification)


@router.post("/{notification_id}/dismiss", response_model=NotificationResponse)
async def dismiss(
    notification_id: uuid.UUID,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    notifications: NotificationPolicy = Depends(get_notification_policy),
) -> NotificationResponse:
    notification = await notifications.dismiss(db, notification_id, caller.id)
    logger.info("notification_dismissed", notification_id=str(notification_id))
    return NotificationResponse.model_validate(notification)
