"""
Orbit — Sneak Peeks API
"""

from __future__ import annotations

import uuid
from typing import Literal

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from orbit.api.deps import (
    Caller,
    get_caller,
    get_sneak_peek_service,
    require_sponsor,
    require_system,
)
from orbit.database import get_db
from orbit.schemas.sneak_peek import (
    ExpireResponse,
    SneakPeekCreate,
    SneakPeekRespond,
    SneakPeekResponse,
)
from orbit.services.sneak_peek_service import SneakPeekService

logger = structlog.get_logger("orbit.api.sneak_peeks")

router = APIRouter()


@router.post("", response_model=SneakPeekResponse, status_code=status.HTTP_201_CREATED)
async def send_sneak_peek(
    body: SneakPeekCreate,
    caller: Caller = Depends(require_sponsor),
    db: AsyncSession = Depends(get_db),
    sneak_peeks: SneakPeekService = Depends(get_sneak_peek_service),
) -> SneakPeekResponse:
    peek = await sneak_peeks.send(db, caller.id, body.recipient_party_id, body.target_party_id)
    return SneakPeekResponse.model_validate(peek)


@router.get("", response_model=list[SneakPeekResponse])
async def list_sneak_peeks(
    for_: Literal["single", "sponsor"] = Query("single", alias="for"),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    sneak_peeks: SneakPeekService = Depends(get_sneak_peek_service),
) -> list[SneakPeekResponse]:
    """``for=single`` lists what the caller has to review; ``for=sponsor``
    lists what the caller has sent and the answers that came back."""
    if for_ == "sponsor":
        if not caller.is_sponsor:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Sponsors only.")
        rows = await sneak_peeks.list_for_sponsor(db, caller.id)
    else:
        rows = await sneak_peeks.list_for_recipient(db, caller.id)
    return [SneakPeekResponse.model_validate(p) for p in rows]


@router.patch("/{sneak_peek_id}", response_model=SneakPeekResponse)
async def respond_sneak_peek(
    sneak_peek_id: uuid.UUID,
    body: SneakPeekRespond,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    sneak_peeks: SneakPeekService = Depends(get_sneak_peek_service),
) -> SneakPeekResponse:
    peek = await sneak_peeks.respond(db, sneak_peek_id, caller.id, body.status)
    return SneakPeekResponse.model_validate(peek)


@router.post("/expire", response_model=ExpireResponse)
async def expire_stale(
    caller: Caller = Depends(require_system),
    db: AsyncSession = Depends(get_db),
    sneak_peeks: SneakPeekService = Depends(get_sneak_peek_service),
) -> ExpireResponse:
    return ExpireResponse(expired=await sneak_peeks.expire_stale(db))
