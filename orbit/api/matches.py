"""
Orbit — Matches API

Sponsor approval of a pair of singles and the communication gate derived
from it.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from orbit.api.deps import (
    Caller,
    get_caller,
    get_match_service,
    get_notification_policy,
    require_party_access,
    require_sponsor,
)
from orbit.database import get_db
from orbit.schemas.match import (
    ApprovalStatusResponse,
    ApproveRequest,
    ApproveResponse,
    CanChatResponse,
    MatchResponse,
)
from orbit.services.match_service import MatchService
from orbit.services.notification_service import NotificationPolicy

logger = structlog.get_logger("orbit.api.matches")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# POST /approve: record a sponsor's approval
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/approve",
    response_model=ApproveResponse,
    status_code=status.HTTP_200_OK,
    summary="Approve a pair of singles on behalf of the calling sponsor",
)
async def approve(
    body: ApproveRequest,
    caller: Caller = Depends(require_sponsor),
    db: AsyncSession = Depends(get_db),
    matches: MatchService = Depends(get_match_service),
    notifications: NotificationPolicy = Depends(get_notification_policy),
) -> ApproveResponse:
    """Safe to retry: approval is monotonic and ``introduction_live`` is
    correlated by match id, so a repeated call neither re-stamps
    ``approved_at`` nor duplicates notifications."""
    outcome = await matches.record_approval(
        db, body.party_a_id, body.party_b_id, body.sponsor_id, caller_id=caller.id
    )
    if outcome.match.is_approved:
        await notifications.introduction_live(db, outcome.match)

    return ApproveResponse(
        match=MatchResponse.model_validate(outcome.match),
        newly_approved=outcome.newly_approved,
    )


@router.get("/can-chat", response_model=CanChatResponse)
async def can_chat(
    party_a_id: uuid.UUID = Query(...),
    party_b_id: uuid.UUID = Query(...),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    matches: MatchService = Depends(get_match_service),
) -> CanChatResponse:
    await require_party_access(db, caller, party_a_id, party_b_id)
    return CanChatResponse(can_chat=await matches.can_communicate(db, party_a_id, party_b_id))


@router.get("/status", response_model=ApprovalStatusResponse)
async def approval_status(
    party_a_id: uuid.UUID = Query(...),
    party_b_id: uuid.UUID = Query(...),
    caller: Caller = Depends(require_sponsor),
    db: AsyncSession = Depends(get_db),
    matches: MatchService = Depends(get_match_service),
) -> ApprovalStatusResponse:
    approval = await matches.approval_status(db, party_a_id, party_b_id, caller.id)
    match = await matches.find(db, party_a_id, party_b_id)
    return ApprovalStatusResponse(
        status=approval.value,
        match_id=match.id if match is not None else None,
    )


@router.get("/for-party/{party_id}", response_model=list[MatchResponse])
async def list_for_party(
    party_id: uuid.UUID,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    matches: MatchService = Depends(get_match_service),
) -> list[MatchResponse]:
    await require_party_access(db, caller, party_id)
    rows = await matches.list_for_party(db, party_id)
    return [MatchResponse.model_validate(m) for m in rows]
