"""
Orbit — Conversations API
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from orbit.api.deps import Caller, get_caller, get_conversation_service
from orbit.database import get_db
from orbit.schemas.conversation import (
    ConversationCreate,
    ConversationResponse,
    ConversationSummaryResponse,
    MarkReadResponse,
    MessageCreate,
    MessageResponse,
)
from orbit.services.conversation_service import ConversationService

logger = structlog.get_logger("orbit.api.conversations")

router = APIRouter()


@router.post("", response_model=ConversationResponse)
async def get_or_create_conversation(
    body: ConversationCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    conversations: ConversationService = Depends(get_conversation_service),
) -> ConversationResponse:
    """Return the conversation between the caller and ``other_id``, creating
    it on first use.  Singles need an approved match and always get the
    thread about their own pair; sponsors name the pair or let it be
    resolved from earlier chats."""
    conversation = await conversations.open_conversation(
        db,
        caller.id,
        body.other_id,
        conversation_id=body.conversation_id,
        subject_id=body.subject_id,
        target_id=body.target_id,
    )
    return ConversationResponse.model_validate(conversation)


@router.get("", response_model=list[ConversationSummaryResponse])
async def list_conversations(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    conversations: ConversationService = Depends(get_conversation_service),
) -> list[ConversationSummaryResponse]:
    summaries = await conversations.list_for_participant(db, caller.id)
    return [ConversationSummaryResponse.model_validate(s) for s in summaries]


@router.post(
    "/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    body: MessageCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    conversations: ConversationService = Depends(get_conversation_service),
) -> MessageResponse:
    message = await conversations.send_message(
        db,
        caller.id,
        body.recipient_id,
        body.content,
        conversation_id=body.conversation_id,
        subject_id=body.subject_id,
        target_id=body.target_id,
    )
    return MessageResponse.model_validate(message)


@router.get("/{conversation_id}/messages", response_model=list[MessageResponse])
async def history(
    conversation_id: uuid.UUID,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    conversations: ConversationService = Depends(get_conversation_service),
) -> list[MessageResponse]:
    messages = await conversations.history(db, conversation_id, caller.id)
    return [MessageResponse.model_validate(m) for m in messages]


@router.post("/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_read(
    conversation_id: uuid.UUID,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    conversations: ConversationService = Depends(get_conversation_service),
) -> MarkReadResponse:
    marked = await conversations.mark_read(db, conversation_id, caller.id)
    logger.info("conversation_marked_read", conversation_id=str(conversation_id), marked=marked)
    return MarkReadResponse(marked=marked)
