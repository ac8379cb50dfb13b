from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Optional

class ConversationCreate(BaseModel):
    other_id: UUID
    conversation_id: Optional[UUID] = None
    subject_id: Optional[UUID] = None
    target_id: Optional[UUID] = None

class ConversationResponse(BaseModel):
    id: UUID
    initiator_id: UUID
    counterpart_id: UUID
    context_subject_id: UUID
    context_target_id: UUID
    initiator_sponsor_id: Optional[UUID] = None
    counterpart_sponsor_id: Optional[UUID] = None
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}

class MessageCreate(BaseModel):
    recipient_id: UUID
    content: str = Field(min_length=1, max_length=5000)
    conversation_id: Optional[UUID] = None
    subject_id: Optional[UUID] = None
    target_id: Optional[UUID] = None

class MessageResponse(BaseModel):
    id: UUID
    conversation_id: Optional[UUID] = None
    sender_id: UUID
    recipient_id: UUID
    content: str
    context_subject_id: Optional[UUID] = None
    context_target_id: Optional[UUID] = None
    read: bool
    created_at: datetime

    model_config = {"from_attributes": True}

class ConversationSummaryResponse(BaseModel):
    conversation: ConversationResponse
    last_message: Optional[MessageResponse] = None
    unread_count: int

    model_config = {"from_attributes": True}

class MarkReadResponse(BaseModel):
    marked: int
