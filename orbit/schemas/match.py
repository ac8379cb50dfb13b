from pydantic import BaseModel
from uuid import UUID
from datetime import datetime
from typing import Optional

class ApproveRequest(BaseModel):
    party_a_id: UUID
    party_b_id: UUID
    sponsor_id: UUID

class MatchResponse(BaseModel):
    id: UUID
    party_a_id: UUID
    party_b_id: UUID
    sponsor_a_id: UUID
    sponsor_b_id: UUID
    sponsor_a_approved: bool
    sponsor_b_approved: bool
    approved_at: Optional[datetime] = None
    created_at: datetime
    is_approved: bool

    model_config = {"from_attributes": True}

class ApproveResponse(BaseModel):
    match: MatchResponse
    newly_approved: bool

class CanChatResponse(BaseModel):
    can_chat: bool

class ApprovalStatusResponse(BaseModel):
    status: str  # can-approve/pending/matched
    match_id: Optional[UUID] = None
