from pydantic import BaseModel
from uuid import UUID
from datetime import datetime
from typing import Optional

class SneakPeekCreate(BaseModel):
    recipient_party_id: UUID
    target_party_id: UUID

class SneakPeekRespond(BaseModel):
    status: str  # OPEN_TO_IT/NOT_SURE_YET/DISMISSED

class SneakPeekResponse(BaseModel):
    id: UUID
    recipient_party_id: UUID
    issuing_sponsor_id: UUID
    target_party_id: UUID
    photo_url: str
    status: str
    created_at: datetime
    expires_at: datetime
    responded_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

class ExpireResponse(BaseModel):
    expired: int
