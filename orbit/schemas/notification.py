from pydantic import BaseModel
from uuid import UUID
from datetime import datetime
from typing import Optional

class NotificationResponse(BaseModel):
    id: UUID
    recipient_id: UUID
    type: str
    correlation_key: Optional[str] = None
    payload: dict = {}
    read: bool
    dismissed_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}

class IssuedResponse(BaseModel):
    created: int
