import uuid
from datetime import datetime
from pydantic import BaseModel

class NotificationOut(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    user_id: uuid.UUID
    title: str
    content: str
    type: str
    lead_id: uuid.UUID | None
    read_at: datetime | None
    created_at: datetime
    class Config: from_attributes = True
