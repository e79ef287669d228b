import uuid
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, model_validator

class CommunicationCreate(BaseModel):
    customer_id: uuid.UUID
    reservation_id: Optional[uuid.UUID] = None
    template_id: Optional[uuid.UUID] = None
    type: Literal["email", "sms"] = "email"
    subject: Optional[str] = None
    message: Optional[str] = None

    @model_validator(mode="after")
    def needs_content(self):
        if not self.template_id and not self.message:
            raise ValueError("either template_id or message is required")
        return self

class Communication(BaseModel):
    id: uuid.UUID
    team_id: uuid.UUID
    customer_id: uuid.UUID
    reservation_id: Optional[uuid.UUID] = None
    template_id: Optional[uuid.UUID] = None
    type: str
    subject: Optional[str] = None
    message: str
    status: str
    error: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
