import uuid
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, model_validator

# Base properties
class MessageTemplateBase(BaseModel):
    name: str
    type: Literal["email", "sms"] = "email"
    subject: Optional[str] = None
    message: str

# Properties to receive on creation
class MessageTemplateCreate(MessageTemplateBase):

    @model_validator(mode="after")
    def email_needs_subject(self):
        if self.type == "email" and not self.subject:
            raise ValueError("subject is required for email templates")
        return self

# Properties to receive on update
class MessageTemplateUpdate(BaseModel):
    name: Optional[str] = None
    subject: Optional[str] = None
    message: Optional[str] = None

# Properties stored in DB
class MessageTemplateInDB(MessageTemplateBase):
    id: uuid.UUID
    team_id: uuid.UUID
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

# Properties to return to client
class MessageTemplate(MessageTemplateInDB):
    pass

class TemplatePreviewRequest(BaseModel):
    reservation_id: uuid.UUID

class TemplatePreview(BaseModel):
    subject: Optional[str] = None
    message: str
