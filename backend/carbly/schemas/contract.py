import uuid
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

class Contract(BaseModel):
    id: uuid.UUID
    reservation_id: uuid.UUID
    status: str
    pdf_url: str
    signature_request_id: Optional[str] = None
    signed_at: Optional[datetime] = None
    signed_pdf_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

class ContractDownload(BaseModel):
    url: str
    expires_in: int
