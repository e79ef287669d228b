import uuid
from datetime import datetime
from pydantic import BaseModel, ConfigDict

# Base properties
class OrganizationBase(BaseModel):
    name: str

# Properties to receive on creation
class OrganizationCreate(OrganizationBase):
    pass

# Properties stored in DB
class OrganizationInDB(OrganizationBase):
    id: uuid.UUID
    stripe_customer_id: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

# Properties to return to client
class Organization(OrganizationInDB):
    pass
