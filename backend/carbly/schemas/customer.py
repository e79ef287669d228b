import uuid
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, EmailStr

# Base properties
class CustomerBase(BaseModel):
    email: EmailStr
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

# Properties to receive on creation
class CustomerCreate(CustomerBase):
    pass

# Properties to receive on update
class CustomerUpdate(BaseModel):
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

# Properties stored in DB
class CustomerInDB(CustomerBase):
    id: uuid.UUID
    organization_id: uuid.UUID
    identity_verified: bool
    loyalty_points: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

# Properties to return to client
class Customer(CustomerInDB):
    pass

class CustomerSummary(BaseModel):
    id: uuid.UUID
    email: str
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
