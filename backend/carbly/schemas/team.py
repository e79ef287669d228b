import uuid
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, EmailStr

# Base properties
class TeamBase(BaseModel):
    name: str
    address: Optional[str] = None
    logo_url: Optional[str] = None

# Properties to receive on creation
class TeamCreate(TeamBase):
    plan: str = "free"

# Properties to receive on update
class TeamUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    logo_url: Optional[str] = None
    max_vehicles: Optional[int] = None

# Properties stored in DB
class TeamInDB(TeamBase):
    id: uuid.UUID
    organization_id: uuid.UUID
    plan: str
    max_vehicles: Optional[int] = None
    subscription_status: str
    stripe_connect_account_id: Optional[str] = None
    stripe_connect_onboarded: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

# Properties to return to client
class Team(TeamInDB):
    pass

class ConnectAccountCreate(BaseModel):
    business_name: Optional[str] = None

class ConnectStatus(BaseModel):
    account_id: Optional[str] = None
    onboarded: bool

class SubscriptionCheckoutCreate(BaseModel):
    plan: Literal["starter", "pro", "business"]
    interval: Literal["monthly", "yearly"] = "monthly"

class RedirectUrl(BaseModel):
    url: str

class TeamMemberCreate(BaseModel):
    email: EmailStr
    role: Literal["admin", "member"] = "member"

class TeamMember(BaseModel):
    id: uuid.UUID
    team_id: uuid.UUID
    user_id: uuid.UUID
    role: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
