import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from carbly.models.vehicle import VehicleStatus

# Base properties
class VehicleBase(BaseModel):
    brand: str = Field(min_length=1)
    model: str = Field(min_length=1)
    year: Optional[int] = Field(default=None, ge=1950, le=2100)
    plate: str = Field(min_length=1)
    vin: Optional[str] = None
    daily_rate: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    deposit_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    seats: Optional[int] = Field(default=None, ge=1)
    mileage: Optional[int] = Field(default=None, ge=0)
    images: List[str] = []

# Properties to receive on creation
class VehicleCreate(VehicleBase):
    status: VehicleStatus = VehicleStatus.AVAILABLE

    model_config = ConfigDict(use_enum_values=True, validate_default=True)

# Properties to receive on update
class VehicleUpdate(BaseModel):
    brand: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    plate: Optional[str] = None
    vin: Optional[str] = None
    status: Optional[VehicleStatus] = None
    daily_rate: Optional[Decimal] = Field(default=None, gt=0)
    deposit_amount: Optional[Decimal] = Field(default=None, ge=0)
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    seats: Optional[int] = None
    mileage: Optional[int] = None
    images: Optional[List[str]] = None

    model_config = ConfigDict(use_enum_values=True)

# Properties stored in DB
class VehicleInDB(VehicleBase):
    id: uuid.UUID
    team_id: uuid.UUID
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

# Properties to return to client
class Vehicle(VehicleInDB):
    pass

class VehicleSummary(BaseModel):
    id: uuid.UUID
    brand: str
    model: str
    plate: str
    images: List[str] = []

    model_config = ConfigDict(from_attributes=True)
