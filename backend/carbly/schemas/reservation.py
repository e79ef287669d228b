import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from carbly.models.reservation import ReservationStatus
from carbly.schemas.contract import Contract
from carbly.schemas.customer import CustomerSummary
from carbly.schemas.payment import Payment
from carbly.schemas.vehicle import VehicleSummary

class DateRange(BaseModel):
    start_date: datetime
    end_date: datetime

    # Dates without an offset are taken as UTC
    @field_validator("start_date", "end_date")
    @classmethod
    def to_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self

# Properties to receive on creation
class ReservationCreate(DateRange):
    vehicle_id: uuid.UUID
    customer_id: Optional[uuid.UUID] = None
    deposit_amount: Optional[Decimal] = Field(default=None, gt=0)
    caution_amount: Optional[Decimal] = Field(default=None, ge=0)
    collect_caution_online: bool = False
    insurance_amount: Optional[Decimal] = Field(default=None, ge=0)
    include_insurance: bool = False
    internal_notes: Optional[str] = None

class AvailabilityCheck(DateRange):
    vehicle_id: uuid.UUID
    exclude_reservation_id: Optional[uuid.UUID] = None

class AvailabilityResult(BaseModel):
    is_available: bool

class ReservationStatusUpdate(BaseModel):
    status: ReservationStatus

    model_config = ConfigDict(use_enum_values=True)

class ReservationCancel(BaseModel):
    reason: Optional[str] = None
    refund_amount: Decimal = Field(default=Decimal("0"), ge=0)

class CheckinData(BaseModel):
    mileage: Optional[int] = Field(default=None, ge=0)
    fuel_level: Optional[str] = None
    notes: Optional[str] = None
    photos: List[str] = []

# Properties stored in DB
class ReservationInDB(BaseModel):
    id: uuid.UUID
    team_id: uuid.UUID
    vehicle_id: uuid.UUID
    customer_id: Optional[uuid.UUID] = None
    start_date: datetime
    end_date: datetime
    status: str
    total_amount: Decimal
    deposit_amount: Optional[Decimal] = None
    caution_amount: Optional[Decimal] = None
    collect_caution_online: bool
    insurance_amount: Optional[Decimal] = None
    include_insurance: bool
    magic_link_token: str
    balance_payment_token: Optional[str] = None
    checkin_at: Optional[datetime] = None
    checkin_mileage: Optional[int] = None
    checkin_fuel_level: Optional[str] = None
    checkout_at: Optional[datetime] = None
    checkout_mileage: Optional[int] = None
    checkout_fuel_level: Optional[str] = None
    internal_notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

# Properties to return to client
class Reservation(ReservationInDB):
    pass

class ReservationDetail(Reservation):
    vehicle: VehicleSummary
    customer: Optional[CustomerSummary] = None
    payments: List[Payment] = []
    contract: Optional[Contract] = None

class RefundResult(BaseModel):
    payment_id: str
    refund_id: Optional[str] = None
    amount_cents: int
    status: Optional[str] = None
    error: Optional[str] = None

class CancellationResult(BaseModel):
    success: bool
    reservation: Reservation
    refunds: List[RefundResult]
    message: str

class PaymentLinkResult(BaseModel):
    url: str
    email_queued: bool

# Public, token-scoped views
class PublicTeam(BaseModel):
    name: str
    address: Optional[str] = None
    logo_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

class PublicReservation(BaseModel):
    id: uuid.UUID
    status: str
    start_date: datetime
    end_date: datetime
    total_amount: Decimal
    deposit_amount: Optional[Decimal] = None
    amount_due_now: Decimal
    vehicle: VehicleSummary
    customer: Optional[CustomerSummary] = None
    team: PublicTeam
    contract_signed: bool = False
