import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict

from carbly.schemas.pricing import PlatformFeeBreakdown

class Payment(BaseModel):
    id: uuid.UUID
    reservation_id: uuid.UUID
    amount: Decimal
    fee: Decimal
    type: str
    status: str
    stripe_payment_intent_id: Optional[str] = None
    refunded_amount: Optional[Decimal] = None
    paid_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class CheckoutSession(BaseModel):
    session_id: str
    url: str
    amount: Decimal
    payment_type: str

class BalanceInfo(BaseModel):
    reservation_id: uuid.UUID
    total_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    already_paid: bool
    fees: Optional[PlatformFeeBreakdown] = None
