from decimal import Decimal
from typing import Dict, Optional

from pydantic import BaseModel


class PlatformFeeBreakdown(BaseModel):
    plan: str
    amount: Decimal
    percentage_fee: Decimal
    min_fee: Decimal
    max_cap: Optional[Decimal] = None
    calculated_fee: Decimal
    total_fee: Decimal
    net_amount: Decimal
    is_capped: bool
    is_minimum_applied: bool


class UsageItem(BaseModel):
    current: int
    limit: Optional[int] = None # None means unlimited
    percentage: int


class PlanUsage(BaseModel):
    plan: str
    vehicles: UsageItem
    users: UsageItem
    reservations_this_month: UsageItem


class PlanFeatures(BaseModel):
    plan: str
    features: Dict[str, bool]
    limits: Dict[str, Optional[int]]
    support: str
    fees: PlatformFeeBreakdown # example breakdown on a 100 EUR rental
