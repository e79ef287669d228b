"""
Plan tiers, platform fees and per-plan limits and features.

This module is pure: nothing here touches the database or a vendor API, so it
can be used from the API, the webhook handlers and the Celery tasks alike.
"""
import enum
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional

from carbly.schemas.pricing import PlatformFeeBreakdown

CENT = Decimal("0.01")

class PlanTier(str, enum.Enum):
    FREE = 'free'
    STARTER = 'starter'
    PRO = 'pro'
    BUSINESS = 'business'

# Upgrade path, cheapest first
PLAN_ORDER = [PlanTier.FREE, PlanTier.STARTER, PlanTier.PRO, PlanTier.BUSINESS]

PLAN_FEES: Dict[PlanTier, dict] = {
    PlanTier.FREE: {"percentage_fee": Decimal("4.9"), "min_fee": Decimal("2.00"), "max_cap": None},
    PlanTier.STARTER: {"percentage_fee": Decimal("2.0"), "min_fee": Decimal("1.50"), "max_cap": Decimal("25.00")},
    PlanTier.PRO: {"percentage_fee": Decimal("1.0"), "min_fee": Decimal("1.50"), "max_cap": Decimal("15.00")},
    PlanTier.BUSINESS: {"percentage_fee": Decimal("0.5"), "min_fee": Decimal("1.00"), "max_cap": Decimal("10.00")},
}

# None means unlimited
PLAN_LIMITS: Dict[PlanTier, Dict[str, Optional[int]]] = {
    PlanTier.FREE: {"vehicles": 3, "users": 1, "reservations_per_month": 10, "email_templates": 1},
    PlanTier.STARTER: {"vehicles": 10, "users": 3, "reservations_per_month": None, "email_templates": None},
    PlanTier.PRO: {"vehicles": 25, "users": 10, "reservations_per_month": None, "email_templates": None},
    PlanTier.BUSINESS: {"vehicles": None, "users": None, "reservations_per_month": None, "email_templates": None},
}

_NO_FEATURES = {
    "stripe_connect": True,
    "deposits": False,
    "caution_online": False,
    "insurance": False,
    "contracts": False,
    "signature": False,
    "checkin_checkout": False,
    "sms": False,
    "identity_verification": False,
    "loyalty_program": False,
    "multi_agency": False,
    "api": False,
    "advanced_analytics": False,
}

PLAN_FEATURES: Dict[PlanTier, Dict[str, bool]] = {
    PlanTier.FREE: dict(_NO_FEATURES),
    PlanTier.STARTER: {
        **_NO_FEATURES,
        "deposits": True,
        "contracts": True,
        "signature": True,
        "checkin_checkout": True,
    },
    PlanTier.PRO: {
        **_NO_FEATURES,
        "deposits": True,
        "caution_online": True,
        "contracts": True,
        "signature": True,
        "checkin_checkout": True,
        "sms": True,
        "identity_verification": True,
        "loyalty_program": True,
        "advanced_analytics": True,
    },
    PlanTier.BUSINESS: {
        **_NO_FEATURES,
        "deposits": True,
        "caution_online": True,
        "contracts": True,
        "signature": True,
        "checkin_checkout": True,
        "sms": True,
        "identity_verification": True,
        "loyalty_program": True,
        "multi_agency": True,
        "api": True,
        "advanced_analytics": True,
    },
}

PLAN_SUPPORT = {
    PlanTier.FREE: "community",
    PlanTier.STARTER: "email",
    PlanTier.PRO: "priority",
    PlanTier.BUSINESS: "dedicated",
}


def resolve_plan(plan) -> PlanTier:
    """Map a stored plan name to a tier. Unknown or empty names fall back to free."""
    if isinstance(plan, PlanTier):
        return plan
    try:
        return PlanTier((plan or "").lower())
    except ValueError:
        return PlanTier.FREE


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() avoids binary float noise, e.g. 0.1 -> Decimal('0.1')
    return Decimal(str(value))


def quantize(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount) -> int:
    """Euros to integer cents as Stripe expects them."""
    return int((to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return quantize(Decimal(cents) / 100)


def calculate_platform_fees(amount, plan) -> PlatformFeeBreakdown:
    """
    Computes Carbly's cut of a transaction for the given plan.

    The percentage fee is rounded to the cent, floored at the plan minimum,
    then capped at the plan maximum when the plan has one.
    """
    amount = quantize(to_decimal(amount))
    if amount < 0:
        raise ValueError("amount must not be negative")

    tier = resolve_plan(plan)
    fees = PLAN_FEES[tier]
    min_fee = fees["min_fee"]
    max_cap = fees["max_cap"]

    calculated_fee = quantize(amount * fees["percentage_fee"] / 100)
    total_fee = calculated_fee
    is_minimum_applied = False
    is_capped = False

    if calculated_fee < min_fee:
        total_fee = min_fee
        is_minimum_applied = True
    elif max_cap is not None and calculated_fee > max_cap:
        total_fee = max_cap
        is_capped = True

    return PlatformFeeBreakdown(
        plan=tier.value,
        amount=amount,
        percentage_fee=fees["percentage_fee"],
        min_fee=min_fee,
        max_cap=max_cap,
        calculated_fee=calculated_fee,
        total_fee=total_fee,
        net_amount=amount - total_fee,
        is_capped=is_capped,
        is_minimum_applied=is_minimum_applied,
    )


def get_plan_limits(plan) -> Dict[str, Optional[int]]:
    return PLAN_LIMITS[resolve_plan(plan)]


def get_plan_features(plan) -> Dict[str, bool]:
    return PLAN_FEATURES[resolve_plan(plan)]


def has_feature(plan, feature: str) -> bool:
    return get_plan_features(plan).get(feature, False)


def get_suggested_plan(plan) -> Optional[str]:
    """The next tier up, or None when already on the top tier."""
    index = PLAN_ORDER.index(resolve_plan(plan))
    if index + 1 < len(PLAN_ORDER):
        return PLAN_ORDER[index + 1].value
    return None


def get_cheapest_plan_with_feature(feature: str) -> Optional[str]:
    for tier in PLAN_ORDER:
        if PLAN_FEATURES[tier].get(feature):
            return tier.value
    return None
