from decimal import Decimal, ROUND_HALF_UP
from typing import List, Sequence

from pydantic import BaseModel

from carbly.models.payment import Payment
from carbly.services.pricing import to_decimal


class RefundShare(BaseModel):
    payment_id: str
    payment_intent_id: str
    amount_cents: int


def distribute_refund(refund_amount, payments: Sequence[Payment]) -> List[RefundShare]:
    """
    Splits a requested refund across succeeded payments in proportion to their amounts.

    Each share also gives back the same proportion of the platform fee taken on
    that payment. Shares are rounded to the cent independently, so their sum may
    drift from the requested amount by a cent or two. Payments without a Stripe
    payment intent cannot be refunded and get no share, but still count towards
    the total paid.
    """
    refund_amount = to_decimal(refund_amount)
    if refund_amount <= 0 or not payments:
        return []

    total_paid = sum((to_decimal(p.amount) for p in payments), Decimal("0"))
    if total_paid <= 0:
        return []

    shares = []
    for payment in payments:
        if not payment.stripe_payment_intent_id:
            continue
        proportion = to_decimal(payment.amount) / total_paid
        fee = to_decimal(payment.fee or 0)
        share = (refund_amount * proportion + fee * proportion) * 100
        shares.append(RefundShare(
            payment_id=str(payment.id),
            payment_intent_id=payment.stripe_payment_intent_id,
            amount_cents=int(share.quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
        ))
    return shares
