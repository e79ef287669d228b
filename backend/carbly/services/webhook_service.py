"""
Stripe webhook processing.

Events are dispatched on their type. Every handler is idempotent: Stripe
retries deliveries, and the same checkout session must never produce two
Payment rows nor move a reservation twice.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from carbly.models.customer import Customer
from carbly.models.organization import Organization
from carbly.models.payment import Payment, PaymentStatus, PaymentType
from carbly.models.reservation import Reservation, ReservationStatus
from carbly.models.team import Team
from carbly.models.vehicle import Vehicle
from carbly.services import contract_service, notification_service, payment_service, pricing

logger = logging.getLogger(__name__)

SUBSCRIPTION_ACTIVE_STATUSES = ("active", "trialing")


def _parse_uuid(value) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


async def handle_stripe_event(db: AsyncSession, event: Dict[str, Any]) -> str:
    """
    Applies a verified Stripe event. Returns a short outcome string used for
    logging and the webhook response; unknown event types are ignored.
    """
    event_type = event.get("type")
    obj = event.get("data", {}).get("object", {})
    logger.info("Stripe event %s (%s)", event.get("id"), event_type)

    if event_type == "checkout.session.completed":
        if obj.get("mode") == "subscription":
            return await handle_subscription_checkout(db, obj)
        return await handle_checkout_completed(db, obj)
    if event_type in ("checkout.session.expired", "checkout.session.async_payment_failed"):
        return await handle_checkout_failed(db, obj)
    if event_type == "customer.subscription.updated":
        return await handle_subscription_updated(db, obj)
    if event_type == "customer.subscription.deleted":
        return await handle_subscription_deleted(db, obj)
    if event_type == "account.updated":
        return await handle_account_updated(db, obj)
    return "ignored"


async def handle_checkout_completed(db: AsyncSession, session: Dict[str, Any]) -> str:
    metadata = session.get("metadata") or {}
    reservation_id = _parse_uuid(metadata.get("reservation_id"))
    if not reservation_id:
        logger.warning("Checkout session %s has no reservation_id metadata", session.get("id"))
        return "ignored"

    reservation = await db.get(Reservation, reservation_id)
    if not reservation:
        logger.warning("Checkout session %s references unknown reservation %s", session.get("id"), reservation_id)
        return "ignored"

    payment_type = metadata.get("payment_type") or PaymentType.TOTAL.value
    if payment_type == PaymentType.BALANCE.value:
        return await _record_balance_payment(db, reservation, session)
    return await _record_initial_payment(db, reservation, session, payment_type)


def _session_amount(session: Dict[str, Any]) -> Decimal:
    return pricing.from_cents(session.get("amount_total") or 0)


def _session_fee(session: Dict[str, Any]) -> Decimal:
    fee = (session.get("metadata") or {}).get("fee")
    return pricing.quantize(pricing.to_decimal(fee)) if fee else Decimal("0.00")


async def _record_initial_payment(
    db: AsyncSession, reservation: Reservation, session: Dict[str, Any], payment_type: str
) -> str:
    session_id = session["id"]
    if await payment_service.get_payment_by_checkout_session(db, session_id):
        logger.info("Checkout session %s already recorded", session_id)
        return "duplicate"

    amount = _session_amount(session)
    db.add(Payment(
        reservation_id=reservation.id,
        amount=amount,
        fee=_session_fee(session),
        type=payment_type,
        status=PaymentStatus.SUCCEEDED.value,
        stripe_checkout_session_id=session_id,
        stripe_payment_intent_id=session.get("payment_intent"),
        paid_at=datetime.now(timezone.utc),
    ))
    if reservation.status in (ReservationStatus.DRAFT.value, ReservationStatus.PENDING_PAYMENT.value):
        reservation.status = ReservationStatus.PAID.value

    try:
        await db.commit()
    except IntegrityError:
        # Concurrent delivery of the same event won the insert
        await db.rollback()
        logger.info("Checkout session %s recorded concurrently", session_id)
        return "duplicate"
    await db.refresh(reservation)
    logger.info("Recorded %s payment of %s for reservation %s", payment_type, amount, reservation.id)

    # A deposit equal to the total also pays the reservation in full
    if payment_type == PaymentType.TOTAL.value or amount >= reservation.total_amount:
        contract_service.queue_contract_generation(reservation.id)
    await _notify_paid(db, reservation, amount)
    return "recorded"


async def _record_balance_payment(db: AsyncSession, reservation: Reservation, session: Dict[str, Any]) -> str:
    session_id = session["id"]
    amount = _session_amount(session)
    payment = await payment_service.get_payment_by_checkout_session(db, session_id)

    if payment and payment.status == PaymentStatus.SUCCEEDED.value:
        logger.info("Balance session %s already recorded", session_id)
        return "duplicate"

    if not payment:
        # The pending row may have moved on to a newer session the customer never paid
        pending = await payment_service.get_payments(
            db, reservation.id, status=PaymentStatus.PENDING.value, types=[PaymentType.BALANCE.value]
        )
        if pending:
            payment = pending[0]
            logger.info(
                "Balance session %s completes pending payment %s (was %s)",
                session_id, payment.id, payment.stripe_checkout_session_id,
            )
            payment.stripe_checkout_session_id = session_id

    if payment:
        payment.status = PaymentStatus.SUCCEEDED.value
        payment.amount = amount
        payment.stripe_payment_intent_id = session.get("payment_intent")
        payment.paid_at = datetime.now(timezone.utc)
    else:
        db.add(Payment(
            reservation_id=reservation.id,
            amount=amount,
            fee=_session_fee(session),
            type=PaymentType.BALANCE.value,
            status=PaymentStatus.SUCCEEDED.value,
            stripe_checkout_session_id=session_id,
            stripe_payment_intent_id=session.get("payment_intent"),
            paid_at=datetime.now(timezone.utc),
        ))

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("Balance session %s recorded concurrently", session_id)
        return "duplicate"
    await db.refresh(reservation)
    logger.info("Recorded balance payment of %s for reservation %s", amount, reservation.id)

    await _notify_paid(db, reservation, amount)
    return "recorded"


async def _notify_paid(db: AsyncSession, reservation: Reservation, amount: Decimal) -> None:
    if not reservation.customer_id:
        return
    vehicle = await db.get(Vehicle, reservation.vehicle_id)
    customer = await db.get(Customer, reservation.customer_id)
    notification_service.notify_payment_confirmed(reservation, vehicle, customer, amount)


async def handle_checkout_failed(db: AsyncSession, session: Dict[str, Any]) -> str:
    payment = await payment_service.get_payment_by_checkout_session(db, session.get("id"))
    if not payment or payment.status != PaymentStatus.PENDING.value:
        return "ignored"
    payment.status = PaymentStatus.FAILED.value
    await db.commit()
    logger.info("Payment %s marked failed (session %s)", payment.id, session.get("id"))
    return "failed"


# --- Platform subscriptions ---

async def _get_team_by_subscription(db: AsyncSession, subscription: Dict[str, Any]) -> Team | None:
    team_id = _parse_uuid((subscription.get("metadata") or {}).get("team_id"))
    if team_id:
        team = await db.get(Team, team_id)
        if team:
            return team
    result = await db.execute(select(Team).filter(Team.stripe_subscription_id == subscription.get("id")))
    return result.scalars().first()


async def handle_subscription_checkout(db: AsyncSession, session: Dict[str, Any]) -> str:
    metadata = session.get("metadata") or {}
    team_id = _parse_uuid(metadata.get("team_id"))
    team = await db.get(Team, team_id) if team_id else None
    if not team:
        logger.warning("Subscription checkout %s has no known team", session.get("id"))
        return "ignored"

    team.stripe_subscription_id = session.get("subscription")
    team.subscription_status = "active"
    team.plan = pricing.resolve_plan(metadata.get("plan")).value
    if session.get("customer"):
        organization = await db.get(Organization, team.organization_id)
        if organization and not organization.stripe_customer_id:
            organization.stripe_customer_id = session["customer"]
    await db.commit()
    logger.info("Team %s subscribed to %s", team.id, team.plan)
    return "subscribed"


async def handle_subscription_updated(db: AsyncSession, subscription: Dict[str, Any]) -> str:
    team = await _get_team_by_subscription(db, subscription)
    if not team:
        return "ignored"

    status = subscription.get("status")
    team.subscription_status = status
    plan = (subscription.get("metadata") or {}).get("plan")
    if status in SUBSCRIPTION_ACTIVE_STATUSES and plan:
        team.plan = pricing.resolve_plan(plan).value
    await db.commit()
    logger.info("Team %s subscription is now %s (plan %s)", team.id, status, team.plan)
    return "updated"


async def handle_subscription_deleted(db: AsyncSession, subscription: Dict[str, Any]) -> str:
    team = await _get_team_by_subscription(db, subscription)
    if not team:
        return "ignored"
    team.subscription_status = "canceled"
    team.plan = pricing.PlanTier.FREE.value
    await db.commit()
    logger.info("Team %s subscription canceled, back on the free plan", team.id)
    return "canceled"


async def handle_account_updated(db: AsyncSession, account: Dict[str, Any]) -> str:
    result = await db.execute(select(Team).filter(Team.stripe_connect_account_id == account.get("id")))
    team = result.scalars().first()
    if not team:
        return "ignored"
    team.stripe_connect_onboarded = bool(account.get("charges_enabled") and account.get("details_submitted"))
    await db.commit()
    return "updated"
