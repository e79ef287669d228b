"""
Customer-facing payments: magic-link checkout, balance checkout and the
balance bookkeeping shared with the dashboard.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from carbly.core.config import settings
from carbly.core.exceptions import InvalidStateError, NotFoundError
from carbly.models.payment import Payment, PaymentStatus, PaymentType
from carbly.models.reservation import Reservation, ReservationStatus
from carbly.models.team import Team
from carbly.models.vehicle import Vehicle
from carbly.models.customer import Customer
from carbly.schemas.payment import BalanceInfo, CheckoutSession
from carbly.services import pricing, stripe_service

logger = logging.getLogger(__name__)

INITIAL_PAYMENT_TYPES = (PaymentType.DEPOSIT.value, PaymentType.TOTAL.value)


@dataclass
class BalanceState:
    paid_amount: Decimal
    balance_amount: Decimal
    has_initial_payment: bool
    balance_paid: bool


async def get_payments(
    db: AsyncSession,
    reservation_id: uuid.UUID,
    status: Optional[str] = None,
    types: Optional[Iterable[str]] = None,
) -> List[Payment]:
    query = select(Payment).filter(Payment.reservation_id == reservation_id)
    if status:
        query = query.filter(Payment.status == status)
    if types:
        query = query.filter(Payment.type.in_(list(types)))
    result = await db.execute(query.order_by(Payment.created_at))
    return result.scalars().all()


async def get_payment_by_checkout_session(db: AsyncSession, session_id: str) -> Payment | None:
    result = await db.execute(select(Payment).filter(Payment.stripe_checkout_session_id == session_id))
    return result.scalars().first()


async def get_balance_state(db: AsyncSession, reservation: Reservation) -> BalanceState:
    """
    What has been paid so far and what is left. Only succeeded deposit/total
    payments count as paid; a succeeded balance payment settles the rest.
    """
    succeeded = await get_payments(db, reservation.id, status=PaymentStatus.SUCCEEDED.value)
    initial = [p for p in succeeded if p.type in INITIAL_PAYMENT_TYPES]
    paid_amount = sum((pricing.to_decimal(p.amount) for p in initial), Decimal("0"))
    balance_amount = max(pricing.to_decimal(reservation.total_amount) - paid_amount, Decimal("0"))
    return BalanceState(
        paid_amount=pricing.quantize(paid_amount),
        balance_amount=pricing.quantize(balance_amount),
        has_initial_payment=bool(initial),
        balance_paid=any(p.type == PaymentType.BALANCE.value for p in succeeded),
    )


def ensure_balance_can_be_requested(state: BalanceState) -> None:
    if not state.has_initial_payment:
        raise InvalidStateError("L'acompte doit être payé avant de demander le solde")
    if state.balance_paid:
        raise InvalidStateError("Le solde a déjà été payé")
    if state.balance_amount <= 0:
        raise InvalidStateError("Aucun solde restant à payer")


def ensure_team_can_receive_payments(team: Team) -> None:
    if not team.stripe_connect_account_id or not team.stripe_connect_onboarded:
        raise InvalidStateError("L'agence n'a pas encore activé les paiements en ligne")


async def get_reservation_by_token(db: AsyncSession, token: str) -> Reservation:
    result = await db.execute(select(Reservation).filter(Reservation.magic_link_token == token))
    reservation = result.scalars().first()
    if not reservation:
        raise NotFoundError("Réservation non trouvée")
    return reservation


async def get_reservation_by_balance_token(db: AsyncSession, balance_token: str) -> Reservation:
    result = await db.execute(select(Reservation).filter(Reservation.balance_payment_token == balance_token))
    reservation = result.scalars().first()
    if not reservation:
        raise NotFoundError("Réservation non trouvée")
    return reservation


def amount_due_now(reservation: Reservation) -> Decimal:
    """The deposit when one is set, otherwise the full amount."""
    if reservation.deposit_amount:
        return pricing.quantize(pricing.to_decimal(reservation.deposit_amount))
    return pricing.quantize(pricing.to_decimal(reservation.total_amount))


async def create_reservation_checkout(db: AsyncSession, token: str) -> CheckoutSession:
    """
    Opens a Stripe Checkout session for the first payment of a reservation
    reached through its magic link. The Payment row is only written once the
    webhook confirms the session.
    """
    reservation = await get_reservation_by_token(db, token)
    if reservation.status not in (ReservationStatus.DRAFT.value, ReservationStatus.PENDING_PAYMENT.value):
        raise InvalidStateError("Cette réservation a déjà été payée ou n'est plus payable")
    if not reservation.customer_id:
        raise InvalidStateError("Veuillez renseigner vos informations avant de payer")

    team = await db.get(Team, reservation.team_id)
    ensure_team_can_receive_payments(team)
    vehicle = await db.get(Vehicle, reservation.vehicle_id)
    customer = await db.get(Customer, reservation.customer_id)

    amount = amount_due_now(reservation)
    payment_type = PaymentType.DEPOSIT.value if reservation.deposit_amount else PaymentType.TOTAL.value
    fees = pricing.calculate_platform_fees(amount, team.plan)

    session = stripe_service.create_checkout_session(
        connect_account_id=team.stripe_connect_account_id,
        amount_cents=pricing.to_cents(amount),
        application_fee_cents=pricing.to_cents(fees.total_fee),
        product_name=f"Location {vehicle.brand} {vehicle.model}" + (" - Acompte" if payment_type == "deposit" else ""),
        customer_email=customer.email,
        success_url=f"{settings.PUBLIC_APP_URL}/reservation/{token}/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{settings.PUBLIC_APP_URL}/reservation/{token}",
        metadata={
            "reservation_id": str(reservation.id),
            "team_id": str(team.id),
            "payment_type": payment_type,
            "fee": str(fees.total_fee),
        },
    )
    logger.info("Checkout session %s opened for reservation %s (%s %s)", session.id, reservation.id, payment_type, amount)
    return CheckoutSession(session_id=session.id, url=session.url, amount=amount, payment_type=payment_type)


async def get_balance_info(db: AsyncSession, balance_token: str) -> BalanceInfo:
    reservation = await get_reservation_by_balance_token(db, balance_token)
    state = await get_balance_state(db, reservation)
    if not state.has_initial_payment:
        raise InvalidStateError("L'acompte doit être payé avant de régler le solde")

    team = await db.get(Team, reservation.team_id)
    fees = None
    if not state.balance_paid and state.balance_amount > 0:
        fees = pricing.calculate_platform_fees(state.balance_amount, team.plan)
    return BalanceInfo(
        reservation_id=reservation.id,
        total_amount=reservation.total_amount,
        paid_amount=state.paid_amount,
        balance_amount=state.balance_amount,
        already_paid=state.balance_paid,
        fees=fees,
    )


async def create_balance_checkout(db: AsyncSession, balance_token: str) -> CheckoutSession:
    """
    Opens a Checkout session for the remaining balance and records it as a
    pending balance Payment, which the webhook later marks as succeeded.
    """
    reservation = await get_reservation_by_balance_token(db, balance_token)
    team = await db.get(Team, reservation.team_id)
    ensure_team_can_receive_payments(team)

    state = await get_balance_state(db, reservation)
    ensure_balance_can_be_requested(state)

    vehicle = await db.get(Vehicle, reservation.vehicle_id)
    customer = await db.get(Customer, reservation.customer_id) if reservation.customer_id else None
    fees = pricing.calculate_platform_fees(state.balance_amount, team.plan)

    session = stripe_service.create_checkout_session(
        connect_account_id=team.stripe_connect_account_id,
        amount_cents=pricing.to_cents(state.balance_amount),
        application_fee_cents=pricing.to_cents(fees.total_fee),
        product_name=f"Solde location {vehicle.brand} {vehicle.model}",
        customer_email=customer.email if customer else None,
        success_url=f"{settings.PUBLIC_APP_URL}/reservation/{balance_token}/balance/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{settings.PUBLIC_APP_URL}/reservation/{balance_token}/balance",
        metadata={
            "reservation_id": str(reservation.id),
            "team_id": str(team.id),
            "payment_type": PaymentType.BALANCE.value,
            "fee": str(fees.total_fee),
        },
    )

    # Reuse an abandoned pending balance row rather than piling up new ones
    pending = await get_payments(
        db, reservation.id, status=PaymentStatus.PENDING.value, types=[PaymentType.BALANCE.value]
    )
    if pending:
        payment = pending[0]
        payment.amount = state.balance_amount
        payment.fee = fees.total_fee
        payment.stripe_checkout_session_id = session.id
    else:
        db.add(Payment(
            reservation_id=reservation.id,
            amount=state.balance_amount,
            fee=fees.total_fee,
            type=PaymentType.BALANCE.value,
            status=PaymentStatus.PENDING.value,
            stripe_checkout_session_id=session.id,
        ))
    await db.commit()

    return CheckoutSession(
        session_id=session.id, url=session.url, amount=state.balance_amount, payment_type=PaymentType.BALANCE.value
    )
