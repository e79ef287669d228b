"""
Reservation lifecycle.

    draft -> pending_payment -> paid -> confirmed -> in_progress -> completed
                       \\____________________________________________/
                                         -> cancelled (terminal)

Each operation checks its own precondition. Changes to a reservation and to
its vehicle are committed together.
"""
import logging
import math
import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from carbly.core.exceptions import ConflictError, ExternalServiceError, InvalidStateError, NotFoundError
from carbly.models.contract import Contract, ContractStatus
from carbly.models.customer import Customer
from carbly.models.payment import PaymentStatus
from carbly.models.reservation import ACTIVE_RESERVATION_STATUSES, Reservation, ReservationStatus
from carbly.models.team import Team
from carbly.models.vehicle import Vehicle, VehicleStatus
from carbly.schemas.customer import CustomerCreate, CustomerSummary
from carbly.schemas.payment import BalanceInfo
from carbly.schemas.reservation import (
    CancellationResult, CheckinData, PaymentLinkResult, PublicReservation, PublicTeam, RefundResult,
    Reservation as ReservationSchema, ReservationCreate,
)
from carbly.schemas.vehicle import VehicleSummary
from carbly.services import (
    customer_service, notification_service, payment_service, plan_limit_service, pricing, refund_service,
    stripe_service, vehicle_service,
)

logger = logging.getLogger(__name__)

STATUS_ORDER = [
    ReservationStatus.DRAFT.value,
    ReservationStatus.PENDING_PAYMENT.value,
    ReservationStatus.PAID.value,
    ReservationStatus.CONFIRMED.value,
    ReservationStatus.IN_PROGRESS.value,
    ReservationStatus.COMPLETED.value,
]

UNPAID_STATUSES = (ReservationStatus.DRAFT.value, ReservationStatus.PENDING_PAYMENT.value)


def generate_token() -> str:
    return secrets.token_hex(32)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes (SQLite, clients without offsets) are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def rental_days(start_date: datetime, end_date: datetime) -> int:
    seconds = (as_utc(end_date) - as_utc(start_date)).total_seconds()
    return max(1, math.ceil(seconds / 86400))


def append_note(existing: Optional[str], text: str, now: Optional[datetime] = None) -> str:
    line = f"[{(now or utcnow()).isoformat()}] {text}"
    return f"{existing}\n\n{line}" if existing else line


async def check_vehicle_availability(
    db: AsyncSession,
    vehicle_id: uuid.UUID,
    start_date: datetime,
    end_date: datetime,
    exclude_reservation_id: Optional[uuid.UUID] = None,
) -> bool:
    """
    True when no paid, confirmed or in-progress reservation of the vehicle
    overlaps [start_date, end_date]. Bounds are inclusive.
    """
    query = select(Reservation.id).filter(
        Reservation.vehicle_id == vehicle_id,
        Reservation.status.in_(ACTIVE_RESERVATION_STATUSES),
        Reservation.start_date <= as_utc(end_date),
        Reservation.end_date >= as_utc(start_date),
    )
    if exclude_reservation_id:
        query = query.filter(Reservation.id != exclude_reservation_id)
    result = await db.execute(query.limit(1))
    return result.first() is None


async def get_reservations(
    db: AsyncSession,
    team_id: uuid.UUID,
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> List[Reservation]:
    query = select(Reservation).filter(Reservation.team_id == team_id)
    if status:
        query = query.filter(Reservation.status == status)
    if start_date:
        query = query.filter(Reservation.start_date >= as_utc(start_date))
    if end_date:
        query = query.filter(Reservation.end_date <= as_utc(end_date))
    result = await db.execute(query.order_by(Reservation.start_date.desc()))
    return result.scalars().all()


async def get_reservation(db: AsyncSession, reservation_id: uuid.UUID, team_id: uuid.UUID) -> Reservation:
    result = await db.execute(
        select(Reservation).filter(Reservation.id == reservation_id, Reservation.team_id == team_id)
    )
    reservation = result.scalars().first()
    if not reservation:
        raise NotFoundError("Réservation non trouvée")
    return reservation


async def get_reservation_detail(db: AsyncSession, reservation_id: uuid.UUID, team_id: uuid.UUID) -> Reservation:
    """The reservation with its vehicle, customer, payments and contract loaded."""
    result = await db.execute(
        select(Reservation)
        .options(
            selectinload(Reservation.vehicle),
            selectinload(Reservation.customer),
            selectinload(Reservation.payments),
            selectinload(Reservation.contract),
        )
        .filter(Reservation.id == reservation_id, Reservation.team_id == team_id)
        .execution_options(populate_existing=True)
    )
    reservation = result.scalars().first()
    if not reservation:
        raise NotFoundError("Réservation non trouvée")
    return reservation


async def create_reservation(db: AsyncSession, reservation_in: ReservationCreate, team: Team) -> Reservation:
    """
    Books a vehicle. The reservation waits for payment when a customer is
    attached (and the customer is emailed the payment link), otherwise it
    stays a draft until the customer fills in their details.
    """
    await plan_limit_service.check_reservation_limit(db, team)
    vehicle = await vehicle_service.get_vehicle_by_id(db, reservation_in.vehicle_id, team.id)
    if vehicle.status in (VehicleStatus.MAINTENANCE.value, VehicleStatus.OUT_OF_SERVICE.value):
        raise InvalidStateError("Ce véhicule n'est pas disponible à la location")

    customer = None
    if reservation_in.customer_id:
        customer = await customer_service.get_customer_by_id(db, reservation_in.customer_id, team.organization_id)

    start_date = as_utc(reservation_in.start_date)
    end_date = as_utc(reservation_in.end_date)
    if not await check_vehicle_availability(db, vehicle.id, start_date, end_date):
        raise ConflictError("Le véhicule n'est pas disponible pour ces dates")

    total_amount = pricing.quantize(pricing.to_decimal(vehicle.daily_rate) * rental_days(start_date, end_date))
    if reservation_in.include_insurance and reservation_in.insurance_amount:
        plan_limit_service.check_feature_access(team, "insurance")
        total_amount += pricing.quantize(reservation_in.insurance_amount)
    if reservation_in.deposit_amount:
        plan_limit_service.check_feature_access(team, "deposits")
        if reservation_in.deposit_amount > total_amount:
            raise InvalidStateError("L'acompte ne peut pas dépasser le montant total")
    if reservation_in.collect_caution_online:
        plan_limit_service.check_feature_access(team, "caution_online")

    reservation = Reservation(
        team_id=team.id,
        vehicle_id=vehicle.id,
        customer_id=customer.id if customer else None,
        start_date=start_date,
        end_date=end_date,
        status=ReservationStatus.PENDING_PAYMENT.value if customer else ReservationStatus.DRAFT.value,
        total_amount=total_amount,
        deposit_amount=reservation_in.deposit_amount,
        caution_amount=reservation_in.caution_amount,
        collect_caution_online=reservation_in.collect_caution_online,
        insurance_amount=reservation_in.insurance_amount,
        include_insurance=reservation_in.include_insurance,
        magic_link_token=generate_token(),
        internal_notes=reservation_in.internal_notes,
    )
    db.add(reservation)
    await db.commit()
    await db.refresh(reservation)
    logger.info("Reservation %s created for vehicle %s (%s)", reservation.id, vehicle.plate, reservation.status)

    if customer:
        notification_service.notify_payment_link(reservation, vehicle, customer)
    return reservation


def _apply_vehicle_side_effect(vehicle: Vehicle, new_status: str) -> None:
    if new_status == ReservationStatus.IN_PROGRESS.value:
        vehicle.status = VehicleStatus.RENTED.value
    elif new_status in (ReservationStatus.COMPLETED.value, ReservationStatus.CANCELLED.value):
        if vehicle.status == VehicleStatus.RENTED.value:
            vehicle.status = VehicleStatus.AVAILABLE.value


async def update_reservation_status(
    db: AsyncSession, reservation_id: uuid.UUID, new_status: str, team_id: uuid.UUID
) -> Reservation:
    """
    Manual status change from the dashboard. Only forward moves (or a
    cancellation) are accepted; the vehicle status follows in the same commit.
    """
    reservation = await get_reservation(db, reservation_id, team_id)
    current = reservation.status

    if current == ReservationStatus.CANCELLED.value:
        raise InvalidStateError("Cette réservation est annulée")
    if current == ReservationStatus.COMPLETED.value:
        raise InvalidStateError("Cette réservation est terminée")
    if new_status != ReservationStatus.CANCELLED.value and STATUS_ORDER.index(new_status) <= STATUS_ORDER.index(current):
        raise InvalidStateError(f"Transition impossible de {current} vers {new_status}")

    vehicle = await db.get(Vehicle, reservation.vehicle_id)
    now = utcnow()
    reservation.status = new_status
    if new_status == ReservationStatus.IN_PROGRESS.value and not reservation.checkin_at:
        reservation.checkin_at = now
    elif new_status == ReservationStatus.COMPLETED.value and not reservation.checkout_at:
        reservation.checkout_at = now
    elif new_status == ReservationStatus.CANCELLED.value:
        reservation.cancelled_at = now
        reservation.internal_notes = append_note(reservation.internal_notes, "Annulée manuellement", now)
    _apply_vehicle_side_effect(vehicle, new_status)

    await db.commit()
    await db.refresh(reservation)
    await db.refresh(vehicle)
    return reservation


async def cancel_reservation(
    db: AsyncSession,
    reservation_id: uuid.UUID,
    team: Team,
    reason: Optional[str] = None,
    refund_amount: Decimal = Decimal("0"),
) -> CancellationResult:
    """
    Cancels a reservation that has not started yet and refunds the customer.

    The requested refund is split across the succeeded payments in proportion
    to their amounts, one Stripe refund per payment on the agency's Connect
    account. A failed refund is reported but does not stop the others nor
    the cancellation itself.
    """
    reservation = await get_reservation(db, reservation_id, team.id)
    if reservation.status == ReservationStatus.CANCELLED.value:
        raise InvalidStateError("Cette réservation est déjà annulée")
    now = utcnow()
    if reservation.checkin_at and as_utc(reservation.checkin_at) < now:
        raise InvalidStateError("Impossible d'annuler une réservation déjà commencée")

    refund_amount = pricing.quantize(pricing.to_decimal(refund_amount or 0))
    succeeded = await payment_service.get_payments(db, reservation.id, status=PaymentStatus.SUCCEEDED.value)
    total_paid = sum((pricing.to_decimal(p.amount) for p in succeeded), Decimal("0"))
    if refund_amount > total_paid:
        raise InvalidStateError("Le remboursement dépasse le montant payé")

    payments_by_id = {str(p.id): p for p in succeeded}
    refunds = []
    for share in refund_service.distribute_refund(refund_amount, succeeded):
        try:
            refund = stripe_service.create_refund(
                payment_intent_id=share.payment_intent_id,
                amount_cents=share.amount_cents,
                metadata={"reservation_id": str(reservation.id), "cancel_reason": reason or "cancelled_by_agency"},
                connect_account_id=team.stripe_connect_account_id,
            )
        except ExternalServiceError as e:
            refunds.append(RefundResult(payment_id=share.payment_id, amount_cents=share.amount_cents, error=e.message))
            continue

        payment = payments_by_id[share.payment_id]
        refunded = pricing.to_decimal(payment.refunded_amount or 0) + pricing.from_cents(share.amount_cents)
        payment.refunded_amount = refunded
        if refunded >= pricing.to_decimal(payment.amount):
            payment.status = PaymentStatus.REFUNDED.value
        refunds.append(RefundResult(
            payment_id=share.payment_id, refund_id=refund.id, amount_cents=share.amount_cents, status=refund.status
        ))
        logger.info("Refund %s created for payment %s", refund.id, share.payment_id)

    reservation.status = ReservationStatus.CANCELLED.value
    reservation.cancelled_at = now
    reservation.internal_notes = append_note(
        reservation.internal_notes,
        f"Annulée - Raison: {reason or 'Non spécifiée'} - Remboursement: {refund_amount}€",
        now,
    )
    await db.commit()
    await db.refresh(reservation)
    logger.info("Reservation %s cancelled (refund requested: %s)", reservation.id, refund_amount)

    if reservation.customer_id:
        vehicle = await db.get(Vehicle, reservation.vehicle_id)
        customer = await db.get(Customer, reservation.customer_id)
        notification_service.notify_cancellation(reservation, vehicle, customer, refund_amount, reason)

    return CancellationResult(
        success=True,
        reservation=ReservationSchema.model_validate(reservation),
        refunds=refunds,
        message="Réservation annulée avec succès",
    )


async def resend_payment_link(db: AsyncSession, reservation_id: uuid.UUID, team_id: uuid.UUID) -> PaymentLinkResult:
    reservation = await get_reservation(db, reservation_id, team_id)
    if reservation.status != ReservationStatus.PENDING_PAYMENT.value:
        raise InvalidStateError("Le lien de paiement ne peut être renvoyé que pour une réservation en attente de paiement")
    if not reservation.customer_id:
        raise InvalidStateError("Aucun client associé à cette réservation")

    vehicle = await db.get(Vehicle, reservation.vehicle_id)
    customer = await db.get(Customer, reservation.customer_id)
    queued = notification_service.notify_payment_link(reservation, vehicle, customer)
    return PaymentLinkResult(url=notification_service.payment_link(reservation), email_queued=queued)


async def checkin(db: AsyncSession, reservation_id: uuid.UUID, team: Team, data: CheckinData) -> Reservation:
    """Vehicle handed over: the rental starts and the vehicle is marked rented."""
    plan_limit_service.check_feature_access(team, "checkin_checkout")
    reservation = await get_reservation(db, reservation_id, team.id)
    if reservation.status not in (ReservationStatus.PAID.value, ReservationStatus.CONFIRMED.value):
        raise InvalidStateError("La réservation doit être payée ou confirmée pour effectuer le check-in")

    vehicle = await db.get(Vehicle, reservation.vehicle_id)
    reservation.checkin_at = utcnow()
    reservation.checkin_mileage = data.mileage
    reservation.checkin_fuel_level = data.fuel_level
    reservation.checkin_notes = data.notes
    reservation.checkin_photos = data.photos
    reservation.status = ReservationStatus.IN_PROGRESS.value
    _apply_vehicle_side_effect(vehicle, reservation.status)
    if data.mileage is not None:
        vehicle.mileage = data.mileage

    await db.commit()
    await db.refresh(reservation)
    await db.refresh(vehicle)
    return reservation


async def checkout(db: AsyncSession, reservation_id: uuid.UUID, team: Team, data: CheckinData) -> Reservation:
    """Vehicle returned: the rental is completed and the vehicle is available again."""
    plan_limit_service.check_feature_access(team, "checkin_checkout")
    reservation = await get_reservation(db, reservation_id, team.id)
    if reservation.status != ReservationStatus.IN_PROGRESS.value:
        raise InvalidStateError("Le check-in doit être effectué avant le check-out")
    if data.mileage is not None and reservation.checkin_mileage is not None and data.mileage < reservation.checkin_mileage:
        raise InvalidStateError("Le kilométrage de retour est inférieur au kilométrage de départ")

    vehicle = await db.get(Vehicle, reservation.vehicle_id)
    reservation.checkout_at = utcnow()
    reservation.checkout_mileage = data.mileage
    reservation.checkout_fuel_level = data.fuel_level
    reservation.checkout_notes = data.notes
    reservation.checkout_photos = data.photos
    reservation.status = ReservationStatus.COMPLETED.value
    _apply_vehicle_side_effect(vehicle, reservation.status)
    if data.mileage is not None:
        vehicle.mileage = data.mileage

    await db.commit()
    await db.refresh(reservation)
    await db.refresh(vehicle)
    return reservation


async def request_balance_payment(db: AsyncSession, reservation_id: uuid.UUID, team: Team) -> BalanceInfo:
    """
    Sends the customer a link to pay what is left after the deposit.
    Requires a succeeded deposit or total payment and no succeeded balance payment.
    """
    reservation = await get_reservation(db, reservation_id, team.id)
    if reservation.status == ReservationStatus.CANCELLED.value:
        raise InvalidStateError("Cette réservation est annulée")

    state = await payment_service.get_balance_state(db, reservation)
    payment_service.ensure_balance_can_be_requested(state)
    if not reservation.customer_id:
        raise InvalidStateError("Aucun client associé à cette réservation")

    if not reservation.balance_payment_token:
        reservation.balance_payment_token = generate_token()
        await db.commit()
        await db.refresh(reservation)

    vehicle = await db.get(Vehicle, reservation.vehicle_id)
    customer = await db.get(Customer, reservation.customer_id)
    notification_service.notify_balance_payment(reservation, vehicle, customer, state.balance_amount)

    return BalanceInfo(
        reservation_id=reservation.id,
        total_amount=reservation.total_amount,
        paid_amount=state.paid_amount,
        balance_amount=state.balance_amount,
        already_paid=False,
        fees=pricing.calculate_platform_fees(state.balance_amount, team.plan),
    )


# --- Magic-link (public) views ---

async def get_public_reservation(db: AsyncSession, token: str) -> PublicReservation:
    reservation = await payment_service.get_reservation_by_token(db, token)
    vehicle = await db.get(Vehicle, reservation.vehicle_id)
    team = await db.get(Team, reservation.team_id)
    customer = await db.get(Customer, reservation.customer_id) if reservation.customer_id else None
    contract = (await db.execute(
        select(Contract).filter(Contract.reservation_id == reservation.id)
    )).scalars().first()

    return PublicReservation(
        id=reservation.id,
        status=reservation.status,
        start_date=reservation.start_date,
        end_date=reservation.end_date,
        total_amount=reservation.total_amount,
        deposit_amount=reservation.deposit_amount,
        amount_due_now=payment_service.amount_due_now(reservation),
        vehicle=VehicleSummary.model_validate(vehicle),
        customer=CustomerSummary.model_validate(customer) if customer else None,
        team=PublicTeam.model_validate(team),
        contract_signed=bool(contract and contract.status == ContractStatus.SIGNED.value),
    )


async def attach_customer(db: AsyncSession, token: str, customer_in: CustomerCreate) -> PublicReservation:
    """
    The customer fills in their details on the payment page. An existing
    customer of the organization with the same email is reused.
    """
    reservation = await payment_service.get_reservation_by_token(db, token)
    if reservation.status not in UNPAID_STATUSES:
        raise InvalidStateError("Cette réservation ne peut plus être modifiée")

    team = await db.get(Team, reservation.team_id)
    customer = await customer_service.get_or_create_customer(db, customer_in, team.organization_id)
    if not reservation.customer_id:
        reservation.customer_id = customer.id
    elif reservation.customer_id != customer.id:
        raise InvalidStateError("Un autre client est déjà associé à cette réservation")
    if reservation.status == ReservationStatus.DRAFT.value:
        reservation.status = ReservationStatus.PENDING_PAYMENT.value

    await db.commit()
    return await get_public_reservation(db, token)
