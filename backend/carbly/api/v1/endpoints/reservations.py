from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from datetime import datetime
import uuid

from carbly.schemas.reservation import (
    AvailabilityCheck, AvailabilityResult, CancellationResult, CheckinData, PaymentLinkResult,
    Reservation, ReservationCancel, ReservationCreate, ReservationDetail, ReservationStatusUpdate,
)
from carbly.schemas.contract import Contract, ContractDownload
from carbly.schemas.payment import BalanceInfo
from carbly.models.reservation import ReservationStatus
from carbly.models.team import Team
from carbly.core.dependencies import get_current_team
from carbly.database import get_db
from carbly.services import contract_service, reservation_service, vehicle_service

router = APIRouter()

@router.post("/", response_model=Reservation, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    reservation_in: ReservationCreate,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    """
    Book a vehicle. With a customer attached the reservation waits for payment
    and the customer receives the payment link by email.
    """
    return await reservation_service.create_reservation(db=db, reservation_in=reservation_in, team=team)

@router.get("/", response_model=List[Reservation])
async def list_reservations(
    status: Optional[ReservationStatus] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await reservation_service.get_reservations(
        db=db, team_id=team.id, status=status.value if status else None, start_date=start_date, end_date=end_date
    )

@router.post("/availability", response_model=AvailabilityResult)
async def check_availability(
    check_in: AvailabilityCheck,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    vehicle = await vehicle_service.get_vehicle_by_id(db=db, vehicle_id=check_in.vehicle_id, team_id=team.id)
    is_available = await reservation_service.check_vehicle_availability(
        db, vehicle.id, check_in.start_date, check_in.end_date, exclude_reservation_id=check_in.exclude_reservation_id
    )
    return AvailabilityResult(is_available=is_available)

@router.get("/{reservation_id}", response_model=ReservationDetail)
async def read_reservation(
    reservation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await reservation_service.get_reservation_detail(db=db, reservation_id=reservation_id, team_id=team.id)

@router.patch("/{reservation_id}/status", response_model=Reservation)
async def update_reservation_status(
    reservation_id: uuid.UUID,
    status_in: ReservationStatusUpdate,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await reservation_service.update_reservation_status(
        db=db, reservation_id=reservation_id, new_status=status_in.status, team_id=team.id
    )

@router.post("/{reservation_id}/cancel", response_model=CancellationResult)
async def cancel_reservation(
    reservation_id: uuid.UUID,
    cancel_in: ReservationCancel,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    """
    Cancel a reservation that has not started and refund the requested amount
    across its payments.
    """
    return await reservation_service.cancel_reservation(
        db=db, reservation_id=reservation_id, team=team, reason=cancel_in.reason, refund_amount=cancel_in.refund_amount
    )

@router.post("/{reservation_id}/checkin", response_model=Reservation)
async def checkin(
    reservation_id: uuid.UUID,
    data: CheckinData,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await reservation_service.checkin(db=db, reservation_id=reservation_id, team=team, data=data)

@router.post("/{reservation_id}/checkout", response_model=Reservation)
async def checkout(
    reservation_id: uuid.UUID,
    data: CheckinData,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await reservation_service.checkout(db=db, reservation_id=reservation_id, team=team, data=data)

@router.post("/{reservation_id}/resend-payment-link", response_model=PaymentLinkResult)
async def resend_payment_link(
    reservation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await reservation_service.resend_payment_link(db=db, reservation_id=reservation_id, team_id=team.id)

@router.post("/{reservation_id}/request-balance", response_model=BalanceInfo)
async def request_balance_payment(
    reservation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    """
    Email the customer a link to pay the balance left after the deposit.
    """
    return await reservation_service.request_balance_payment(db=db, reservation_id=reservation_id, team=team)

# --- Contract ---

@router.post("/{reservation_id}/contract", response_model=Contract, status_code=status.HTTP_201_CREATED)
async def generate_contract(
    reservation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await contract_service.generate_contract(db=db, reservation_id=reservation_id, team_id=team.id)

@router.post("/{reservation_id}/contract/send", response_model=Contract)
async def send_contract_for_signature(
    reservation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await contract_service.send_for_signature(db=db, reservation_id=reservation_id, team_id=team.id)

@router.post("/{reservation_id}/contract/check-status", response_model=Contract)
async def check_contract_status(
    reservation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await contract_service.check_signature_status(db=db, reservation_id=reservation_id, team_id=team.id)

@router.get("/{reservation_id}/contract/download", response_model=ContractDownload)
async def download_contract(
    reservation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await contract_service.get_download_url(db=db, reservation_id=reservation_id, team_id=team.id)
