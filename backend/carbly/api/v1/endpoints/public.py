"""
Customer-facing routes reached through the magic link emailed to the
customer. The token in the path is the only credential.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from carbly.schemas.customer import CustomerCreate
from carbly.schemas.payment import BalanceInfo, CheckoutSession
from carbly.schemas.reservation import PublicReservation
from carbly.database import get_db
from carbly.services import payment_service, reservation_service

router = APIRouter()

@router.get("/{token}", response_model=PublicReservation)
async def read_public_reservation(token: str, db: AsyncSession = Depends(get_db)):
    return await reservation_service.get_public_reservation(db=db, token=token)

@router.post("/{token}/customer", response_model=PublicReservation)
async def attach_customer(token: str, customer_in: CustomerCreate, db: AsyncSession = Depends(get_db)):
    return await reservation_service.attach_customer(db=db, token=token, customer_in=customer_in)

@router.post("/{token}/checkout", response_model=CheckoutSession)
async def create_checkout(token: str, db: AsyncSession = Depends(get_db)):
    """
    Open a Stripe Checkout session for the deposit, or the full amount when
    the reservation has no deposit.
    """
    return await payment_service.create_reservation_checkout(db=db, token=token)

@router.get("/balance/{balance_token}", response_model=BalanceInfo)
async def read_balance(balance_token: str, db: AsyncSession = Depends(get_db)):
    return await payment_service.get_balance_info(db=db, balance_token=balance_token)

@router.post("/balance/{balance_token}/checkout", response_model=CheckoutSession)
async def create_balance_checkout(balance_token: str, db: AsyncSession = Depends(get_db)):
    return await payment_service.create_balance_checkout(db=db, balance_token=balance_token)
