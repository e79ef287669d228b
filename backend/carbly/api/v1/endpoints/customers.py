from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
import uuid

from carbly.schemas.customer import Customer, CustomerCreate, CustomerUpdate
from carbly.models.team import Team
from carbly.core.dependencies import get_current_team
from carbly.database import get_db
from carbly.services import customer_service

router = APIRouter()

@router.post("/", response_model=Customer, status_code=status.HTTP_201_CREATED)
async def create_customer(
    customer_in: CustomerCreate,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    """
    Create a customer. Customers are shared by all agencies of the organization.
    """
    return await customer_service.create_customer(db=db, customer_in=customer_in, organization_id=team.organization_id)

@router.get("/", response_model=List[Customer])
async def list_customers(
    search: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await customer_service.get_customers_by_organization(
        db=db, organization_id=team.organization_id, search=search, limit=limit
    )

@router.get("/{customer_id}", response_model=Customer)
async def read_customer(
    customer_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await customer_service.get_customer_by_id(db=db, customer_id=customer_id, organization_id=team.organization_id)

@router.patch("/{customer_id}", response_model=Customer)
async def update_customer(
    customer_id: uuid.UUID,
    customer_in: CustomerUpdate,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await customer_service.update_customer(
        db=db, customer_id=customer_id, customer_in=customer_in, organization_id=team.organization_id
    )
