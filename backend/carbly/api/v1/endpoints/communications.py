from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
import uuid

from carbly.schemas.communication import Communication, CommunicationCreate
from carbly.models.team import Team
from carbly.core.dependencies import get_current_team
from carbly.database import get_db
from carbly.services import communication_service

router = APIRouter()

@router.post("/", response_model=Communication, status_code=status.HTTP_201_CREATED)
async def send_communication(
    communication_in: CommunicationCreate,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    """
    Email a customer, from a template or a free-form message. The attempt is
    recorded even when delivery fails.
    """
    return await communication_service.send_communication(db=db, communication_in=communication_in, team=team)

@router.get("/", response_model=List[Communication])
async def list_communications(
    customer_id: Optional[uuid.UUID] = None,
    reservation_id: Optional[uuid.UUID] = None,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await communication_service.get_communications(
        db=db, team_id=team.id, customer_id=customer_id, reservation_id=reservation_id
    )
