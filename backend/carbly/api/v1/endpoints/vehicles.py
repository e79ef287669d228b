from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
import uuid

from carbly.schemas.vehicle import Vehicle, VehicleCreate, VehicleUpdate
from carbly.models.team import Team
from carbly.models.vehicle import VehicleStatus
from carbly.core.dependencies import get_current_team
from carbly.database import get_db
from carbly.services import vehicle_service

router = APIRouter()

@router.post("/", response_model=Vehicle, status_code=status.HTTP_201_CREATED)
async def create_vehicle(
    vehicle_in: VehicleCreate,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    """
    Add a vehicle to the current team's fleet, within the plan's vehicle limit.
    """
    return await vehicle_service.create_vehicle(db=db, vehicle_in=vehicle_in, team=team)

@router.get("/", response_model=List[Vehicle])
async def list_vehicles(
    status: Optional[VehicleStatus] = None,
    brand: Optional[str] = None,
    search: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await vehicle_service.get_vehicles_by_team(
        db=db, team_id=team.id, status=status.value if status else None, brand=brand, search=search
    )

@router.get("/{vehicle_id}", response_model=Vehicle)
async def read_vehicle(
    vehicle_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await vehicle_service.get_vehicle_by_id(db=db, vehicle_id=vehicle_id, team_id=team.id)

@router.patch("/{vehicle_id}", response_model=Vehicle)
async def update_vehicle(
    vehicle_id: uuid.UUID,
    vehicle_in: VehicleUpdate,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await vehicle_service.update_vehicle(db=db, vehicle_id=vehicle_id, vehicle_in=vehicle_in, team_id=team.id)

@router.delete("/{vehicle_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_vehicle(
    vehicle_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    await vehicle_service.delete_vehicle(db=db, vehicle_id=vehicle_id, team_id=team.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
