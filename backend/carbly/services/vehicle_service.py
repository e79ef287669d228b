import logging
import uuid
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from carbly.core.exceptions import ConflictError, NotFoundError
from carbly.models.team import Team
from carbly.models.vehicle import Vehicle
from carbly.schemas.vehicle import VehicleCreate, VehicleUpdate
from carbly.services import plan_limit_service

logger = logging.getLogger(__name__)


def normalize_plate(plate: str) -> str:
    return plate.strip().upper()


async def _ensure_plate_is_free(db: AsyncSession, plate: str, vehicle_id: Optional[uuid.UUID] = None) -> None:
    query = select(Vehicle.id).filter(Vehicle.plate == plate)
    if vehicle_id:
        query = query.filter(Vehicle.id != vehicle_id)
    if (await db.execute(query)).first():
        raise ConflictError("Un véhicule avec cette immatriculation existe déjà")


async def create_vehicle(db: AsyncSession, vehicle_in: VehicleCreate, team: Team) -> Vehicle:
    """
    Creates a vehicle for the team, within the plan's vehicle limit.
    Plates are unique across all teams.
    """
    await plan_limit_service.check_vehicle_limit(db, team)

    data = vehicle_in.model_dump()
    data["plate"] = normalize_plate(data["plate"])
    await _ensure_plate_is_free(db, data["plate"])

    new_vehicle = Vehicle(**data, team_id=team.id)
    db.add(new_vehicle)
    try:
        await db.commit()
    except IntegrityError as e:
        # Lost a race with a concurrent insert of the same plate
        await db.rollback()
        raise ConflictError("Un véhicule avec cette immatriculation existe déjà") from e
    await db.refresh(new_vehicle)
    return new_vehicle


async def get_vehicles_by_team(
    db: AsyncSession,
    team_id: uuid.UUID,
    status: Optional[str] = None,
    brand: Optional[str] = None,
    search: Optional[str] = None,
) -> List[Vehicle]:
    """
    Lists the team's vehicles, optionally filtered by status, brand, or a free-text
    search on brand, model and plate.
    """
    query = select(Vehicle).filter(Vehicle.team_id == team_id)
    if status:
        query = query.filter(Vehicle.status == status)
    if brand:
        query = query.filter(Vehicle.brand.ilike(brand))
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Vehicle.brand.ilike(pattern),
            Vehicle.model.ilike(pattern),
            Vehicle.plate.ilike(pattern),
        ))
    result = await db.execute(query.order_by(Vehicle.created_at.desc()))
    return result.scalars().all()


async def get_vehicle_by_id(db: AsyncSession, vehicle_id: uuid.UUID, team_id: uuid.UUID) -> Vehicle:
    result = await db.execute(
        select(Vehicle).filter(Vehicle.id == vehicle_id, Vehicle.team_id == team_id)
    )
    vehicle = result.scalars().first()
    if not vehicle:
        raise NotFoundError("Véhicule non trouvé")
    return vehicle


async def update_vehicle(db: AsyncSession, vehicle_id: uuid.UUID, vehicle_in: VehicleUpdate, team_id: uuid.UUID) -> Vehicle:
    vehicle = await get_vehicle_by_id(db, vehicle_id, team_id)
    data = vehicle_in.model_dump(exclude_unset=True)
    if data.get("plate"):
        data["plate"] = normalize_plate(data["plate"])
        await _ensure_plate_is_free(db, data["plate"], vehicle_id=vehicle.id)

    for field, value in data.items():
        setattr(vehicle, field, value)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError("Un véhicule avec cette immatriculation existe déjà") from e
    await db.refresh(vehicle)
    return vehicle


async def delete_vehicle(db: AsyncSession, vehicle_id: uuid.UUID, team_id: uuid.UUID) -> None:
    vehicle = await get_vehicle_by_id(db, vehicle_id, team_id)
    await db.delete(vehicle)
    await db.commit()
    logger.info("Deleted vehicle %s (%s) from team %s", vehicle.id, vehicle.plate, team_id)
