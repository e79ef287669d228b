import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from carbly.core.exceptions import PlanLimitError
from carbly.models.reservation import Reservation
from carbly.models.team import Team
from carbly.models.team_member import TeamMember
from carbly.models.vehicle import Vehicle
from carbly.schemas.pricing import PlanFeatures, PlanUsage, UsageItem
from carbly.services import pricing


def start_of_month(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


async def count_vehicles(db: AsyncSession, team_id: uuid.UUID) -> int:
    result = await db.execute(select(func.count(Vehicle.id)).filter(Vehicle.team_id == team_id))
    return result.scalar_one()


async def count_members(db: AsyncSession, team_id: uuid.UUID) -> int:
    result = await db.execute(select(func.count(TeamMember.id)).filter(TeamMember.team_id == team_id))
    return result.scalar_one()


async def count_reservations_this_month(db: AsyncSession, team_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count(Reservation.id)).filter(
            Reservation.team_id == team_id,
            Reservation.created_at >= start_of_month(),
        )
    )
    return result.scalar_one()


async def check_vehicle_limit(db: AsyncSession, team: Team) -> None:
    """
    Raises PlanLimitError when the team cannot add another vehicle, either
    because of its plan or because of its own max_vehicles cap.
    """
    plan = pricing.resolve_plan(team.plan)
    limit = pricing.get_plan_limits(plan)["vehicles"]
    if team.max_vehicles is not None:
        limit = team.max_vehicles if limit is None else min(limit, team.max_vehicles)
    if limit is None:
        return

    if await count_vehicles(db, team.id) >= limit:
        suggested = pricing.get_suggested_plan(plan)
        raise PlanLimitError(
            f"Limite de {limit} véhicules atteinte. Passez au plan {(suggested or plan.value).upper()}.",
            limit_type="vehicles",
            current_plan=plan.value,
            suggested_plan=suggested,
        )


async def check_user_limit(db: AsyncSession, team: Team) -> None:
    plan = pricing.resolve_plan(team.plan)
    limit = pricing.get_plan_limits(plan)["users"]
    if limit is None:
        return

    if await count_members(db, team.id) >= limit:
        suggested = pricing.get_suggested_plan(plan)
        raise PlanLimitError(
            f"Limite de {limit} utilisateur(s) atteinte. Passez au plan {(suggested or plan.value).upper()}.",
            limit_type="users",
            current_plan=plan.value,
            suggested_plan=suggested,
        )


async def check_reservation_limit(db: AsyncSession, team: Team) -> None:
    plan = pricing.resolve_plan(team.plan)
    limit = pricing.get_plan_limits(plan)["reservations_per_month"]
    if limit is None:
        return

    if await count_reservations_this_month(db, team.id) >= limit:
        raise PlanLimitError(
            f"Limite de {limit} réservations/mois atteinte. Passez au plan STARTER.",
            limit_type="reservations",
            current_plan=plan.value,
            suggested_plan=pricing.PlanTier.STARTER.value,
        )


def check_feature_access(team: Team, feature: str) -> None:
    plan = pricing.resolve_plan(team.plan)
    if pricing.has_feature(plan, feature):
        return
    suggested = pricing.get_cheapest_plan_with_feature(feature)
    raise PlanLimitError(
        f'La fonctionnalité "{feature}" n\'est pas disponible sur le plan {plan.value.upper()}. '
        f"Passez au plan {suggested.upper() if suggested else 'supérieur'}.",
        limit_type=feature,
        current_plan=plan.value,
        suggested_plan=suggested,
    )


def _usage(current: int, limit: Optional[int]) -> UsageItem:
    percentage = round(current / limit * 100) if limit else 0
    return UsageItem(current=current, limit=limit, percentage=percentage)


async def get_plan_usage(db: AsyncSession, team: Team) -> PlanUsage:
    limits = pricing.get_plan_limits(team.plan)
    return PlanUsage(
        plan=pricing.resolve_plan(team.plan).value,
        vehicles=_usage(await count_vehicles(db, team.id), limits["vehicles"]),
        users=_usage(await count_members(db, team.id), limits["users"]),
        reservations_this_month=_usage(
            await count_reservations_this_month(db, team.id), limits["reservations_per_month"]
        ),
    )


def get_plan_features(team: Team) -> PlanFeatures:
    plan = pricing.resolve_plan(team.plan)
    return PlanFeatures(
        plan=plan.value,
        features=pricing.get_plan_features(plan),
        limits=pricing.get_plan_limits(plan),
        support=pricing.PLAN_SUPPORT[plan],
        fees=pricing.calculate_platform_fees(100, plan),
    )
