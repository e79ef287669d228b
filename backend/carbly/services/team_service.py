import logging
import uuid
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from carbly.core.config import settings
from carbly.core.exceptions import ConflictError, InvalidStateError, NotFoundError
from carbly.models.organization import Organization
from carbly.models.team import Team
from carbly.models.team_member import TeamMember
from carbly.models.user import User
from carbly.schemas.team import TeamCreate, TeamUpdate
from carbly.services import plan_limit_service, pricing, stripe_service

logger = logging.getLogger(__name__)


async def create_team(db: AsyncSession, team_in: TeamCreate, organization_id: uuid.UUID) -> Team:
    """
    Adds a new agency to an organization. The caller commits.
    """
    new_team = Team(**team_in.model_dump(), organization_id=organization_id)
    db.add(new_team)
    await db.flush()
    return new_team


async def get_team_by_id(db: AsyncSession, team_id: uuid.UUID) -> Team | None:
    result = await db.execute(select(Team).filter(Team.id == team_id))
    return result.scalars().first()


async def update_team(db: AsyncSession, team: Team, team_in: TeamUpdate) -> Team:
    for field, value in team_in.model_dump(exclude_unset=True).items():
        setattr(team, field, value)
    await db.commit()
    await db.refresh(team)
    return team


async def list_members(db: AsyncSession, team_id: uuid.UUID) -> List[TeamMember]:
    result = await db.execute(select(TeamMember).filter(TeamMember.team_id == team_id))
    return result.scalars().all()


async def add_member(db: AsyncSession, team: Team, email: str, role: str = "member") -> TeamMember:
    """
    Adds an already registered user to the team, within the plan's user limit.
    """
    await plan_limit_service.check_user_limit(db, team)

    result = await db.execute(select(User).filter(User.email == email.lower()))
    user = result.scalars().first()
    if not user:
        raise NotFoundError("Aucun utilisateur avec cet email")

    existing = await db.execute(
        select(TeamMember).filter(TeamMember.team_id == team.id, TeamMember.user_id == user.id)
    )
    if existing.scalars().first():
        raise ConflictError("Cet utilisateur fait déjà partie de l'équipe")

    member = TeamMember(team_id=team.id, user_id=user.id, role=role)
    db.add(member)
    await db.commit()
    await db.refresh(member)
    return member


# --- Stripe Connect onboarding ---

async def create_connect_account(db: AsyncSession, team: Team, email: str, business_name: str | None = None) -> str:
    if team.stripe_connect_account_id:
        return team.stripe_connect_account_id

    if not business_name:
        organization = await db.get(Organization, team.organization_id)
        business_name = organization.name if organization else team.name

    account_id = stripe_service.create_connect_account(email=email, business_name=business_name)
    team.stripe_connect_account_id = account_id
    await db.commit()
    await db.refresh(team)
    logger.info("Created Connect account %s for team %s", account_id, team.id)
    return account_id


def get_connect_onboarding_link(team: Team) -> str:
    if not team.stripe_connect_account_id:
        raise NotFoundError("Compte Stripe Connect introuvable")
    return stripe_service.create_account_link(
        account_id=team.stripe_connect_account_id,
        refresh_url=f"{settings.PUBLIC_APP_URL}/onboarding/connect-refresh?team_id={team.id}",
        return_url=f"{settings.PUBLIC_APP_URL}/onboarding/connect-return?team_id={team.id}",
    )


async def refresh_connect_status(db: AsyncSession, team: Team) -> bool:
    if not team.stripe_connect_account_id:
        raise NotFoundError("Compte Stripe Connect introuvable")
    onboarded = stripe_service.is_account_onboarded(team.stripe_connect_account_id)
    if onboarded != team.stripe_connect_onboarded:
        team.stripe_connect_onboarded = onboarded
        await db.commit()
        await db.refresh(team)
    return onboarded


# --- Platform subscription ---

async def create_subscription_checkout(db: AsyncSession, team: Team, user: User, plan: str, interval: str) -> str:
    price_id = settings.stripe_price_id(plan, interval)
    if not price_id:
        raise InvalidStateError(f"Aucun tarif configuré pour le plan {plan} ({interval})")
    if pricing.resolve_plan(team.plan).value == plan and team.subscription_status == "active":
        raise InvalidStateError("Votre équipe est déjà abonnée à ce plan")

    organization = await db.get(Organization, team.organization_id)
    session = stripe_service.create_subscription_checkout_session(
        price_id=price_id,
        customer_email=user.email,
        customer_id=organization.stripe_customer_id if organization else None,
        success_url=f"{settings.PUBLIC_APP_URL}/settings?subscription=success",
        cancel_url=f"{settings.PUBLIC_APP_URL}/settings/change-plan",
        metadata={"team_id": str(team.id), "plan": plan, "interval": interval},
    )
    return session.url
