from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from carbly.schemas.team import (
    ConnectAccountCreate, ConnectStatus, RedirectUrl, SubscriptionCheckoutCreate,
    Team, TeamMember, TeamMemberCreate, TeamUpdate,
)
from carbly.schemas.pricing import PlanFeatures, PlanUsage
from carbly.models.team import Team as TeamModel
from carbly.models.user import User
from carbly.core.dependencies import get_current_team, get_current_user
from carbly.database import get_db
from carbly.services import plan_limit_service, team_service

router = APIRouter()

@router.get("/current", response_model=Team)
async def read_current_team(team: TeamModel = Depends(get_current_team)):
    return team

@router.patch("/current", response_model=Team)
async def update_current_team(
    team_in: TeamUpdate,
    db: AsyncSession = Depends(get_db),
    team: TeamModel = Depends(get_current_team)
):
    return await team_service.update_team(db=db, team=team, team_in=team_in)

@router.get("/current/plan-features", response_model=PlanFeatures)
async def read_plan_features(team: TeamModel = Depends(get_current_team)):
    """
    Features, limits and platform fees of the team's plan.
    """
    return plan_limit_service.get_plan_features(team)

@router.get("/current/plan-usage", response_model=PlanUsage)
async def read_plan_usage(
    db: AsyncSession = Depends(get_db),
    team: TeamModel = Depends(get_current_team)
):
    return await plan_limit_service.get_plan_usage(db, team)

@router.get("/current/members", response_model=List[TeamMember])
async def list_members(
    db: AsyncSession = Depends(get_db),
    team: TeamModel = Depends(get_current_team)
):
    return await team_service.list_members(db, team.id)

@router.post("/current/members", response_model=TeamMember, status_code=status.HTTP_201_CREATED)
async def add_member(
    member_in: TeamMemberCreate,
    db: AsyncSession = Depends(get_db),
    team: TeamModel = Depends(get_current_team)
):
    return await team_service.add_member(db, team, email=member_in.email, role=member_in.role)

# --- Stripe Connect ---

@router.post("/current/connect", response_model=ConnectStatus, status_code=status.HTTP_201_CREATED)
async def create_connect_account(
    account_in: ConnectAccountCreate,
    db: AsyncSession = Depends(get_db),
    team: TeamModel = Depends(get_current_team),
    current_user: User = Depends(get_current_user)
):
    """
    Create the team's Stripe Connect Express account, used to receive reservation payments.
    """
    account_id = await team_service.create_connect_account(
        db, team, email=current_user.email, business_name=account_in.business_name
    )
    return ConnectStatus(account_id=account_id, onboarded=team.stripe_connect_onboarded)

@router.get("/current/connect/onboarding-link", response_model=RedirectUrl)
async def get_connect_onboarding_link(team: TeamModel = Depends(get_current_team)):
    return RedirectUrl(url=team_service.get_connect_onboarding_link(team))

@router.post("/current/connect/refresh", response_model=ConnectStatus)
async def refresh_connect_status(
    db: AsyncSession = Depends(get_db),
    team: TeamModel = Depends(get_current_team)
):
    onboarded = await team_service.refresh_connect_status(db, team)
    return ConnectStatus(account_id=team.stripe_connect_account_id, onboarded=onboarded)

# --- Subscription ---

@router.post("/current/subscription/checkout", response_model=RedirectUrl)
async def create_subscription_checkout(
    checkout_in: SubscriptionCheckoutCreate,
    db: AsyncSession = Depends(get_db),
    team: TeamModel = Depends(get_current_team),
    current_user: User = Depends(get_current_user)
):
    url = await team_service.create_subscription_checkout(
        db, team, current_user, plan=checkout_in.plan, interval=checkout_in.interval
    )
    return RedirectUrl(url=url)
