import logging
import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from carbly.schemas.user import UserCreate
from carbly.schemas.organization import OrganizationCreate
from carbly.schemas.team import TeamCreate
from .organization_service import create_organization
from .team_service import create_team

from carbly.models.team_member import TeamMember
from carbly.models.user import User

logger = logging.getLogger(__name__)

async def get_user_by_supabase_id(db: AsyncSession, supabase_id: uuid.UUID) -> User | None:
    """
    Fetches a user from our database using their Supabase Auth ID.
    """
    result = await db.execute(select(User).filter(User.supabase_auth_id == supabase_id))
    return result.scalars().first()

async def create_user_with_organization(db: AsyncSession, user_in: UserCreate) -> User:
    """
    Creates a new user with their organization and a first agency (team).
    Everything is committed in one transaction.
    """
    base_name = user_in.full_name or user_in.email.split('@')[0]
    new_organization = await create_organization(db, OrganizationCreate(name=base_name))
    new_team = await create_team(db, TeamCreate(name=f"Agence {base_name}"), organization_id=new_organization.id)

    new_user = User(
        email=user_in.email,
        supabase_auth_id=user_in.supabase_auth_id,
        organization_id=new_organization.id,
        current_team_id=new_team.id,
        full_name=user_in.full_name,
        role=user_in.role
    )
    db.add(new_user)
    await db.flush()
    db.add(TeamMember(team_id=new_team.id, user_id=new_user.id, role="owner"))

    await db.commit()
    await db.refresh(new_user)
    logger.info("Provisioned user %s with organization %s", new_user.email, new_organization.id)
    return new_user
