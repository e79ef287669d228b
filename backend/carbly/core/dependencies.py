import logging

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from supabase import AsyncClient, acreate_client
from supabase.lib.client_options import AsyncClientOptions

from carbly.core.config import settings
from carbly.core.security import oauth2_scheme
from carbly.database import get_db
from carbly.models.team import Team
from carbly.models.user import User
from carbly.schemas.user import UserCreate
from carbly.services.user_service import create_user_with_organization, get_user_by_supabase_id

logger = logging.getLogger(__name__)

_supabase_client: AsyncClient | None = None


async def get_supabase_client() -> AsyncClient:
    global _supabase_client
    if _supabase_client is None:
        _supabase_client = await acreate_client(
            settings.SUPABASE_URL,
            settings.SUPABASE_ANON_KEY,
            options=AsyncClientOptions(auto_refresh_token=False, persist_session=False),
        )
    return _supabase_client


async def get_current_user_with_provisioning(
    db: AsyncSession = Depends(get_db),
    token: str = Depends(oauth2_scheme)
) -> User:
    """
    A dependency that gets the current user.
    If the user is authenticated with Supabase but doesn't exist in our
    local DB, it creates (provisions) a new user, organization and agency for them.
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    try:
        client = await get_supabase_client()
        auth_response = await client.auth.get_user(token)
    except Exception as e:
        logger.warning("Supabase rejected the token: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    auth_user = auth_response.user if auth_response else None
    if not auth_user or not auth_user.email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )

    local_user = await get_user_by_supabase_id(db, supabase_id=auth_user.id)
    if not local_user:
        logger.info("Provisioning new user for email: %s", auth_user.email)
        user_create_schema = UserCreate(
            supabase_auth_id=auth_user.id,
            email=auth_user.email,
            full_name=(auth_user.user_metadata or {}).get("full_name")
        )
        local_user = await create_user_with_organization(db, user_in=user_create_schema)

    return local_user


async def get_current_user(
    current_user: User = Depends(get_current_user_with_provisioning),
) -> User:
    return current_user


async def get_current_team(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Team:
    """The agency the user is working in. Every dashboard route is scoped to it."""
    team = await db.get(Team, current_user.current_team_id) if current_user.current_team_id else None
    if not team or team.organization_id != current_user.organization_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No active team selected"
        )
    return team
