from sqlalchemy.ext.asyncio import AsyncSession
from carbly.models.organization import Organization
from carbly.schemas.organization import OrganizationCreate

async def create_organization(db: AsyncSession, organization_in: OrganizationCreate) -> Organization:
    """
    Adds a new organization to the session. The caller commits.
    """
    new_organization = Organization(name=organization_in.name)
    db.add(new_organization)
    await db.flush()
    return new_organization
