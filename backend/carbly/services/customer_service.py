import uuid
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from carbly.core.exceptions import ConflictError, NotFoundError
from carbly.models.customer import Customer
from carbly.schemas.customer import CustomerCreate, CustomerUpdate


async def get_customer_by_email(db: AsyncSession, organization_id: uuid.UUID, email: str) -> Customer | None:
    result = await db.execute(
        select(Customer).filter(
            Customer.organization_id == organization_id,
            Customer.email == email.strip().lower(),
        )
    )
    return result.scalars().first()


async def create_customer(db: AsyncSession, customer_in: CustomerCreate, organization_id: uuid.UUID) -> Customer:
    """
    Creates a customer. Emails are unique within an organization.
    """
    email = customer_in.email.strip().lower()
    if await get_customer_by_email(db, organization_id, email):
        raise ConflictError("Un client avec cet email existe déjà")

    new_customer = Customer(**customer_in.model_dump(exclude={"email"}), email=email, organization_id=organization_id)
    db.add(new_customer)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError("Un client avec cet email existe déjà") from e
    await db.refresh(new_customer)
    return new_customer


async def get_or_create_customer(db: AsyncSession, customer_in: CustomerCreate, organization_id: uuid.UUID) -> Customer:
    """
    Returns the organization's customer with this email, filling in missing
    contact details, or creates it. Does not commit.
    """
    customer = await get_customer_by_email(db, organization_id, customer_in.email)
    if customer:
        for field in ("phone", "first_name", "last_name"):
            value = getattr(customer_in, field)
            if value and not getattr(customer, field):
                setattr(customer, field, value)
        return customer

    customer = Customer(
        **customer_in.model_dump(exclude={"email"}),
        email=customer_in.email.strip().lower(),
        organization_id=organization_id,
    )
    db.add(customer)
    await db.flush()
    return customer


async def get_customers_by_organization(
    db: AsyncSession, organization_id: uuid.UUID, search: Optional[str] = None, limit: int = 100
) -> List[Customer]:
    query = select(Customer).filter(Customer.organization_id == organization_id)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Customer.email.ilike(pattern),
            Customer.first_name.ilike(pattern),
            Customer.last_name.ilike(pattern),
            Customer.phone.ilike(pattern),
        ))
    result = await db.execute(query.order_by(Customer.created_at.desc()).limit(limit))
    return result.scalars().all()


async def get_customer_by_id(db: AsyncSession, customer_id: uuid.UUID, organization_id: uuid.UUID) -> Customer:
    result = await db.execute(
        select(Customer).filter(Customer.id == customer_id, Customer.organization_id == organization_id)
    )
    customer = result.scalars().first()
    if not customer:
        raise NotFoundError("Client non trouvé")
    return customer


async def update_customer(db: AsyncSession, customer_id: uuid.UUID, customer_in: CustomerUpdate, organization_id: uuid.UUID) -> Customer:
    customer = await get_customer_by_id(db, customer_id, organization_id)
    for field, value in customer_in.model_dump(exclude_unset=True).items():
        setattr(customer, field, value)
    await db.commit()
    await db.refresh(customer)
    return customer
