import pytest
import pytest_asyncio
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator

from httpx import AsyncClient
from httpx import ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from carbly.main import app
from carbly.database import get_db
from carbly.core.celery_app import celery_app
from carbly.core.dependencies import get_current_user_with_provisioning
from carbly.models import (
    Base, Customer, Organization, Payment, Reservation, Team, TeamMember, User, Vehicle,
)
from carbly.services.reservation_service import generate_token

# CRITICAL: Use in-memory SQLite for tests to avoid connection conflicts
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Create test engine with specific configuration for async SQLite
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    poolclass=StaticPool, # Required for SQLite
    connect_args={"check_same_thread": False}, # Required for SQLite
)

# Create sessionmaker for tests
TestingSessionLocal = async_sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,  # CRITICAL: Prevents DetachedInstanceError
)

@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Creates a database session for the test.
    This is the SINGLE source of truth for the database session.
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestingSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

@pytest_asyncio.fixture(scope="function")
async def test_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    Creates an HTTP client with the database dependency overridden.
    """
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()

@pytest.fixture(autouse=True)
def sent_tasks(monkeypatch):
    """
    Records Celery tasks instead of sending them to the broker.
    Each entry is (task_name, args).
    """
    calls = []

    def fake_send_task(name, args=None, kwargs=None, **options):
        calls.append((name, args or []))

    monkeypatch.setattr(celery_app, "send_task", fake_send_task)
    return calls

# --- Tenant fixtures ---

@pytest_asyncio.fixture
async def organization(db_session: AsyncSession) -> Organization:
    org = Organization(name="Loc'Azur")
    db_session.add(org)
    await db_session.commit()
    await db_session.refresh(org)
    return org

@pytest_asyncio.fixture
async def team(db_session: AsyncSession, organization: Organization) -> Team:
    team = Team(
        organization_id=organization.id,
        name="Agence Nice",
        address="12 avenue Jean Médecin, Nice",
        plan="pro",
        subscription_status="active",
        stripe_connect_account_id="acct_test123",
        stripe_connect_onboarded=True,
    )
    db_session.add(team)
    await db_session.commit()
    await db_session.refresh(team)
    return team

@pytest_asyncio.fixture
async def user(db_session: AsyncSession, organization: Organization, team: Team) -> User:
    user = User(
        supabase_auth_id=uuid.uuid4(),
        organization_id=organization.id,
        current_team_id=team.id,
        email="owner@locazur.fr",
        full_name="Camille Martin",
        role="owner",
    )
    db_session.add(user)
    await db_session.flush()
    db_session.add(TeamMember(team_id=team.id, user_id=user.id, role="owner"))
    await db_session.commit()
    await db_session.refresh(user)
    return user

@pytest_asyncio.fixture
async def auth_client(test_client: AsyncClient, user: User) -> AsyncClient:
    """A client authenticated as the team owner."""
    async def override_get_user():
        return user

    app.dependency_overrides[get_current_user_with_provisioning] = override_get_user
    return test_client

@pytest_asyncio.fixture
async def vehicle(db_session: AsyncSession, team: Team) -> Vehicle:
    vehicle = Vehicle(
        team_id=team.id,
        brand="Peugeot",
        model="208",
        year=2022,
        plate="AB-123-CD",
        daily_rate=Decimal("50.00"),
        mileage=12000,
        images=[],
    )
    db_session.add(vehicle)
    await db_session.commit()
    await db_session.refresh(vehicle)
    return vehicle

@pytest_asyncio.fixture
async def customer(db_session: AsyncSession, organization: Organization) -> Customer:
    customer = Customer(
        organization_id=organization.id,
        email="lea.dupont@example.com",
        first_name="Léa",
        last_name="Dupont",
        phone="+33612345678",
    )
    db_session.add(customer)
    await db_session.commit()
    await db_session.refresh(customer)
    return customer

@pytest.fixture
def make_reservation(db_session: AsyncSession, team: Team, vehicle: Vehicle, customer: Customer):
    async def _make(
        status="pending_payment",
        start_date=datetime(2030, 1, 10, 10, 0, tzinfo=timezone.utc),
        end_date=datetime(2030, 1, 15, 10, 0, tzinfo=timezone.utc),
        total_amount=Decimal("250.00"),
        deposit_amount=None,
        with_customer=True,
        **fields,
    ) -> Reservation:
        reservation = Reservation(
            team_id=team.id,
            vehicle_id=vehicle.id,
            customer_id=customer.id if with_customer else None,
            start_date=start_date,
            end_date=end_date,
            status=status,
            total_amount=total_amount,
            deposit_amount=deposit_amount,
            magic_link_token=generate_token(),
            **fields,
        )
        db_session.add(reservation)
        await db_session.commit()
        await db_session.refresh(reservation)
        return reservation
    return _make

@pytest.fixture
def make_payment(db_session: AsyncSession):
    async def _make(reservation, amount, type="deposit", status="succeeded", fee=Decimal("0"), **fields) -> Payment:
        payment = Payment(
            reservation_id=reservation.id,
            amount=Decimal(str(amount)),
            fee=fee,
            type=type,
            status=status,
            **fields,
        )
        db_session.add(payment)
        await db_session.commit()
        await db_session.refresh(payment)
        return payment
    return _make
