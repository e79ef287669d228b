import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from carbly.models.customer import Customer
from carbly.models.organization import Organization
from carbly.models.team import Team


@pytest.mark.asyncio
async def test_create_customer_normalizes_email(auth_client: AsyncClient, organization: Organization):
    response = await auth_client.post(
        "/api/v1/customers/",
        json={"email": "Hugo.Bernard@Example.com", "first_name": "Hugo", "last_name": "Bernard"},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["email"] == "hugo.bernard@example.com"
    assert data["organization_id"] == str(organization.id)
    assert data["loyalty_points"] == 0
    assert data["identity_verified"] is False

@pytest.mark.asyncio
async def test_customer_email_unique_per_organization(auth_client: AsyncClient, customer: Customer):
    response = await auth_client.post("/api/v1/customers/", json={"email": "LEA.DUPONT@example.com"})

    assert response.status_code == 409
    assert response.json() == {"error": "Un client avec cet email existe déjà"}

@pytest.mark.asyncio
async def test_search_and_update_customer(auth_client: AsyncClient, customer: Customer):
    await auth_client.post("/api/v1/customers/", json={"email": "hugo@example.com", "first_name": "Hugo"})

    response = await auth_client.get("/api/v1/customers/", params={"search": "dupont"})
    assert response.status_code == 200
    assert [c["email"] for c in response.json()] == ["lea.dupont@example.com"]

    response = await auth_client.patch(f"/api/v1/customers/{customer.id}", json={"phone": "+33700000000"})
    assert response.status_code == 200
    assert response.json()["phone"] == "+33700000000"

@pytest.mark.asyncio
async def test_customers_shared_across_teams_of_organization(
    auth_client: AsyncClient, db_session: AsyncSession, customer: Customer, team: Team, user
):
    second_team = Team(organization_id=team.organization_id, name="Agence Cannes", plan="pro")
    db_session.add(second_team)
    await db_session.commit()
    user.current_team_id = second_team.id
    await db_session.commit()

    response = await auth_client.get(f"/api/v1/customers/{customer.id}")

    assert response.status_code == 200
    assert response.json()["email"] == customer.email

@pytest.mark.asyncio
async def test_customer_of_another_organization_is_hidden(auth_client: AsyncClient, db_session: AsyncSession):
    other_org = Organization(name="Autre Loueur")
    db_session.add(other_org)
    await db_session.flush()
    stranger = Customer(organization_id=other_org.id, email="stranger@example.com")
    db_session.add(stranger)
    await db_session.commit()

    response = await auth_client.get(f"/api/v1/customers/{stranger.id}")

    assert response.status_code == 404
    assert response.json() == {"error": "Client non trouvé"}
