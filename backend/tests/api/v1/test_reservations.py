import httpx
import pytest
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from carbly.core.celery_app import celery_app
from carbly.core.config import settings
from carbly.core.exceptions import ExternalServiceError
from carbly.models.contract import Contract
from carbly.models.customer import Customer
from carbly.models.team import Team
from carbly.models.vehicle import Vehicle
from carbly.services import stripe_service, yousign_service
from carbly.services.notification_service import SEND_EMAIL_TASK


@pytest.fixture
def refunds(monkeypatch):
    """Stands in for Stripe refunds and records each call."""
    calls = []

    def fake_create_refund(*, payment_intent_id, amount_cents, metadata, connect_account_id=None):
        calls.append({
            "payment_intent_id": payment_intent_id,
            "amount_cents": amount_cents,
            "connect_account_id": connect_account_id,
        })
        return SimpleNamespace(id=f"re_{len(calls)}", status="succeeded")

    monkeypatch.setattr(stripe_service, "create_refund", fake_create_refund)
    return calls

# --- Creation ---

@pytest.mark.asyncio
async def test_create_reservation_prices_days_and_sends_payment_link(
    auth_client: AsyncClient, vehicle: Vehicle, customer: Customer, sent_tasks
):
    response = await auth_client.post("/api/v1/reservations/", json={
        "vehicle_id": str(vehicle.id),
        "customer_id": str(customer.id),
        "start_date": "2030-02-01T10:00:00Z",
        "end_date": "2030-02-04T10:00:00Z",
    })

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending_payment"
    assert Decimal(data["total_amount"]) == Decimal("150.00")
    assert len(data["magic_link_token"]) == 64

    assert len(sent_tasks) == 1
    name, (to, subject, html) = sent_tasks[0]
    assert name == SEND_EMAIL_TASK
    assert to == customer.email
    assert data["magic_link_token"] in html

@pytest.mark.asyncio
async def test_partial_day_counts_as_a_full_day(auth_client: AsyncClient, vehicle: Vehicle, customer: Customer):
    response = await auth_client.post("/api/v1/reservations/", json={
        "vehicle_id": str(vehicle.id),
        "customer_id": str(customer.id),
        "start_date": "2030-02-01T10:00:00Z",
        "end_date": "2030-02-02T14:00:00Z",
        "deposit_amount": "40",
    })

    assert response.status_code == 201
    data = response.json()
    assert Decimal(data["total_amount"]) == Decimal("100.00")
    assert Decimal(data["deposit_amount"]) == Decimal("40")

@pytest.mark.asyncio
async def test_insurance_is_not_offered_on_any_plan(auth_client: AsyncClient, vehicle: Vehicle, customer: Customer):
    response = await auth_client.post("/api/v1/reservations/", json={
        "vehicle_id": str(vehicle.id),
        "customer_id": str(customer.id),
        "start_date": "2030-02-01T10:00:00Z",
        "end_date": "2030-02-03T10:00:00Z",
        "include_insurance": True,
        "insurance_amount": "30",
    })

    assert response.status_code == 403
    data = response.json()
    assert data["limit_type"] == "insurance"
    assert data["suggested_plan"] is None

@pytest.mark.asyncio
async def test_reservation_without_customer_is_a_draft(auth_client: AsyncClient, vehicle: Vehicle, sent_tasks):
    response = await auth_client.post("/api/v1/reservations/", json={
        "vehicle_id": str(vehicle.id),
        "start_date": "2030-02-01T10:00:00Z",
        "end_date": "2030-02-03T10:00:00Z",
    })

    assert response.status_code == 201
    assert response.json()["status"] == "draft"
    assert sent_tasks == []

@pytest.mark.asyncio
async def test_overlapping_reservation_is_rejected(auth_client: AsyncClient, vehicle: Vehicle, customer: Customer, make_reservation):
    await make_reservation(status="paid")

    response = await auth_client.post("/api/v1/reservations/", json={
        "vehicle_id": str(vehicle.id),
        "customer_id": str(customer.id),
        "start_date": "2030-01-14T10:00:00Z",
        "end_date": "2030-01-16T10:00:00Z",
    })

    assert response.status_code == 409
    assert response.json() == {"error": "Le véhicule n'est pas disponible pour ces dates"}

@pytest.mark.asyncio
async def test_deposit_above_total_is_rejected(auth_client: AsyncClient, vehicle: Vehicle, customer: Customer):
    response = await auth_client.post("/api/v1/reservations/", json={
        "vehicle_id": str(vehicle.id),
        "customer_id": str(customer.id),
        "start_date": "2030-02-01T10:00:00Z",
        "end_date": "2030-02-02T10:00:00Z",
        "deposit_amount": "80",
    })

    assert response.status_code == 400
    assert response.json() == {"error": "L'acompte ne peut pas dépasser le montant total"}

@pytest.mark.asyncio
async def test_deposit_requires_a_paid_plan(
    auth_client: AsyncClient, db_session: AsyncSession, team: Team, vehicle: Vehicle, customer: Customer
):
    team.plan = "free"
    await db_session.commit()

    response = await auth_client.post("/api/v1/reservations/", json={
        "vehicle_id": str(vehicle.id),
        "customer_id": str(customer.id),
        "start_date": "2030-02-01T10:00:00Z",
        "end_date": "2030-02-03T10:00:00Z",
        "deposit_amount": "20",
    })

    assert response.status_code == 403
    data = response.json()
    assert data["limit_type"] == "deposits"
    assert data["suggested_plan"] == "starter"

@pytest.mark.asyncio
async def test_vehicle_in_maintenance_cannot_be_booked(
    auth_client: AsyncClient, db_session: AsyncSession, vehicle: Vehicle
):
    vehicle.status = "maintenance"
    await db_session.commit()

    response = await auth_client.post("/api/v1/reservations/", json={
        "vehicle_id": str(vehicle.id),
        "start_date": "2030-02-01T10:00:00Z",
        "end_date": "2030-02-03T10:00:00Z",
    })

    assert response.status_code == 400

@pytest.mark.asyncio
async def test_end_date_must_follow_start_date(auth_client: AsyncClient, vehicle: Vehicle):
    response = await auth_client.post("/api/v1/reservations/", json={
        "vehicle_id": str(vehicle.id),
        "start_date": "2030-02-03T10:00:00Z",
        "end_date": "2030-02-01T10:00:00Z",
    })

    assert response.status_code == 422

@pytest.mark.asyncio
async def test_dates_without_offset_are_read_as_utc(auth_client: AsyncClient, vehicle: Vehicle, customer: Customer):
    response = await auth_client.post("/api/v1/reservations/", json={
        "vehicle_id": str(vehicle.id),
        "customer_id": str(customer.id),
        "start_date": "2030-05-01T10:00:00Z",
        "end_date": "2030-05-03T10:00:00",
    })

    assert response.status_code == 201
    assert Decimal(response.json()["total_amount"]) == Decimal("100.00")

    response = await auth_client.post("/api/v1/reservations/availability", json={
        "vehicle_id": str(vehicle.id),
        "start_date": "2030-05-03T10:00:00",
        "end_date": "2030-05-01T10:00:00+02:00",
    })
    assert response.status_code == 422

@pytest.mark.asyncio
async def test_email_queue_failure_does_not_fail_creation(
    auth_client: AsyncClient, vehicle: Vehicle, customer: Customer, monkeypatch
):
    def broker_down(*args, **kwargs):
        raise ConnectionError("redis unavailable")

    monkeypatch.setattr(celery_app, "send_task", broker_down)

    response = await auth_client.post("/api/v1/reservations/", json={
        "vehicle_id": str(vehicle.id),
        "customer_id": str(customer.id),
        "start_date": "2030-02-01T10:00:00Z",
        "end_date": "2030-02-03T10:00:00Z",
    })

    assert response.status_code == 201

# --- Availability ---

@pytest.mark.asyncio
async def test_availability_bounds_are_inclusive(auth_client: AsyncClient, vehicle: Vehicle, make_reservation):
    booked = await make_reservation(status="confirmed")
    await make_reservation(
        status="pending_payment",
        start_date=datetime(2030, 3, 1, 10, 0, tzinfo=timezone.utc),
        end_date=datetime(2030, 3, 5, 10, 0, tzinfo=timezone.utc),
    )

    async def available(start, end, exclude=None):
        payload = {"vehicle_id": str(vehicle.id), "start_date": start, "end_date": end}
        if exclude:
            payload["exclude_reservation_id"] = str(exclude)
        response = await auth_client.post("/api/v1/reservations/availability", json=payload)
        assert response.status_code == 200
        return response.json()["is_available"]

    assert await available("2030-01-14T00:00:00Z", "2030-01-20T00:00:00Z") is False
    # Touching the end bound still overlaps
    assert await available("2030-01-15T10:00:00Z", "2030-01-17T00:00:00Z") is False
    assert await available("2030-01-16T00:00:00Z", "2030-01-20T00:00:00Z") is True
    # Unpaid reservations do not hold the vehicle
    assert await available("2030-03-02T00:00:00Z", "2030-03-03T00:00:00Z") is True
    assert await available("2030-01-11T00:00:00Z", "2030-01-12T00:00:00Z", exclude=booked.id) is True

# --- Status changes ---

@pytest.mark.asyncio
async def test_status_moves_forward_and_drives_vehicle_status(
    auth_client: AsyncClient, db_session: AsyncSession, vehicle: Vehicle, make_reservation
):
    reservation = await make_reservation(status="paid")

    response = await auth_client.patch(f"/api/v1/reservations/{reservation.id}/status", json={"status": "in_progress"})
    assert response.status_code == 200
    assert response.json()["checkin_at"] is not None
    await db_session.refresh(vehicle)
    assert vehicle.status == "rented"

    response = await auth_client.patch(f"/api/v1/reservations/{reservation.id}/status", json={"status": "completed"})
    assert response.status_code == 200
    await db_session.refresh(vehicle)
    assert vehicle.status == "available"

    response = await auth_client.patch(f"/api/v1/reservations/{reservation.id}/status", json={"status": "cancelled"})
    assert response.status_code == 400
    assert response.json() == {"error": "Cette réservation est terminée"}

@pytest.mark.asyncio
async def test_status_cannot_move_backwards(auth_client: AsyncClient, make_reservation):
    reservation = await make_reservation(status="confirmed")

    response = await auth_client.patch(f"/api/v1/reservations/{reservation.id}/status", json={"status": "paid"})

    assert response.status_code == 400
    assert response.json() == {"error": "Transition impossible de confirmed vers paid"}

@pytest.mark.asyncio
async def test_cancelled_is_terminal(auth_client: AsyncClient, make_reservation):
    reservation = await make_reservation(status="cancelled")

    response = await auth_client.patch(f"/api/v1/reservations/{reservation.id}/status", json={"status": "paid"})

    assert response.status_code == 400
    assert response.json() == {"error": "Cette réservation est annulée"}

@pytest.mark.asyncio
async def test_unknown_status_is_rejected(auth_client: AsyncClient, make_reservation):
    reservation = await make_reservation(status="paid")

    response = await auth_client.patch(f"/api/v1/reservations/{reservation.id}/status", json={"status": "archived"})

    assert response.status_code == 422

# --- Cancellation and refunds ---

@pytest.mark.asyncio
async def test_cancel_splits_refund_across_payments(
    auth_client: AsyncClient, db_session: AsyncSession, make_reservation, make_payment, refunds, sent_tasks
):
    reservation = await make_reservation(status="paid", total_amount=Decimal("100.00"))
    deposit = await make_payment(reservation, "60", type="deposit", stripe_payment_intent_id="pi_deposit")
    balance = await make_payment(reservation, "40", type="balance", stripe_payment_intent_id="pi_balance")

    response = await auth_client.post(
        f"/api/v1/reservations/{reservation.id}/cancel",
        json={"reason": "Client malade", "refund_amount": "50"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["message"] == "Réservation annulée avec succès"
    assert data["reservation"]["status"] == "cancelled"
    assert "Annulée - Raison: Client malade - Remboursement: 50.00€" in data["reservation"]["internal_notes"]

    assert {c["payment_intent_id"]: c["amount_cents"] for c in refunds} == {"pi_deposit": 3000, "pi_balance": 2000}
    assert {c["connect_account_id"] for c in refunds} == {"acct_test123"}
    assert all(r["error"] is None for r in data["refunds"])

    await db_session.refresh(deposit)
    await db_session.refresh(balance)
    assert deposit.refunded_amount == Decimal("30.00")
    assert deposit.status == "succeeded"
    assert balance.refunded_amount == Decimal("20.00")

    assert [name for name, _ in sent_tasks] == [SEND_EMAIL_TASK]

@pytest.mark.asyncio
async def test_full_refund_marks_payment_refunded(
    auth_client: AsyncClient, db_session: AsyncSession, make_reservation, make_payment, refunds
):
    reservation = await make_reservation(status="confirmed", total_amount=Decimal("250.00"))
    payment = await make_payment(reservation, "250", type="total", stripe_payment_intent_id="pi_total")

    response = await auth_client.post(f"/api/v1/reservations/{reservation.id}/cancel", json={"refund_amount": "250"})

    assert response.status_code == 200
    assert refunds[0]["amount_cents"] == 25000
    await db_session.refresh(payment)
    assert payment.status == "refunded"
    assert "Raison: Non spécifiée" in response.json()["reservation"]["internal_notes"]

@pytest.mark.asyncio
async def test_cancel_without_refund_calls_no_stripe(auth_client: AsyncClient, make_reservation, refunds):
    reservation = await make_reservation(status="pending_payment")

    response = await auth_client.post(f"/api/v1/reservations/{reservation.id}/cancel", json={"reason": "Doublon"})

    assert response.status_code == 200
    assert response.json()["refunds"] == []
    assert refunds == []

@pytest.mark.asyncio
async def test_failed_refund_is_reported_and_reservation_still_cancelled(
    auth_client: AsyncClient, db_session: AsyncSession, make_reservation, make_payment, monkeypatch
):
    reservation = await make_reservation(status="paid", total_amount=Decimal("100.00"))
    payment = await make_payment(reservation, "100", type="total", stripe_payment_intent_id="pi_total")

    def declined(**kwargs):
        raise ExternalServiceError("Remboursement refusé par Stripe: insufficient funds")

    monkeypatch.setattr(stripe_service, "create_refund", declined)

    response = await auth_client.post(f"/api/v1/reservations/{reservation.id}/cancel", json={"refund_amount": "100"})

    assert response.status_code == 200
    data = response.json()
    assert data["reservation"]["status"] == "cancelled"
    assert data["refunds"][0]["error"] == "Remboursement refusé par Stripe: insufficient funds"
    assert data["refunds"][0]["refund_id"] is None
    await db_session.refresh(payment)
    assert payment.status == "succeeded"
    assert payment.refunded_amount is None

@pytest.mark.asyncio
async def test_cannot_cancel_twice(auth_client: AsyncClient, make_reservation):
    reservation = await make_reservation(status="cancelled")

    response = await auth_client.post(f"/api/v1/reservations/{reservation.id}/cancel", json={})

    assert response.status_code == 400
    assert response.json() == {"error": "Cette réservation est déjà annulée"}

@pytest.mark.asyncio
async def test_cannot_cancel_started_rental(auth_client: AsyncClient, make_reservation):
    reservation = await make_reservation(
        status="in_progress", checkin_at=datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
    )

    response = await auth_client.post(f"/api/v1/reservations/{reservation.id}/cancel", json={})

    assert response.status_code == 400
    assert response.json() == {"error": "Impossible d'annuler une réservation déjà commencée"}

@pytest.mark.asyncio
async def test_refund_cannot_exceed_amount_paid(auth_client: AsyncClient, make_reservation, make_payment, refunds):
    reservation = await make_reservation(status="paid")
    await make_payment(reservation, "75", stripe_payment_intent_id="pi_deposit")

    response = await auth_client.post(f"/api/v1/reservations/{reservation.id}/cancel", json={"refund_amount": "80"})

    assert response.status_code == 400
    assert refunds == []

# --- Payment link and balance ---

@pytest.mark.asyncio
async def test_resend_payment_link(auth_client: AsyncClient, make_reservation, sent_tasks):
    reservation = await make_reservation(status="pending_payment")

    response = await auth_client.post(f"/api/v1/reservations/{reservation.id}/resend-payment-link")

    assert response.status_code == 200
    data = response.json()
    assert data["url"].endswith(f"/reservation/{reservation.magic_link_token}")
    assert data["email_queued"] is True
    assert len(sent_tasks) == 1

@pytest.mark.asyncio
async def test_resend_payment_link_only_while_unpaid(auth_client: AsyncClient, make_reservation):
    reservation = await make_reservation(status="paid")

    response = await auth_client.post(f"/api/v1/reservations/{reservation.id}/resend-payment-link")

    assert response.status_code == 400

@pytest.mark.asyncio
async def test_request_balance_after_deposit(
    auth_client: AsyncClient, db_session: AsyncSession, make_reservation, make_payment, sent_tasks
):
    reservation = await make_reservation(status="confirmed", deposit_amount=Decimal("75.00"))
    await make_payment(reservation, "75", type="deposit", stripe_payment_intent_id="pi_deposit")

    response = await auth_client.post(f"/api/v1/reservations/{reservation.id}/request-balance")

    assert response.status_code == 200
    data = response.json()
    assert Decimal(data["paid_amount"]) == Decimal("75.00")
    assert Decimal(data["balance_amount"]) == Decimal("175.00")
    assert Decimal(data["fees"]["total_fee"]) == Decimal("1.75")
    assert data["already_paid"] is False

    await db_session.refresh(reservation)
    assert reservation.balance_payment_token
    name, (to, subject, html) = sent_tasks[0]
    assert f"/reservation/{reservation.balance_payment_token}/balance" in html

@pytest.mark.asyncio
async def test_request_balance_requires_a_deposit(auth_client: AsyncClient, make_reservation, make_payment):
    reservation = await make_reservation(status="paid")
    await make_payment(reservation, "75", type="deposit", status="pending")

    response = await auth_client.post(f"/api/v1/reservations/{reservation.id}/request-balance")

    assert response.status_code == 400
    assert response.json() == {"error": "L'acompte doit être payé avant de demander le solde"}

@pytest.mark.asyncio
async def test_request_balance_rejected_when_already_paid(auth_client: AsyncClient, make_reservation, make_payment):
    reservation = await make_reservation(status="confirmed")
    await make_payment(reservation, "75", type="deposit", stripe_payment_intent_id="pi_deposit")
    await make_payment(reservation, "175", type="balance", stripe_payment_intent_id="pi_balance")

    response = await auth_client.post(f"/api/v1/reservations/{reservation.id}/request-balance")

    assert response.status_code == 400
    assert response.json() == {"error": "Le solde a déjà été payé"}

@pytest.mark.asyncio
async def test_request_balance_rejected_when_nothing_left(auth_client: AsyncClient, make_reservation, make_payment):
    reservation = await make_reservation(status="confirmed")
    await make_payment(reservation, "250", type="total", stripe_payment_intent_id="pi_total")

    response = await auth_client.post(f"/api/v1/reservations/{reservation.id}/request-balance")

    assert response.status_code == 400
    assert response.json() == {"error": "Aucun solde restant à payer"}

# --- Check-in / check-out ---

@pytest.mark.asyncio
async def test_checkin_then_checkout(auth_client: AsyncClient, db_session: AsyncSession, vehicle: Vehicle, make_reservation):
    reservation = await make_reservation(status="confirmed")

    response = await auth_client.post(
        f"/api/v1/reservations/{reservation.id}/checkin",
        json={"mileage": 12500, "fuel_level": "full", "photos": ["https://cdn/front.jpg"]},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "in_progress"
    assert data["checkin_mileage"] == 12500
    await db_session.refresh(vehicle)
    assert vehicle.status == "rented"
    assert vehicle.mileage == 12500

    response = await auth_client.post(f"/api/v1/reservations/{reservation.id}/checkout", json={"mileage": 12400})
    assert response.status_code == 400
    assert response.json() == {"error": "Le kilométrage de retour est inférieur au kilométrage de départ"}

    response = await auth_client.post(
        f"/api/v1/reservations/{reservation.id}/checkout", json={"mileage": 12830, "fuel_level": "3/4"}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    await db_session.refresh(vehicle)
    assert vehicle.status == "available"
    assert vehicle.mileage == 12830

@pytest.mark.asyncio
async def test_checkin_requires_payment(auth_client: AsyncClient, make_reservation):
    reservation = await make_reservation(status="pending_payment")

    response = await auth_client.post(f"/api/v1/reservations/{reservation.id}/checkin", json={})

    assert response.status_code == 400
    assert response.json() == {"error": "La réservation doit être payée ou confirmée pour effectuer le check-in"}

@pytest.mark.asyncio
async def test_checkin_not_on_free_plan(auth_client: AsyncClient, db_session: AsyncSession, team: Team, make_reservation):
    team.plan = "free"
    await db_session.commit()
    reservation = await make_reservation(status="paid")

    response = await auth_client.post(f"/api/v1/reservations/{reservation.id}/checkin", json={})

    assert response.status_code == 403
    assert response.json()["limit_type"] == "checkin_checkout"

# --- Listing and detail ---

@pytest.mark.asyncio
async def test_list_and_read_reservation(auth_client: AsyncClient, make_reservation, make_payment):
    paid = await make_reservation(status="paid")
    await make_reservation(
        status="pending_payment",
        start_date=datetime(2030, 4, 1, 10, 0, tzinfo=timezone.utc),
        end_date=datetime(2030, 4, 2, 10, 0, tzinfo=timezone.utc),
    )
    await make_payment(paid, "250", type="total", stripe_payment_intent_id="pi_total")

    response = await auth_client.get("/api/v1/reservations/")
    assert response.status_code == 200
    assert len(response.json()) == 2

    response = await auth_client.get("/api/v1/reservations/", params={"status": "paid"})
    assert [r["id"] for r in response.json()] == [str(paid.id)]

    response = await auth_client.get(f"/api/v1/reservations/{paid.id}")
    assert response.status_code == 200
    data = response.json()
    assert data["vehicle"]["plate"] == "AB-123-CD"
    assert data["customer"]["email"] == "lea.dupont@example.com"
    assert [p["stripe_payment_intent_id"] for p in data["payments"]] == ["pi_total"]
    assert data["contract"] is None

# --- Contract ---

@pytest.mark.asyncio
async def test_contract_check_status_reports_yousign_outage(
    auth_client: AsyncClient, db_session: AsyncSession, make_reservation, monkeypatch
):
    def network_down(request: httpx.Request):
        raise httpx.ConnectError("network down", request=request)

    monkeypatch.setattr(settings, "YOUSIGN_API_KEY", "ys_test_key")
    monkeypatch.setattr(
        yousign_service, "_client", lambda: httpx.AsyncClient(transport=httpx.MockTransport(network_down))
    )
    reservation = await make_reservation(status="paid")
    db_session.add(Contract(
        reservation_id=reservation.id,
        pdf_url="https://files.carbly.test/contract.pdf",
        status="pending_signature",
        signature_request_id="sr_1",
    ))
    await db_session.commit()

    response = await auth_client.post(f"/api/v1/reservations/{reservation.id}/contract/check-status")

    assert response.status_code == 502
    assert response.json() == {"error": "Yousign: fetch signature request failed"}
